"""Layer-3 clustering — K-means++ kernel, builder, and scheduler."""

from noteindex.cluster.builder import ClusterBuilder, choose_k
from noteindex.cluster.kmeans import KMeansResult, cosine_distance, kmeans_pp
from noteindex.cluster.scheduler import LAST_RUN_KEY, ClusterScheduler, Gate

__all__ = [
    "ClusterBuilder",
    "ClusterScheduler",
    "Gate",
    "KMeansResult",
    "LAST_RUN_KEY",
    "choose_k",
    "cosine_distance",
    "kmeans_pp",
]
