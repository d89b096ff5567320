"""Hybrid search engine — lexical + vector fusion, re-rank, graph expansion."""

from noteindex.search.engine import ContextItem, HybridSearchEngine, SearchResult
from noteindex.search.fusion import SearchCandidate, apply_cluster_boost, backfill_score, rrf_fuse

__all__ = [
    "ContextItem",
    "HybridSearchEngine",
    "SearchCandidate",
    "SearchResult",
    "apply_cluster_boost",
    "backfill_score",
    "rrf_fuse",
]
