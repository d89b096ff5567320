"""Cluster builder — the layer-3 theme tier.

Groups every layer-2 summary with K-means++, asks the completion provider for
a short theme per cluster, and atomically replaces layer 3 with the result.
Each layer-3 chunk is anchored on its cluster's most representative document
and carries the JSON list of ALL member document ids in ``context_text``;
query-time cluster boosting reads that list.
"""

from __future__ import annotations

import json
import logging
import math
from contextlib import closing

import numpy as np

from noteindex.cluster.kmeans import kmeans_pp
from noteindex.config import ClusterCfg
from noteindex.db.connection import Database
from noteindex.db.models import LAYER_CLUSTER, LAYER_SUMMARY, Chunk
from noteindex.db.paired_store import PairedStore
from noteindex.db.repository import Repository
from noteindex.db.vectors import ensure_vec_tables
from noteindex.errors import ProviderError
from noteindex.providers import ProviderRegistry

logger = logging.getLogger(__name__)

_THEME_PROMPT = """\
The following are summaries of related notes from one person's knowledge base.
Describe the common theme that connects them in 2-4 sentences. Be factual and \
specific; name the shared topics, projects, or people. Write in the same \
language as the summaries.

{summaries}

Theme:"""


def choose_k(n: int, k_min: int = 2, k_max: int = 20) -> int:
    """``clamp(round(sqrt(n / 2)), k_min, k_max)``."""
    return max(k_min, min(k_max, int(round(math.sqrt(n / 2)))))


class ClusterBuilder:
    """Rebuild layer 3 from the current layer-2 summaries.

    Args:
        db:       Database handle (the builder opens its own connection).
        registry: Provider registry; both capabilities must be present.
        config:   Cluster settings.
        rng:      Random generator for the kernel (seed for reproducibility).
    """

    def __init__(
        self,
        db: Database,
        registry: ProviderRegistry,
        config: ClusterCfg | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        self._db = db
        self._registry = registry
        self._cfg = config or ClusterCfg()
        self._rng = rng

    def run(self) -> int:
        """Build and store the cluster tier.

        Returns:
            Number of layer-3 clusters stored. 0 means nothing was staged and
            the previous layer 3 was left in place.

        Raises:
            ProviderError: If re-embedding the summaries fails.
        """
        embedder = self._registry.embedder
        completer = self._registry.completer
        if embedder is None or completer is None:
            return 0

        with closing(self._db.connect()) as conn:
            repo = Repository(conn)
            _, clusters_table = ensure_vec_tables(
                conn, self._registry.embedding_model, self._registry.dimensions
            )
            summaries = repo.list_layer(LAYER_SUMMARY)
            if not summaries:
                return 0

            # Re-embed rather than reuse stored layer-2 vectors so the input is
            # consistent with the current embedding model.
            points = np.asarray(embedder.embed([c.text for c in summaries]), dtype=np.float64)
            k = choose_k(len(summaries), self._cfg.k_min, self._cfg.k_max)
            result = kmeans_pp(
                points, k, max_iter=self._cfg.max_iter, epsilon=self._cfg.epsilon, rng=self._rng
            )
            logger.info("Clustered %d summaries into %d group(s)", len(summaries), result.k)

            staged: list[Chunk] = []
            vectors: list[list[float]] = []
            for cluster in range(result.k):
                members = result.members(cluster)
                if not members:
                    continue
                # Nearest to the centroid first.
                members.sort(key=lambda i: -float(points[i] @ result.centroids[cluster]))
                representatives = [summaries[i] for i in members[: self._cfg.representatives]]
                try:
                    theme = completer.complete(
                        _THEME_PROMPT.format(
                            summaries="\n\n".join(f"- {c.text}" for c in representatives)
                        )
                    )
                    [vector] = embedder.embed([theme])
                except ProviderError as exc:
                    logger.warning("Skipping cluster %d: %s", cluster, exc)
                    continue

                staged.append(
                    Chunk(
                        document_id=representatives[0].document_id,
                        text=theme,
                        context_text=json.dumps([summaries[i].document_id for i in members]),
                        layer=LAYER_CLUSTER,
                        position=len(staged),
                    )
                )
                vectors.append(vector)

            if not staged:
                logger.warning("No clusters staged; keeping the existing layer 3")
                return 0

            PairedStore(repo).replace_layer(LAYER_CLUSTER, staged, vectors, clusters_table)
        logger.info("Stored %d layer-3 cluster(s)", len(staged))
        return len(staged)
