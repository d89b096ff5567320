"""Hybrid search: lexical (FTS5) + vector (sqlite-vec), fused via RRF.

Degrades by capability tier:

  no vector index / no embedding key  lexical only, excerpt None
  + vector index and embedding key    lexical + vector, RRF fused
  + completion key                    query expansion and LLM re-rank
  + populated layer 3                 flat boost for top-cluster members

Only lexical search is load-bearing; every other stage logs its failure and
is skipped.
"""

from __future__ import annotations

import logging
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from contextlib import closing
from dataclasses import dataclass

from noteindex.config import SearchCfg
from noteindex.db.connection import Database
from noteindex.db.models import LAYER_CLUSTER
from noteindex.db.repository import Repository, sanitize_terms
from noteindex.db.vectors import (
    CHUNKS_KIND,
    CLUSTERS_KIND,
    model_to_slug,
    vec_table_exists,
    vec_table_name,
)
from noteindex.errors import ProviderError
from noteindex.providers import CompletionProvider, ProviderRegistry
from noteindex.search.expansion import expand_query
from noteindex.search.fusion import (
    SearchCandidate,
    apply_cluster_boost,
    backfill_score,
    rrf_fuse,
)
from noteindex.search.graph import expand_neighbors
from noteindex.search.reranker import rerank

logger = logging.getLogger(__name__)

SEARCH = "search"


@dataclass
class SearchResult:
    """One ranked search hit."""

    document_id: str
    title: str
    excerpt: str | None
    score: float = 0.0


@dataclass
class ContextItem:
    """One document of graph-expanded grounding context.

    Attributes:
        source: "search" for ranked matches, "link" or "entity" for documents
            pulled in by graph expansion.
    """

    document_id: str
    title: str
    excerpt: str | None
    source: str = SEARCH


class HybridSearchEngine:
    """Ranked document search over the index.

    Args:
        db:       Database handle; each call opens its own connection.
        registry: Provider registry (capabilities + clients).
        config:   Search tuning.
    """

    def __init__(
        self,
        db: Database,
        registry: ProviderRegistry,
        config: SearchCfg | None = None,
    ) -> None:
        self._db = db
        self._registry = registry
        self._cfg = config or SearchCfg()
        slug = model_to_slug(registry.embedding_model)
        self._chunks_table = vec_table_name(slug, CHUNKS_KIND)
        self._clusters_table = vec_table_name(slug, CLUSTERS_KIND)

    # ------------------------------------------------------------------
    # Capability probes
    # ------------------------------------------------------------------

    def is_vector_index_loaded(self) -> bool:
        return self._db.is_vector_index_loaded()

    def has_embedding_credentials(self) -> bool:
        return self._registry.has_embedding_credentials()

    def has_completion_credentials(self) -> bool:
        return self._registry.has_completion_credentials()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def search(self, query: str) -> list[SearchResult]:
        """Return at most ``result_limit`` documents for *query*, best-first.

        Never raises; an unexpected failure is logged and yields no results.
        """
        if not query.strip():
            return []
        try:
            return self._search(query)
        except Exception:
            logger.exception("Search failed for %r", query)
            return []

    def _search(self, query: str) -> list[SearchResult]:
        with closing(self._db.connect()) as conn:
            repo = Repository(conn)
            ranked = self._rank(repo, query)[: self._cfg.result_limit]
            documents = repo.get_documents([c.document_id for c in ranked])
        return [
            SearchResult(c.document_id, documents[c.document_id].title, c.excerpt, c.score)
            for c in ranked
            if c.document_id in documents
        ]

    def retrieve_context(self, query: str, seed_limit: int = 5) -> list[ContextItem]:
        """Ranked seeds plus their one-hop graph neighbours.

        The ranking is not truncated to ``result_limit``; *seed_limit* bounds
        the seed set and graph expansion adds up to ``graph_neighbor_limit``
        documents per relation. Never raises, like search().
        """
        if not query.strip() or seed_limit < 1:
            return []
        try:
            return self._retrieve_context(query, seed_limit)
        except Exception:
            logger.exception("Context retrieval failed for %r", query)
            return []

    def _retrieve_context(self, query: str, seed_limit: int) -> list[ContextItem]:
        with closing(self._db.connect()) as conn:
            repo = Repository(conn)
            seeds = self._rank(repo, query)[:seed_limit]
            seed_ids = [c.document_id for c in seeds]
            try:
                neighbors = expand_neighbors(repo, seed_ids, self._cfg.graph_neighbor_limit)
            except sqlite3.Error:
                logger.exception("Graph expansion failed")
                neighbors = []
            documents = repo.get_documents(seed_ids + [n for n, _ in neighbors])

        items = [
            ContextItem(c.document_id, documents[c.document_id].title, c.excerpt)
            for c in seeds
            if c.document_id in documents
        ]
        for document_id, relation in neighbors:
            document = documents.get(document_id)
            if document is None:
                continue
            excerpt = document.body[: self._cfg.rerank_excerpt_chars] or None
            items.append(ContextItem(document_id, document.title, excerpt, relation))
        return items

    # ------------------------------------------------------------------
    # Ranking pipeline
    # ------------------------------------------------------------------

    def _rank(self, repo: Repository, query: str) -> list[SearchCandidate]:
        vector_capable = (
            self.is_vector_index_loaded()
            and self.has_embedding_credentials()
            and vec_table_exists(repo.conn, self._chunks_table)
        )
        if not vector_capable:
            return self._lexical_only(repo, query)

        completer = self._registry.completer
        terms, query_vector = self._expand_and_embed(query, completer)

        lexical = self._lexical(repo, query, terms)
        vector = self._vector(repo, query_vector) if query_vector is not None else []
        candidates = rrf_fuse([lexical, vector], self._cfg.rrf_k)

        if query_vector is not None:
            boost_ids = self._cluster_members(repo, query_vector)
            if boost_ids:
                candidates = apply_cluster_boost(candidates, boost_ids, self._cfg.cluster_boost)

        if len(candidates) < self._cfg.backfill_threshold:
            candidates = self._backfill(repo, candidates, terms or sanitize_terms(query))

        if completer is not None and candidates:
            candidates = self._rerank_head(repo, completer, query, candidates)
        return candidates

    def _rerank_head(
        self,
        repo: Repository,
        completer: CompletionProvider,
        query: str,
        candidates: list[SearchCandidate],
    ) -> list[SearchCandidate]:
        """Re-rank the first ``result_limit`` candidates; fusion order on any failure."""
        limit = self._cfg.result_limit
        try:
            head = candidates[:limit]
            titles = {
                doc_id: doc.title
                for doc_id, doc in repo.get_documents([c.document_id for c in head]).items()
            }
            head = rerank(completer, query, head, titles, self._cfg.rerank_excerpt_chars)
        except Exception:
            logger.exception("Re-rank failed, keeping fusion order")
            return candidates
        return head + candidates[limit:]

    def _lexical_only(self, repo: Repository, query: str) -> list[SearchCandidate]:
        hits = self._lexical(repo, query, [])
        return [
            SearchCandidate(document_id, 1.0 / (self._cfg.rrf_k + rank), None, 1)
            for rank, (document_id, _) in enumerate(hits[: self._cfg.result_limit])
        ]

    def _expand_and_embed(
        self, query: str, completer: CompletionProvider | None
    ) -> tuple[list[str], list[float] | None]:
        """Run query expansion and query embedding concurrently."""
        embedder = self._registry.embedder
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="noteindex-search") as pool:
            expansion = pool.submit(expand_query, completer, query) if completer else None
            embedding = pool.submit(embedder.embed, [query])

            terms: list[str] = []
            if expansion is not None:
                try:
                    terms = expansion.result()
                except Exception:
                    logger.exception("Query expansion failed")
            try:
                query_vector: list[float] | None = embedding.result()[0]
            except ProviderError as exc:
                logger.warning("Query embedding failed, skipping vector search: %s", exc)
                query_vector = None
            except Exception:
                logger.exception("Query embedding failed, skipping vector search")
                query_vector = None
        return terms, query_vector

    def _lexical(
        self, repo: Repository, query: str, terms: list[str]
    ) -> list[tuple[str, str | None]]:
        """FTS over the expanded terms, falling back to the sanitized raw query."""
        raw_terms = sanitize_terms(query)
        hits: list = []
        if terms:
            try:
                hits = repo.search_documents(terms, self._cfg.lexical_limit)
            except sqlite3.Error:
                logger.exception("Lexical search on expanded terms failed")
        if not hits:
            try:
                hits = repo.search_documents(raw_terms, self._cfg.lexical_limit)
            except sqlite3.Error:
                logger.exception("Lexical search failed")
                return []
        return [(document.id, None) for document, _score in hits]

    def _vector(
        self, repo: Repository, query_vector: list[float]
    ) -> list[tuple[str, str | None]]:
        """Nearest chunks resolved to their documents, best chunk per document."""
        try:
            nearest = repo.search_vec(self._chunks_table, query_vector, self._cfg.vector_top_k)
            chunks = repo.get_chunks([chunk_id for chunk_id, _ in nearest])
            documents = repo.get_documents({c.document_id for c in chunks.values()})
        except sqlite3.Error:
            logger.exception("Vector search failed")
            return []

        ranked: list[tuple[str, str | None]] = []
        seen: set[str] = set()
        for chunk_id, _distance in nearest:
            chunk = chunks.get(chunk_id)
            if chunk is None or chunk.document_id not in documents:
                continue
            if chunk.document_id in seen:
                continue
            seen.add(chunk.document_id)
            ranked.append((chunk.document_id, chunk.text))
        return ranked

    def _cluster_members(self, repo: Repository, query_vector: list[float]) -> set[str]:
        """Union of member ids of the nearest layer-3 clusters (empty if none)."""
        try:
            if not vec_table_exists(repo.conn, self._clusters_table):
                return set()
            if repo.count_chunks(LAYER_CLUSTER) == 0:
                return set()
            nearest = repo.search_vec(
                self._clusters_table, query_vector, self._cfg.cluster_top_k
            )
            clusters = repo.get_chunks([chunk_id for chunk_id, _ in nearest])
            members: set[str] = set()
            for chunk in clusters.values():
                members.update(chunk.member_ids)
        except Exception:
            logger.exception("Cluster boost failed")
            return set()
        return members

    def _backfill(
        self,
        repo: Repository,
        candidates: list[SearchCandidate],
        terms: list[str],
    ) -> list[SearchCandidate]:
        """Append substring matches for *terms* at the rank-21 score floor."""
        present = {c.document_id for c in candidates}
        floor = backfill_score(self._cfg.backfill_rank, self._cfg.rrf_k)
        added: list[SearchCandidate] = []
        for term in terms:
            try:
                matches = repo.substring_search(term, self._cfg.lexical_limit)
            except sqlite3.Error:
                logger.exception("Backfill for %r failed", term)
                continue
            for document in matches:
                if document.id in present:
                    continue
                present.add(document.id)
                added.append(SearchCandidate(document.id, floor, None, 1))
        if not added:
            return candidates
        return sorted(candidates + added, key=lambda c: -c.score)
