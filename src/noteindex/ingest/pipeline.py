"""Index pipeline orchestrator — keeps the index in step with document edits.

Called fire-and-forget after every document save:

  on_document_saved(id)
    ├─ embedding sub-pipeline   layer-1 chunks + layer-2 summary
    └─ enrichment sub-pipeline  auto-detected entity mentions

Both run as independent tasks on their own database connections; neither
blocks the caller, and every failure is caught and logged inside the task.
A per-document dirty flag is set on save and cleared only once the index is
fully rebuilt, so recover_dirty() can finish interrupted work at startup.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from contextlib import closing
from dataclasses import dataclass, field
from typing import Any, Protocol

from noteindex.config import NoteIndexConfig
from noteindex.db.connection import Database
from noteindex.db.models import LAYER_RAW, LAYER_SUMMARY, Chunk, Document
from noteindex.db.paired_store import PairedStore
from noteindex.db.repository import Repository
from noteindex.db.vectors import ensure_vec_tables
from noteindex.errors import ProviderError
from noteindex.ingest.chunker import SentenceChunker
from noteindex.ingest.entities import EntityDetector
from noteindex.ingest.summarizer import DocumentSummarizer
from noteindex.providers import ProviderRegistry

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Task spawning
# ------------------------------------------------------------------


class Spawner(Protocol):
    """Runs a callable in the background and returns its Future."""

    def spawn(self, fn: Callable[..., Any], *args: Any) -> Future: ...


class ThreadPoolSpawner:
    """Spawner backed by a shared ThreadPoolExecutor."""

    def __init__(self, workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, workers), thread_name_prefix="noteindex"
        )

    def spawn(self, fn: Callable[..., Any], *args: Any) -> Future:
        return self._executor.submit(fn, *args)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class ImmediateSpawner:
    """Spawner that runs the callable inline (tests, CLI)."""

    def spawn(self, fn: Callable[..., Any], *args: Any) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args))
        except Exception as exc:
            future.set_exception(exc)
        return future


@dataclass
class SaveEvent:
    """Handle for the background work triggered by one document save."""

    document_id: str
    futures: list[Future] = field(default_factory=list)

    @property
    def settled(self) -> bool:
        return all(f.done() for f in self.futures)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until both sub-pipelines finish; True if they did in time."""
        _, pending = wait_futures(self.futures, timeout=timeout)
        return not pending


# ------------------------------------------------------------------
# Orchestrator
# ------------------------------------------------------------------


class IndexPipeline:
    """Keep chunks and vectors consistent with document content.

    Args:
        db:       Database handle; each task opens its own connection.
        registry: Provider registry (capabilities + clients).
        config:   Loaded configuration.
        spawner:  Background task runner (defaults to a thread pool).
    """

    def __init__(
        self,
        db: Database,
        registry: ProviderRegistry,
        config: NoteIndexConfig | None = None,
        spawner: Spawner | None = None,
    ) -> None:
        self._db = db
        self._registry = registry
        self._config = config or NoteIndexConfig()
        self._spawner = spawner or ThreadPoolSpawner(self._config.pipeline.workers)
        cc = self._config.chunker
        self._chunker = SentenceChunker(cc.max_chars, cc.overlap_chars, cc.context_label)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def on_document_saved(self, document_id: str) -> SaveEvent:
        """Mark *document_id* dirty and spawn both sub-pipelines. Never raises."""
        event = SaveEvent(document_id)
        try:
            with closing(self._db.connect()) as conn:
                Repository(conn).set_dirty(document_id, True)
        except sqlite3.Error:
            logger.exception("Could not mark document %s dirty", document_id)

        try:
            event.futures.append(
                self._spawner.spawn(self._guarded, "embedding", self.run_embedding, document_id)
            )
            event.futures.append(
                self._spawner.spawn(self._guarded, "enrichment", self.run_enrichment, document_id)
            )
        except RuntimeError:
            # Executor already shut down (process exiting); recovery picks it up.
            logger.exception("Could not schedule indexing for document %s", document_id)
        return event

    def recover_dirty(self) -> int:
        """Re-run the embedding sub-pipeline for dirty documents, one at a time.

        Newest-updated first, capped at ``pipeline.recover_batch`` per pass.
        Sequential on purpose: a burst of concurrent runs would trip provider
        rate limits.

        Returns:
            Number of documents whose index was fully rebuilt.
        """
        if not self._embedding_capable():
            return 0
        with closing(self._db.connect()) as conn:
            dirty = Repository(conn).list_dirty(self._config.pipeline.recover_batch)
        if not dirty:
            return 0

        logger.info("Recovering %d dirty document(s)", len(dirty))
        rebuilt = 0
        for document_id in dirty:
            if self._guarded("embedding", self.run_embedding, document_id):
                rebuilt += 1
        logger.info("Recovery pass rebuilt %d/%d document(s)", rebuilt, len(dirty))
        return rebuilt

    # ------------------------------------------------------------------
    # Embedding sub-pipeline
    # ------------------------------------------------------------------

    def run_embedding(self, document_id: str) -> bool:
        """Rebuild layer-1 chunks and the layer-2 summary for *document_id*.

        Runs for the same document are serialized, so a later save always
        rebuilds after an earlier one. The dirty flag is only cleared when
        the document has not been saved again since it was read.

        Returns:
            True if the run rebuilt the index from the content it read.
        """
        if not self._embedding_capable():
            logger.debug("Embedding skipped for %s: capability absent", document_id)
            return False
        with self._document_lock(document_id):
            return self._rebuild(document_id)

    def _rebuild(self, document_id: str) -> bool:
        embedder = self._registry.embedder

        with closing(self._db.connect()) as conn:
            if not self._db.is_vector_index_loaded():
                return False
            repo = Repository(conn)
            store = PairedStore(repo)
            table, _ = ensure_vec_tables(
                conn, self._registry.embedding_model, self._registry.dimensions
            )

            document = repo.get_document(document_id)
            store.delete_by_document(document_id, LAYER_RAW, table)

            body = document.body if document is not None and not document.is_archived else ""
            if not body.strip():
                store.delete_by_document(document_id, LAYER_SUMMARY, table)
                if document is not None:
                    repo.clear_dirty(document_id, document.updated_at)
                return True

            chunks = self._chunker.chunk(document_id, body, document.title)
            if not chunks:
                return False

            try:
                vectors = embedder.embed([c.context_text for c in chunks])
            except ProviderError as exc:
                logger.error("Embedding failed for %s: %s", document_id, exc)
                return False

            try:
                store.insert_pairs(chunks, vectors, table)
            except sqlite3.Error:
                logger.exception("Storing layer-1 chunks failed for %s", document_id)
                return False
            logger.info("Stored %d chunk(s) for document %s", len(chunks), document_id)

            if self._registry.completer is None:
                logger.debug("Layer-2 summary skipped for %s: no completion key", document_id)
                repo.clear_dirty(document_id, document.updated_at)
                return True

            if not self._write_summary(repo, store, table, document, body):
                return False

            repo.clear_dirty(document_id, document.updated_at)
            return True

    def _write_summary(
        self,
        repo: Repository,
        store: PairedStore,
        table: str,
        document: Document,
        body: str,
    ) -> bool:
        """Replace the document's layer-2 summary. Layer 1 stays on failure."""
        store.delete_by_document(document.id, LAYER_SUMMARY, table)

        summarizer = DocumentSummarizer(
            self._registry.completer, max_chars=self._config.pipeline.summary_max_chars
        )
        try:
            summary = summarizer.generate(document.title, body)
            vectors = self._registry.embedder.embed([summary])
        except ProviderError as exc:
            logger.error("Summary failed for %s: %s", document.id, exc)
            return False

        chunk = Chunk(
            document_id=document.id,
            text=summary,
            context_text=self._chunker.context_for(document.title, summary),
            layer=LAYER_SUMMARY,
            position=0,
        )
        try:
            store.insert_pairs([chunk], vectors, table)
        except sqlite3.Error:
            logger.exception("Storing layer-2 summary failed for %s", document.id)
            return False
        return True

    # ------------------------------------------------------------------
    # Enrichment sub-pipeline
    # ------------------------------------------------------------------

    def run_enrichment(self, document_id: str) -> int:
        """Refresh auto-detected entity mentions. Returns detections stored."""
        completer = self._registry.completer
        if completer is None:
            return 0

        with closing(self._db.connect()) as conn:
            repo = Repository(conn)
            document = repo.get_document(document_id)
            if document is None or document.is_archived:
                return 0
            entities = repo.list_entities()
            if not entities:
                return 0
            try:
                detections = EntityDetector(completer).detect(
                    document.title, document.body, entities
                )
            except ProviderError as exc:
                logger.error("Entity detection failed for %s: %s", document_id, exc)
                return 0
            repo.replace_auto_mentions(
                document_id, [(d.entity_id, d.confidence) for d in detections]
            )
        logger.debug("Stored %d entity mention(s) for %s", len(detections), document_id)
        return len(detections)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _embedding_capable(self) -> bool:
        return self._db.is_vector_index_loaded() and self._registry.has_embedding_credentials()

    def _document_lock(self, document_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(document_id, threading.Lock())

    @staticmethod
    def _guarded(name: str, fn: Callable[[str], Any], document_id: str) -> Any:
        """Run a sub-pipeline; log and swallow any failure (fire-and-forget)."""
        try:
            return fn(document_id)
        except Exception:
            logger.exception("%s pipeline failed for document %s", name.capitalize(), document_id)
            return None
