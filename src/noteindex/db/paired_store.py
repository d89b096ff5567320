"""Paired chunk + vector writes.

vec0 virtual tables do NOT support ON DELETE CASCADE, so the chunks table and
a vec table must be kept in step by hand. Every write that touches both goes
through PairedStore, which enforces:

  * deletes remove vector rows BEFORE chunk rows;
  * inserts of a chunk row and its vector share one transaction, so a failed
    vector write never leaves a chunk row behind.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass, field

from noteindex.db.models import Chunk
from noteindex.db.repository import Repository

logger = logging.getLogger(__name__)


@dataclass
class OrphanReport:
    """Chunk ids without a vector row and vector ids without a chunk row."""

    chunks_without_vectors: list[int] = field(default_factory=list)
    vectors_without_chunks: list[int] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.chunks_without_vectors and not self.vectors_without_chunks


class PairedStore:
    """Transactional chunk/vector pairing on top of a Repository.

    Args:
        repo: Repository over an open connection. PairedStore commits or rolls
            back that connection itself.
    """

    def __init__(self, repo: Repository) -> None:
        self._repo = repo
        self._conn: sqlite3.Connection = repo.conn

    def insert_pairs(
        self,
        chunks: Sequence[Chunk],
        vectors: Sequence[Sequence[float]],
        table: str,
    ) -> list[int]:
        """Insert each chunk with its vector in a single transaction.

        Sets ``chunk.id`` on success. On any failure the whole batch is rolled
        back and the exception re-raised.

        Returns:
            The new chunk ids, in input order.
        """
        if len(chunks) != len(vectors):
            raise ValueError(
                f"chunk/vector count mismatch: {len(chunks)} chunks, {len(vectors)} vectors"
            )
        ids: list[int] = []
        try:
            for chunk, vector in zip(chunks, vectors):
                chunk_id = self._repo.insert_chunk(chunk)
                self._repo.insert_vector(table, chunk_id, vector)
                ids.append(chunk_id)
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            logger.warning("Rolled back %d staged chunk row(s) in %s", len(ids), table)
            raise
        for chunk, chunk_id in zip(chunks, ids):
            chunk.id = chunk_id
        return ids

    def delete_by_document(self, document_id: str, layer: int, table: str) -> int:
        """Delete *document_id*'s chunks of *layer* (vectors first). Returns rows deleted."""
        ids = self._repo.chunk_ids(layer=layer, document_id=document_id)
        return self._delete(ids, table)

    def delete_by_layer(self, layer: int, table: str) -> int:
        """Delete every chunk of *layer* (vectors first). Returns rows deleted."""
        ids = self._repo.chunk_ids(layer=layer)
        return self._delete(ids, table)

    def replace_layer(
        self,
        layer: int,
        chunks: Sequence[Chunk],
        vectors: Sequence[Sequence[float]],
        table: str,
    ) -> list[int]:
        """Atomically replace all chunks of *layer* with *chunks*.

        Old vectors, then old chunk rows, are deleted and the new pairs
        inserted inside one transaction.
        """
        if len(chunks) != len(vectors):
            raise ValueError(
                f"chunk/vector count mismatch: {len(chunks)} chunks, {len(vectors)} vectors"
            )
        old_ids = self._repo.chunk_ids(layer=layer)
        new_ids: list[int] = []
        try:
            self._repo.delete_vectors(table, old_ids)
            self._repo.delete_chunks(old_ids)
            for chunk, vector in zip(chunks, vectors):
                chunk_id = self._repo.insert_chunk(chunk)
                self._repo.insert_vector(table, chunk_id, vector)
                new_ids.append(chunk_id)
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise
        for chunk, chunk_id in zip(chunks, new_ids):
            chunk.id = chunk_id
        return new_ids

    def find_orphans(self, table: str, layers: Sequence[int]) -> OrphanReport:
        """Compare chunk ids of *layers* against the vector ids in *table*."""
        chunk_ids: set[int] = set()
        for layer in layers:
            chunk_ids.update(self._repo.chunk_ids(layer=layer))
        vector_ids = self._repo.vector_ids(table)
        return OrphanReport(
            chunks_without_vectors=sorted(chunk_ids - vector_ids),
            vectors_without_chunks=sorted(vector_ids - chunk_ids),
        )

    def _delete(self, ids: list[int], table: str) -> int:
        if not ids:
            return 0
        try:
            self._repo.delete_vectors(table, ids)
            deleted = self._repo.delete_chunks(ids)
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise
        return deleted
