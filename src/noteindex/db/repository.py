"""Repository pattern for all noteindex database operations.

Single interface for: documents, FTS5 search, chunks, vec embeddings, graph
edges (links + entity mentions) and settings.

Document, graph and settings writes commit immediately. Chunk and vector
writes do NOT commit: they are only ever called through PairedStore, which
owns the transaction boundary so both halves land (or roll back) together.
"""

from __future__ import annotations

import json
import re
import sqlite3
from collections.abc import Iterable, Sequence

from noteindex.db.models import Chunk, Document, Entity

_DOC_COLUMNS = "id, title, body, updated_at, archived_at, index_dirty"
_CHUNK_COLUMNS = "id, document_id, text, context_text, layer, position, created_at"


class Repository:
    """Data access layer for all noteindex database entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with schema initialised
                (see noteindex.db.schema.initialize).
        """
        self._conn = conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def upsert_document(self, document: Document) -> None:
        """Insert or update a document; refreshes updated_at."""
        self._conn.execute(
            """
            INSERT INTO documents (id, title, body, archived_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                body = excluded.body,
                archived_at = excluded.archived_at,
                updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')
            """,
            (document.id, document.title, document.body, document.archived_at),
        )
        self._conn.commit()

    def get_document(self, document_id: str) -> Document | None:
        """Return a document by ID, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_DOC_COLUMNS} FROM documents WHERE id = ?", (document_id,)
        ).fetchone()
        return _row_to_document(row) if row else None

    def get_documents(
        self, document_ids: Iterable[str], *, include_archived: bool = False
    ) -> dict[str, Document]:
        """Return {id: Document} for the given ids (missing ids are absent)."""
        ids = list(dict.fromkeys(document_ids))
        if not ids:
            return {}
        placeholders = ",".join("?" * len(ids))
        sql = f"SELECT {_DOC_COLUMNS} FROM documents WHERE id IN ({placeholders})"
        if not include_archived:
            sql += " AND archived_at IS NULL"
        rows = self._conn.execute(sql, ids).fetchall()
        return {r["id"]: _row_to_document(r) for r in rows}

    def count_documents(self) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM documents WHERE archived_at IS NULL"
        ).fetchone()[0]

    # ------------------------------------------------------------------
    # Dirty flag
    # ------------------------------------------------------------------

    def set_dirty(self, document_id: str, dirty: bool = True) -> None:
        """Set or clear the index-dirty flag of *document_id*."""
        self._conn.execute(
            "UPDATE documents SET index_dirty = ? WHERE id = ?",
            (1 if dirty else 0, document_id),
        )
        self._conn.commit()

    def clear_dirty(self, document_id: str, updated_at: str | None) -> bool:
        """Clear the dirty flag unless the document changed after *updated_at*.

        Returns:
            True if the flag was cleared.
        """
        cur = self._conn.execute(
            "UPDATE documents SET index_dirty = 0 WHERE id = ? AND updated_at IS ?",
            (document_id, updated_at),
        )
        self._conn.commit()
        return cur.rowcount > 0

    def list_dirty(self, limit: int) -> list[str]:
        """Return ids of dirty documents, most recently updated first."""
        rows = self._conn.execute(
            "SELECT id FROM documents WHERE index_dirty = 1 "
            "ORDER BY updated_at DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [r["id"] for r in rows]

    def count_dirty(self) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM documents WHERE index_dirty = 1"
        ).fetchone()[0]

    # ------------------------------------------------------------------
    # FTS5 / lexical search
    # ------------------------------------------------------------------

    def search_documents(
        self, terms: Sequence[str], limit: int = 20
    ) -> list[tuple[Document, float]]:
        """BM25 search over title + body for any of *terms* (OR semantics).

        Returns (document, bm25) best-first; archived documents are excluded.
        bm25() returns negative values; lower (more negative) = better match.
        """
        match = fts_or_query(terms)
        if match is None:
            return []
        rows = self._conn.execute(
            """
            SELECT d.id, d.title, d.body, d.updated_at, d.archived_at, d.index_dirty,
                   bm25(documents_fts) AS score
            FROM documents_fts
            JOIN documents d ON d.rowid = documents_fts.rowid
            WHERE documents_fts MATCH ? AND d.archived_at IS NULL
            ORDER BY score
            LIMIT ?
            """,
            (match, limit),
        ).fetchall()
        return [(_row_to_document(r), r["score"]) for r in rows]

    def substring_search(self, term: str, limit: int = 20) -> list[Document]:
        """Case-insensitive substring match of *term* against title or body."""
        term = term.strip()
        if not term:
            return []
        pattern = "%" + _escape_like(term) + "%"
        rows = self._conn.execute(
            f"""
            SELECT {_DOC_COLUMNS} FROM documents
            WHERE archived_at IS NULL
              AND (title LIKE ? ESCAPE '\\' OR body LIKE ? ESCAPE '\\')
            ORDER BY updated_at DESC
            LIMIT ?
            """,
            (pattern, pattern, limit),
        ).fetchall()
        return [_row_to_document(r) for r in rows]

    # ------------------------------------------------------------------
    # Chunks (no commit, see PairedStore)
    # ------------------------------------------------------------------

    def insert_chunk(self, chunk: Chunk) -> int:
        """Insert a chunk row and return its id."""
        cur = self._conn.execute(
            """
            INSERT INTO chunks (document_id, text, context_text, layer, position)
            VALUES (?, ?, ?, ?, ?)
            """,
            (chunk.document_id, chunk.text, chunk.context_text, chunk.layer, chunk.position),
        )
        return cur.lastrowid

    def get_chunks(self, chunk_ids: Sequence[int]) -> dict[int, Chunk]:
        """Return {id: Chunk} for the given ids."""
        if not chunk_ids:
            return {}
        placeholders = ",".join("?" * len(chunk_ids))
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE id IN ({placeholders})",
            list(chunk_ids),
        ).fetchall()
        return {r["id"]: _row_to_chunk(r) for r in rows}

    def list_chunks(self, document_id: str, layer: int) -> list[Chunk]:
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks "
            "WHERE document_id = ? AND layer = ? ORDER BY position",
            (document_id, layer),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def list_layer(self, layer: int) -> list[Chunk]:
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE layer = ? ORDER BY id",
            (layer,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def chunk_ids(self, *, layer: int, document_id: str | None = None) -> list[int]:
        if document_id is None:
            rows = self._conn.execute(
                "SELECT id FROM chunks WHERE layer = ?", (layer,)
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT id FROM chunks WHERE layer = ? AND document_id = ?",
                (layer, document_id),
            ).fetchall()
        return [r[0] for r in rows]

    def count_chunks(self, layer: int | None = None) -> int:
        if layer is None:
            return self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE layer = ?", (layer,)
        ).fetchone()[0]

    def delete_chunks(self, chunk_ids: Sequence[int]) -> int:
        if not chunk_ids:
            return 0
        placeholders = ",".join("?" * len(chunk_ids))
        cur = self._conn.execute(
            f"DELETE FROM chunks WHERE id IN ({placeholders})", list(chunk_ids)
        )
        return cur.rowcount

    # ------------------------------------------------------------------
    # Vec embeddings (no commit, see PairedStore)
    # ------------------------------------------------------------------

    def insert_vector(self, table: str, chunk_id: int, embedding: Sequence[float]) -> None:
        """Insert an embedding into a vec table with explicit rowid = chunk id."""
        self._conn.execute(
            f"INSERT INTO {table}(rowid, embedding) VALUES (?, ?)",
            (chunk_id, _to_json(embedding)),
        )

    def delete_vectors(self, table: str, chunk_ids: Sequence[int]) -> int:
        if not chunk_ids:
            return 0
        placeholders = ",".join("?" * len(chunk_ids))
        cur = self._conn.execute(
            f"DELETE FROM {table} WHERE rowid IN ({placeholders})",  # noqa: S608
            list(chunk_ids),
        )
        return cur.rowcount

    def search_vec(
        self, table: str, embedding: Sequence[float], limit: int = 10
    ) -> list[tuple[int, float]]:
        """Nearest-neighbour search. Returns (chunk_id, distance) sorted by distance."""
        rows = self._conn.execute(
            f"SELECT rowid, distance FROM {table} WHERE embedding MATCH ? "
            "ORDER BY distance LIMIT ?",
            (_to_json(embedding), limit),
        ).fetchall()
        return [(r["rowid"], r["distance"]) for r in rows]

    def vector_ids(self, table: str) -> set[int]:
        return {r[0] for r in self._conn.execute(f"SELECT rowid FROM {table}").fetchall()}

    def count_vectors(self, table: str) -> int:
        return self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    # ------------------------------------------------------------------
    # Graph: explicit links
    # ------------------------------------------------------------------

    def add_link(self, source_id: str, target_id: str) -> None:
        self._conn.execute(
            "INSERT OR IGNORE INTO document_links (source_id, target_id) VALUES (?, ?)",
            (source_id, target_id),
        )
        self._conn.commit()

    def link_neighbors(self, seed_ids: Sequence[str]) -> list[tuple[str, int]]:
        """Return [(document_id, overlap), ...] for 1-hop link neighbours.

        Links are treated as bidirectional. Overlap = number of distinct seeds
        linked to the neighbour. Seeds themselves and archived documents are
        excluded. Ordered by overlap desc, then most recently updated.
        """
        if not seed_ids:
            return []
        seeds = list(seed_ids)
        ph = ",".join("?" * len(seeds))
        rows = self._conn.execute(
            f"""
            SELECT e.neighbor_id AS neighbor_id, COUNT(*) AS overlap
            FROM (
                SELECT target_id AS neighbor_id, source_id AS seed_id
                FROM document_links WHERE source_id IN ({ph})
                UNION
                SELECT source_id AS neighbor_id, target_id AS seed_id
                FROM document_links WHERE target_id IN ({ph})
            ) e
            JOIN documents d ON d.id = e.neighbor_id
            WHERE d.archived_at IS NULL AND e.neighbor_id NOT IN ({ph})
            GROUP BY e.neighbor_id
            ORDER BY overlap DESC, d.updated_at DESC
            """,
            seeds * 3,
        ).fetchall()
        return [(r["neighbor_id"], r["overlap"]) for r in rows]

    # ------------------------------------------------------------------
    # Graph: entities + mentions
    # ------------------------------------------------------------------

    def add_entity(self, entity: Entity) -> None:
        self._conn.execute(
            "INSERT INTO entities (id, name) VALUES (?, ?) "
            "ON CONFLICT(id) DO UPDATE SET name = excluded.name",
            (entity.id, entity.name),
        )
        self._conn.commit()

    def list_entities(self) -> list[Entity]:
        rows = self._conn.execute(
            "SELECT id, name FROM entities ORDER BY name COLLATE NOCASE"
        ).fetchall()
        return [Entity(id=r["id"], name=r["name"]) for r in rows]

    def add_mention(
        self,
        document_id: str,
        entity_id: str,
        mention_type: str = "manual",
        confidence: float = 1.0,
    ) -> None:
        self._conn.execute(
            "INSERT INTO entity_mentions (document_id, entity_id, mention_type, confidence) "
            "VALUES (?, ?, ?, ?)",
            (document_id, entity_id, mention_type, confidence),
        )
        self._conn.commit()

    def replace_auto_mentions(
        self, document_id: str, detections: Sequence[tuple[str, float]]
    ) -> None:
        """Replace *document_id*'s auto-detected mentions; manual ones are kept.

        Args:
            document_id: Owning document.
            detections: [(entity_id, confidence), ...].
        """
        with self._conn:
            self._conn.execute(
                "DELETE FROM entity_mentions "
                "WHERE document_id = ? AND mention_type = 'auto_detected'",
                (document_id,),
            )
            self._conn.executemany(
                "INSERT INTO entity_mentions (document_id, entity_id, mention_type, confidence) "
                "VALUES (?, ?, 'auto_detected', ?)",
                [(document_id, entity_id, conf) for entity_id, conf in detections],
            )

    def entity_neighbors(self, seed_ids: Sequence[str]) -> list[tuple[str, int]]:
        """Return [(document_id, overlap), ...] for shared-entity neighbours.

        Overlap = number of distinct entities shared with the seed set.
        """
        if not seed_ids:
            return []
        seeds = list(seed_ids)
        ph = ",".join("?" * len(seeds))
        rows = self._conn.execute(
            f"""
            SELECT em2.document_id AS neighbor_id,
                   COUNT(DISTINCT em2.entity_id) AS overlap
            FROM entity_mentions em1
            JOIN entity_mentions em2 ON em2.entity_id = em1.entity_id
            JOIN documents d ON d.id = em2.document_id
            WHERE em1.document_id IN ({ph})
              AND em2.document_id NOT IN ({ph})
              AND d.archived_at IS NULL
            GROUP BY em2.document_id
            ORDER BY overlap DESC, d.updated_at DESC
            """,
            seeds * 2,
        ).fetchall()
        return [(r["neighbor_id"], r["overlap"]) for r in rows]

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_setting(self, key: str) -> str | None:
        row = self._conn.execute(
            "SELECT value FROM settings WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None

    def set_setting(self, key: str, value: str) -> None:
        self._conn.execute(
            """
            INSERT INTO settings (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, value),
        )
        self._conn.commit()


# ------------------------------------------------------------------
# FTS query helpers
# ------------------------------------------------------------------


def sanitize_terms(text: str) -> list[str]:
    """Strip FTS5 operators/quotes/punctuation and return the bare words."""
    # FTS5 MATCH rejects punctuation like commas as syntax errors.
    return re.sub(r"[^\w\s]", " ", text).split()


def fts_or_query(terms: Sequence[str]) -> str | None:
    """Build an FTS5 MATCH expression matching any of *terms*.

    Each term is quoted (multi-word terms become phrases) so words such as
    OR/NOT/NEAR are matched literally. Returns None if nothing is left.
    """
    parts: list[str] = []
    for term in terms:
        words = sanitize_terms(term)
        if words:
            phrase = '"' + " ".join(words) + '"'
            if phrase not in parts:
                parts.append(phrase)
    return " OR ".join(parts) if parts else None


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _to_json(embedding: Sequence[float]) -> str:
    return json.dumps([float(x) for x in embedding])


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        title=row["title"],
        body=row["body"],
        updated_at=row["updated_at"],
        archived_at=row["archived_at"],
        index_dirty=bool(row["index_dirty"]),
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        document_id=row["document_id"],
        text=row["text"],
        context_text=row["context_text"],
        layer=row["layer"],
        position=row["position"],
        created_at=row["created_at"],
    )
