"""SQLite connection layer with sqlite-vec extension."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

import sqlite_vec

logger = logging.getLogger(__name__)


class Database:
    """Per-user SQLite database with optional sqlite-vec vector search support.

    The vector index is a capability, not a requirement: if sqlite-vec cannot
    be loaded (or ``load_vectors=False``) connections still open and
    ``is_vector_index_loaded()`` reports False so callers can degrade.
    """

    def __init__(self, db_path: Path | str, *, load_vectors: bool = True) -> None:
        """Store the database path. Call connect() to open a connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
            load_vectors: Try to load sqlite-vec on every connection.
        """
        self.db_path = Path(db_path)
        self._load_vectors = load_vectors
        self._vec_loaded = load_vectors
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open a connection, load sqlite-vec if possible, and return it.

        Each background task opens its own connection; connections are not
        shared across threads.
        """
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        if self._load_vectors:
            self._vec_loaded = _load_sqlite_vec(conn)
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    def is_vector_index_loaded(self) -> bool:
        """Return True if sqlite-vec loaded on the most recent connection."""
        return self._vec_loaded

    def __enter__(self) -> sqlite3.Connection:
        """Open the database and return the connection (context manager support)."""
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn:
            self._conn.close()
            self._conn = None


def _load_sqlite_vec(conn: sqlite3.Connection) -> bool:
    try:
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
    except (AttributeError, sqlite3.OperationalError) as exc:
        # AttributeError: interpreter built without extension loading support
        logger.warning("sqlite-vec unavailable, vector search disabled: %s", exc)
        return False
    return True
