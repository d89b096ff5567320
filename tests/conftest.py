"""Shared pytest fixtures."""

from __future__ import annotations

import logging

import pytest

from noteindex.db.connection import Database
from noteindex.db.schema import initialize


@pytest.fixture
def database(tmp_path) -> Database:
    """Database in tmp_path with the schema applied."""
    db = Database(tmp_path / ".noteindex.db")
    conn = db.connect()
    initialize(conn)
    conn.close()
    return db


@pytest.fixture
def tmp_db(database):
    """Open connection to the initialized test database, closed after test."""
    conn = database.connect()
    yield conn
    conn.close()


@pytest.fixture
def vec_database(database) -> Database:
    """Like ``database`` but skips the test when sqlite-vec cannot load."""
    database.connect().close()
    if not database.is_vector_index_loaded():
        pytest.skip("sqlite-vec extension not loadable in this interpreter")
    return database


@pytest.fixture(autouse=True)
def _reset_noteindex_logger():
    """Undo configure_logging() so caplog sees records in later tests."""
    logger = logging.getLogger("noteindex")
    handlers, level, propagate = logger.handlers[:], logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate
