"""Tests for the forward-only migration runner."""

from __future__ import annotations

from noteindex.db import migrations as mod
from noteindex.db.connection import Database
from noteindex.db.migrations import MIGRATIONS, run_migrations


def _fresh_conn(tmp_path):
    """Open a new connection without running migrations."""
    db = Database(tmp_path / "test.db")
    return db.connect()


def _table_exists(conn, name: str) -> bool:
    return conn.execute(
        "SELECT name FROM sqlite_master WHERE type IN ('table','shadow') AND name=?", (name,)
    ).fetchone() is not None


# --- Bootstrap ---

def test_run_migrations_creates_schema_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, "schema_version")
    conn.close()


def test_run_migrations_records_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == MIGRATIONS[-1][0]
    conn.close()


def test_migration_versions_ascending():
    versions = [v for v, _ in MIGRATIONS]
    assert versions == sorted(versions)
    assert len(set(versions)) == len(versions)


# --- Idempotency ---

def test_run_migrations_idempotent(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    run_migrations(conn)
    count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)
    conn.close()


# --- Tables created ---

def test_run_migrations_creates_documents_fts(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, "documents_fts")
    conn.close()


def test_run_migrations_does_not_create_vec_tables(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    vec_tables = conn.execute(
        "SELECT name FROM sqlite_master WHERE name LIKE 'vec_%'"
    ).fetchall()
    assert vec_tables == []
    conn.close()


# --- Incremental application ---

def test_v2_upgrades_a_v1_database(tmp_path):
    conn = _fresh_conn(tmp_path)
    original = mod.MIGRATIONS
    mod.MIGRATIONS = original[:1]
    try:
        run_migrations(conn)
        conn.execute("INSERT INTO documents (id, title, body) VALUES ('d1', 'T', 'B')")
        conn.commit()
    finally:
        mod.MIGRATIONS = original

    run_migrations(conn)
    row = conn.execute("SELECT index_dirty FROM documents WHERE id = 'd1'").fetchone()
    assert row[0] == 0
    versions = [r[0] for r in conn.execute("SELECT version FROM schema_version ORDER BY version")]
    assert versions == [1, 2]
    conn.close()


def test_run_migrations_applies_only_pending(tmp_path):
    conn = _fresh_conn(tmp_path)
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL, "
        "applied_at DATETIME NOT NULL DEFAULT (datetime('now')))"
    )
    conn.execute("INSERT INTO schema_version (version) VALUES (1)")
    conn.commit()

    original = mod.MIGRATIONS
    mod.MIGRATIONS = [(1, "SELECT 1;"), (2, "CREATE TABLE IF NOT EXISTS v2_marker (x INTEGER);")]
    try:
        run_migrations(conn)
        assert _table_exists(conn, "v2_marker")
        versions = [r[0] for r in conn.execute("SELECT version FROM schema_version ORDER BY version")]
        assert versions == [1, 2]
    finally:
        mod.MIGRATIONS = original
    conn.close()


def test_initialize_delegates_to_run_migrations(tmp_path):
    from noteindex.db.schema import initialize
    conn = _fresh_conn(tmp_path)
    initialize(conn)
    version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == MIGRATIONS[-1][0]
    conn.close()
