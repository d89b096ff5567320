"""Tests for PairedStore — chunk rows and vector rows stay in step."""

from __future__ import annotations

import sqlite3
from unittest.mock import patch

import pytest

from noteindex.db.models import LAYER_CLUSTER, LAYER_RAW, LAYER_SUMMARY, Chunk, Document
from noteindex.db.paired_store import PairedStore
from noteindex.db.repository import Repository
from noteindex.db.vectors import ensure_vec_tables

DIMS = 4


@pytest.fixture
def store(vec_database):
    conn = vec_database.connect()
    repo = Repository(conn)
    repo.upsert_document(Document(id="d1", title="One", body="body"))
    repo.upsert_document(Document(id="d2", title="Two", body="body"))
    store = PairedStore(repo)
    store.tables = ensure_vec_tables(conn, "test/unit", DIMS)
    yield store
    conn.close()


def _chunks(doc_id: str, n: int, layer: int = LAYER_RAW) -> list[Chunk]:
    return [Chunk(document_id=doc_id, text=f"{doc_id}-{i}", layer=layer, position=i) for i in range(n)]


def _vectors(n: int) -> list[list[float]]:
    return [[1.0, float(i), 0.0, 0.0] for i in range(n)]


def test_insert_pairs_sets_ids_and_vectors(store):
    table, _ = store.tables
    chunks = _chunks("d1", 3)
    ids = store.insert_pairs(chunks, _vectors(3), table)
    assert [c.id for c in chunks] == ids
    assert store.find_orphans(table, [LAYER_RAW, LAYER_SUMMARY]).clean


def test_insert_pairs_count_mismatch(store):
    table, _ = store.tables
    with pytest.raises(ValueError, match="mismatch"):
        store.insert_pairs(_chunks("d1", 2), _vectors(1), table)


def test_failed_vector_write_rolls_back_whole_batch(store):
    table, _ = store.tables
    store.insert_pairs(_chunks("d2", 1), _vectors(1), table)

    calls = {"n": 0}
    original = Repository.insert_vector

    def flaky(self, table_name, chunk_id, embedding):
        calls["n"] += 1
        if calls["n"] == 2:
            raise sqlite3.OperationalError("disk I/O error")
        return original(self, table_name, chunk_id, embedding)

    with patch.object(Repository, "insert_vector", flaky):
        with pytest.raises(sqlite3.OperationalError):
            store.insert_pairs(_chunks("d1", 3), _vectors(3), table)

    repo = Repository(store._conn)
    assert repo.chunk_ids(layer=LAYER_RAW, document_id="d1") == []
    # Earlier committed rows are untouched and nothing is orphaned.
    assert len(repo.chunk_ids(layer=LAYER_RAW, document_id="d2")) == 1
    report = store.find_orphans(table, [LAYER_RAW, LAYER_SUMMARY])
    assert report.clean, report


def test_delete_by_document_removes_both_sides(store):
    table, _ = store.tables
    store.insert_pairs(_chunks("d1", 2), _vectors(2), table)
    store.insert_pairs(_chunks("d2", 1), _vectors(1), table)
    assert store.delete_by_document("d1", LAYER_RAW, table) == 2

    repo = Repository(store._conn)
    assert repo.count_vectors(table) == 1
    assert store.find_orphans(table, [LAYER_RAW]).clean


def test_delete_by_document_only_touches_layer(store):
    table, _ = store.tables
    store.insert_pairs(_chunks("d1", 1), _vectors(1), table)
    store.insert_pairs(_chunks("d1", 1, LAYER_SUMMARY), _vectors(1), table)
    store.delete_by_document("d1", LAYER_SUMMARY, table)
    repo = Repository(store._conn)
    assert repo.count_chunks(LAYER_RAW) == 1
    assert repo.count_chunks(LAYER_SUMMARY) == 0
    assert store.find_orphans(table, [LAYER_RAW, LAYER_SUMMARY]).clean


def test_delete_deletes_vectors_before_chunks(store):
    table, _ = store.tables
    store.insert_pairs(_chunks("d1", 1), _vectors(1), table)
    order: list[str] = []
    repo = store._repo
    with (
        patch.object(repo, "delete_vectors", side_effect=lambda *a: order.append("vectors") or 1),
        patch.object(repo, "delete_chunks", side_effect=lambda *a: order.append("chunks") or 1),
    ):
        store.delete_by_layer(LAYER_RAW, table)
    assert order == ["vectors", "chunks"]


def test_delete_with_nothing_to_delete(store):
    table, _ = store.tables
    assert store.delete_by_layer(LAYER_RAW, table) == 0


def test_replace_layer_swaps_cluster_set(store):
    _, clusters = store.tables
    store.insert_pairs(_chunks("d1", 2, LAYER_CLUSTER), _vectors(2), clusters)
    new = [Chunk(document_id="d2", text="theme", context_text='["d2"]', layer=LAYER_CLUSTER)]
    store.replace_layer(LAYER_CLUSTER, new, _vectors(1), clusters)

    repo = Repository(store._conn)
    assert [c.text for c in repo.list_layer(LAYER_CLUSTER)] == ["theme"]
    assert repo.vector_ids(clusters) == {new[0].id}


def test_replace_layer_failure_keeps_old_set(store):
    _, clusters = store.tables
    old_ids = store.insert_pairs(_chunks("d1", 2, LAYER_CLUSTER), _vectors(2), clusters)
    new = [Chunk(document_id="d2", text="theme", layer=LAYER_CLUSTER)]
    with pytest.raises(sqlite3.Error):
        # Wrong dimensionality makes the vector insert fail mid-transaction.
        store.replace_layer(LAYER_CLUSTER, new, [[1.0, 0.0]], clusters)

    repo = Repository(store._conn)
    assert sorted(repo.chunk_ids(layer=LAYER_CLUSTER)) == sorted(old_ids)
    assert repo.vector_ids(clusters) == set(old_ids)


def test_find_orphans_reports_both_directions(store):
    table, _ = store.tables
    repo = Repository(store._conn)
    lonely_chunk = repo.insert_chunk(Chunk(document_id="d1", text="no vector"))
    repo.insert_vector(table, 9999, [1.0, 0.0, 0.0, 0.0])
    store._conn.commit()
    report = store.find_orphans(table, [LAYER_RAW])
    assert report.chunks_without_vectors == [lonely_chunk]
    assert report.vectors_without_chunks == [9999]
    assert not report.clean
