"""Tests for the cluster Gate and ClusterScheduler."""

from __future__ import annotations

from contextlib import closing
from datetime import datetime, timedelta, timezone

import pytest
from fakes import FakeCompleter, FakeEmbedder, make_registry

from noteindex.cluster.scheduler import LAST_RUN_KEY, ClusterScheduler, Gate
from noteindex.config import ClusterCfg
from noteindex.db.connection import Database
from noteindex.db.models import LAYER_SUMMARY, Chunk, Document
from noteindex.db.repository import Repository
from noteindex.errors import ProviderError
from noteindex.ingest.pipeline import ImmediateSpawner

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class StubBuilder:
    """Stands in for ClusterBuilder; records calls and returns *stored*."""

    def __init__(self, stored: int = 2, error: Exception | None = None, during=None) -> None:
        self.stored = stored
        self.error = error
        self.during = during
        self.calls = 0

    def run(self) -> int:
        self.calls += 1
        if self.during is not None:
            self.during()
        if self.error is not None:
            raise self.error
        return self.stored


def _add_summaries(db: Database, n: int) -> None:
    with closing(db.connect()) as conn:
        repo = Repository(conn)
        for i in range(n):
            repo.upsert_document(Document(id=f"d{i}", title=f"T{i}", body="body"))
            repo.insert_chunk(Chunk(f"d{i}", "summary", "", LAYER_SUMMARY, 0))
        conn.commit()


def _scheduler(db, builder, *, completer=True, clock=lambda: NOW, min_summaries=3):
    registry = make_registry(FakeEmbedder(), FakeCompleter() if completer else None)
    return ClusterScheduler(
        db,
        registry,
        ClusterCfg(min_summaries=min_summaries),
        builder=builder,
        spawner=ImmediateSpawner(),
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


def test_gate_is_single_flight():
    gate = Gate(timedelta(hours=23), lambda: None, clock=lambda: NOW)
    assert gate.try_acquire() is True
    assert gate.in_flight
    assert gate.try_acquire() is False
    assert gate.try_acquire(ignore_interval=True) is False
    gate.release()
    assert gate.try_acquire() is True


def test_gate_refuses_within_interval():
    gate = Gate(timedelta(hours=23), lambda: NOW - timedelta(hours=1), clock=lambda: NOW)
    assert gate.try_acquire() is False
    assert not gate.in_flight


def test_gate_refuses_at_exact_interval():
    gate = Gate(timedelta(hours=23), lambda: NOW - timedelta(hours=23), clock=lambda: NOW)
    assert gate.try_acquire() is False


def test_gate_opens_after_interval():
    gate = Gate(timedelta(hours=23), lambda: NOW - timedelta(hours=24), clock=lambda: NOW)
    assert gate.try_acquire() is True


def test_gate_ignore_interval():
    gate = Gate(timedelta(hours=23), lambda: NOW, clock=lambda: NOW)
    with gate.acquire(ignore_interval=True) as acquired:
        assert acquired
        assert gate.in_flight
    assert not gate.in_flight


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


def test_run_if_due_runs_and_records_timestamp(vec_database):
    _add_summaries(vec_database, 3)
    builder = StubBuilder()
    scheduler = _scheduler(vec_database, builder)

    assert scheduler.run_if_due() is True
    assert builder.calls == 1
    assert scheduler.last_run() == NOW
    with closing(vec_database.connect()) as conn:
        assert Repository(conn).get_setting(LAST_RUN_KEY) == "2026-03-01T12:00:00+00:00"


def test_second_run_same_day_is_skipped(vec_database):
    _add_summaries(vec_database, 3)
    builder = StubBuilder()
    scheduler = _scheduler(vec_database, builder)
    scheduler.run_if_due()
    assert scheduler.run_if_due() is False
    assert builder.calls == 1


def test_run_now_ignores_interval(vec_database):
    _add_summaries(vec_database, 3)
    builder = StubBuilder()
    scheduler = _scheduler(vec_database, builder)
    scheduler.run_if_due()
    assert scheduler.run_now() is True
    assert builder.calls == 2


def test_runs_again_next_day(vec_database):
    _add_summaries(vec_database, 3)
    now = {"t": NOW}
    builder = StubBuilder()
    scheduler = _scheduler(vec_database, builder, clock=lambda: now["t"])
    scheduler.run_if_due()
    now["t"] = NOW + timedelta(hours=24)
    assert scheduler.run_if_due() is True
    assert builder.calls == 2


def test_too_few_summaries(vec_database):
    _add_summaries(vec_database, 2)
    builder = StubBuilder()
    assert _scheduler(vec_database, builder).run_if_due() is False
    assert builder.calls == 0


def test_missing_completion_credentials(vec_database):
    _add_summaries(vec_database, 3)
    builder = StubBuilder()
    assert _scheduler(vec_database, builder, completer=False).run_if_due() is False
    assert builder.calls == 0


def test_vector_index_absent(database):
    db = Database(database.db_path, load_vectors=False)
    _add_summaries(db, 3)
    builder = StubBuilder()
    assert _scheduler(db, builder).run_now() is False
    assert builder.calls == 0


def test_nothing_stored_still_records_run(vec_database):
    _add_summaries(vec_database, 3)
    builder = StubBuilder(stored=0)
    scheduler = _scheduler(vec_database, builder)
    assert scheduler.run_if_due() is False
    assert scheduler.last_run() == NOW

    assert scheduler.run_if_due() is False
    assert builder.calls == 1


def test_failed_themes_still_advance_interval(vec_database):
    topics = ["budget", "garden", "travel", "music", "health", "reading", "cooking", "work"]
    with closing(vec_database.connect()) as conn:
        repo = Repository(conn)
        for i, topic in enumerate(topics):
            repo.upsert_document(Document(id=f"d{i}", title=topic, body="body"))
            repo.insert_chunk(Chunk(f"d{i}", f"Notes about {topic} plans.", "", LAYER_SUMMARY, 0))
        conn.commit()
    embedder = FakeEmbedder()
    scheduler = ClusterScheduler(
        vec_database,
        make_registry(embedder, FakeCompleter(fail=True)),
        ClusterCfg(min_summaries=3),
        clock=lambda: NOW,
    )

    assert scheduler.run_if_due() is False
    assert scheduler.last_run() == NOW
    embed_calls = len(embedder.calls)

    assert scheduler.run_if_due() is False
    assert len(embedder.calls) == embed_calls


def test_provider_failure_releases_gate(vec_database):
    _add_summaries(vec_database, 3)
    scheduler = _scheduler(vec_database, StubBuilder(error=ProviderError("down")))
    assert scheduler.run_if_due() is False
    assert not scheduler.gate.in_flight
    assert scheduler.last_run() is None


def test_trigger_while_in_flight_is_noop(vec_database):
    _add_summaries(vec_database, 3)
    nested: list[bool] = []
    builder = StubBuilder()
    scheduler = _scheduler(vec_database, builder)
    builder.during = lambda: nested.append(scheduler.run_now())

    assert scheduler.run_now() is True
    assert nested == [False]
    assert builder.calls == 1


def test_schedule_runs_on_spawner(vec_database):
    _add_summaries(vec_database, 3)
    builder = StubBuilder()
    future = _scheduler(vec_database, builder).schedule()
    assert future.result() is True
    assert builder.calls == 1


def test_schedule_swallows_unexpected_errors(vec_database, caplog):
    _add_summaries(vec_database, 3)
    future = _scheduler(vec_database, StubBuilder(error=RuntimeError("bug"))).schedule()
    assert future.result() is False
    assert "Scheduled cluster run failed" in caplog.text


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("2026-02-01T08:00:00+00:00", datetime(2026, 2, 1, 8, tzinfo=timezone.utc)),
        ("2026-02-01T08:00:00", datetime(2026, 2, 1, 8, tzinfo=timezone.utc)),
        ("yesterday", None),
    ],
)
def test_last_run_parsing(database, raw, expected):
    with closing(database.connect()) as conn:
        Repository(conn).set_setting(LAST_RUN_KEY, raw)
    scheduler = _scheduler(database, StubBuilder())
    assert scheduler.last_run() == expected
