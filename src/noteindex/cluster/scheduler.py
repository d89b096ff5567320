"""Single-flight, once-a-day gating for the cluster builder.

Gate checks, cheapest first:
  1. vector index loaded
  2. embedding + completion credentials present
  3. at least ``min_summaries`` layer-2 chunks
  4. no run already in flight (process-wide, non-blocking)
  5. more than ``min_interval_hours`` since the last successful run

A second trigger while a run is in flight is a silent no-op, never queued.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from concurrent.futures import Future
from contextlib import closing, contextmanager
from datetime import datetime, timedelta, timezone

from noteindex.cluster.builder import ClusterBuilder
from noteindex.config import ClusterCfg
from noteindex.db.connection import Database
from noteindex.db.models import LAYER_SUMMARY
from noteindex.db.repository import Repository
from noteindex.errors import ProviderError
from noteindex.ingest.pipeline import Spawner, ThreadPoolSpawner
from noteindex.providers import ProviderRegistry

logger = logging.getLogger(__name__)

LAST_RUN_KEY = "cluster_last_run"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Gate:
    """Non-blocking mutex plus a minimum interval since the last run.

    Args:
        min_interval:    Required time since the last successful run.
        last_run_loader: Returns the last successful run time, or None.
        clock:           Current time (timezone-aware).
    """

    def __init__(
        self,
        min_interval: timedelta,
        last_run_loader: Callable[[], datetime | None],
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._min_interval = min_interval
        self._last_run_loader = last_run_loader
        self._clock = clock
        self._lock = threading.Lock()

    def try_acquire(self, ignore_interval: bool = False) -> bool:
        """Take the gate if it is free and the interval has elapsed."""
        if not self._lock.acquire(blocking=False):
            return False
        if ignore_interval:
            return True
        try:
            last_run = self._last_run_loader()
        except Exception:
            self._lock.release()
            raise
        if last_run is not None and self._clock() - last_run <= self._min_interval:
            self._lock.release()
            return False
        return True

    def release(self) -> None:
        self._lock.release()

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def acquire(self, ignore_interval: bool = False) -> Iterator[bool]:
        """Context manager form; yields whether the gate was taken."""
        acquired = self.try_acquire(ignore_interval)
        try:
            yield acquired
        finally:
            if acquired:
                self.release()


class ClusterScheduler:
    """Decides when the cluster builder runs and records successful runs."""

    def __init__(
        self,
        db: Database,
        registry: ProviderRegistry,
        config: ClusterCfg | None = None,
        *,
        builder: ClusterBuilder | None = None,
        spawner: Spawner | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._db = db
        self._registry = registry
        self._cfg = config or ClusterCfg()
        self._builder = builder or ClusterBuilder(db, registry, self._cfg)
        self._spawner = spawner
        self._clock = clock
        self.gate = Gate(
            timedelta(hours=self._cfg.min_interval_hours), self.last_run, clock
        )

    def last_run(self) -> datetime | None:
        """Return the last successful run time from settings, or None."""
        with closing(self._db.connect()) as conn:
            raw = Repository(conn).get_setting(LAST_RUN_KEY)
        if not raw:
            return None
        try:
            stamp = datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("Ignoring malformed %s setting: %r", LAST_RUN_KEY, raw)
            return None
        return stamp if stamp.tzinfo else stamp.replace(tzinfo=timezone.utc)

    def run_if_due(self) -> bool:
        """Run the builder if every gate condition holds. True if layer 3 was rebuilt."""
        return self._run(ignore_interval=False)

    def run_now(self) -> bool:
        """Manual trigger: same as run_if_due() but ignores the interval."""
        return self._run(ignore_interval=True)

    def schedule(self) -> Future:
        """Fire-and-forget run_if_due() on the spawner."""
        if self._spawner is None:
            self._spawner = ThreadPoolSpawner(workers=1)
        return self._spawner.spawn(self._run_logged)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run(self, ignore_interval: bool) -> bool:
        if not self._preconditions_met():
            return False

        with self.gate.acquire(ignore_interval=ignore_interval) as acquired:
            if not acquired:
                logger.debug("Cluster run skipped: in flight or run too recently")
                return False
            try:
                stored = self._builder.run()
            except ProviderError as exc:
                logger.error("Cluster run failed: %s", exc)
                return False
            # A completed batch advances the interval even if no cluster was stored.
            self._record_run()
        return stored > 0

    def _preconditions_met(self) -> bool:
        with closing(self._db.connect()) as conn:
            if not self._db.is_vector_index_loaded():
                logger.debug("Cluster run skipped: vector index not loaded")
                return False
            if not (
                self._registry.has_embedding_credentials()
                and self._registry.has_completion_credentials()
            ):
                logger.debug("Cluster run skipped: credentials missing")
                return False
            summaries = Repository(conn).count_chunks(LAYER_SUMMARY)
        if summaries < self._cfg.min_summaries:
            logger.debug(
                "Cluster run skipped: %d summaries (< %d)", summaries, self._cfg.min_summaries
            )
            return False
        return True

    def _record_run(self) -> None:
        stamp = self._clock().astimezone(timezone.utc).isoformat(timespec="seconds")
        with closing(self._db.connect()) as conn:
            Repository(conn).set_setting(LAST_RUN_KEY, stamp)

    def _run_logged(self) -> bool:
        try:
            return self.run_if_due()
        except Exception:
            logger.exception("Scheduled cluster run failed")
            return False
