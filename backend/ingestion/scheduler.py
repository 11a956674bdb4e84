"""Process-wide owner of the single in-flight catalog sync."""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone

from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from app.db import SessionLocal
from app.domain import SyncState
from app.repositories import CatalogRepository, MetaRepository

from .service import CatalogSynchronizer, SyncRunResult


class SyncScheduler:
    """Run catalog syncs on one background worker, at most one at a time.

    A trigger that arrives while a run is in flight receives that run's future
    instead of starting a second one. Store writes (syncs and resets) share the
    same single worker, so they never interleave with each other.
    """

    def __init__(
        self,
        synchronizer: CatalogSynchronizer,
        *,
        session_factory: sessionmaker[Session] | None = None,
    ) -> None:
        self._synchronizer = synchronizer
        self._session_factory = session_factory or SessionLocal
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="catalog-sync")
        self._lock = threading.Lock()
        self._in_flight: Future[SyncRunResult] | None = None
        self._closed = False

    @property
    def is_syncing(self) -> bool:
        with self._lock:
            return self._in_flight is not None and not self._in_flight.done()

    def trigger(
        self,
        *,
        force: bool = False,
        reset: bool = False,
        bypass_schedule: bool = False,
    ) -> Future[SyncRunResult]:
        with self._lock:
            if self._closed:
                raise RuntimeError("SyncScheduler has been shut down")
            if self._in_flight is not None and not self._in_flight.done():
                logger.info("Catalog sync already running; attaching to the in-flight run")
                return self._in_flight
            future = self._executor.submit(
                self._synchronizer.run,
                force=force,
                reset=reset,
                bypass_schedule=bypass_schedule,
            )
            self._in_flight = future
        future.add_done_callback(self._on_done)
        return future

    def run_sync(
        self, *, force: bool = False, reset: bool = False, bypass_schedule: bool = True
    ) -> SyncRunResult:
        """Trigger a sync and wait for it; failures propagate to the caller."""

        return self.trigger(force=force, reset=reset, bypass_schedule=bypass_schedule).result()

    def _on_done(self, future: Future[SyncRunResult]) -> None:
        with self._lock:
            if self._in_flight is future:
                self._in_flight = None
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.opt(exception=exc).error("Catalog sync failed: {}", exc)

    def status(self) -> SyncState:
        with self._session_factory() as session:
            total_domains = CatalogRepository(session).count_domains()
            return MetaRepository(session).load_sync_state(
                is_syncing=self.is_syncing, total_domains=total_domains
            )

    def reset_catalog(self) -> None:
        """Delete the catalog once any in-flight run has finished."""

        with self._lock:
            if self._closed:
                raise RuntimeError("SyncScheduler has been shut down")
            future = self._executor.submit(self._synchronizer.reset_catalog)
        future.result()

    def ensure_loaded(self) -> None:
        """Load an empty catalog synchronously, otherwise refresh it in the background."""

        state = self.status()
        now = datetime.now(timezone.utc)
        cooling_down = state.next_sync_not_before is not None and now < state.next_sync_not_before
        if state.total_domains == 0 and not cooling_down:
            self.run_sync(force=True)
            return
        self.trigger()

    def shutdown(self, *, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=True)


__all__ = ["SyncScheduler"]
