from __future__ import annotations

import math
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.db import SessionLocal, session_scope
from app.domain import DomainRecord, SyncMode, SyncOutcome
from app.domain.timestamps import isoformat_utc, source_timestamp
from app.errors import RateLimitedError, StoreUnavailableError
from app.repositories import CatalogRepository, MetaRepository
from app.repositories import meta_repository as meta_keys

from .client import CatalogClient


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_rate_limit_error(exc: BaseException) -> bool:
    if isinstance(exc, RateLimitedError):
        return True
    message = str(exc).lower()
    return "429" in message or "too many attempts" in message or "throttle" in message


def _page_max_timestamp(records: list[DomainRecord]) -> datetime | None:
    stamps = (source_timestamp(record.raw) for record in records)
    return max((stamp for stamp in stamps if stamp is not None), default=None)


def _stash_pending_watermark(meta: MetaRepository, max_seen: datetime | None) -> datetime | None:
    """Fold ``max_seen`` into the newest timestamp seen by the unfinished pass."""

    pending = meta.get_datetime(meta_keys.SYNC_PENDING_CREATED_AT_MAX)
    if max_seen is not None and (pending is None or max_seen > pending):
        pending = max_seen
        meta.set_datetime(meta_keys.SYNC_PENDING_CREATED_AT_MAX, pending)
    return pending


@dataclass(slots=True)
class SyncRunResult:
    outcome: SyncOutcome
    mode: SyncMode | None = None
    pages_processed: int = 0
    last_page: int | None = None
    domains_upserted: int = 0


class CatalogSynchronizer:
    """Page through the upstream catalog and mirror it into the local store.

    A run is resumable rather than transactional: every page is committed on
    its own together with the cursor metadata, so an interrupted or failed run
    keeps what it already wrote and the next run continues from the cursor.
    """

    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session] | None = None,
        client_factory: Callable[[], CatalogClient] = CatalogClient,
        on_store_mutated: Callable[[], None] | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], None] = time.sleep,
        page_size: int | None = None,
        max_pages_per_run: int | None = None,
        page_delay_seconds: float | None = None,
        sync_interval_seconds: float | None = None,
        cooldown_seconds: float | None = None,
    ) -> None:
        self._session_factory = session_factory or SessionLocal
        self._client_factory = client_factory
        self._on_store_mutated = on_store_mutated
        self._clock = clock
        self._sleep = sleep
        self.page_size = page_size or settings.sync_page_size
        self.max_pages_per_run = max_pages_per_run or settings.sync_max_pages_per_run
        self.page_delay_seconds = (
            settings.sync_page_delay_seconds if page_delay_seconds is None else page_delay_seconds
        )
        self.sync_interval = timedelta(
            seconds=sync_interval_seconds or settings.sync_interval_seconds
        )
        self.cooldown = timedelta(
            seconds=cooldown_seconds or settings.sync_rate_limit_cooldown_seconds
        )

    @contextmanager
    def _store(self) -> Iterator[Session]:
        try:
            with session_scope(self._session_factory) as session:
                yield session
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(str(exc)) from exc

    def _notify_mutation(self) -> None:
        if self._on_store_mutated is not None:
            self._on_store_mutated()

    # ------------------------------------------------------------------
    # Guards

    def _is_due(self, meta: MetaRepository, now: datetime) -> bool:
        not_before = meta.get_datetime(meta_keys.NEXT_SYNC_NOT_BEFORE)
        if not_before is not None and now < not_before:
            logger.info("Catalog sync skipped: cooling down until {}", isoformat_utc(not_before))
            return False
        last_sync_at = meta.get_datetime(meta_keys.LAST_SYNC_AT)
        if last_sync_at is not None and now - last_sync_at < self.sync_interval:
            logger.info("Catalog sync skipped: last sync at {} is still fresh", isoformat_utc(last_sync_at))
            return False
        return True

    # ------------------------------------------------------------------
    # Operations

    def reset_catalog(self) -> None:
        with self._store() as session:
            CatalogRepository(session).reset()
        logger.info("Catalog reset: all domains and sync metadata deleted")
        self._notify_mutation()

    def run(
        self, *, force: bool = False, reset: bool = False, bypass_schedule: bool = False
    ) -> SyncRunResult:
        if reset:
            self.reset_catalog()
            force = True

        started = self._clock()
        with self._store() as session:
            catalog = CatalogRepository(session)
            meta = MetaRepository(session)

            if not force and not bypass_schedule and not self._is_due(meta, started):
                return SyncRunResult(outcome=SyncOutcome.SKIPPED)

            if force:
                meta.set(meta_keys.NEXT_SYNC_NOT_BEFORE, None)
                meta.set(meta_keys.SYNC_MODE, SyncMode.FULL.value)
                meta.set(meta_keys.SYNC_CURSOR_PAGE, 1)
                meta.set(meta_keys.SYNC_TOTAL_PAGES, None)
                meta.set(meta_keys.SYNC_PENDING_CREATED_AT_MAX, None)

            meta.set(meta_keys.LAST_SYNC_ERROR, None)
            meta.set_datetime(meta_keys.SYNC_STARTED_AT, started)

            if force or catalog.count_domains() == 0:
                mode = SyncMode.FULL
            else:
                mode = meta.get_sync_mode()
            meta.set(meta_keys.SYNC_MODE, mode.value)

            page = meta.get_cursor_page()
            total_pages = meta.get_total_pages()

            watermark = meta.get_datetime(meta_keys.SOURCE_CREATED_AT_MAX)
            if mode is SyncMode.INCREMENTAL and watermark is None:
                watermark = catalog.max_source_timestamp()
                if watermark is not None:
                    meta.set_datetime(meta_keys.SOURCE_CREATED_AT_MAX, watermark)

        logger.info(
            "Catalog sync started mode={} page={} total_pages={} watermark={}",
            mode.value,
            page,
            total_pages,
            isoformat_utc(watermark) if watermark else None,
        )

        result = SyncRunResult(outcome=SyncOutcome.INTERRUPTED, mode=mode)
        max_seen: datetime | None = None
        try:
            with self._client_factory() as client:
                while True:
                    current = client.fetch_page(page, self.page_size)
                    with self._store() as session:
                        meta = MetaRepository(session)
                        result.domains_upserted += CatalogRepository(session).upsert_domains(
                            current.records, self._clock()
                        )
                        if total_pages is None and current.total is not None:
                            total_pages = max(1, math.ceil(current.total / self.page_size))
                            meta.set(meta_keys.SYNC_TOTAL_PAGES, total_pages)
                        meta.set(meta_keys.SYNC_LAST_PAGE, page)
                        meta.set(meta_keys.SYNC_LAST_SOURCE_COUNT, current.source_count)
                        meta.set(meta_keys.SYNC_LAST_NORMALIZED_COUNT, len(current.records))
                    result.pages_processed += 1
                    result.last_page = page

                    page_max = _page_max_timestamp(current.records)
                    if page_max is not None and (max_seen is None or page_max > max_seen):
                        max_seen = page_max

                    reached_end = (
                        total_pages is not None and page >= total_pages
                    ) or current.source_count < self.page_size
                    if reached_end:
                        result.outcome = SyncOutcome.COMPLETED
                        break

                    # Assumes the upstream lists newest rows first.
                    if mode is SyncMode.INCREMENTAL and watermark is not None:
                        if page_max is None or page_max <= watermark:
                            result.outcome = SyncOutcome.COMPLETED
                            break

                    if result.pages_processed >= self.max_pages_per_run:
                        with self._store() as session:
                            MetaRepository(session).set(meta_keys.SYNC_CURSOR_PAGE, page + 1)
                        break

                    page += 1
                    self._sleep(self.page_delay_seconds)

            self._finish(result, max_seen=max_seen, watermark=watermark)
        except Exception as exc:
            self._record_failure(exc, max_seen=max_seen)
            logger.warning(
                "Catalog sync failed after {} page(s): {}", result.pages_processed, exc
            )
            raise
        finally:
            if result.pages_processed:
                self._notify_mutation()

        logger.info(
            "Catalog sync {} mode={} pages={} last_page={} upserted={}",
            result.outcome.value,
            mode.value,
            result.pages_processed,
            result.last_page,
            result.domains_upserted,
        )
        return result

    def _finish(
        self,
        result: SyncRunResult,
        *,
        max_seen: datetime | None,
        watermark: datetime | None,
    ) -> None:
        with self._store() as session:
            meta = MetaRepository(session)
            newest = _stash_pending_watermark(meta, max_seen)

            if result.outcome is SyncOutcome.COMPLETED:
                # The watermark only moves once every page of the pass has been seen.
                if newest is not None and (watermark is None or newest > watermark):
                    meta.set_datetime(meta_keys.SOURCE_CREATED_AT_MAX, newest)
                meta.set(meta_keys.SYNC_PENDING_CREATED_AT_MAX, None)
                finished = self._clock()
                meta.set_datetime(meta_keys.LAST_SYNC_AT, finished)
                meta.set_datetime(meta_keys.SYNC_FINISHED_AT, finished)
                meta.set(meta_keys.NEXT_SYNC_NOT_BEFORE, None)
                meta.set(meta_keys.SYNC_CURSOR_PAGE, 1)
                meta.set(meta_keys.SYNC_TOTAL_PAGES, None)
                if result.mode is SyncMode.FULL:
                    meta.set(meta_keys.SYNC_MODE, SyncMode.INCREMENTAL.value)

    def _record_failure(self, exc: Exception, *, max_seen: datetime | None = None) -> None:
        now = self._clock()
        try:
            with self._store() as session:
                meta = MetaRepository(session)
                _stash_pending_watermark(meta, max_seen)
                if _is_rate_limit_error(exc):
                    blocked_until = now + self.cooldown
                    meta.set_datetime(meta_keys.NEXT_SYNC_NOT_BEFORE, blocked_until)
                    meta.set(
                        meta_keys.LAST_SYNC_ERROR,
                        "Rate limited by the catalog API (429). "
                        f"Next retry after {isoformat_utc(blocked_until)}",
                    )
                else:
                    meta.set(meta_keys.LAST_SYNC_ERROR, str(exc) or exc.__class__.__name__)
        except StoreUnavailableError as store_exc:
            logger.error("Could not persist catalog sync failure: {}", store_exc)


__all__ = ["CatalogSynchronizer", "SyncRunResult"]
