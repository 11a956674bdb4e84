"""Key/value metadata holding the synchronization state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from app.domain import SyncMode, SyncState
from app.domain.timestamps import isoformat_utc, parse_timestamp
from app.models import CatalogMeta

LAST_SYNC_AT = "last_sync_at"
LAST_SYNC_ERROR = "last_sync_error"
NEXT_SYNC_NOT_BEFORE = "next_sync_not_before"
SYNC_CURSOR_PAGE = "sync_cursor_page"
SYNC_TOTAL_PAGES = "sync_total_pages"
SYNC_LAST_PAGE = "sync_last_page"
SYNC_LAST_SOURCE_COUNT = "sync_last_source_count"
SYNC_LAST_NORMALIZED_COUNT = "sync_last_normalized_count"
SYNC_STARTED_AT = "sync_started_at"
SYNC_FINISHED_AT = "sync_finished_at"
SOURCE_CREATED_AT_MAX = "source_created_at_max"
SYNC_PENDING_CREATED_AT_MAX = "sync_pending_created_at_max"
SYNC_MODE = "sync_mode"


class MetaRepository:
    """Read and write sync metadata stored as text values."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, key: str) -> str | None:
        record = self._session.get(CatalogMeta, key)
        return record.value if record is not None else None

    def set(self, key: str, value: str | int | None) -> None:
        text_value = None if value is None else str(value)
        record = self._session.get(CatalogMeta, key)
        if record is None:
            self._session.add(CatalogMeta(key=key, value=text_value))
        else:
            record.value = text_value

    def get_int(self, key: str) -> int | None:
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return int(float(raw))
        except ValueError:
            return None

    def get_datetime(self, key: str) -> datetime | None:
        return parse_timestamp(self.get(key))

    def set_datetime(self, key: str, value: datetime | None) -> None:
        self.set(key, isoformat_utc(value) if value is not None else None)

    def get_sync_mode(self) -> SyncMode:
        raw = (self.get(SYNC_MODE) or "").strip().lower()
        return SyncMode.INCREMENTAL if raw == SyncMode.INCREMENTAL.value else SyncMode.FULL

    def get_cursor_page(self) -> int:
        return max(1, self.get_int(SYNC_CURSOR_PAGE) or 1)

    def get_total_pages(self) -> int | None:
        value = self.get_int(SYNC_TOTAL_PAGES)
        return value if value and value > 0 else None

    def load_sync_state(self, *, is_syncing: bool, total_domains: int) -> SyncState:
        last_page = self.get_int(SYNC_LAST_PAGE)
        return SyncState(
            is_syncing=is_syncing,
            last_sync_at=self.get_datetime(LAST_SYNC_AT),
            last_error=self.get(LAST_SYNC_ERROR),
            total_domains=total_domains,
            next_sync_not_before=self.get_datetime(NEXT_SYNC_NOT_BEFORE),
            cursor_page=self.get_cursor_page(),
            total_pages=self.get_total_pages(),
            last_page=last_page if last_page and last_page > 0 else None,
            source_created_at_max=self.get_datetime(SOURCE_CREATED_AT_MAX),
            sync_mode=self.get_sync_mode(),
            last_source_count=self.get_int(SYNC_LAST_SOURCE_COUNT),
            last_normalized_count=self.get_int(SYNC_LAST_NORMALIZED_COUNT),
        )


__all__ = ["MetaRepository"]
