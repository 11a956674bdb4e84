"""Typed domain representations used across ingestion, persistence, and APIs."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class SyncMode(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class SyncOutcome(str, Enum):
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"
    SKIPPED = "skipped"


@dataclass(slots=True)
class DomainRecord:
    """Normalized marketplace row ready for persistence."""

    domain: str
    tld: str
    available: bool | None = None
    price: float | None = None
    currency: str | None = None
    status: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class DomainFilters:
    """Filter predicate shared by listings and analytics."""

    q: str | None = None
    tld: str | None = None
    available: bool | None = None
    column_filters: dict[str, str] = field(default_factory=dict)

    def active_column_filters(self) -> dict[str, str]:
        """Return trimmed, non-empty column filters sorted by field name."""

        trimmed = (
            (key, str(value).strip()) for key, value in self.column_filters.items()
        )
        return dict(sorted((key, value) for key, value in trimmed if value))

    def cache_key(self) -> str:
        return json.dumps(
            {
                "q": (self.q or "").strip().lower(),
                "tld": (self.tld or "").strip().lower(),
                "available": self.available,
                "column_filters": self.active_column_filters(),
            },
            sort_keys=True,
            ensure_ascii=False,
        )


@dataclass(slots=True)
class SyncState:
    """Snapshot of the persisted synchronization metadata."""

    is_syncing: bool
    last_sync_at: datetime | None
    last_error: str | None
    total_domains: int
    next_sync_not_before: datetime | None
    cursor_page: int
    total_pages: int | None
    last_page: int | None
    source_created_at_max: datetime | None
    sync_mode: SyncMode
    last_source_count: int | None = None
    last_normalized_count: int | None = None
