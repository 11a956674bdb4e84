"""Timestamp helpers shared by sync metadata and upstream rows."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from dateutil import parser as date_parser

SOURCE_TIMESTAMP_FIELDS: tuple[str, ...] = (
    "created_at",
    "createdAt",
    "first_seen_at",
    "firstSeenAt",
    "updated_at",
    "updatedAt",
)


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None
    # ISO 8601 only; a bare time must not be completed with today's date.
    try:
        parsed = date_parser.isoparse(value.strip())
    except (ValueError, OverflowError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def isoformat_utc(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def source_timestamp(raw: Mapping[str, Any]) -> datetime | None:
    """Return the first parseable creation/update timestamp of an upstream row."""

    for key in SOURCE_TIMESTAMP_FIELDS:
        parsed = parse_timestamp(raw.get(key))
        if parsed is not None:
            return parsed
    return None
