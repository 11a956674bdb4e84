"""Describe one raw upstream page without storing it."""

from __future__ import annotations

from typing import Any

from app.schemas import FieldOccurrence, RawPageInspection

from .client import CatalogClient
from .extract import collect_arrays, field_occurrences

SAMPLE_ROW_LIMIT = 5


def payload_type(payload: Any) -> str:
    if payload is None:
        return "null"
    if isinstance(payload, list):
        return "array"
    if isinstance(payload, dict):
        return "object"
    if isinstance(payload, bool):
        return "boolean"
    if isinstance(payload, (int, float)):
        return "number"
    if isinstance(payload, str):
        return "string"
    return type(payload).__name__


def describe_payload(payload: Any, *, page: int, per_page: int) -> RawPageInspection:
    # The longest array is reported as-is so schema drift stays visible.
    arrays = collect_arrays(payload)
    selected = max(arrays, key=len) if arrays else []
    object_rows = [row for row in selected if isinstance(row, dict)]

    return RawPageInspection(
        page=page,
        per_page=per_page,
        payload_type=payload_type(payload),
        top_level_keys=[str(key) for key in payload] if isinstance(payload, dict) else [],
        detected_arrays=sorted((len(items) for items in arrays), reverse=True),
        selected_array_length=len(selected),
        object_row_count=len(object_rows),
        fields=[
            FieldOccurrence(field=name, occurrences=count)
            for name, count in field_occurrences(object_rows)
        ],
        sample_rows=list(selected[:SAMPLE_ROW_LIMIT]),
        raw=payload,
    )


def inspect_raw_page(client: CatalogClient, page: int = 1, per_page: int = 25) -> RawPageInspection:
    page = max(1, page)
    per_page = min(100, max(1, per_page))
    return describe_payload(client.fetch_raw(page, per_page), page=page, per_page=per_page)


__all__ = ["describe_payload", "inspect_raw_page", "payload_type"]
