"""Locate the catalog rows inside an arbitrarily shaped upstream payload.

The upstream schema is not contractual, so the row array is found by scoring
every array in the payload instead of following a fixed path:

* +2 for each string element containing a domain-shaped substring,
* +3 for each object element with a key mentioning ``domain``, ``dominio``
  or ``host``,
* +1 for each object element holding a domain-shaped string in any field.

The highest score wins, ties go to the longer array. When nothing scores,
the longest array is used so an unfamiliar schema still yields rows.
"""

from __future__ import annotations

from collections import Counter
from typing import Any

from .normalize import coerce_number, find_domain_in_text

MAX_SEARCH_DEPTH = 5

_DOMAIN_KEY_HINTS = ("domain", "dominio", "host")
_TOTAL_KEYS = ("total", "total_count", "totalCount", "count")


def collect_arrays(payload: Any, depth: int = 0) -> list[list[Any]]:
    """Return every array reachable through nested objects, up to a bounded depth."""

    if depth > MAX_SEARCH_DEPTH or payload is None:
        return []
    if isinstance(payload, list):
        return [payload]
    if not isinstance(payload, dict):
        return []

    arrays: list[list[Any]] = []
    for value in payload.values():
        arrays.extend(collect_arrays(value, depth + 1))
    return arrays


def score_array(items: list[Any]) -> int:
    score = 0
    for item in items:
        if isinstance(item, str):
            if find_domain_in_text(item):
                score += 2
            continue
        if not isinstance(item, dict) or not item:
            continue

        keys = [str(key).lower() for key in item]
        if any(hint in key for key in keys for hint in _DOMAIN_KEY_HINTS):
            score += 3

        if any(isinstance(value, str) and find_domain_in_text(value) for value in item.values()):
            score += 1
    return score


def extract_rows(payload: Any) -> list[Any]:
    arrays = collect_arrays(payload)
    if not arrays:
        return []

    scored = [(score_array(items), len(items), index) for index, items in enumerate(arrays)]
    best_score, _, best_index = max(scored, key=lambda entry: (entry[0], entry[1], -entry[2]))
    if best_score > 0:
        return arrays[best_index]
    return max(arrays, key=len)


def parse_total(payload: Any) -> int | None:
    """Return the upstream total row count when the payload reports one."""

    if not isinstance(payload, dict):
        return None

    candidates: list[Any] = [payload.get(key) for key in _TOTAL_KEYS]
    for container in ("pagination", "meta"):
        nested = payload.get(container)
        if isinstance(nested, dict):
            candidates.append(nested.get("total"))

    for value in candidates:
        if value is None:
            continue
        number = coerce_number(value)
        if number is None or number < 0:
            return None
        return int(number)
    return None


def field_occurrences(rows: list[Any]) -> list[tuple[str, int]]:
    """Count how many object rows carry each field, most frequent first."""

    counter: Counter[str] = Counter()
    for row in rows:
        if isinstance(row, dict):
            counter.update(str(key) for key in row)
    return sorted(counter.items(), key=lambda entry: (-entry[1], entry[0]))
