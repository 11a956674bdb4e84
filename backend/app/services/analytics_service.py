"""Aggregate catalog analytics for dashboard views."""

from __future__ import annotations

import json
import re
from collections import Counter
from typing import Any, Mapping

from sqlalchemy.orm import Session

from app.domain import DomainFilters
from app.repositories import CatalogRepository
from app.schemas import CatalogAnalytics, LabelCount
from ingestion.normalize import first_present

from .analytics_cache import AnalyticsCache

TOP_TLD_LIMIT = 8
TOP_TECH_LIMIT = 12
TOP_LEVEL_LIMIT = 5
HEATMAP_TLD_ROWS = 6
UNKNOWN_LEVEL = "unknown"

_TECH_NAME_PATTERN = re.compile(r'"technology_name"\s*:\s*"([^"]+)"')
_TECH_DELIMITERS = re.compile(r"[,;|/\n]")


def _dedupe(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


def split_techstack(value: Any) -> list[str]:
    """Flatten a technology stack value into a deduplicated tag list.

    Accepts delimited strings, JSON-encoded strings, lists and nested objects.
    """

    if isinstance(value, list):
        return _dedupe([tag for item in value for tag in split_techstack(item)])

    if isinstance(value, dict):
        return _dedupe([tag for item in value.values() for tag in split_techstack(item)])

    if not isinstance(value, str):
        return []

    text = value.strip()
    if not text:
        return []

    named = [match.strip() for match in _TECH_NAME_PATTERN.findall(text) if match.strip()]
    if named:
        return _dedupe(named)

    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None
    if isinstance(parsed, (list, dict)):
        return split_techstack(parsed)

    return _dedupe([part.strip() for part in _TECH_DELIMITERS.split(text) if part.strip()])


def tech_level(raw: Mapping[str, Any]) -> str:
    value = first_present(raw, ("tech_level", "techLevel", "nivel_tecnico"))
    if isinstance(value, str) and value.strip():
        return value.strip().lower()
    return UNKNOWN_LEVEL


def _top(counter: Counter[str], limit: int) -> list[LabelCount]:
    ranked = sorted(counter.items(), key=lambda entry: (-entry[1], entry[0]))
    return [LabelCount(label=label, value=count) for label, count in ranked[:limit]]


class AnalyticsService:
    """Compute, and cache, aggregate statistics over a filter predicate."""

    def __init__(self, session: Session, cache: AnalyticsCache[CatalogAnalytics]) -> None:
        self._session = session
        self._cache = cache
        self._catalog_repo = CatalogRepository(session)

    def get_analytics(self, filters: DomainFilters) -> CatalogAnalytics:
        key = filters.cache_key()
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        version = self._cache.version
        snapshot = self._compute(filters)
        self._cache.put(key, snapshot, version=version)
        return snapshot

    def _compute(self, filters: DomainFilters) -> CatalogAnalytics:
        clauses = self._catalog_repo.build_filters(filters)
        top_tlds = self._catalog_repo.top_tlds(clauses, limit=TOP_TLD_LIMIT)

        tech_counter: Counter[str] = Counter()
        level_counter: Counter[str] = Counter()
        pairs: Counter[tuple[str, str]] = Counter()
        for tld, raw in self._catalog_repo.iter_tld_raw(clauses):
            level = tech_level(raw)
            level_counter[level] += 1
            pairs[(tld, level)] += 1
            stack = first_present(raw, ("tech_stack", "techstack", "stack"))
            tech_counter.update(split_techstack(stack))

        top_levels = _top(level_counter, TOP_LEVEL_LIMIT)
        heat_rows = [tld for tld, _ in top_tlds[:HEATMAP_TLD_ROWS]]
        heat_cols = [item.label for item in top_levels]
        heat_matrix = [[pairs[(tld, level)] for level in heat_cols] for tld in heat_rows]

        return CatalogAnalytics(
            total=self._catalog_repo.count_matching(clauses),
            available=self._catalog_repo.count_available(clauses),
            avg_price=self._catalog_repo.average_price(clauses),
            unique_tlds=self._catalog_repo.count_distinct_tlds(clauses),
            top_tlds=[LabelCount(label=tld, value=count) for tld, count in top_tlds],
            top_tech=_top(tech_counter, TOP_TECH_LIMIT),
            top_levels=top_levels,
            heat_rows=heat_rows,
            heat_cols=heat_cols,
            heat_matrix=heat_matrix,
            heat_max=max((cell for row in heat_matrix for cell in row), default=0),
        )


__all__ = ["AnalyticsService", "split_techstack", "tech_level"]
