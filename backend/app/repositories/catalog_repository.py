"""Catalog-focused data access helpers."""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy import asc, delete, desc, func, select, true
from sqlalchemy.orm import Session

from app.domain import DomainFilters, DomainRecord
from app.domain.timestamps import source_timestamp
from app.models import CatalogDomain, CatalogMeta

BASE_SORT_FIELDS = ("domain", "tld", "available", "price", "currency", "status")
SAFE_FIELD_NAME = re.compile(r"^[A-Za-z0-9_]+$")

_SCAN_BATCH_SIZE = 1000


def _raw_text(field: str):
    """Lower-cased text of a raw JSON field; the field name is bound, never inlined."""

    return func.lower(func.coalesce(CatalogDomain.raw_data[field].as_string(), ""))


class CatalogRepository:
    """Encapsulate all catalog domain persistence concerns."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def upsert_domain(self, record: DomainRecord, timestamp: datetime) -> CatalogDomain:
        existing = self._session.get(CatalogDomain, record.domain)
        if existing is None:
            existing = CatalogDomain(domain=record.domain)
            self._session.add(existing)

        existing.tld = record.tld
        existing.available = record.available
        existing.price = record.price
        existing.currency = record.currency
        existing.status = record.status
        existing.raw_data = dict(record.raw)
        existing.updated_at = timestamp
        return existing

    def upsert_domains(self, records: Iterable[DomainRecord], timestamp: datetime) -> int:
        count = 0
        for record in records:
            self.upsert_domain(record, timestamp)
            count += 1
        return count

    def reset(self) -> None:
        """Delete every stored domain together with the sync metadata."""

        self._session.execute(delete(CatalogDomain))
        self._session.execute(delete(CatalogMeta))

    # ------------------------------------------------------------------
    # Queries

    def count_domains(self) -> int:
        return int(self._session.execute(select(func.count(CatalogDomain.domain))).scalar_one())

    def build_filters(self, filters: DomainFilters) -> list[Any]:
        clauses: list[Any] = []

        q = (filters.q or "").strip().lower()
        if q:
            clauses.append(func.lower(CatalogDomain.domain).contains(q, autoescape=True))

        tld = (filters.tld or "").strip().lower()
        if tld:
            clauses.append(func.lower(CatalogDomain.tld) == tld)

        if filters.available is not None:
            clauses.append(CatalogDomain.available.is_(filters.available))

        for field, value in filters.active_column_filters().items():
            needle = value.lower()
            if field == "domain":
                clauses.append(func.lower(CatalogDomain.domain).contains(needle, autoescape=True))
                continue
            if '"' in field:
                # SQLite JSON paths cannot address keys holding a double quote.
                logger.warning("Ignoring column filter on unsupported field {!r}", field)
                continue
            clauses.append(_raw_text(field).contains(needle, autoescape=True))

        return clauses

    def _order_column(self, sort_by: str | None):
        requested = (sort_by or "domain").strip()
        if requested in ("available", "price"):
            return getattr(CatalogDomain, requested)
        if requested in BASE_SORT_FIELDS:
            return func.lower(func.coalesce(getattr(CatalogDomain, requested), ""))
        if SAFE_FIELD_NAME.match(requested):
            return _raw_text(requested)
        logger.warning("Ignoring unsupported sort key {!r}; sorting by domain", requested)
        return CatalogDomain.domain

    def list_domains(
        self,
        filters: DomainFilters,
        *,
        sort_by: str | None = "domain",
        sort_dir: str = "asc",
        limit: int = 25,
        offset: int = 0,
    ) -> tuple[list[CatalogDomain], int]:
        clauses = self.build_filters(filters)
        direction = desc if sort_dir.lower() == "desc" else asc

        query = (
            select(CatalogDomain)
            .where(*clauses)
            .order_by(direction(self._order_column(sort_by)), direction(CatalogDomain.domain))
            .limit(limit)
            .offset(offset)
        )
        total_query = select(func.count(CatalogDomain.domain)).where(*clauses)

        rows = list(self._session.execute(query).scalars().all())
        total = int(self._session.execute(total_query).scalar_one())
        return rows, total

    def collect_field_names(self) -> list[str]:
        """Return every distinct raw field name present in the store.

        ``json_each`` exists on both SQLite and Postgres, so the key scan
        stays in the database instead of decoding every row here.
        """

        keys = func.json_each(CatalogDomain.raw_data).table_valued("key")
        query = select(keys.c.key).select_from(CatalogDomain).join(keys, true()).distinct()
        return sorted(str(key) for key in self._session.execute(query).scalars() if key is not None)

    def max_source_timestamp(self) -> datetime | None:
        """Return the newest creation/update timestamp carried by stored raw rows."""

        newest: datetime | None = None
        for raw in self._iter_raw(select(CatalogDomain.raw_data)):
            stamp = source_timestamp(raw)
            if stamp is not None and (newest is None or stamp > newest):
                newest = stamp
        return newest

    def _iter_raw(self, statement) -> Iterator[dict[str, Any]]:
        result = self._session.execute(statement.execution_options(yield_per=_SCAN_BATCH_SIZE))
        for raw in result.scalars():
            if isinstance(raw, dict):
                yield raw

    # ------------------------------------------------------------------
    # Aggregates

    def count_matching(self, clauses: list[Any]) -> int:
        query = select(func.count(CatalogDomain.domain)).where(*clauses)
        return int(self._session.execute(query).scalar_one())

    def count_available(self, clauses: list[Any]) -> int:
        return self.count_matching([*clauses, CatalogDomain.available.is_(True)])

    def average_price(self, clauses: list[Any]) -> float | None:
        query = select(func.avg(CatalogDomain.price)).where(
            *clauses, CatalogDomain.price.is_not(None)
        )
        value = self._session.execute(query).scalar_one()
        return float(value) if value is not None else None

    def count_distinct_tlds(self, clauses: list[Any]) -> int:
        query = select(func.count(func.distinct(CatalogDomain.tld))).where(*clauses)
        return int(self._session.execute(query).scalar_one())

    def top_tlds(self, clauses: list[Any], *, limit: int) -> list[tuple[str, int]]:
        frequency = func.count(CatalogDomain.domain)
        query = (
            select(CatalogDomain.tld, frequency)
            .where(*clauses)
            .group_by(CatalogDomain.tld)
            .order_by(frequency.desc(), CatalogDomain.tld.asc())
            .limit(limit)
        )
        return [(tld, int(count)) for tld, count in self._session.execute(query).all()]

    def iter_tld_raw(self, clauses: list[Any]) -> Iterator[tuple[str, dict[str, Any]]]:
        query = select(CatalogDomain.tld, CatalogDomain.raw_data).where(*clauses)
        result = self._session.execute(query.execution_options(yield_per=_SCAN_BATCH_SIZE))
        for tld, raw in result:
            yield tld, raw if isinstance(raw, dict) else {}


__all__ = ["CatalogRepository", "BASE_SORT_FIELDS", "SAFE_FIELD_NAME"]
