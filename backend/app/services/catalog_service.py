"""Read-only facade over the catalog listing used by the API."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Sequence

from sqlalchemy.orm import Session

from app.domain import DomainFilters, SyncState
from app.repositories import CatalogRepository
from app.schemas import DomainRecord, SyncStatus


@dataclass(slots=True)
class DomainQuery:
    page: int = 1
    per_page: int = 25
    filters: DomainFilters = field(default_factory=DomainFilters)
    sort_by: str | None = "domain"
    sort_dir: str = "asc"

    @property
    def offset(self) -> int:
        return (max(1, self.page) - 1) * self.per_page

    def to_repository_kwargs(self) -> dict[str, Any]:
        return {
            "sort_by": self.sort_by,
            "sort_dir": self.sort_dir,
            "limit": self.per_page,
            "offset": self.offset,
        }


@dataclass(slots=True)
class DomainQueryResult:
    rows: Sequence[DomainRecord]
    fields: list[str]
    total: int
    has_more: bool


class CatalogService:
    def __init__(self, session: Session) -> None:
        self._session = session
        self._catalog_repo = CatalogRepository(session)

    def query_domains(self, query: DomainQuery) -> DomainQueryResult:
        records, total = self._catalog_repo.list_domains(
            query.filters, **query.to_repository_kwargs()
        )
        return DomainQueryResult(
            rows=[DomainRecord.model_validate(record) for record in records],
            fields=self._catalog_repo.collect_field_names(),
            total=total,
            has_more=query.offset + query.per_page < total,
        )


def to_sync_status(state: SyncState) -> SyncStatus:
    payload = asdict(state)
    payload["sync_mode"] = state.sync_mode.value
    return SyncStatus.model_validate(payload)


__all__ = ["CatalogService", "DomainQuery", "DomainQueryResult", "to_sync_status"]
