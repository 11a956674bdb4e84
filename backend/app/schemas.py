from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


class DomainRecord(BaseModel):
    domain: str
    tld: str
    available: bool | None = None
    price: float | None = None
    currency: str | None = None
    status: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict, validation_alias="raw_data")

    model_config = {"from_attributes": True, "populate_by_name": True}

    @field_validator("price", mode="before")
    @classmethod
    def _coerce_numeric(cls, value: Any) -> float | None:
        if value is None:
            return None
        return float(value)

    @field_validator("raw", mode="before")
    @classmethod
    def _coerce_raw(cls, value: Any) -> dict[str, Any]:
        return value if isinstance(value, dict) else {}


class Pagination(BaseModel):
    page: int
    per_page: int
    total: int
    has_more: bool


class DomainList(BaseModel):
    data: list[DomainRecord]
    fields: list[str]
    pagination: Pagination


class LabelCount(BaseModel):
    label: str
    value: int


class CatalogAnalytics(BaseModel):
    total: int
    available: int
    avg_price: float | None = None
    unique_tlds: int
    top_tlds: list[LabelCount] = Field(default_factory=list)
    top_tech: list[LabelCount] = Field(default_factory=list)
    top_levels: list[LabelCount] = Field(default_factory=list)
    heat_rows: list[str] = Field(default_factory=list)
    heat_cols: list[str] = Field(default_factory=list)
    heat_matrix: list[list[int]] = Field(default_factory=list)
    heat_max: int = 0


class SyncStatus(BaseModel):
    is_syncing: bool
    last_sync_at: datetime | None = None
    last_error: str | None = None
    total_domains: int
    next_sync_not_before: datetime | None = None
    cursor_page: int
    total_pages: int | None = None
    last_page: int | None = None
    source_created_at_max: datetime | None = None
    sync_mode: str
    last_source_count: int | None = None
    last_normalized_count: int | None = None

    model_config = {"from_attributes": True}


class SyncRequest(BaseModel):
    force: bool = False
    reset: bool = False


class SyncResponse(BaseModel):
    success: bool
    outcome: str
    pages_processed: int
    status: SyncStatus


class FieldOccurrence(BaseModel):
    field: str
    occurrences: int


class RawPageInspection(BaseModel):
    page: int
    per_page: int
    payload_type: str
    top_level_keys: list[str]
    detected_arrays: list[int]
    selected_array_length: int
    object_row_count: int
    fields: list[FieldOccurrence]
    sample_rows: list[Any]
    raw: Any = None
