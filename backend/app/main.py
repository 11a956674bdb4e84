from __future__ import annotations

import json
from collections.abc import Iterator
from typing import Annotated

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger

from ingestion.client import CatalogClient
from ingestion.inspection import inspect_raw_page
from ingestion.scheduler import SyncScheduler
from ingestion.service import CatalogSynchronizer

from . import schemas
from .core.config import settings
from .db import get_db, init_db
from .domain import DomainFilters
from .errors import CatalogError, RateLimitedError, StoreUnavailableError
from .services.analytics_cache import AnalyticsCache
from .services.analytics_service import AnalyticsService
from .services.catalog_service import CatalogService, DomainQuery, to_sync_status

app = FastAPI(title="Domain Catalog API", version="0.1.0", debug=settings.debug)

MAX_PER_PAGE = 100

_TRUE_VALUES = {"1", "true", "yes", "si", "sí"}
_FALSE_VALUES = {"0", "false", "no"}


@app.on_event("startup")
def on_startup() -> None:
    """Initialize the store and the process-wide sync scheduler."""

    init_db()
    cache: AnalyticsCache[schemas.CatalogAnalytics] = AnalyticsCache(
        ttl_seconds=settings.analytics_cache_ttl_seconds
    )
    synchronizer = CatalogSynchronizer(on_store_mutated=cache.invalidate)
    app.state.analytics_cache = cache
    app.state.scheduler = SyncScheduler(synchronizer)


@app.on_event("shutdown")
def on_shutdown() -> None:
    scheduler: SyncScheduler | None = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.shutdown(wait=False)


@app.exception_handler(CatalogError)
def catalog_error_handler(_: Request, exc: CatalogError) -> JSONResponse:
    if isinstance(exc, RateLimitedError):
        details = "Catalog API is rate limiting requests (429). It will be retried automatically."
    else:
        details = str(exc) or exc.__class__.__name__
    status_code = 503 if isinstance(exc, StoreUnavailableError) else 502
    logger.warning("Catalog request failed ({}): {}", status_code, details)
    return JSONResponse(
        status_code=status_code,
        content={"error": "Catalog request failed", "details": details},
    )


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness check consumed by infrastructure monitors."""

    return {"status": "ok"}


def parse_bool(value: str | None) -> bool | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return None


def parse_column_filters(raw: str | None) -> dict[str, str]:
    """Decode the ``filters`` JSON object; anything unparseable means no filters."""

    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        return {}
    if not isinstance(parsed, dict):
        return {}
    return {str(key): "" if value is None else str(value) for key, value in parsed.items()}


def _domain_filters(
    *,
    q: Annotated[str | None, Query(description="Substring of the domain name")] = None,
    tld: Annotated[str | None, Query(description="Exact top-level domain", example="com")] = None,
    available: Annotated[
        str | None, Query(description="Availability flag (1/true/yes/si or 0/false/no)")
    ] = None,
    filters: Annotated[
        str | None, Query(description="JSON object of per-field substring filters")
    ] = None,
) -> DomainFilters:
    """Normalize the filter parameters shared by listings and analytics."""

    return DomainFilters(
        q=(q or "").strip().lower() or None,
        tld=(tld or "").strip().lower() or None,
        available=parse_bool(available),
        column_filters=parse_column_filters(filters),
    )


def _domain_query(
    *,
    filters: DomainFilters = Depends(_domain_filters),
    page: Annotated[int, Query(description="1-based page number")] = 1,
    per_page: Annotated[int, Query(description="Rows per page (1..100)")] = 25,
    sort_by: Annotated[str, Query(description="Column or raw field to sort by")] = "domain",
    sort_dir: Annotated[str, Query(description="Sort order (asc|desc)")] = "asc",
) -> DomainQuery:
    return DomainQuery(
        page=max(1, page),
        per_page=min(MAX_PER_PAGE, max(1, per_page)),
        filters=filters,
        sort_by=sort_by.strip() or "domain",
        sort_dir="desc" if sort_dir.strip().lower() == "desc" else "asc",
    )


def _scheduler(request: Request) -> SyncScheduler:
    return request.app.state.scheduler


def _analytics_cache(request: Request) -> AnalyticsCache[schemas.CatalogAnalytics]:
    return request.app.state.analytics_cache


def _catalog_service(db=Depends(get_db)) -> CatalogService:
    """Provide the catalog service wired with a SQLAlchemy session."""

    return CatalogService(db)


def _analytics_service(
    db=Depends(get_db), cache=Depends(_analytics_cache)
) -> AnalyticsService:
    return AnalyticsService(db, cache)


def _catalog_client() -> Iterator[CatalogClient]:
    with CatalogClient() as client:
        yield client


@app.get("/domains", response_model=schemas.DomainList, tags=["domains"])
def list_domains(
    *,
    query: DomainQuery = Depends(_domain_query),
    service: CatalogService = Depends(_catalog_service),
    scheduler: SyncScheduler = Depends(_scheduler),
):
    """Return one page of the catalog, loading it first when the store is empty."""

    scheduler.ensure_loaded()
    result = service.query_domains(query)
    return schemas.DomainList(
        data=list(result.rows),
        fields=result.fields,
        pagination=schemas.Pagination(
            page=query.page,
            per_page=query.per_page,
            total=result.total,
            has_more=result.has_more,
        ),
    )


@app.get("/domains/analytics", response_model=schemas.CatalogAnalytics, tags=["domains"])
def domain_analytics(
    *,
    filters: DomainFilters = Depends(_domain_filters),
    service: AnalyticsService = Depends(_analytics_service),
    scheduler: SyncScheduler = Depends(_scheduler),
):
    """Aggregate statistics over the rows matching the filters."""

    scheduler.ensure_loaded()
    return service.get_analytics(filters)


@app.get("/domains/sync", response_model=schemas.SyncStatus, tags=["sync"])
def sync_status(scheduler: SyncScheduler = Depends(_scheduler)):
    return to_sync_status(scheduler.status())


@app.post("/domains/sync", response_model=schemas.SyncResponse, tags=["sync"])
def trigger_sync(
    payload: schemas.SyncRequest | None = None,
    scheduler: SyncScheduler = Depends(_scheduler),
):
    """Run a sync now and wait for it, attaching to a run already in flight."""

    payload = payload or schemas.SyncRequest()
    result = scheduler.run_sync(force=payload.force, reset=payload.reset, bypass_schedule=True)
    return schemas.SyncResponse(
        success=True,
        outcome=result.outcome.value,
        pages_processed=result.pages_processed,
        status=to_sync_status(scheduler.status()),
    )


@app.delete("/domains", response_model=schemas.SyncStatus, tags=["sync"])
def reset_catalog(scheduler: SyncScheduler = Depends(_scheduler)):
    """Delete every stored domain and the sync metadata."""

    scheduler.reset_catalog()
    return to_sync_status(scheduler.status())


@app.get("/domains/raw", response_model=schemas.RawPageInspection, tags=["sync"])
def raw_page(
    *,
    page: Annotated[int, Query(description="Upstream page number")] = 1,
    per_page: Annotated[int, Query(description="Rows per upstream page (1..100)")] = 25,
    client: CatalogClient = Depends(_catalog_client),
):
    """Fetch one upstream page without storing it, for schema diagnostics."""

    return inspect_raw_page(client, page=page, per_page=per_page)
