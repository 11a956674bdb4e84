from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx
from loguru import logger

from app.core.config import settings
from app.domain import DomainRecord
from app.errors import RateLimitedError, UpstreamRejectedError, UpstreamUnavailableError

from .extract import extract_rows, parse_total
from .normalize import normalize_domain

RATE_LIMIT_BASE_SLEEP_SECONDS = 2.0
RATE_LIMIT_MAX_SLEEP_SECONDS = 120.0
RETRY_AFTER_MIN_SECONDS = 1.0
SERVER_ERROR_BASE_SLEEP_SECONDS = 1.0
SERVER_ERROR_MAX_SLEEP_SECONDS = 30.0


@dataclass(slots=True)
class CatalogPage:
    """One fetched upstream page after extraction and normalization."""

    records: list[DomainRecord]
    fields: list[str]
    total: int | None
    has_more: bool
    source_count: int


def _retry_after_seconds(response: httpx.Response) -> float | None:
    raw = response.headers.get("retry-after")
    if raw is None:
        return None
    try:
        seconds = float(raw.strip())
    except ValueError:
        return None
    return min(RATE_LIMIT_MAX_SLEEP_SECONDS, max(RETRY_AFTER_MIN_SECONDS, seconds))


def _rate_limit_sleep_seconds(attempt: int) -> float:
    return min(RATE_LIMIT_MAX_SLEEP_SECONDS, RATE_LIMIT_BASE_SLEEP_SECONDS * (2**attempt))


def _server_error_sleep_seconds(attempt: int) -> float:
    return min(SERVER_ERROR_MAX_SLEEP_SECONDS, SERVER_ERROR_BASE_SLEEP_SECONDS * (2**attempt))


class CatalogClient:
    """Thin wrapper around the paginated marketplace catalog endpoint."""

    def __init__(
        self,
        *,
        api_url: str | None = None,
        api_key: str | None = None,
        max_retries: int | None = None,
        timeout: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_url = api_url or str(settings.catalog_api_url)
        self.api_key = api_key if api_key is not None else settings.catalog_api_key
        self.max_retries = settings.fetch_max_retries if max_retries is None else max_retries
        self.timeout = timeout or settings.catalog_request_timeout_seconds
        self._sleep = sleep
        self.client = httpx.Client(timeout=self.timeout, transport=transport)

    def fetch_raw(self, page: int, per_page: int) -> Any:
        """Return the decoded JSON payload of one page, retrying transient failures."""

        if not self.api_key:
            raise UpstreamRejectedError("CATALOG_API_KEY is not configured")

        params = {"page": page, "per_page": per_page}
        headers = {"X-API-Key": self.api_key, "Accept": "application/json"}

        last_status: int | None = None
        for attempt in range(self.max_retries + 1):
            is_last_attempt = attempt >= self.max_retries
            try:
                response = self.client.get(self.api_url, params=params, headers=headers)
            except httpx.TransportError as exc:
                last_status = None
                wait = _server_error_sleep_seconds(attempt)
                logger.warning(
                    "Catalog GET page={} failed: {} (attempt {}/{}, retry in {}s)",
                    page,
                    exc,
                    attempt + 1,
                    self.max_retries + 1,
                    wait,
                )
                if not is_last_attempt:
                    self._sleep(wait)
                continue

            if response.is_success:
                try:
                    return response.json()
                except ValueError as exc:
                    raise UpstreamRejectedError(
                        f"Catalog API returned a non-JSON body for page {page}",
                        status_code=response.status_code,
                    ) from exc

            last_status = response.status_code
            if last_status == 429:
                wait = _retry_after_seconds(response)
                if wait is None:
                    wait = _rate_limit_sleep_seconds(attempt)
            elif last_status >= 500:
                wait = _server_error_sleep_seconds(attempt)
            else:
                raise UpstreamRejectedError(
                    f"Catalog API error ({last_status})", status_code=last_status
                )

            logger.warning(
                "Catalog GET page={} returned {} (attempt {}/{}, retry in {}s)",
                page,
                last_status,
                attempt + 1,
                self.max_retries + 1,
                wait,
            )
            if not is_last_attempt:
                self._sleep(wait)

        if last_status == 429:
            raise RateLimitedError(
                "Catalog API rate limit (429). Try again in a few minutes.", status_code=429
            )
        raise UpstreamUnavailableError(
            f"Catalog API unavailable ({last_status or 'no status'})", status_code=last_status
        )

    def fetch_page(self, page: int, per_page: int) -> CatalogPage:
        payload = self.fetch_raw(page, per_page)
        rows = extract_rows(payload)
        records = [record for record in map(normalize_domain, rows) if record is not None]
        fields = sorted({key for record in records for key in record.raw})
        logger.info(
            "Catalog page={} rows={} normalized={}", page, len(rows), len(records)
        )
        return CatalogPage(
            records=records,
            fields=fields,
            total=parse_total(payload),
            has_more=len(rows) >= per_page,
            source_count=len(rows),
        )

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "CatalogClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
