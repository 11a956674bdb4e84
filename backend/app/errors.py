"""Exceptions raised while ingesting and storing the marketplace catalog."""

from __future__ import annotations


class CatalogError(Exception):
    """Base class for catalog ingestion failures."""


class UpstreamError(CatalogError):
    """Raised when the catalog endpoint cannot serve a page."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(UpstreamError):
    """The endpoint kept answering 429 after every retry."""


class UpstreamUnavailableError(UpstreamError):
    """The endpoint kept failing with 5xx or transport errors after every retry."""


class UpstreamRejectedError(UpstreamError):
    """The endpoint rejected the request; retrying will not help."""


class StoreUnavailableError(CatalogError):
    """The catalog store failed while a sync run was writing to it."""
