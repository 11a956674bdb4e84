"""Domain models representing the normalized marketplace catalog."""

from .models import DomainFilters, DomainRecord, SyncMode, SyncOutcome, SyncState

__all__ = [
    "DomainFilters",
    "DomainRecord",
    "SyncMode",
    "SyncOutcome",
    "SyncState",
]
