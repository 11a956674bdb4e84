"""Version-gated cache for analytics snapshots."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


@dataclass(slots=True)
class _CacheEntry(Generic[T]):
    stored_at: float
    version: int
    value: T


class AnalyticsCache(Generic[T]):
    """Cache keyed by a canonical filter key plus a store version.

    ``invalidate`` is called after every store mutation. An entry is served
    only while its version matches the current one and it is younger than
    the TTL.
    """

    def __init__(
        self, *, ttl_seconds: float, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._version = 0
        self._entries: dict[str, _CacheEntry[T]] = {}

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def get(self, key: str) -> T | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.version != self._version or self._clock() - entry.stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return entry.value

    def put(self, key: str, value: T, *, version: int) -> None:
        """Store ``value`` computed while the store was at ``version``."""

        with self._lock:
            self._entries[key] = _CacheEntry(stored_at=self._clock(), version=version, value=value)

    def invalidate(self) -> None:
        with self._lock:
            self._version += 1
            self._entries.clear()


__all__ = ["AnalyticsCache"]
