"""Time-based cache for dashboard range queries."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Hashable, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    value: V
    stored_at: float


class TTLCache(Generic[V]):
    """
    Unbounded mapping whose entries expire ``ttl_seconds`` after being stored.

    Expired entries are dropped by ``sweep``, which ``get`` and ``set`` run
    before touching the map. A ``ttl_seconds`` of 0 disables caching.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] | None = None):
        self.ttl_seconds = ttl_seconds
        self.clock = clock or time.monotonic
        self._entries: dict[Hashable, CacheEntry[V]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def _expired(self, entry: CacheEntry[V], now: float) -> bool:
        return now - entry.stored_at >= self.ttl_seconds

    def sweep(self) -> int:
        now = self.clock()
        expired = [k for k, e in self._entries.items() if self._expired(e, now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"[CACHE] Removed {len(expired)} expired entries")
        return len(expired)

    def get(self, key: Hashable) -> V | None:
        self.sweep()
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def set(self, key: Hashable, value: V) -> None:
        self.sweep()
        if self.ttl_seconds <= 0:
            return
        self._entries[key] = CacheEntry(value=value, stored_at=self.clock())

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict[str, Any]:
        return {"entries": len(self._entries), "ttl_seconds": self.ttl_seconds}
