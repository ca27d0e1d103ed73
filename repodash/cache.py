"""In-memory TTL cache for short-lived collector results.

Uses cachetools ``TLRUCache`` so every entry carries its own time-to-live
(GitHub data for 2 minutes, devpad projects for 10, ...).  There is no size
bound: the caches hold small per-session metadata keyed by repo path, and
TTL is the only eviction trigger.

Eviction is lazy: an expired entry is dropped on the access that finds it
stale (or on the next write), never by a background sweep.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable

from cachetools import TLRUCache

logger = logging.getLogger("RepoDash")


@dataclass
class CacheEntry:
    """A cached value plus the clock reading it was stored at."""

    value: Any
    fetched_at: float
    ttl: float


def _entry_expiry(_key: str, entry: CacheEntry, now: float) -> float:
    # An entry is still fresh when its age equals its ttl exactly.
    return math.nextafter(now + entry.ttl, math.inf)


class TTLCache:
    """Per-entry TTL cache with lazy, on-access eviction."""

    def __init__(
        self,
        name: str = "cache",
        *,
        default_ttl: float | None = None,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.default_ttl = default_ttl
        self._timer = timer
        self._entries: TLRUCache[str, CacheEntry] = TLRUCache(
            maxsize=math.inf, ttu=_entry_expiry, timer=timer
        )

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value for *key*, or *default* if absent / expired."""
        try:
            entry = self._entries[key]
        except KeyError:
            expired = self._entries.expire()
            if any(k == key for k, _ in expired):
                logger.debug("%s EXPIRED for %s", self.name, key)
            else:
                logger.debug("%s MISS for %s", self.name, key)
            return default
        logger.debug("%s HIT for %s", self.name, key)
        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store *value* under *key*, resetting its freshness clock."""
        if ttl is None:
            ttl = self.default_ttl
        if ttl is None or ttl <= 0:
            raise ValueError(f"ttl must be a positive number of seconds, got {ttl!r}")
        self._entries[key] = CacheEntry(value=value, fetched_at=self._timer(), ttl=ttl)
        logger.debug("%s stored %s (ttl=%ss)", self.name, key, ttl)

    def invalidate(self, key: str) -> None:
        """Remove *key*; a no-op if it is not cached."""
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
        logger.debug("%s cleared", self.name)

    def __contains__(self, key: str) -> bool:
        if key in self._entries:
            return True
        self._entries.expire()
        return False

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, Any]:
        """Return cache statistics."""
        return {
            "name": self.name,
            "current_size": len(self._entries),
            "default_ttl_seconds": self.default_ttl,
        }
