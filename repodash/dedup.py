"""In-flight request deduplication for collector fetches.

Prevents duplicate ``gh``/HTTP calls when several widgets ask for the same
repository's data at the same moment (e.g. the PR, CI and release widgets
all mounting for a freshly selected repo).

**How it works**: the first request for a given key starts the work as a
task and registers it.  Concurrent requests for the *same* key await that
same task, so every waiter receives the identical result (or the identical
exception).  The key is removed exactly once, inside the task, before the
outcome reaches any waiter, so the next request after settlement always
starts fresh work.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger("RepoDash")

T = TypeVar("T")


class InFlightDeduplicator:
    """Collapse concurrent callers for the same key into one execution."""

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Future[Any]] = {}

    async def run(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Execute *fn()* with deduplication on *key*.

        Args:
            key: Deduplication key (typically ``source:repo_path``).
            fn: Zero-argument callable returning an awaitable.

        Returns:
            Whatever *fn()* returns, shared with every concurrent caller.

        Raises:
            Whatever *fn()* raises (propagated to all waiters).
        """
        existing = self._inflight.get(key)
        if existing is not None:
            logger.debug("Dedup: waiting on in-flight fetch for %s", key)
            return await asyncio.shield(existing)

        logger.debug("Dedup: starting fetch for %s", key)
        task = asyncio.ensure_future(self._execute(key, fn))
        self._inflight[key] = task
        # Shielded so one cancelled waiter does not cancel the work for the rest.
        return await asyncio.shield(task)

    async def _execute(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await fn()
        finally:
            self._inflight.pop(key, None)

    def has(self, key: str) -> bool:
        """Return ``True`` while a fetch for *key* is pending."""
        return key in self._inflight

    def inflight_count(self) -> int:
        """Return the number of currently in-flight fetches (for diagnostics)."""
        return len(self._inflight)
