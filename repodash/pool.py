"""Bounded-concurrency pool for expensive async fetches.

Used when many subprocess-spawning collectors (``git status`` across 50+
repos at startup, ``gh`` calls per repo) would otherwise all start at once.

**How it works**: up to ``concurrency`` calls run at the same time.  Further
calls park on a future in a FIFO queue.  When a running call settles
(success *or* failure) its slot is handed straight to the head of the queue
in the same step, so ``active_count`` never dips between the release and the
next start.

Single-threaded: all bookkeeping happens between suspension points on the
event loop, so no lock is needed.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger("RepoDash")

T = TypeVar("T")


class ConcurrencyPool:
    """Limit how many async operations run simultaneously."""

    def __init__(self, concurrency: int) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self._concurrency = concurrency
        self._active = 0
        self._queue: deque[asyncio.Future[None]] = deque()

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def active_count(self) -> int:
        """Number of calls currently holding a slot."""
        return self._active

    @property
    def queue_length(self) -> int:
        """Number of calls waiting for a slot."""
        return len(self._queue)

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run *fn()* within the concurrency limit.

        Returns whatever *fn()* returns.  Whatever *fn()* raises is re-raised
        to this caller only; the slot is released either way.
        """
        if self._active < self._concurrency:
            self._active += 1
        else:
            await self._wait_for_slot()

        try:
            return await fn()
        finally:
            self._release()

    async def _wait_for_slot(self) -> None:
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._queue.append(waiter)
        logger.debug(
            "Pool: queued (active=%d, queued=%d)", self._active, len(self._queue)
        )
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Slot was granted before we could resume; pass it on.
                self._release()
            else:
                try:
                    self._queue.remove(waiter)
                except ValueError:
                    pass
            raise

    def _release(self) -> None:
        self._active -= 1
        while self._queue:
            waiter = self._queue.popleft()
            if waiter.done():
                continue
            self._active += 1
            waiter.set_result(None)
            logger.debug(
                "Pool: slot handed over (active=%d, queued=%d)",
                self._active,
                len(self._queue),
            )
            break

    def stats(self) -> dict[str, Any]:
        """Return pool diagnostic information."""
        return {
            "active": self._active,
            "queued": len(self._queue),
            "concurrency": self._concurrency,
        }
