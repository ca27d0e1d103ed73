"""Debounced, cancellable fetch scheduling for one reactive subject.

One ``FetchScheduler`` owns "the current answer" for a single subscription
(e.g. the GitHub widget of the selected repo).  Rapid selection changes
coalesce into one fetch, and only the most recent request's outcome is ever
delivered.

**How it works**: every ``trigger``/``immediate``/``cancel`` bumps an integer
epoch.  A request captures the epoch when it is issued and re-checks it
twice: when its debounce timer fires, and when its fetch settles.  Any
mismatch means a newer request exists, and the outcome is dropped silently.
Cancellation is cooperative: an already-started fetch is never interrupted,
its result is simply ignored.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger("RepoDash")

FetchFn = Callable[[], Awaitable[Any]]
ResultCallback = Callable[[Any, int], None]
ErrorCallback = Callable[[BaseException, int], None]


class FetchScheduler:
    """Debounce, bypass and supersede fetches for one subject."""

    def __init__(
        self,
        delay: float,
        on_result: ResultCallback,
        on_error: ErrorCallback | None = None,
        *,
        name: str = "fetch",
    ) -> None:
        self.delay = delay
        self.name = name
        self._on_result = on_result
        self._on_error = on_error
        self._request_id = 0
        self._timer: asyncio.TimerHandle | None = None
        self._running: set[asyncio.Task[None]] = set()
        self._disposed = False

    @property
    def request_id(self) -> int:
        """Current epoch; increments on each trigger / immediate / cancel."""
        return self._request_id

    @property
    def pending(self) -> bool:
        """``True`` while a debounce timer is armed."""
        return self._timer is not None

    @property
    def disposed(self) -> bool:
        return self._disposed

    def trigger(self, fn: FetchFn, delay: float | None = None) -> int:
        """Schedule *fn* after the debounce delay, superseding earlier requests.

        Returns the new request id.
        """
        if self._disposed:
            logger.debug("%s: trigger ignored after dispose", self.name)
            return self._request_id
        self._clear_timer()
        self._request_id += 1
        my_id = self._request_id
        wait = self.delay if delay is None else delay
        self._timer = asyncio.get_running_loop().call_later(
            wait, self._fire, my_id, fn
        )
        return my_id

    def immediate(self, fn: FetchFn) -> int:
        """Start *fn* now, bypassing the debounce.  Returns the new request id."""
        if self._disposed:
            logger.debug("%s: immediate ignored after dispose", self.name)
            return self._request_id
        self._clear_timer()
        self._request_id += 1
        self._start(self._request_id, fn)
        return self._request_id

    def cancel(self) -> None:
        """Drop any pending timer and invalidate in-flight fetches."""
        self._clear_timer()
        self._request_id += 1

    def dispose(self) -> None:
        """Stop for good: clear timers, never deliver another outcome.

        Fetches already running are abandoned, not interrupted; they finish
        on their own and their outcome is discarded.
        """
        self._clear_timer()
        self._disposed = True

    def _clear_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, my_id: int, fn: FetchFn) -> None:
        self._timer = None
        if my_id != self._request_id or self._disposed:
            return
        self._start(my_id, fn)

    def _start(self, my_id: int, fn: FetchFn) -> None:
        task = asyncio.ensure_future(self._execute(my_id, fn))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    def _is_current(self, my_id: int) -> bool:
        return not self._disposed and my_id == self._request_id

    async def _execute(self, my_id: int, fn: FetchFn) -> None:
        try:
            value = await fn()
        except Exception as exc:  # pylint: disable=broad-except
            if not self._is_current(my_id):
                logger.debug("%s: dropped stale failure for request %d", self.name, my_id)
                return
            if self._on_error is None:
                logger.warning("%s: fetch failed for request %d: %s", self.name, my_id, exc)
            else:
                self._deliver(self._on_error, exc, my_id)
            return

        if not self._is_current(my_id):
            logger.debug("%s: dropped stale result for request %d", self.name, my_id)
            return
        self._deliver(self._on_result, value, my_id)

    def _deliver(
        self, callback: Callable[[Any, int], None], outcome: Any, my_id: int
    ) -> None:
        try:
            callback(outcome, my_id)
        except Exception:  # pylint: disable=broad-except
            logger.exception("%s: callback failed for request %d", self.name, my_id)
