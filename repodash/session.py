"""DashboardSession: wires the fetch-coordination primitives together.

The session owns one ``TTLCache`` per registered source, one shared
``InFlightDeduplicator``, one shared ``ConcurrencyPool`` for
subprocess-spawning collectors, a ``FetchScheduler`` per widget
subscription and, once started, a ``PathWatcher`` over the repositories.

Data flow for a selection change::

    select(repo) -> scheduler.trigger (debounced)
                 -> fetch(source, repo)
                 -> cache hit?  -> snapshot
                 -> dedup.run(source:repo) -> [pool.run] -> collaborator
                 -> cache.set -> snapshot (only if still the newest request)

A watcher change for the selected repo invalidates its cache entries and
re-runs every subscription immediately, bypassing the debounce.

Collaborator failures never escape ``fetch``: they become an
``unavailable`` ``SourceSnapshot`` so the UI can show "data unavailable" and
retry later.
"""

from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass
from functools import partial
from typing import Any, Awaitable, Callable, Iterable

from . import config
from .cache import TTLCache
from .dedup import InFlightDeduplicator
from .pool import ConcurrencyPool
from .scheduler import FetchScheduler
from .types import ErrorCode, FetchMeta, SourceSettings, SourceSnapshot, WatcherSettings
from .watcher import PathWatcher

logger = logging.getLogger("RepoDash")

_MISSING = object()

CollectorFn = Callable[[str], Awaitable[Any]]

# Cache lifetimes for the dashboard's built-in collectors, by source name.
DEFAULT_TTLS: dict[str, float] = {
    "git": config.GIT_CACHE_TTL_SECONDS,
    "github": config.GITHUB_CACHE_TTL_SECONDS,
    "devpad": config.DEVPAD_CACHE_TTL_SECONDS,
    "devpad-project": config.DEVPAD_PROJECT_CACHE_TTL_SECONDS,
}


# ---------------------------------------------------------------------------
# Logging (configurable via REPODASH_VERBOSE)
# ---------------------------------------------------------------------------
_handler: logging.Handler | None = None


def configure_logging(verbose: bool | None = None) -> logging.Logger:
    """Attach a stderr handler to the RepoDash logger (once) and set its level."""
    global _handler  # pylint: disable=global-statement
    if verbose is None:
        verbose = config.VERBOSE
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if _handler is None:
        _handler = logging.StreamHandler(sys.stderr)
        _handler.setFormatter(logging.Formatter("[%(name)s %(levelname)s] %(message)s"))
        logger.addHandler(_handler)
    return logger


@dataclass
class _Source:
    settings: SourceSettings
    fetch: CollectorFn
    cache: TTLCache


class DashboardSession:
    """Explicit owner of every cache, pool, scheduler and watcher for one UI."""

    def __init__(
        self,
        *,
        concurrency: int | None = None,
        fetch_debounce: float | None = None,
        watcher_settings: WatcherSettings | None = None,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self.pool = ConcurrencyPool(
            config.POOL_CONCURRENCY if concurrency is None else concurrency
        )
        self.dedup = InFlightDeduplicator()
        self.fetch_debounce = (
            config.FETCH_DEBOUNCE_MS / 1000 if fetch_debounce is None else fetch_debounce
        )
        self.watcher_settings = watcher_settings or WatcherSettings()
        self.selected: str | None = None
        self._timer = timer
        self._sources: dict[str, _Source] = {}
        self._subscriptions: list[tuple[str, FetchScheduler]] = []
        self._watcher: PathWatcher | None = None

    # -- Sources --

    def register_source(
        self,
        name: str,
        fetch: CollectorFn,
        *,
        ttl: float | None = None,
        pooled: bool = False,
    ) -> None:
        """Register collaborator *fetch(repo_path)* under *name*.

        Without *ttl* the lifetime comes from ``DEFAULT_TTLS``; any other
        name needs an explicit *ttl* (``KeyError`` otherwise).
        """
        if ttl is None:
            ttl = DEFAULT_TTLS[name]
        settings = SourceSettings(name=name, ttl_seconds=ttl, pooled=pooled)
        cache = TTLCache(f"{name}-cache", default_ttl=settings.ttl_seconds, timer=self._timer)
        self._sources[name] = _Source(settings=settings, fetch=fetch, cache=cache)
        logger.debug("Registered source %s (ttl=%ss, pooled=%s)", name, ttl, pooled)

    def cache_for(self, name: str) -> TTLCache:
        return self._sources[name].cache

    async def fetch(self, name: str, repo_path: str, *, force: bool = False) -> SourceSnapshot:
        """Return a snapshot of source *name* for *repo_path*.

        Raises ``KeyError`` for an unknown source; collaborator failures are
        returned as an ``unavailable`` snapshot.
        """
        source = self._sources[name]
        key = f"{name}:{repo_path}"
        started = time.monotonic()

        if force:
            source.cache.invalidate(repo_path)
        cached = source.cache.get(repo_path, _MISSING)
        if cached is not _MISSING:
            return SourceSnapshot.success(
                cached, meta=FetchMeta(source=name, key=repo_path, from_cache=True)
            )

        meta = FetchMeta(source=name, key=repo_path)
        try:
            data = await self.dedup.run(key, partial(self._load, source, repo_path))
        except FileNotFoundError as exc:
            meta.elapsed_ms = int((time.monotonic() - started) * 1000)
            logger.warning("%s: %s not found: %s", name, repo_path, exc)
            return SourceSnapshot.unavailable(ErrorCode.NOT_FOUND, str(exc), meta=meta)
        except Exception as exc:  # pylint: disable=broad-except
            meta.elapsed_ms = int((time.monotonic() - started) * 1000)
            logger.warning("%s: fetch failed for %s: %s", name, repo_path, exc)
            return SourceSnapshot.unavailable(
                ErrorCode.SOURCE_FAILED, f"{type(exc).__name__}: {exc}", meta=meta
            )

        meta.elapsed_ms = int((time.monotonic() - started) * 1000)
        return SourceSnapshot.success(data, meta=meta)

    async def _load(self, source: _Source, repo_path: str) -> Any:
        call = partial(source.fetch, repo_path)
        if source.settings.pooled:
            value = await self.pool.run(call)
        else:
            value = await call()
        source.cache.set(repo_path, value)
        return value

    def invalidate(self, repo_path: str) -> None:
        """Drop every source's cached entry for *repo_path*."""
        for source in self._sources.values():
            source.cache.invalidate(repo_path)

    # -- Subscriptions --

    def subscribe(
        self, name: str, on_snapshot: Callable[[SourceSnapshot], None]
    ) -> FetchScheduler:
        """Create a scheduler delivering snapshots of *name* for the selected repo."""
        if name not in self._sources:
            raise KeyError(name)
        scheduler = FetchScheduler(
            self.fetch_debounce,
            lambda snapshot, _request_id: on_snapshot(snapshot),
            name=f"{name}-subscription",
        )
        self._subscriptions.append((name, scheduler))
        return scheduler

    def unsubscribe(self, scheduler: FetchScheduler) -> None:
        scheduler.dispose()
        self._subscriptions = [
            (name, s) for name, s in self._subscriptions if s is not scheduler
        ]

    def select(self, repo_path: str | None) -> None:
        """Change the selected repo; subscriptions fetch after the debounce."""
        self.selected = repo_path
        for name, scheduler in self._subscriptions:
            if repo_path is None:
                scheduler.cancel()
            else:
                scheduler.trigger(partial(self.fetch, name, repo_path))

    def refresh(self, repo_path: str | None = None) -> None:
        """Invalidate *repo_path* (default: the selection) and re-fetch it now."""
        path = repo_path or self.selected
        if path is None:
            return
        self.invalidate(path)
        if path != self.selected:
            return
        for name, scheduler in self._subscriptions:
            scheduler.immediate(partial(self.fetch, name, path))

    # -- Watching --

    def start_watching(self, repo_paths: Iterable[str]) -> PathWatcher:
        """Watch *repo_paths*; a change re-fetches the selected repo immediately."""
        if self._watcher is None:
            self._watcher = PathWatcher(
                self._on_repo_change,
                debounce=self.watcher_settings.debounce_seconds,
            )
        self._watcher.watch(repo_paths)
        return self._watcher

    def _on_repo_change(self, repo_path: str) -> None:
        logger.debug("Change detected in %s", repo_path)
        self.refresh(repo_path)

    # -- Lifecycle --

    def close(self) -> None:
        """Dispose every subscription, stop watching and drop cached data.

        Blocks while the watcher thread exits; prefer ``aclose()`` inside a
        running event loop.
        """
        watcher = self._teardown()
        if watcher is not None:
            watcher.close()
        logger.debug("Session closed")

    async def aclose(self) -> None:
        """Like ``close()``, without blocking the event loop."""
        watcher = self._teardown()
        if watcher is not None:
            await watcher.aclose()
        logger.debug("Session closed")

    def _teardown(self) -> PathWatcher | None:
        for _name, scheduler in self._subscriptions:
            scheduler.dispose()
        self._subscriptions.clear()
        for source in self._sources.values():
            source.cache.clear()
        watcher, self._watcher = self._watcher, None
        return watcher

    def stats(self) -> dict[str, Any]:
        """Return diagnostic information for every owned primitive."""
        return {
            "pool": self.pool.stats(),
            "inflight": self.dedup.inflight_count(),
            "caches": {name: s.cache.stats() for name, s in self._sources.items()},
            "subscriptions": len(self._subscriptions),
            "watched": self._watcher.watched_paths() if self._watcher else [],
        }
