"""Debounced filesystem watching of repository git directories.

Each watched repository gets two native watches through a watchdog
``Observer``: its git dir (non-recursive, filtered to ``index`` and
``HEAD``) and ``refs/`` (recursive).  A commit, checkout or fetch produces a
burst of low-level events; every event restarts a per-repo timer, and
``on_change(repo_path)`` fires once, ``debounce`` seconds after the last event
of the burst.

Watchdog delivers events on its observer thread.  They are marshalled onto
the event loop with ``call_soon_threadsafe``, so all timer and registry
bookkeeping stays single-threaded.

Watch-setup failures are never fatal: the repository is logged and left
unwatched, and everything else proceeds.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import stat
from dataclasses import dataclass, field
from typing import Callable, Iterable

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from . import config

logger = logging.getLogger("RepoDash")

_GITDIR_LINE = re.compile(r"^gitdir:\s*(.+)$", re.MULTILINE)

# Opened / closed events fire whenever git merely reads the index.
_CHANGE_EVENTS = {
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
}


def resolve_git_dir(repo_path: str) -> str | None:
    """Return the real git directory for *repo_path*, or ``None``.

    ``.git`` may be the directory itself, or a file containing a
    ``gitdir: <path>`` pointer (linked worktrees, submodules).  Relative
    pointers are resolved against *repo_path*.
    """
    git_path = os.path.join(repo_path, ".git")
    try:
        mode = os.lstat(git_path).st_mode
        if stat.S_ISDIR(mode):
            return git_path
        if not stat.S_ISREG(mode):
            return None
        with open(git_path, encoding="utf-8") as fh:
            content = fh.read()
    except (OSError, UnicodeDecodeError) as exc:
        logger.debug("Could not read %s: %s", git_path, exc)
        return None

    match = _GITDIR_LINE.search(content)
    target = match.group(1).strip() if match else ""
    if not target:
        return None
    if not os.path.isabs(target):
        target = os.path.join(repo_path, target)
    return os.path.normpath(target)


@dataclass
class _WatchEntry:
    """OS watches and the pending debounce timer for one repository."""

    repo_path: str
    git_dir: str
    handler: FileSystemEventHandler | None = None
    watches: list = field(default_factory=list)  # watchdog ObservedWatch
    timer: asyncio.TimerHandle | None = None


class _GitDirHandler(FileSystemEventHandler):
    """Forwards relevant git-dir events for one repo to the event loop."""

    def __init__(
        self,
        repo_path: str,
        git_dir: str,
        loop: asyncio.AbstractEventLoop,
        on_event: Callable[[str], None],
    ) -> None:
        super().__init__()
        self._repo_path = repo_path
        self._files = {
            os.path.normpath(os.path.join(git_dir, name)) for name in config.GIT_WATCH_FILES
        }
        self._refs_dir = os.path.normpath(
            os.path.join(git_dir, config.GIT_WATCH_RECURSIVE_DIR)
        )
        self._loop = loop
        self._on_event = on_event

    def _is_relevant(self, path: str) -> bool:
        if not path:
            return False
        path = os.path.normpath(os.fsdecode(path))
        return (
            path in self._files
            or path == self._refs_dir
            or path.startswith(self._refs_dir + os.sep)
        )

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in _CHANGE_EVENTS:
            return
        paths = (event.src_path, getattr(event, "dest_path", ""))
        if not any(self._is_relevant(p) for p in paths):
            return
        try:
            self._loop.call_soon_threadsafe(self._on_event, self._repo_path)
        except RuntimeError:
            logger.debug("Event loop closed; dropped event for %s", self._repo_path)


class PathWatcher:
    """Watch many repositories and emit one debounced change per burst."""

    def __init__(
        self,
        on_change: Callable[[str], None],
        *,
        debounce: float | None = None,
    ) -> None:
        self._on_change = on_change
        self.debounce = (
            config.WATCH_DEBOUNCE_MS / 1000 if debounce is None else debounce
        )
        self._entries: dict[str, _WatchEntry] = {}
        # Watchdog shares one emitter between equal (path, recursive) watches,
        # so several repo paths resolving to the same git dir share a watch.
        self._watch_refs: dict[object, int] = {}
        self._observer: Observer | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    # -- Public API --

    def watch(self, repo_paths: Iterable[str]) -> None:
        """Start watching every path in *repo_paths*."""
        for repo_path in repo_paths:
            self.add(repo_path)

    def add(self, repo_path: str) -> bool:
        """Start watching *repo_path*.

        Returns ``True`` if the repo is (now) watched, ``False`` if it was
        skipped.  Must be called from the event loop thread.
        """
        if repo_path in self._entries:
            return True

        git_dir = resolve_git_dir(repo_path)
        if git_dir is None:
            logger.warning(
                "Watcher: skipping %s: could not resolve .git directory", repo_path
            )
            return False

        self._loop = asyncio.get_running_loop()
        observer = self._ensure_observer()
        handler = _GitDirHandler(repo_path, git_dir, self._loop, self._on_event)
        entry = _WatchEntry(repo_path=repo_path, git_dir=git_dir, handler=handler)

        git_dir = os.path.normpath(git_dir)
        refs_dir = os.path.join(git_dir, config.GIT_WATCH_RECURSIVE_DIR)
        for target, recursive in ((git_dir, False), (refs_dir, True)):
            watch = self._try_schedule(observer, handler, target, recursive)
            if watch is not None:
                entry.watches.append(watch)
                self._watch_refs[watch] = self._watch_refs.get(watch, 0) + 1

        if not entry.watches:
            logger.warning("Watcher: skipping %s: no watchable targets", repo_path)
            return False

        self._entries[repo_path] = entry
        logger.debug("Watcher: watching %s (git dir %s)", repo_path, git_dir)
        return True

    def remove(self, repo_path: str) -> None:
        """Stop watching *repo_path* and cancel its pending timer."""
        entry = self._entries.pop(repo_path, None)
        if entry is None:
            return
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
        for watch in entry.watches:
            self._release_watch(watch, entry.handler)
        logger.debug("Watcher: removed %s", repo_path)

    def close(self) -> None:
        """Stop watching every repo and shut down the observer thread.

        Blocks for up to two seconds while the observer thread exits; use
        ``aclose()`` from a coroutine.
        """
        observer = self._shutdown()
        if observer is not None and observer.is_alive():
            observer.join(timeout=2)
        logger.debug("Watcher: closed")

    async def aclose(self) -> None:
        """Like ``close()``, but joins the observer thread off the event loop."""
        observer = self._shutdown()
        if observer is not None and observer.is_alive():
            await asyncio.to_thread(observer.join, 2)
        logger.debug("Watcher: closed")

    def watched_paths(self) -> list[str]:
        return list(self._entries)

    def is_watching(self, repo_path: str) -> bool:
        return repo_path in self._entries

    # -- Internals --

    def _shutdown(self) -> Observer | None:
        for repo_path in list(self._entries):
            self.remove(repo_path)
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
        return observer

    def _release_watch(self, watch, handler) -> None:
        remaining = self._watch_refs.get(watch, 1) - 1
        if remaining > 0:
            self._watch_refs[watch] = remaining
        else:
            self._watch_refs.pop(watch, None)
        if self._observer is None:
            return
        try:
            if remaining > 0:
                self._observer.remove_handler_for_watch(handler, watch)
            else:
                self._observer.unschedule(watch)
        except (KeyError, OSError):
            logger.debug("Suppressed exception during unschedule", exc_info=True)

    def _ensure_observer(self) -> Observer:
        if self._observer is None:
            observer = Observer()
            observer.daemon = True
            observer.start()
            self._observer = observer
        return self._observer

    @staticmethod
    def _try_schedule(observer, handler, target: str, recursive: bool):
        if not os.path.isdir(target):
            logger.debug("Watcher: %s is not a directory", target)
            return None
        try:
            return observer.schedule(handler, target, recursive=recursive)
        except OSError as exc:
            logger.warning("Watcher: cannot watch %s: %s", target, exc)
            return None

    def _on_event(self, repo_path: str) -> None:
        entry = self._entries.get(repo_path)
        if entry is None:
            return
        if entry.timer is not None:
            entry.timer.cancel()
        entry.timer = self._loop.call_later(self.debounce, self._fire, repo_path)

    def _fire(self, repo_path: str) -> None:
        entry = self._entries.get(repo_path)
        if entry is None:
            return
        entry.timer = None
        try:
            self._on_change(repo_path)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Watcher: on_change failed for %s", repo_path)
