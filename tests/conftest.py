"""Shared fixtures for RepoDash tests."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
class FakeClock:
    """Manually advanced monotonic clock for TTL tests."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_git_dir(git_dir: Path) -> Path:
    """Create the minimal on-disk layout the watcher looks at."""
    (git_dir / "refs" / "heads").mkdir(parents=True)
    (git_dir / "index").write_bytes(b"DIRC")
    (git_dir / "HEAD").write_text("ref: refs/heads/main\n")
    (git_dir / "refs" / "heads" / "main").write_text("0" * 40 + "\n")
    return git_dir


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _repodash_logging(caplog):
    """Capture RepoDash debug output for every test."""
    caplog.set_level(logging.DEBUG, logger="RepoDash")
    yield


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A repository whose ``.git`` is a plain directory."""
    repo = tmp_path / "repo"
    repo.mkdir()
    make_git_dir(repo / ".git")
    return repo


@pytest.fixture
def worktree_repo(tmp_path: Path) -> tuple[Path, Path]:
    """A linked worktree whose ``.git`` file points at the real git dir."""
    real_git_dir = make_git_dir(tmp_path / "main" / ".git" / "worktrees" / "feature")
    worktree = tmp_path / "feature"
    worktree.mkdir()
    (worktree / ".git").write_text(f"gitdir: {real_git_dir}\n")
    return worktree, real_git_dir


@pytest.fixture
def make_repo(tmp_path: Path):
    """Factory creating ``tmp_path/<name>`` with a plain ``.git`` directory."""

    def _make(name: str) -> Path:
        repo = tmp_path / name
        make_git_dir(repo / ".git")
        return repo

    return _make
