"""Environment-variable-driven configuration for RepoDash.

All settings have sensible defaults and can be overridden via env vars.
Malformed values fall back to the default silently.
"""

from __future__ import annotations

import os


def _env_int(name: str, default: int) -> int:
    val = os.environ.get(name, "")
    if val.strip():
        try:
            return int(val)
        except ValueError:
            pass
    return default


def _env_bool(name: str, default: bool) -> bool:
    val = os.environ.get(name, "").strip().lower()
    if val in ("1", "true", "yes"):
        return True
    if val in ("0", "false", "no"):
        return False
    return default


# ---------------------------------------------------------------------------
# Concurrency pool (subprocess-spawning collectors)
# ---------------------------------------------------------------------------
POOL_CONCURRENCY: int = max(1, _env_int("REPODASH_POOL_CONCURRENCY", 8))

# ---------------------------------------------------------------------------
# Debounce windows (milliseconds)
# ---------------------------------------------------------------------------
FETCH_DEBOUNCE_MS: int = _env_int("REPODASH_FETCH_DEBOUNCE_MS", 150)
WATCH_DEBOUNCE_MS: int = _env_int("REPODASH_WATCH_DEBOUNCE_MS", 500)

# ---------------------------------------------------------------------------
# Per-source cache TTLs (seconds)
# ---------------------------------------------------------------------------
GIT_CACHE_TTL_SECONDS: int = _env_int("REPODASH_GIT_CACHE_TTL", 30)
GITHUB_CACHE_TTL_SECONDS: int = _env_int("REPODASH_GITHUB_CACHE_TTL", 120)  # 2 minutes
DEVPAD_CACHE_TTL_SECONDS: int = _env_int("REPODASH_DEVPAD_CACHE_TTL", 300)  # 5 minutes
DEVPAD_PROJECT_CACHE_TTL_SECONDS: int = _env_int(
    "REPODASH_DEVPAD_PROJECT_CACHE_TTL", 600
)  # 10 minutes

# ---------------------------------------------------------------------------
# Git directory watch targets
# ---------------------------------------------------------------------------
GIT_WATCH_FILES: list[str] = ["index", "HEAD"]
GIT_WATCH_RECURSIVE_DIR: str = "refs"

# ---------------------------------------------------------------------------
# Debug
# ---------------------------------------------------------------------------
VERBOSE: bool = _env_bool("REPODASH_VERBOSE", False)
