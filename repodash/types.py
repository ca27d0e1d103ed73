"""Pydantic schemas and structured outcome types for RepoDash."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from . import config


# ---------------------------------------------------------------------------
# Option schemas
# ---------------------------------------------------------------------------
class WatcherSettings(BaseModel):
    """Validated options for a ``PathWatcher``."""

    debounce_ms: int = Field(
        default=config.WATCH_DEBOUNCE_MS,
        ge=0,
        description="Quiet period after the last filesystem event before on_change fires.",
    )

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000


class SourceSettings(BaseModel):
    """Registration options for one collector in a ``DashboardSession``."""

    name: str = Field(..., min_length=1, description="Source name, e.g. 'github'.")
    ttl_seconds: float = Field(..., gt=0, description="Cache lifetime of a result.")
    pooled: bool = Field(
        default=False,
        description="Gate calls through the shared concurrency pool (subprocess collectors).",
    )


# ---------------------------------------------------------------------------
# Structured outcomes
# ---------------------------------------------------------------------------
class SourceStatus(str, Enum):
    OK = "ok"
    UNAVAILABLE = "unavailable"


class ErrorCode(str, Enum):
    SOURCE_FAILED = "SOURCE_FAILED"
    NOT_FOUND = "NOT_FOUND"


class FetchMeta(BaseModel):
    """Where a snapshot came from and how long the fetch took."""

    source: str | None = None
    key: str | None = None
    elapsed_ms: int = 0
    from_cache: bool = False


class SourceSnapshot(BaseModel):
    """What a widget renders: data, or a recoverable 'unavailable' state."""

    status: SourceStatus
    code: ErrorCode | None = None
    message: str | None = None
    data: Any = None
    meta: FetchMeta = Field(default_factory=FetchMeta)

    @property
    def ok(self) -> bool:
        return self.status is SourceStatus.OK

    # -- Factory helpers --

    @classmethod
    def success(cls, data: Any, *, meta: FetchMeta | None = None) -> SourceSnapshot:
        return cls(status=SourceStatus.OK, data=data, meta=meta or FetchMeta())

    @classmethod
    def unavailable(
        cls,
        code: ErrorCode,
        message: str,
        *,
        meta: FetchMeta | None = None,
    ) -> SourceSnapshot:
        """Create an 'unavailable' snapshot with given code and message."""
        return cls(
            status=SourceStatus.UNAVAILABLE,
            code=code,
            message=message,
            meta=meta or FetchMeta(),
        )
