"""
Operation result envelope.

Every operation returns an :class:`OperationResult` instead of raising,
so the CLI and webhook handlers render success and failure the same
way. Failures carry a stable code:

    ===================  ==============================================
    NOT_FOUND            release, task or cron job id does not exist
    INVALID_TRANSITION   stage or status change refused by the guards
    VALIDATION_FAILED    request payload rejected before touching state
    RELEASE_LOCKED       a scheduler or another operator holds the
                         release lease; safe to retry
    INTERNAL             anything else (database errors, bugs)
    ===================  ==============================================
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from release_spine.core.errors import (
    ErrorCategory,
    InvalidStageTransitionError,
    NotFoundError,
    ReleaseLockedError,
    ReleaseSpineError,
    StageOrderError,
    ValidationError,
    categorize_error,
    is_retryable,
)

NOT_FOUND = "NOT_FOUND"
INVALID_TRANSITION = "INVALID_TRANSITION"
VALIDATION_FAILED = "VALIDATION_FAILED"
RELEASE_LOCKED = "RELEASE_LOCKED"
INTERNAL = "INTERNAL"


def error_code(error: Exception) -> str:
    """Stable operation error code for an exception."""
    match error:
        case NotFoundError():
            return NOT_FOUND
        case InvalidStageTransitionError() | StageOrderError():
            return INVALID_TRANSITION
        case ValidationError():
            return VALIDATION_FAILED
        case ReleaseLockedError():
            return RELEASE_LOCKED
        case _:
            return INTERNAL


@dataclass(frozen=True, slots=True)
class OperationError:
    """Why an operation failed.

    ``details`` holds the error context (release id, task id) plus the
    refusal ``reason`` of a blocked transition.
    """

    code: str
    message: str
    category: ErrorCategory | None = None
    details: dict[str, Any] = field(default_factory=dict)
    retryable: bool = False

    @classmethod
    def from_exception(cls, error: Exception) -> OperationError:
        details: dict[str, Any] = {}
        if isinstance(error, ReleaseSpineError):
            details = error.context.to_dict()
            if reason := getattr(error, "reason", None):
                details["reason"] = reason

        message = str(error)
        reason = details.get("reason")
        if reason and reason not in message:
            message = f"{message}: {reason}"
        return cls(
            code=error_code(error),
            message=message,
            category=categorize_error(error),
            details=details,
            retryable=is_retryable(error),
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"code": self.code, "message": self.message, "retryable": self.retryable}
        if self.details:
            d["details"] = self.details
        return d


T = TypeVar("T")


@dataclass
class OperationResult(Generic[T]):
    """Envelope returned by every operation function.

    Build with :meth:`ok`, :meth:`fail` or :func:`fail_from_error`.
    """

    success: bool
    data: T | None = None
    error: OperationError | None = None
    warnings: list[str] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @classmethod
    def ok(cls, data: T, *, warnings: list[str] | None = None, elapsed_ms: float = 0.0) -> OperationResult[T]:
        return cls(success=True, data=data, warnings=warnings or [], elapsed_ms=elapsed_ms)

    @classmethod
    def fail(
        cls,
        code: str,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
        elapsed_ms: float = 0.0,
    ) -> OperationResult[T]:
        error = OperationError(code=code, message=message, details=details or {}, retryable=retryable)
        return cls(success=False, error=error, elapsed_ms=elapsed_ms)

    def to_dict(self) -> dict[str, Any]:
        """Plain dict for ``--json`` output; empty fields are left out."""
        d: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            d["data"] = self.data
        if self.error is not None:
            d["error"] = self.error.to_dict()
        if self.warnings:
            d["warnings"] = self.warnings
        if self.elapsed_ms:
            d["elapsed_ms"] = round(self.elapsed_ms, 2)
        return d


@dataclass
class PagedResult(OperationResult[list[T]]):
    """One page of a list operation; ``has_more`` is derived from the window."""

    total: int = 0
    limit: int = 50
    offset: int = 0
    has_more: bool = False

    @classmethod
    def from_items(
        cls,
        items: list[T],
        total: int,
        *,
        limit: int = 50,
        offset: int = 0,
        elapsed_ms: float = 0.0,
    ) -> PagedResult[T]:
        return cls(
            success=True,
            data=items,
            total=total,
            limit=limit,
            offset=offset,
            has_more=(offset + limit) < total,
            elapsed_ms=elapsed_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
            "has_more": self.has_more,
        }


def fail_from_error(error: Exception, *, elapsed_ms: float = 0.0) -> OperationResult[Any]:
    """Failed result for an exception raised by the orchestration core."""
    return OperationResult(success=False, error=OperationError.from_exception(error), elapsed_ms=elapsed_ms)


class _Timer:
    __slots__ = ("_start",)

    def __init__(self) -> None:
        self._start = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000


def start_timer() -> _Timer:
    return _Timer()
