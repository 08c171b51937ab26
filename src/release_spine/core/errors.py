"""
Structured error types for release-spine.

Every failure the orchestrator can raise carries a category, an explicit
retry flag and an ErrorContext pointing at the release, cron job or task
involved. The scheduler logs ``error.to_dict()`` at its per-release
boundary, and the ops layer turns these errors into OperationResult
envelopes.

Manifesto:
    - **Typed Error Hierarchy:** One subclass per failure domain
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors name the release/task they concern
    - **Error Chaining:** Preserve original exceptions as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                     ReleaseSpineError                            │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  TransientError        ExecutorError       ValidationError      │
        │  (retryable=True)      (EXECUTOR,          (VALIDATION)         │
        │       │                 retryable=True)                          │
        │  TaskTimeoutError                                               │
        │  DatabaseConnection                                             │
        │  ReleaseLockedError                                             │
        │                                                                  │
        │  OrchestrationError    NotFoundError       DatabaseError        │
        │  (ORCHESTRATION)       (NOT_FOUND)         (DATABASE)           │
        │       │                                                          │
        │  InvalidStageTransitionError                                    │
        │  StageOrderError                                                │
        └─────────────────────────────────────────────────────────────────┘

Taxonomy:
    (a) Lock contention      -> scheduler: not an error, ``try_acquire_lock`` is False
                                ops: ReleaseLockedError (retryable)
    (b) Executor failure     -> ExecutorError / TaskTimeoutError
    (c) Invalid request      -> InvalidStageTransitionError, NotFoundError
    (d) Persistence failure  -> DatabaseError (transaction rolled back)

Examples:
    >>> error = InvalidStageTransitionError(
    ...     "Cannot trigger regression", reason="Kickoff stage is IN_PROGRESS"
    ... )
    >>> error.retryable
    False
    >>> error.with_context(release_id="rel-1").context.release_id
    'rel-1'

Tags:
    error-handling, exception-hierarchy, retry-logic, release-spine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    # Infrastructure errors (usually transient)
    NETWORK = "NETWORK"
    DATABASE = "DATABASE"
    TIMEOUT = "TIMEOUT"

    # Task execution
    EXECUTOR = "EXECUTOR"

    # Request errors
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"

    # Application errors
    ORCHESTRATION = "ORCHESTRATION"

    # Internal errors
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


_CONTEXT_KEYS = ("release_id", "cron_job_id", "task_id", "task_type", "stage", "instance_id")


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        release_id: Release being orchestrated
        cron_job_id: Cron job driving the release
        task_id: Task being dispatched
        task_type: Type of that task
        stage: Stage the failure belongs to
        instance_id: Scheduler instance that observed the error
        metadata: Additional key-value pairs
    """

    release_id: str | None = None
    cron_job_id: str | None = None
    task_id: str | None = None
    task_type: str | None = None
    stage: str | None = None
    instance_id: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in _CONTEXT_KEYS:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        result.update(self.metadata)
        return result


class ReleaseSpineError(Exception):
    """
    Base exception for all release-spine errors.

    Subclasses set ``default_category`` and ``default_retryable`` so call
    sites only pass what differs from the domain default.

    Example:
        >>> error = ReleaseSpineError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.to_dict()["retryable"]
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ReleaseSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise NotFoundError("Release not found").with_context(
                release_id=release_id,
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (Usually Retryable)
# =============================================================================


class TransientError(ReleaseSpineError):
    """Temporary error that may succeed on retry."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class TaskTimeoutError(TransientError):
    """Task executor did not answer within the dispatch timeout."""

    default_category = ErrorCategory.TIMEOUT


class DatabaseConnectionError(TransientError):
    """Database connection could not be opened."""

    default_category = ErrorCategory.DATABASE


class ReleaseLockedError(TransientError):
    """Another holder has the release lease; the operator change can be retried."""

    default_category = ErrorCategory.ORCHESTRATION


# =============================================================================
# EXECUTOR ERRORS
# =============================================================================


class ExecutorError(ReleaseSpineError):
    """Failure reported by a task executor.

    Retryable by default. Executors raise (or return) this with
    ``retryable=False`` when repeating the side effect cannot help, for
    example when a branch name is rejected by the VCS.
    """

    default_category = ErrorCategory.EXECUTOR
    default_retryable = True


# =============================================================================
# REQUEST ERRORS
# =============================================================================


class ValidationError(ReleaseSpineError):
    """Request payload failed validation."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False


class NotFoundError(ReleaseSpineError):
    """Release, cron job or task does not exist."""

    default_category = ErrorCategory.NOT_FOUND
    default_retryable = False


# =============================================================================
# ORCHESTRATION ERRORS
# =============================================================================


class OrchestrationError(ReleaseSpineError):
    """State machine or scheduler error."""

    default_category = ErrorCategory.ORCHESTRATION
    default_retryable = False


class InvalidStageTransitionError(OrchestrationError):
    """A stage/task state change was requested from an incompatible state.

    Raised before anything is written, so callers can surface ``reason``
    to the user as-is.
    """

    def __init__(self, message: str, *, reason: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.reason = reason or message

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["reason"] = self.reason
        return result


class StageOrderError(OrchestrationError):
    """Persisted stage statuses break the strict kickoff/regression/pre-release order."""

    default_category = ErrorCategory.INTERNAL


# =============================================================================
# STORAGE ERRORS
# =============================================================================


class DatabaseError(ReleaseSpineError):
    """Database query or transaction error."""

    default_category = ErrorCategory.DATABASE
    default_retryable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, ReleaseSpineError):
        return error.retryable
    retryable_types = (
        ConnectionError,
        TimeoutError,
        OSError,
    )
    return isinstance(error, retryable_types)


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, ReleaseSpineError):
        return error.category
    if isinstance(error, TimeoutError):
        return ErrorCategory.TIMEOUT
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.NETWORK
    if isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ReleaseSpineError",
    "TransientError",
    "ReleaseLockedError",
    "TaskTimeoutError",
    "DatabaseConnectionError",
    "ExecutorError",
    "ValidationError",
    "NotFoundError",
    "OrchestrationError",
    "InvalidStageTransitionError",
    "StageOrderError",
    "DatabaseError",
    "is_retryable",
    "categorize_error",
]
