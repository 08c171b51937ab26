"""Task executor contract.

An executor performs the side effect behind one release task (fork a
branch, open a ticket, trigger a build) and reports what happened. It
never touches persistence; the state machine records the outcome.

Three shapes of result::

    ExecutorResult.ok(output)          task is done      -> SUCCEEDED
    ExecutorResult.pending(external_id) work accepted,   -> RUNNING +
                                        callback pending    awaiting_callback
    ExecutorResult.fail(error)         attempt failed    -> retry policy

Executors may also raise. :class:`ExecutorError` keeps its own
``retryable`` flag; any other exception is treated as a retryable
executor failure.

Tags:
    release-spine, execution, executor, protocol

Doc-Types:
    api-reference
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from release_spine.core.errors import ExecutorError
from release_spine.core.models import Release, ReleaseTask


@dataclass
class ExecutorResult:
    """Outcome of a single executor call."""

    succeeded: bool
    output: dict[str, Any] = field(default_factory=dict)
    error: ExecutorError | None = None
    external_id: str | None = None
    awaiting_callback: bool = False

    @classmethod
    def ok(cls, output: dict[str, Any] | None = None, *, external_id: str | None = None) -> ExecutorResult:
        return cls(succeeded=True, output=output or {}, external_id=external_id)

    @classmethod
    def fail(
        cls,
        error: ExecutorError | str,
        *,
        retryable: bool = True,
        output: dict[str, Any] | None = None,
    ) -> ExecutorResult:
        if isinstance(error, str):
            error = ExecutorError(error, retryable=retryable)
        return cls(succeeded=False, output=output or {}, error=error)

    @classmethod
    def pending(cls, external_id: str, output: dict[str, Any] | None = None) -> ExecutorResult:
        """Work was accepted and will be concluded by a callback."""
        return cls(
            succeeded=False,
            output=output or {},
            external_id=external_id,
            awaiting_callback=True,
        )


@runtime_checkable
class TaskExecutor(Protocol):
    """Performs the side effect of one task."""

    def execute(self, task: ReleaseTask, release: Release) -> ExecutorResult:
        ...


__all__ = ["ExecutorResult", "TaskExecutor"]
