"""Task dispatcher: executor call, timeout and retry policy.

Manifesto:
    Dispatching is pure with respect to storage. ``dispatch()`` calls the
    executor under a deadline and turns whatever happened into a
    :class:`DispatchOutcome`; the state machine persists that outcome in
    the same transaction as any stage change it implies. Keeping the
    policy here means the callback path (``record_task_callback``) and
    the tick path resolve failures identically.

Failure resolution::

    executor raised / returned failure / timed out
                  │
                  ▼
        error.retryable and strategy.should_retry(retry_count)?
          │ yes                                   │ no
          ▼                                       ▼
    PENDING, retry_count+1,               FAILED, retry_count+1
    next_attempt_at = now + delay         (stage FAILED, TASK_FAILURE pause)

Tags:
    release-spine, execution, dispatcher, retry, timeout

Doc-Types:
    api-reference
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from release_spine.core.errors import ExecutorError, ReleaseSpineError
from release_spine.core.models import Release, ReleaseTask, TaskStatus

from .protocol import ExecutorResult, TaskExecutor
from .retry import RetryStrategy, default_retry_strategy
from .timeout import execute_with_deadline

logger = logging.getLogger(__name__)

DEFAULT_TASK_TIMEOUT_SECONDS = 120.0


@dataclass
class DispatchOutcome:
    """What a dispatch did to one task, ready to persist."""

    task_id: str
    status: TaskStatus
    retry_count: int
    next_attempt_at: datetime | None = None
    awaiting_callback: bool = False
    conclusion: str | None = None
    output: dict[str, Any] = field(default_factory=dict)
    external_id: str | None = None
    error: ReleaseSpineError | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == TaskStatus.SUCCEEDED

    @property
    def failed(self) -> bool:
        """Terminal failure (retries exhausted or non-retryable)."""
        return self.status == TaskStatus.FAILED

    @property
    def will_retry(self) -> bool:
        return self.status == TaskStatus.PENDING

    def task_fields(self) -> dict[str, Any]:
        """Column values for ``ReleaseTaskStore.update``."""
        return {
            "status": self.status,
            "retry_count": self.retry_count,
            "next_attempt_at": self.next_attempt_at,
            "awaiting_callback": self.awaiting_callback,
            "conclusion": self.conclusion,
            "output": self.output,
            "external_id": self.external_id,
        }


class OutcomeResolver:
    """Turns an executor result or error into a :class:`DispatchOutcome`.

    Shared by the tick path (``TaskDispatcher``) and the callback path,
    so a failure reported later by a CI webhook is retried exactly like
    one raised during dispatch.
    """

    def __init__(self, retry_strategy: RetryStrategy | None = None) -> None:
        self.retry_strategy = retry_strategy or default_retry_strategy()

    def resolve_result(self, task: ReleaseTask, result: ExecutorResult, now: datetime) -> DispatchOutcome:
        if result.awaiting_callback:
            return DispatchOutcome(
                task_id=task.id,
                status=TaskStatus.RUNNING,
                retry_count=task.retry_count,
                awaiting_callback=True,
                conclusion="awaiting callback",
                output=result.output,
                external_id=result.external_id,
            )
        if result.succeeded:
            return DispatchOutcome(
                task_id=task.id,
                status=TaskStatus.SUCCEEDED,
                retry_count=task.retry_count,
                conclusion="succeeded",
                output=result.output,
                external_id=result.external_id or task.external_id,
            )
        error = result.error or ExecutorError(f"{task.label} reported failure")
        return self.resolve_failure(task, error, now, output=result.output)

    def resolve_failure(
        self,
        task: ReleaseTask,
        error: ReleaseSpineError,
        now: datetime,
        *,
        output: dict[str, Any] | None = None,
    ) -> DispatchOutcome:
        """Apply the retry policy to a failed attempt."""
        error.with_context(task_id=task.id, task_type=task.task_type.value, stage=task.stage.value)
        output = {**(output or {}), "error": error.to_dict()}

        if error.retryable and self.retry_strategy.should_retry(task.retry_count):
            delay = self.retry_strategy.next_delay(task.retry_count)
            logger.warning(
                f"Task {task.label} ({task.id}) failed, retry {task.retry_count + 1} "
                f"in {delay:.1f}s: {error.message}"
            )
            return DispatchOutcome(
                task_id=task.id,
                status=TaskStatus.PENDING,
                retry_count=task.retry_count + 1,
                next_attempt_at=self.retry_strategy.next_attempt_at(task.retry_count, now),
                conclusion=error.message,
                output=output,
                external_id=task.external_id,
                error=error,
            )

        logger.error(f"Task {task.label} ({task.id}) failed permanently: {error.message}")
        return DispatchOutcome(
            task_id=task.id,
            status=TaskStatus.FAILED,
            retry_count=task.retry_count + 1,
            conclusion=error.message,
            output=output,
            external_id=task.external_id,
            error=error,
        )


class TaskDispatcher(OutcomeResolver):
    """Runs one task through an executor and applies the retry policy.

    Example:
        >>> dispatcher = TaskDispatcher(executor, retry_strategy=NoRetry())
        >>> outcome = dispatcher.dispatch(task, release, now)
        >>> outcome.status
        <TaskStatus.SUCCEEDED: 'SUCCEEDED'>
    """

    def __init__(
        self,
        executor: TaskExecutor,
        *,
        retry_strategy: RetryStrategy | None = None,
        timeout_seconds: float = DEFAULT_TASK_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(retry_strategy)
        self.executor = executor
        self.timeout_seconds = timeout_seconds

    def dispatch(self, task: ReleaseTask, release: Release, now: datetime) -> DispatchOutcome:
        """Execute ``task`` and resolve the result. Never raises for executor failures."""
        try:
            result = execute_with_deadline(self.executor, task, release, self.timeout_seconds)
        except ReleaseSpineError as e:
            return self.resolve_failure(task, e, now)
        except Exception as e:
            error = ExecutorError(f"{type(e).__name__}: {e}", cause=e)
            return self.resolve_failure(task, error, now)

        return self.resolve_result(task, result, now)


__all__ = [
    "DEFAULT_TASK_TIMEOUT_SECONDS",
    "DispatchOutcome",
    "OutcomeResolver",
    "TaskDispatcher",
]
