"""Concrete task executors.

HandlerRegistryExecutor
    Maps task types to plain callables registered with a decorator. A
    handler returns an :class:`ExecutorResult`, a dict (treated as
    success output) or ``None``.

DryRunExecutor
    Succeeds every task with synthetic output. Backs ``--dry-run`` in the
    CLI and the end-to-end tests.

Usage::

    executor = HandlerRegistryExecutor()

    @executor.handler(TaskType.FORK_BRANCH)
    def fork(task, release):
        vcs.create_branch(release.base_branch, f"release/v{release.version}")
        return {"branch": f"release/v{release.version}"}

Tags:
    release-spine, execution, executor, registry, dry-run

Doc-Types:
    api-reference
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from release_spine.core.errors import ExecutorError
from release_spine.core.models import Release, ReleaseTask, TaskType

from .protocol import ExecutorResult

logger = logging.getLogger(__name__)

TaskHandler = Callable[[ReleaseTask, Release], "ExecutorResult | dict[str, Any] | None"]


def release_branch_name(release: Release) -> str:
    """Branch FORK_BRANCH creates for a release."""
    return f"release/v{release.version}"


class HandlerRegistryExecutor:
    """Dispatches tasks to handlers registered per task type."""

    def __init__(self) -> None:
        self._handlers: dict[TaskType, TaskHandler] = {}

    def register(self, task_type: TaskType, handler: TaskHandler) -> None:
        self._handlers[task_type] = handler

    def handler(self, task_type: TaskType) -> Callable[[TaskHandler], TaskHandler]:
        """Decorator form of :meth:`register`."""

        def decorator(func: TaskHandler) -> TaskHandler:
            self.register(task_type, func)
            return func

        return decorator

    def has(self, task_type: TaskType) -> bool:
        return task_type in self._handlers

    def list_handlers(self) -> list[TaskType]:
        return sorted(self._handlers, key=lambda t: t.value)

    def execute(self, task: ReleaseTask, release: Release) -> ExecutorResult:
        handler = self._handlers.get(task.task_type)
        if handler is None:
            available = [t.value for t in self.list_handlers()]
            raise ExecutorError(
                f"No handler registered for {task.task_type.value}. "
                f"Available handlers: {available or 'none'}",
                retryable=False,
            )
        result = handler(task, release)
        if isinstance(result, ExecutorResult):
            return result
        return ExecutorResult.ok(result or {})


class DryRunExecutor:
    """Succeeds every task with synthetic output and records the calls."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def execute(self, task: ReleaseTask, release: Release) -> ExecutorResult:
        with self._lock:
            self.calls.append((release.id, task.label))
        logger.info(f"[dry-run] {release.version}: {task.label}")
        return ExecutorResult.ok(self._synthetic_output(task, release))

    def _synthetic_output(self, task: ReleaseTask, release: Release) -> dict[str, Any]:
        output: dict[str, Any] = {"dry_run": True, "task": task.label}
        match task.task_type:
            case TaskType.FORK_BRANCH:
                output["branch"] = release_branch_name(release)
            case TaskType.CREATE_RC_TAG:
                output["tag"] = f"v{release.version}-rc"
            case TaskType.CREATE_RELEASE_TAG:
                output["tag"] = f"v{release.version}"
            case TaskType.CREATE_PROJECT_MANAGEMENT_TICKET:
                output["ticket"] = f"REL-{release.version}"
            case _:
                pass
        if task.platform is not None:
            output["platform"] = task.platform.value
        return output


__all__ = [
    "DryRunExecutor",
    "HandlerRegistryExecutor",
    "TaskHandler",
    "release_branch_name",
]
