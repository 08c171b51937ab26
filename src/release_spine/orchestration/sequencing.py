"""Task sequencing within a stage.

Each stage runs its tasks in a fixed order. A task becomes executable only
when every task of an earlier type in the same group (stage, or regression
cycle) has SUCCEEDED. Tasks of the same type (one per platform) share a
rank and may run independently of each other.

``get_block_reason`` explains why a task is not runnable; the state
machine surfaces that as the idle reason of a tick.

Tags:
    release-spine, orchestration, sequencing

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta
from enum import Enum

from release_spine.core.models import (
    CronConfig,
    Release,
    ReleaseTask,
    TaskStage,
    TaskStatus,
    TaskType,
)

TASK_ORDER: dict[TaskStage, tuple[TaskType, ...]] = {
    TaskStage.KICKOFF: (
        TaskType.PRE_KICKOFF_REMINDER,
        TaskType.FORK_BRANCH,
        TaskType.CREATE_PROJECT_MANAGEMENT_TICKET,
        TaskType.CREATE_TEST_SUITE,
        TaskType.TRIGGER_PRE_REGRESSION_BUILDS,
    ),
    TaskStage.REGRESSION: (
        TaskType.RESET_TEST_SUITE,
        TaskType.CREATE_RC_TAG,
        TaskType.CREATE_RELEASE_NOTES,
        TaskType.TRIGGER_REGRESSION_BUILDS,
        TaskType.TRIGGER_AUTOMATION_RUNS,
        TaskType.AUTOMATION_RUNS,
    ),
    TaskStage.PRE_RELEASE: (
        TaskType.PRE_RELEASE_CHERRY_PICKS_REMINDER,
        TaskType.CREATE_RELEASE_TAG,
        TaskType.CREATE_FINAL_RELEASE_NOTES,
        TaskType.TRIGGER_TEST_FLIGHT_BUILD,
        TaskType.CREATE_AAB_BUILD,
        TaskType.CHECK_PROJECT_RELEASE_APPROVAL,
    ),
}


class TaskBlockReason(str, Enum):
    """Why a task cannot be dispatched right now."""

    ALREADY_SUCCEEDED = "ALREADY_SUCCEEDED"
    FAILED = "FAILED"
    AWAITING_CALLBACK = "AWAITING_CALLBACK"
    RETRY_BACKOFF = "RETRY_BACKOFF"
    PREVIOUS_INCOMPLETE = "PREVIOUS_INCOMPLETE"
    NOT_TIME_YET = "NOT_TIME_YET"
    EXECUTABLE = "EXECUTABLE"


def task_rank(task: ReleaseTask) -> int:
    order = TASK_ORDER[task.stage]
    try:
        return order.index(task.task_type)
    except ValueError:
        return len(order)


def ordered_tasks(tasks: Iterable[ReleaseTask]) -> list[ReleaseTask]:
    """Sort tasks by execution order, then platform."""
    return sorted(
        tasks,
        key=lambda t: (task_rank(t), t.platform.value if t.platform else ""),
    )


def earliest_start(task: ReleaseTask, release: Release, cron_config: CronConfig) -> datetime | None:
    """Time gate for a task, or None when it may run at any time."""
    if release.kickoff_at is None:
        return None
    if task.task_type == TaskType.FORK_BRANCH:
        return release.kickoff_at
    if task.task_type == TaskType.PRE_KICKOFF_REMINDER:
        return release.kickoff_at - timedelta(seconds=cron_config.kickoff_reminder_lead_seconds)
    return None


def get_block_reason(
    task: ReleaseTask,
    group: Sequence[ReleaseTask],
    release: Release,
    cron_config: CronConfig,
    now: datetime,
) -> TaskBlockReason:
    """Classify ``task`` against the other tasks of its group.

    A RUNNING task that is not awaiting a callback was left behind by a
    dispatch that never recorded its outcome, and is executable again.
    """
    if task.status == TaskStatus.SUCCEEDED:
        return TaskBlockReason.ALREADY_SUCCEEDED
    if task.status == TaskStatus.FAILED:
        return TaskBlockReason.FAILED
    if task.status == TaskStatus.RUNNING and task.awaiting_callback:
        return TaskBlockReason.AWAITING_CALLBACK
    if task.next_attempt_at is not None and task.next_attempt_at > now:
        return TaskBlockReason.RETRY_BACKOFF

    rank = task_rank(task)
    for other in group:
        if task_rank(other) < rank and other.status != TaskStatus.SUCCEEDED:
            return TaskBlockReason.PREVIOUS_INCOMPLETE

    gate = earliest_start(task, release, cron_config)
    if gate is not None and gate > now:
        return TaskBlockReason.NOT_TIME_YET
    return TaskBlockReason.EXECUTABLE


def next_executable(
    group: Sequence[ReleaseTask],
    release: Release,
    cron_config: CronConfig,
    now: datetime,
) -> tuple[ReleaseTask | None, dict[str, TaskBlockReason]]:
    """First executable task in order, plus the block reason of every task."""
    reasons: dict[str, TaskBlockReason] = {}
    chosen: ReleaseTask | None = None
    for task in ordered_tasks(group):
        reason = get_block_reason(task, group, release, cron_config, now)
        reasons[task.label] = reason
        if chosen is None and reason == TaskBlockReason.EXECUTABLE:
            chosen = task
    return chosen, reasons


def all_succeeded(group: Iterable[ReleaseTask]) -> bool:
    tasks = list(group)
    return bool(tasks) and all(t.status == TaskStatus.SUCCEEDED for t in tasks)


def describe_blocked(reasons: dict[str, TaskBlockReason]) -> str:
    """Compact idle reason, e.g. ``FORK_BRANCH=NOT_TIME_YET``."""
    blocked = [
        f"{label}={reason.value}"
        for label, reason in reasons.items()
        if reason not in (TaskBlockReason.ALREADY_SUCCEEDED, TaskBlockReason.PREVIOUS_INCOMPLETE)
    ]
    return ", ".join(blocked) or "no executable task"


__all__ = [
    "TASK_ORDER",
    "TaskBlockReason",
    "all_succeeded",
    "describe_blocked",
    "earliest_start",
    "get_block_reason",
    "next_executable",
    "ordered_tasks",
    "task_rank",
]
