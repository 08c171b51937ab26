"""Release orchestration enums and their transition rules.

Each lifecycle enum has a ``*_VALID_TRANSITIONS`` table. Code that changes
a persisted status calls the matching ``validate_*_transition()`` first;
an illegal move raises :class:`InvalidTransitionError`.

Valid stage transition graph::

    NOT_STARTED → IN_PROGRESS
    IN_PROGRESS → COMPLETED | FAILED
    FAILED      → IN_PROGRESS   (manual task retry)
    COMPLETED   → IN_PROGRESS   (regression reopened by new slots)

Valid task transition graph::

    PENDING   → RUNNING
    RUNNING   → SUCCEEDED | PENDING (retry) | FAILED
    FAILED    → PENDING   (manual retry)
    SUCCEEDED → (terminal)
"""

from __future__ import annotations

from enum import Enum


class InvalidTransitionError(ValueError):
    """Raised when an illegal state transition is attempted.

    A legitimate transition that is blocked belongs in the matching
    ``*_VALID_TRANSITIONS`` table; the guard itself stays.
    """

    def __init__(self, current: str, target: str, enum_name: str = "Status") -> None:
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid {enum_name} transition: {current} → {target}"
        )


class ReleaseType(str, Enum):
    PLANNED = "PLANNED"
    HOTFIX = "HOTFIX"
    MAJOR = "MAJOR"


class ReleaseStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    RELEASED = "RELEASED"
    ARCHIVED = "ARCHIVED"


class Platform(str, Enum):
    ANDROID = "ANDROID"
    IOS = "IOS"


class TaskStage(str, Enum):
    """The three strictly ordered stages of a release."""

    KICKOFF = "KICKOFF"
    REGRESSION = "REGRESSION"
    PRE_RELEASE = "PRE_RELEASE"

    @property
    def number(self) -> int:
        return _STAGE_NUMBERS[self]


_STAGE_NUMBERS = {
    TaskStage.KICKOFF: 1,
    TaskStage.REGRESSION: 2,
    TaskStage.PRE_RELEASE: 3,
}

STAGE_ORDER: tuple[TaskStage, ...] = (
    TaskStage.KICKOFF,
    TaskStage.REGRESSION,
    TaskStage.PRE_RELEASE,
)


class StageStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


STAGE_VALID_TRANSITIONS: dict[StageStatus, frozenset[StageStatus]] = {
    StageStatus.NOT_STARTED: frozenset({
        StageStatus.IN_PROGRESS,
    }),
    StageStatus.IN_PROGRESS: frozenset({
        StageStatus.COMPLETED,
        StageStatus.FAILED,
    }),
    StageStatus.FAILED: frozenset({
        StageStatus.IN_PROGRESS,  # manual retry
    }),
    StageStatus.COMPLETED: frozenset({
        StageStatus.IN_PROGRESS,  # regression reopen
    }),
}


def validate_stage_transition(current: StageStatus, target: StageStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal."""
    if current == target:
        return
    allowed = STAGE_VALID_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise InvalidTransitionError(current.value, target.value, "StageStatus")


class CronStatus(str, Enum):
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    STOPPED = "STOPPED"


class PauseType(str, Enum):
    """Why a running cron job is holding back.

    ``AWAITING_STAGE_TRIGGER`` does not stop evaluation: the state machine
    still reopens regression or honours a flipped auto-transition flag.
    """

    NONE = "NONE"
    AWAITING_STAGE_TRIGGER = "AWAITING_STAGE_TRIGGER"
    USER_REQUESTED = "USER_REQUESTED"
    TASK_FAILURE = "TASK_FAILURE"

    @property
    def blocks_progress(self) -> bool:
        return self in (PauseType.USER_REQUESTED, PauseType.TASK_FAILURE)


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


TASK_VALID_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({
        TaskStatus.RUNNING,
    }),
    TaskStatus.RUNNING: frozenset({
        TaskStatus.SUCCEEDED,
        TaskStatus.PENDING,  # retryable failure
        TaskStatus.FAILED,
    }),
    TaskStatus.FAILED: frozenset({
        TaskStatus.PENDING,  # manual retry
    }),
    TaskStatus.SUCCEEDED: frozenset(),  # terminal
}


def validate_task_transition(current: TaskStatus, target: TaskStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal."""
    if current == target:
        return
    allowed = TASK_VALID_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise InvalidTransitionError(current.value, target.value, "TaskStatus")


class RegressionCycleStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class TaskType(str, Enum):
    # Kickoff
    PRE_KICKOFF_REMINDER = "PRE_KICKOFF_REMINDER"
    FORK_BRANCH = "FORK_BRANCH"
    CREATE_PROJECT_MANAGEMENT_TICKET = "CREATE_PROJECT_MANAGEMENT_TICKET"
    CREATE_TEST_SUITE = "CREATE_TEST_SUITE"
    TRIGGER_PRE_REGRESSION_BUILDS = "TRIGGER_PRE_REGRESSION_BUILDS"

    # Regression
    RESET_TEST_SUITE = "RESET_TEST_SUITE"
    CREATE_RC_TAG = "CREATE_RC_TAG"
    CREATE_RELEASE_NOTES = "CREATE_RELEASE_NOTES"
    TRIGGER_REGRESSION_BUILDS = "TRIGGER_REGRESSION_BUILDS"
    TRIGGER_AUTOMATION_RUNS = "TRIGGER_AUTOMATION_RUNS"
    AUTOMATION_RUNS = "AUTOMATION_RUNS"

    # Pre-release
    PRE_RELEASE_CHERRY_PICKS_REMINDER = "PRE_RELEASE_CHERRY_PICKS_REMINDER"
    CREATE_RELEASE_TAG = "CREATE_RELEASE_TAG"
    CREATE_FINAL_RELEASE_NOTES = "CREATE_FINAL_RELEASE_NOTES"
    TRIGGER_TEST_FLIGHT_BUILD = "TRIGGER_TEST_FLIGHT_BUILD"
    CREATE_AAB_BUILD = "CREATE_AAB_BUILD"
    CHECK_PROJECT_RELEASE_APPROVAL = "CHECK_PROJECT_RELEASE_APPROVAL"


__all__ = [
    "CronStatus",
    "InvalidTransitionError",
    "PauseType",
    "Platform",
    "RegressionCycleStatus",
    "ReleaseStatus",
    "ReleaseType",
    "STAGE_ORDER",
    "STAGE_VALID_TRANSITIONS",
    "StageStatus",
    "TASK_VALID_TRANSITIONS",
    "TaskStage",
    "TaskStatus",
    "TaskType",
    "validate_stage_transition",
    "validate_task_transition",
]
