"""Typed models for release orchestration rows."""

from .enums import (
    STAGE_ORDER,
    STAGE_VALID_TRANSITIONS,
    TASK_VALID_TRANSITIONS,
    CronStatus,
    InvalidTransitionError,
    PauseType,
    Platform,
    RegressionCycleStatus,
    ReleaseStatus,
    ReleaseType,
    StageStatus,
    TaskStage,
    TaskStatus,
    TaskType,
    validate_stage_transition,
    validate_task_transition,
)
from .release import (
    STAGE_FIELDS,
    CronConfig,
    CronJob,
    RegressionCycle,
    RegressionSlot,
    RegressionSlotConfig,
    Release,
    ReleaseTask,
    check_stage_order,
    sort_slots,
)

__all__ = [
    "STAGE_FIELDS",
    "STAGE_ORDER",
    "STAGE_VALID_TRANSITIONS",
    "TASK_VALID_TRANSITIONS",
    "CronConfig",
    "CronJob",
    "CronStatus",
    "InvalidTransitionError",
    "PauseType",
    "Platform",
    "RegressionCycle",
    "RegressionCycleStatus",
    "RegressionSlot",
    "RegressionSlotConfig",
    "Release",
    "ReleaseStatus",
    "ReleaseTask",
    "ReleaseType",
    "StageStatus",
    "TaskStage",
    "TaskStatus",
    "TaskType",
    "check_stage_order",
    "sort_slots",
    "validate_stage_transition",
    "validate_task_transition",
]
