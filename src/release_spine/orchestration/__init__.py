"""Release orchestration: task sequencing, task sets and the cron job state machine.

::

    sequencing.py     TASK_ORDER, TaskBlockReason, next_executable
    task_factory.py   kickoff / regression cycle / pre-release task sets
    decisions.py      ReleaseSnapshot -> decide() -> Decision(actions)
    state_machine.py  CronJobStateMachine.advance(), retry_task,
                      record_task_callback

Tags:
    release-spine, orchestration
"""

from .decisions import Decision, ReleaseSnapshot, decide
from .sequencing import TASK_ORDER, TaskBlockReason, get_block_reason, next_executable, ordered_tasks
from .state_machine import (
    AdvanceResult,
    CronJobStateMachine,
    persist_outcome,
    record_task_callback,
    retry_task,
    stage_patch_fields,
)
from .task_factory import cycle_tag, kickoff_tasks, pre_release_tasks, regression_cycle_tasks

__all__ = [
    "TASK_ORDER",
    "AdvanceResult",
    "CronJobStateMachine",
    "Decision",
    "ReleaseSnapshot",
    "TaskBlockReason",
    "cycle_tag",
    "decide",
    "get_block_reason",
    "kickoff_tasks",
    "next_executable",
    "ordered_tasks",
    "persist_outcome",
    "pre_release_tasks",
    "record_task_callback",
    "regression_cycle_tasks",
    "retry_task",
    "stage_patch_fields",
]
