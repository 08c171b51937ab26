"""
release-spine: staged mobile release orchestration.

A global scheduler ticks, leases each due release, and advances its cron
job state machine through kickoff, regression and pre-release. Task side
effects go through a pluggable :class:`~release_spine.execution.TaskExecutor`.
"""

__version__ = "0.1.0"

from release_spine.execution import (  # noqa: E402
    DryRunExecutor,
    ExecutorResult,
    HandlerRegistryExecutor,
    TaskExecutor,
)
from release_spine.scheduling import GlobalScheduler, create_scheduler  # noqa: E402

__all__ = [
    "DryRunExecutor",
    "ExecutorResult",
    "GlobalScheduler",
    "HandlerRegistryExecutor",
    "TaskExecutor",
    "__version__",
    "create_scheduler",
]
