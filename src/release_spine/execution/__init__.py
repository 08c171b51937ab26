"""Task execution: executor contract, timeout, retry and dispatch.

::

    TaskDispatcher.dispatch(task, release, now)
        │
        ├── execute_with_deadline(executor, ...)      timeout.py
        ├── ExecutorResult                            protocol.py
        └── RetryStrategy.should_retry / next_delay   retry.py
        ▼
    DispatchOutcome  (persisted by the state machine)

Tags:
    release-spine, execution
"""

from .dispatcher import (
    DEFAULT_TASK_TIMEOUT_SECONDS,
    DispatchOutcome,
    OutcomeResolver,
    TaskDispatcher,
)
from .executors import DryRunExecutor, HandlerRegistryExecutor, release_branch_name
from .protocol import ExecutorResult, TaskExecutor
from .retry import (
    ConstantBackoff,
    ExponentialBackoff,
    NoRetry,
    RetryStrategy,
    default_retry_strategy,
    retry_strategy_from_settings,
)
from .timeout import execute_with_deadline

__all__ = [
    "DEFAULT_TASK_TIMEOUT_SECONDS",
    "ConstantBackoff",
    "DispatchOutcome",
    "DryRunExecutor",
    "ExecutorResult",
    "ExponentialBackoff",
    "HandlerRegistryExecutor",
    "NoRetry",
    "OutcomeResolver",
    "RetryStrategy",
    "TaskDispatcher",
    "TaskExecutor",
    "default_retry_strategy",
    "execute_with_deadline",
    "release_branch_name",
    "retry_strategy_from_settings",
]
