"""Deadline for executor calls.

The executor call is the only blocking operation inside ``advance()``.
:func:`execute_with_deadline` runs it on a worker thread and stops
waiting once the deadline passes, so a hung integration never holds a
release lease for longer than the task timeout.

::

    execute_with_deadline(executor, task, release, 120.0)
        │ submit
        ▼
    ThreadPoolExecutor(max_workers=1)
        ├── answered in time  -> ExecutorResult (or the executor's exception)
        └── deadline passed   -> TaskTimeoutError, worker abandoned

Guardrails:
    - Python cannot kill a thread. A timed-out executor keeps running in
      the background and its eventual result is discarded.
    - Executors must therefore tolerate being called again for the same
      task (at-least-once).

Tags:
    timeout, deadline, execution, release-spine
"""

from __future__ import annotations

import concurrent.futures
import time

from release_spine.core.errors import TaskTimeoutError
from release_spine.core.models import Release, ReleaseTask

from .protocol import ExecutorResult, TaskExecutor


def execute_with_deadline(
    executor: TaskExecutor,
    task: ReleaseTask,
    release: Release,
    timeout_seconds: float,
) -> ExecutorResult:
    """Call ``executor.execute(task, release)``, giving up after ``timeout_seconds``.

    Raises:
        TaskTimeoutError: The executor did not answer in time (retryable).
        ValueError: ``timeout_seconds`` is not positive.
        Exception: Anything the executor raised, unchanged.
    """
    if timeout_seconds <= 0:
        raise ValueError(f"Task timeout must be positive, got {timeout_seconds}")

    started = time.monotonic()
    pool = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"task-{task.task_type.value}")
    future = pool.submit(executor.execute, task, release)
    try:
        return future.result(timeout=timeout_seconds)
    except concurrent.futures.TimeoutError:
        elapsed = time.monotonic() - started
        raise TaskTimeoutError(
            f"Task {task.label} timed out after {timeout_seconds}s (ran for {elapsed:.2f}s)"
        ).with_context(task_id=task.id, timeout_seconds=timeout_seconds) from None
    finally:
        # Never join: a hung worker must not block the tick.
        pool.shutdown(wait=False, cancel_futures=True)


__all__ = ["execute_with_deadline"]
