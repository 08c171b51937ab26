"""
Shared pytest fixtures for release-spine tests.

This module provides:
- An in-memory SQLite connection with the release schema
- Repositories bound to that connection
- A scripted executor whose per-task-type behaviour tests can set up
- A ``make_release`` factory that persists a release with its cron job
- An ``advance`` helper that runs one state machine pass at a fixed time
- Operation contexts (``ctx`` and ``dry_ctx``) over the same connection

Times are always injected (``KICKOFF`` and offsets from it) so no test
depends on the wall clock.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from release_spine.core.database import connect, init_schema, transaction
from release_spine.core.models import (
    CronJob,
    Platform,
    RegressionSlot,
    RegressionSlotConfig,
    Release,
    ReleaseTask,
    TaskType,
)
from release_spine.core.repositories import Repositories
from release_spine.core.settings import clear_settings_cache
from release_spine.execution import ExecutorResult, TaskDispatcher
from release_spine.ops import OperationContext
from release_spine.orchestration import AdvanceResult, CronJobStateMachine

KICKOFF = datetime(2026, 5, 4, 9, 0, tzinfo=UTC)
TARGET = KICKOFF + timedelta(days=10)


class ScriptedExecutor:
    """Succeeds by default; tests script failures, raises or callbacks per task type."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.outputs: dict[TaskType, dict[str, Any]] = {}
        self.script: dict[TaskType, ExecutorResult | Exception] = {}
        self.hooks: dict[TaskType, Callable[[], None]] = {}

    def fail(self, task_type: TaskType, *, retryable: bool = True) -> None:
        self.script[task_type] = ExecutorResult.fail(f"{task_type.value} failed", retryable=retryable)

    def raise_on(self, task_type: TaskType, error: Exception) -> None:
        self.script[task_type] = error

    def defer(self, task_type: TaskType, external_id: str = "ci-run-1") -> None:
        self.script[task_type] = ExecutorResult.pending(external_id)

    def on_execute(self, task_type: TaskType, hook: Callable[[], None]) -> None:
        """Run ``hook`` while a task of this type is executing."""
        self.hooks[task_type] = hook

    def reset(self) -> None:
        self.script.clear()
        self.hooks.clear()

    def execute(self, task: ReleaseTask, release: Release) -> ExecutorResult:
        self.calls.append(task.label)
        if hook := self.hooks.get(task.task_type):
            hook()
        scripted = self.script.get(task.task_type)
        if isinstance(scripted, Exception):
            raise scripted
        if scripted is not None:
            return scripted
        return ExecutorResult.ok(dict(self.outputs.get(task.task_type, {})))


@pytest.fixture(autouse=True)
def _fresh_settings() -> Iterator[None]:
    """Settings are cached per process; start every test from the environment."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture()
def db_conn():
    """In-memory SQLite connection with the release tables."""
    conn = connect(":memory:")
    init_schema(conn)
    yield conn
    conn.close()


@pytest.fixture()
def repos(db_conn) -> Repositories:
    return Repositories.for_connection(db_conn)


@pytest.fixture()
def executor() -> ScriptedExecutor:
    return ScriptedExecutor()


@pytest.fixture()
def dispatcher(executor: ScriptedExecutor) -> TaskDispatcher:
    return TaskDispatcher(executor, timeout_seconds=5.0)


@pytest.fixture()
def make_release(repos: Repositories) -> Callable[..., tuple[Release, CronJob]]:
    """Persist a release and its cron job.

    Keyword arguments not listed go to ``CronJob.create``; release columns
    go through ``release_kwargs``.
    """

    def _make(
        version: str = "1.0.0",
        *,
        platforms: tuple[Platform, ...] = (Platform.ANDROID, Platform.IOS),
        kickoff_at: datetime | None = KICKOFF,
        target_release_at: datetime | None = TARGET,
        slots: tuple[RegressionSlot, ...] = (),
        release_kwargs: dict[str, Any] | None = None,
        **job_kwargs: Any,
    ) -> tuple[Release, CronJob]:
        release = Release.create(
            version,
            platforms=list(platforms),
            kickoff_at=kickoff_at,
            target_release_at=target_release_at,
            **(release_kwargs or {}),
        )
        job = CronJob.create(release.id, upcoming_regressions=list(slots), **job_kwargs)
        with transaction(repos.conn):
            repos.releases.create(release)
            repos.cron_jobs.create(job)
        return release, job

    return _make


@pytest.fixture()
def advance(repos: Repositories, dispatcher: TaskDispatcher) -> Callable[..., AdvanceResult]:
    """Run one ``advance()`` pass for a cron job at ``now``."""

    def _advance(job: CronJob, now: datetime, **kwargs: Any) -> AdvanceResult:
        return CronJobStateMachine(repos, dispatcher, job.id, **kwargs).advance(now)

    return _advance


def slot_at(offset: timedelta, **config: bool) -> RegressionSlot:
    """Regression slot ``offset`` after kickoff."""
    return RegressionSlot.offset_from(KICKOFF, offset, RegressionSlotConfig(**config))


@pytest.fixture()
def ctx(db_conn) -> OperationContext:
    return OperationContext(conn=db_conn, caller="test")


@pytest.fixture()
def dry_ctx(db_conn) -> OperationContext:
    return OperationContext(conn=db_conn, caller="test", dry_run=True)
