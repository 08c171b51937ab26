"""Repository contracts consumed by the orchestrator.

The scheduler and state machine only depend on these Protocols. The SQL
repositories in this package satisfy them; other stores work as long as
``try_acquire_lock`` is an atomic compare-and-set at the storage layer.

Tags:
    release-spine, repository, protocol, contracts
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from release_spine.core.models import (
    CronJob,
    CronStatus,
    RegressionCycle,
    RegressionCycleStatus,
    Release,
    ReleaseStatus,
    ReleaseTask,
    TaskStage,
)


@runtime_checkable
class ReleaseStore(Protocol):
    def create(self, release: Release) -> Release: ...

    def get(self, release_id: str) -> Release | None: ...

    def update(self, release_id: str, **fields: Any) -> int: ...

    def list(self, status: ReleaseStatus | None = None) -> list[Release]: ...


@runtime_checkable
class CronJobStore(Protocol):
    def create(self, job: CronJob) -> CronJob: ...

    def get(self, job_id: str) -> CronJob | None: ...

    def get_by_release(self, release_id: str) -> CronJob | None: ...

    def update(self, job_id: str, **fields: Any) -> int: ...

    def list(self, cron_status: CronStatus | None = None) -> list[CronJob]: ...

    def get_due_cron_jobs(self, now: datetime) -> list[CronJob]: ...

    def try_acquire_lock(
        self,
        job_id: str,
        owner_id: str,
        lease_seconds: float,
        now: datetime,
    ) -> bool:
        """Claim the lease iff unlocked, expired, or already ours. Atomic."""
        ...

    def release_lock(self, job_id: str, owner_id: str | None = None) -> bool: ...


@runtime_checkable
class ReleaseTaskStore(Protocol):
    def create_many(self, tasks: list[ReleaseTask]) -> int: ...

    def get(self, task_id: str) -> ReleaseTask | None: ...

    def list_for_release(
        self,
        release_id: str,
        stage: TaskStage | None = None,
    ) -> list[ReleaseTask]: ...

    def list_for_cycle(self, cycle_id: str) -> list[ReleaseTask]: ...

    def update(self, task_id: str, **fields: Any) -> int: ...


@runtime_checkable
class RegressionCycleStore(Protocol):
    def create(self, cycle: RegressionCycle) -> RegressionCycle: ...

    def get(self, cycle_id: str) -> RegressionCycle | None: ...

    def get_latest(self, release_id: str) -> RegressionCycle | None: ...

    def list_for_release(self, release_id: str) -> list[RegressionCycle]: ...

    def update_status(
        self,
        cycle_id: str,
        status: RegressionCycleStatus,
        now: datetime | None = None,
    ) -> int: ...


__all__ = [
    "CronJobStore",
    "RegressionCycleStore",
    "ReleaseStore",
    "ReleaseTaskStore",
]
