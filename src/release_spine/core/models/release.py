"""Release orchestration models.

Manifesto:
    The state machine is rebuilt from these rows on every tick, so they
    must carry everything a decision needs: stage statuses, pause state,
    regression slots, lock lease and per-task retry bookkeeping.

Plain dataclasses with typed enums; repositories translate them to and
from rows.

Tags:
    release-spine, models, dataclasses, release, cron-job, schema-mapping

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from release_spine.core.errors import StageOrderError
from release_spine.core.timestamps import from_iso8601, generate_ulid, to_iso8601, utc_now

from .enums import (
    STAGE_ORDER,
    CronStatus,
    PauseType,
    Platform,
    RegressionCycleStatus,
    ReleaseStatus,
    ReleaseType,
    StageStatus,
    TaskStage,
    TaskStatus,
    TaskType,
)

STAGE_FIELDS: dict[TaskStage, str] = {
    TaskStage.KICKOFF: "stage1_status",
    TaskStage.REGRESSION: "stage2_status",
    TaskStage.PRE_RELEASE: "stage3_status",
}


def check_stage_order(statuses: Mapping[TaskStage, StageStatus]) -> None:
    """Raise :class:`StageOrderError` unless stages respect strict ordering.

    A stage may leave NOT_STARTED only once every earlier stage is
    COMPLETED.
    """
    for index, stage in enumerate(STAGE_ORDER):
        if statuses[stage] == StageStatus.NOT_STARTED:
            continue
        for earlier in STAGE_ORDER[:index]:
            if statuses[earlier] != StageStatus.COMPLETED:
                raise StageOrderError(
                    f"{stage.value} is {statuses[stage].value} while "
                    f"{earlier.value} is {statuses[earlier].value}"
                )


# ---------------------------------------------------------------------------
# Configuration value objects
# ---------------------------------------------------------------------------


@dataclass
class CronConfig:
    """Per-release cadence and optional kickoff activities."""

    interval_seconds: int = 60
    kickoff_reminder: bool = False
    kickoff_reminder_lead_seconds: int = 24 * 3600
    pre_regression_builds: bool = False
    test_flight_builds: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "interval_seconds": self.interval_seconds,
            "kickoff_reminder": self.kickoff_reminder,
            "kickoff_reminder_lead_seconds": self.kickoff_reminder_lead_seconds,
            "pre_regression_builds": self.pre_regression_builds,
            "test_flight_builds": self.test_flight_builds,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> CronConfig:
        data = data or {}
        known = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        return cls(**known)


@dataclass
class RegressionSlotConfig:
    """Which activities a regression slot fires."""

    regression_builds: bool = True
    release_notes: bool = True
    automation_builds: bool = False
    automation_runs: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {
            "regression_builds": self.regression_builds,
            "release_notes": self.release_notes,
            "automation_builds": self.automation_builds,
            "automation_runs": self.automation_runs,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> RegressionSlotConfig:
        data = data or {}
        known = {k: bool(data[k]) for k in cls.__dataclass_fields__ if k in data}
        return cls(**known)


@dataclass
class RegressionSlot:
    """A scheduled regression pass. Consumed exactly once when due."""

    scheduled_at: datetime
    config: RegressionSlotConfig = field(default_factory=RegressionSlotConfig)
    id: str = field(default_factory=generate_ulid)

    @classmethod
    def offset_from(
        cls,
        kickoff_at: datetime,
        offset: timedelta,
        config: RegressionSlotConfig | None = None,
    ) -> RegressionSlot:
        """Build a slot relative to the release kickoff."""
        return cls(scheduled_at=kickoff_at + offset, config=config or RegressionSlotConfig())

    def is_due(self, now: datetime) -> bool:
        return self.scheduled_at <= now

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "scheduled_at": to_iso8601(self.scheduled_at),
            "config": self.config.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RegressionSlot:
        scheduled_at = from_iso8601(data.get("scheduled_at"))
        if scheduled_at is None:
            raise ValueError("regression slot requires scheduled_at")
        return cls(
            id=data.get("id") or generate_ulid(),
            scheduled_at=scheduled_at,
            config=RegressionSlotConfig.from_dict(data.get("config")),
        )


def sort_slots(slots: list[RegressionSlot]) -> list[RegressionSlot]:
    return sorted(slots, key=lambda s: s.scheduled_at)


# ---------------------------------------------------------------------------
# releases
# ---------------------------------------------------------------------------


@dataclass
class Release:
    """One app version under orchestration (``releases``)."""

    id: str
    version: str
    release_type: ReleaseType = ReleaseType.PLANNED
    status: ReleaseStatus = ReleaseStatus.PENDING
    kickoff_at: datetime | None = None
    target_release_at: datetime | None = None
    base_branch: str = "main"
    branch: str | None = None
    parent_release_id: str | None = None
    platforms: list[Platform] = field(default_factory=list)
    final_build_numbers: dict[str, str] = field(default_factory=dict)
    has_project_management_integration: bool = False
    has_test_platform_integration: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def create(cls, version: str, **kwargs: Any) -> Release:
        """Create a new release in PENDING status."""
        return cls(id=generate_ulid(), version=version, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "release_type": self.release_type.value,
            "status": self.status.value,
            "kickoff_at": to_iso8601(self.kickoff_at),
            "target_release_at": to_iso8601(self.target_release_at),
            "base_branch": self.base_branch,
            "branch": self.branch,
            "parent_release_id": self.parent_release_id,
            "platforms": [p.value for p in self.platforms],
            "final_build_numbers": dict(self.final_build_numbers),
        }


# ---------------------------------------------------------------------------
# cron_jobs
# ---------------------------------------------------------------------------


@dataclass
class CronJob:
    """Scheduling and stage record bound 1:1 to a release (``cron_jobs``).

    The lease columns (``locked_by``, ``locked_at``, ``lock_expiry``) live
    on the same row as the stage statuses they protect.
    """

    id: str
    release_id: str
    cron_config: CronConfig = field(default_factory=CronConfig)
    stage1_status: StageStatus = StageStatus.NOT_STARTED
    stage2_status: StageStatus = StageStatus.NOT_STARTED
    stage3_status: StageStatus = StageStatus.NOT_STARTED
    auto_transition_to_stage2: bool = True
    auto_transition_to_stage3: bool = False
    has_manual_build_upload: bool = False
    upcoming_regressions: list[RegressionSlot] = field(default_factory=list)
    regression_rerun_requested: bool = False
    cron_status: CronStatus = CronStatus.RUNNING
    pause_type: PauseType = PauseType.NONE
    locked_by: str | None = None
    locked_at: datetime | None = None
    lock_expiry: datetime | None = None
    last_run_at: datetime | None = None
    started_at: datetime | None = None
    stopped_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def create(cls, release_id: str, **kwargs: Any) -> CronJob:
        job = cls(id=generate_ulid(), release_id=release_id, **kwargs)
        job.upcoming_regressions = sort_slots(job.upcoming_regressions)
        return job

    def stage_status(self, stage: TaskStage) -> StageStatus:
        return getattr(self, STAGE_FIELDS[stage])

    def stage_statuses(self) -> dict[TaskStage, StageStatus]:
        return {stage: self.stage_status(stage) for stage in STAGE_ORDER}

    def active_stage(self) -> TaskStage | None:
        """The stage currently IN_PROGRESS or FAILED, if any."""
        for stage in STAGE_ORDER:
            if self.stage_status(stage) in (StageStatus.IN_PROGRESS, StageStatus.FAILED):
                return stage
        return None

    def is_due(self, now: datetime) -> bool:
        if self.cron_status != CronStatus.RUNNING:
            return False
        if self.last_run_at is None:
            return True
        return self.last_run_at + timedelta(seconds=self.cron_config.interval_seconds) <= now

    def is_locked(self, now: datetime) -> bool:
        return self.locked_by is not None and self.lock_expiry is not None and self.lock_expiry > now


# ---------------------------------------------------------------------------
# release_tasks
# ---------------------------------------------------------------------------


@dataclass
class ReleaseTask:
    """One dispatchable unit of work (``release_tasks``)."""

    id: str
    release_id: str
    task_type: TaskType
    stage: TaskStage
    status: TaskStatus = TaskStatus.PENDING
    platform: Platform | None = None
    cycle_id: str | None = None
    retry_count: int = 0
    next_attempt_at: datetime | None = None
    awaiting_callback: bool = False
    conclusion: str | None = None
    output: dict[str, Any] = field(default_factory=dict)
    external_id: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def create(
        cls,
        release_id: str,
        task_type: TaskType,
        stage: TaskStage,
        *,
        platform: Platform | None = None,
        cycle_id: str | None = None,
    ) -> ReleaseTask:
        """Create a new task in PENDING status."""
        return cls(
            id=generate_ulid(),
            release_id=release_id,
            task_type=task_type,
            stage=stage,
            platform=platform,
            cycle_id=cycle_id,
        )

    @property
    def label(self) -> str:
        """``FORK_BRANCH`` or ``TRIGGER_REGRESSION_BUILDS[IOS]``."""
        if self.platform is None:
            return self.task_type.value
        return f"{self.task_type.value}[{self.platform.value}]"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_type": self.task_type.value,
            "stage": self.stage.value,
            "status": self.status.value,
            "platform": self.platform.value if self.platform else None,
            "cycle_id": self.cycle_id,
            "retry_count": self.retry_count,
            "next_attempt_at": to_iso8601(self.next_attempt_at),
            "awaiting_callback": self.awaiting_callback,
            "conclusion": self.conclusion,
            "output": self.output,
            "external_id": self.external_id,
            "updated_at": to_iso8601(self.updated_at),
        }


# ---------------------------------------------------------------------------
# regression_cycles
# ---------------------------------------------------------------------------


@dataclass
class RegressionCycle:
    """One regression pass grouping its tasks (``regression_cycles``)."""

    id: str
    release_id: str
    slot_id: str | None = None
    is_latest: bool = True
    status: RegressionCycleStatus = RegressionCycleStatus.NOT_STARTED
    cycle_tag: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None

    @classmethod
    def create(cls, release_id: str, *, slot_id: str | None, cycle_tag: str) -> RegressionCycle:
        return cls(id=generate_ulid(), release_id=release_id, slot_id=slot_id, cycle_tag=cycle_tag)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "slot_id": self.slot_id,
            "is_latest": self.is_latest,
            "status": self.status.value,
            "cycle_tag": self.cycle_tag,
            "created_at": to_iso8601(self.created_at),
            "completed_at": to_iso8601(self.completed_at),
        }
