"""Pure decision function of the cron job state machine.

Manifesto:
    A tick must be safe to run at any moment, on any instance, any number
    of times. The state machine therefore never remembers anything between
    calls: it loads a :class:`ReleaseSnapshot`, asks :func:`decide` what
    the next step is, applies it, and loads again. ``decide`` reads only
    the snapshot, so every rule below is testable without a database.

Rule order::

    ┌─ release ARCHIVED ───────────────────────── StopCron
    ├─ cron not RUNNING ───────────────────────── idle
    ├─ pause USER_REQUESTED / TASK_FAILURE ────── idle
    ├─ stage 1 NOT_STARTED ────────────────────── CreateStageTasks(KICKOFF)
    ├─ stage 1 IN_PROGRESS ────────────────────── DispatchTask | complete kickoff
    ├─ stage 2 NOT_STARTED (auto, no manual) ──── TransitionStages
    ├─ stage 2 IN_PROGRESS ────────────────────── cycle work | OpenRegressionCycle
    │                                             | complete regression
    ├─ stage 2 COMPLETED, stage 3 NOT_STARTED ─── reopen regression | start stage 3
    ├─ stage 3 IN_PROGRESS ────────────────────── CreateStageTasks | DispatchTask
    │                                             | complete + stop
    ├─ stage 3 COMPLETED ──────────────────────── StopCron
    └─ anything else ──────────────────────────── idle with reason

Tags:
    release-spine, orchestration, state-machine, decisions

Doc-Types:
    api-reference, architecture
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from release_spine.core.models import (
    CronJob,
    CronStatus,
    PauseType,
    RegressionCycle,
    RegressionCycleStatus,
    RegressionSlot,
    RegressionSlotConfig,
    Release,
    ReleaseStatus,
    ReleaseTask,
    StageStatus,
    TaskStage,
    TaskType,
    check_stage_order,
)

from .sequencing import all_succeeded, describe_blocked, next_executable
from .task_factory import cycle_tag, kickoff_tasks, pre_release_tasks, regression_cycle_tasks


@dataclass
class ReleaseSnapshot:
    """Everything a decision may look at."""

    release: Release
    cron_job: CronJob
    tasks: list[ReleaseTask]
    cycles: list[RegressionCycle]
    now: datetime

    def stage_tasks(self, stage: TaskStage) -> list[ReleaseTask]:
        return [t for t in self.tasks if t.stage == stage]

    def cycle_tasks(self, cycle_id: str) -> list[ReleaseTask]:
        return [t for t in self.tasks if t.cycle_id == cycle_id]

    @property
    def latest_cycle(self) -> RegressionCycle | None:
        for cycle in self.cycles:
            if cycle.is_latest:
                return cycle
        return self.cycles[-1] if self.cycles else None

    def due_slots(self) -> list[RegressionSlot]:
        return [s for s in self.cron_job.upcoming_regressions if s.is_due(self.now)]


# =============================================================================
# ACTIONS
# =============================================================================


@dataclass
class CreateStageTasks:
    """Insert a stage's task set, optionally flipping stage/release status with it."""

    stage: TaskStage
    tasks: list[ReleaseTask]
    stage_statuses: dict[TaskStage, StageStatus] = field(default_factory=dict)
    release_status: ReleaseStatus | None = None


@dataclass
class OpenRegressionCycle:
    """Create a cycle and its tasks, consuming a slot or the re-run flag."""

    cycle: RegressionCycle
    tasks: list[ReleaseTask]
    slot_id: str | None = None
    clear_rerun: bool = False


@dataclass
class StartCycle:
    cycle_id: str


@dataclass
class CompleteCycle:
    cycle_id: str


@dataclass
class DispatchTask:
    task: ReleaseTask
    catch_up: bool = False


@dataclass
class TransitionStages:
    """Set several stage statuses in one update.

    ``pause_type`` of None leaves the pause untouched. ``stop`` also sets
    ``cron_status=STOPPED`` and ``stopped_at``.
    """

    stages: dict[TaskStage, StageStatus]
    pause_type: PauseType | None = None
    stop: bool = False


@dataclass
class StopCron:
    reason: str


Action = (
    CreateStageTasks
    | OpenRegressionCycle
    | StartCycle
    | CompleteCycle
    | DispatchTask
    | TransitionStages
    | StopCron
)


@dataclass
class Decision:
    actions: list[Action] = field(default_factory=list)
    end_pass: bool = False
    reason: str = ""

    @property
    def is_idle(self) -> bool:
        return not self.actions

    @classmethod
    def idle(cls, reason: str) -> Decision:
        return cls(actions=[], end_pass=True, reason=reason)


# =============================================================================
# DECIDE
# =============================================================================


def decide(snapshot: ReleaseSnapshot) -> Decision:
    """Next step for one release. Raises StageOrderError on corrupt state."""
    release, job = snapshot.release, snapshot.cron_job

    if release.status == ReleaseStatus.ARCHIVED:
        if job.cron_status != CronStatus.STOPPED:
            return Decision([StopCron("release archived")], end_pass=True, reason="release archived")
        return Decision.idle("release archived")
    if job.cron_status != CronStatus.RUNNING:
        return Decision.idle(f"cron {job.cron_status.value}")
    if job.pause_type.blocks_progress:
        return Decision.idle(f"paused ({job.pause_type.value})")

    check_stage_order(job.stage_statuses())

    stage1 = job.stage1_status
    if stage1 == StageStatus.NOT_STARTED:
        return Decision(
            [CreateStageTasks(
                TaskStage.KICKOFF,
                kickoff_tasks(release, job),
                stage_statuses={TaskStage.KICKOFF: StageStatus.IN_PROGRESS},
                release_status=ReleaseStatus.IN_PROGRESS,
            )],
            end_pass=True,
            reason="kickoff tasks created",
        )
    if stage1 == StageStatus.IN_PROGRESS:
        return _decide_kickoff(snapshot)
    if stage1 == StageStatus.FAILED:
        return Decision.idle("kickoff stage failed")

    stage2, stage3 = job.stage2_status, job.stage3_status
    if stage2 == StageStatus.NOT_STARTED:
        if job.auto_transition_to_stage2 and not job.has_manual_build_upload:
            return Decision(
                [TransitionStages({TaskStage.REGRESSION: StageStatus.IN_PROGRESS}, PauseType.NONE)],
                reason="starting regression",
            )
        return Decision.idle("awaiting regression trigger")
    if stage2 == StageStatus.IN_PROGRESS:
        return _decide_regression(snapshot)
    if stage2 == StageStatus.FAILED:
        return Decision.idle("regression stage failed")

    if stage3 == StageStatus.NOT_STARTED:
        if job.upcoming_regressions or job.regression_rerun_requested:
            return Decision(
                [TransitionStages({TaskStage.REGRESSION: StageStatus.IN_PROGRESS}, PauseType.NONE)],
                reason="new regression slots, reopening regression",
            )
        if job.auto_transition_to_stage3:
            return Decision(
                [TransitionStages({TaskStage.PRE_RELEASE: StageStatus.IN_PROGRESS}, PauseType.NONE)],
                reason="starting pre-release",
            )
        return Decision.idle("awaiting pre-release trigger")
    if stage3 == StageStatus.IN_PROGRESS:
        return _decide_pre_release(snapshot)
    if stage3 == StageStatus.COMPLETED:
        return Decision([StopCron("pre-release completed")], end_pass=True, reason="pre-release completed")
    return Decision.idle("pre-release stage failed")


def _dispatch_or_idle(snapshot: ReleaseSnapshot, group: list[ReleaseTask], label: str) -> Decision:
    release, job, now = snapshot.release, snapshot.cron_job, snapshot.now
    task, reasons = next_executable(group, release, job.cron_config, now)
    if task is None:
        return Decision.idle(f"{label}: {describe_blocked(reasons)}")
    return Decision([DispatchTask(task, catch_up=_is_catch_up(task, snapshot))], reason=f"dispatch {task.label}")


def _is_catch_up(task: ReleaseTask, snapshot: ReleaseSnapshot) -> bool:
    kickoff_at = snapshot.release.kickoff_at
    if task.task_type != TaskType.FORK_BRANCH or kickoff_at is None:
        return False
    grace = timedelta(seconds=snapshot.cron_job.cron_config.interval_seconds)
    return snapshot.now > kickoff_at + grace


def _decide_kickoff(snapshot: ReleaseSnapshot) -> Decision:
    job = snapshot.cron_job
    tasks = snapshot.stage_tasks(TaskStage.KICKOFF)
    if not all_succeeded(tasks):
        return _dispatch_or_idle(snapshot, tasks, "kickoff")

    if job.auto_transition_to_stage2 and not job.has_manual_build_upload:
        return Decision(
            [TransitionStages(
                {TaskStage.KICKOFF: StageStatus.COMPLETED, TaskStage.REGRESSION: StageStatus.IN_PROGRESS},
                PauseType.NONE,
            )],
            reason="kickoff complete, starting regression",
        )
    return Decision(
        [TransitionStages({TaskStage.KICKOFF: StageStatus.COMPLETED}, PauseType.AWAITING_STAGE_TRIGGER)],
        end_pass=True,
        reason="kickoff complete, awaiting regression trigger",
    )


def _open_cycle(
    snapshot: ReleaseSnapshot,
    slot_config: RegressionSlotConfig,
    *,
    slot_id: str | None,
) -> OpenRegressionCycle:
    release, job = snapshot.release, snapshot.cron_job
    index = len(snapshot.cycles)
    cycle = RegressionCycle.create(release.id, slot_id=slot_id, cycle_tag=cycle_tag(release, index))
    cycle.created_at = snapshot.now
    tasks = regression_cycle_tasks(release, job, cycle, slot_config, is_first_cycle=index == 0)
    return OpenRegressionCycle(cycle, tasks, slot_id=slot_id, clear_rerun=slot_id is None)


def _decide_regression(snapshot: ReleaseSnapshot) -> Decision:
    job = snapshot.cron_job
    latest = snapshot.latest_cycle

    if latest is not None and latest.status != RegressionCycleStatus.DONE:
        tasks = snapshot.cycle_tasks(latest.id)
        if all_succeeded(tasks):
            return Decision([CompleteCycle(latest.id)], reason=f"cycle {latest.cycle_tag} done")
        decision = _dispatch_or_idle(snapshot, tasks, f"cycle {latest.cycle_tag}")
        if decision.actions and latest.status == RegressionCycleStatus.NOT_STARTED:
            decision.actions.insert(0, StartCycle(latest.id))
        return decision

    due = snapshot.due_slots()
    if due:
        slot = due[0]
        action = _open_cycle(snapshot, slot.config, slot_id=slot.id)
        return Decision([action], end_pass=True, reason=f"opened cycle {action.cycle.cycle_tag}")
    if job.regression_rerun_requested:
        action = _open_cycle(snapshot, RegressionSlotConfig(), slot_id=None)
        return Decision([action], end_pass=True, reason=f"opened re-run cycle {action.cycle.cycle_tag}")

    if job.upcoming_regressions:
        next_at = job.upcoming_regressions[0].scheduled_at
        return Decision.idle(f"next regression slot at {next_at.isoformat()}")
    if not snapshot.cycles:
        return Decision.idle("no regression slots scheduled")

    if job.auto_transition_to_stage3:
        return Decision(
            [TransitionStages(
                {TaskStage.REGRESSION: StageStatus.COMPLETED, TaskStage.PRE_RELEASE: StageStatus.IN_PROGRESS},
                PauseType.NONE,
            )],
            reason="regression complete, starting pre-release",
        )
    return Decision(
        [TransitionStages({TaskStage.REGRESSION: StageStatus.COMPLETED}, PauseType.AWAITING_STAGE_TRIGGER)],
        end_pass=True,
        reason="regression complete, awaiting pre-release trigger",
    )


def _decide_pre_release(snapshot: ReleaseSnapshot) -> Decision:
    release, job = snapshot.release, snapshot.cron_job
    tasks = snapshot.stage_tasks(TaskStage.PRE_RELEASE)
    if not tasks:
        return Decision(
            [CreateStageTasks(TaskStage.PRE_RELEASE, pre_release_tasks(release, job))],
            end_pass=True,
            reason="pre-release tasks created",
        )
    if not all_succeeded(tasks):
        return _dispatch_or_idle(snapshot, tasks, "pre-release")
    return Decision(
        [TransitionStages({TaskStage.PRE_RELEASE: StageStatus.COMPLETED}, stop=True)],
        end_pass=True,
        reason="pre-release complete, release orchestration finished",
    )


__all__ = [
    "Action",
    "CompleteCycle",
    "CreateStageTasks",
    "Decision",
    "DispatchTask",
    "OpenRegressionCycle",
    "ReleaseSnapshot",
    "StartCycle",
    "StopCron",
    "TransitionStages",
    "decide",
]
