"""Cron job state machine: load, decide, apply, repeat.

Manifesto:
    ``advance()`` is the only thing a scheduler tick does to a release.
    It is re-entrant: every step reloads state from the repositories, so
    a crash at any point leaves the release in a state the next tick can
    continue from. Each logical transition (tasks + stage flip, cycle +
    tasks + slot removal, task failure + stage failure + pause) commits
    in one ``transaction()``, so a partial transition is never visible.

Architecture:
    ::

        advance(now)
          │
          ├── load()  ──────────────► ReleaseSnapshot
          ├── decide(snapshot) ─────► Decision(actions, end_pass, reason)
          ├── apply(action) ────────► transaction(conn): repo writes
          │      DispatchTask: mark RUNNING (commit) → executor → persist
          └── loop until idle / end_pass / failed dispatch / step limit

        AdvanceResult(steps, dispatched, transitions, idle_reason, failed_tasks)

Guardrails:
    - The caller must hold the release lease while ``advance()`` runs and
      pass a ``lease_keeper`` that renews it; every dispatch renews first
      and the pass ends as soon as a renewal fails.
    - The executor call happens outside any open transaction.

Tags:
    release-spine, orchestration, state-machine, cron-job, transactions

Doc-Types:
    api-reference, architecture
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from release_spine.core.database import transaction
from release_spine.core.errors import InvalidStageTransitionError, NotFoundError
from release_spine.core.logging import get_logger
from release_spine.core.models import (
    STAGE_FIELDS,
    CronJob,
    CronStatus,
    InvalidTransitionError,
    PauseType,
    RegressionCycleStatus,
    Release,
    ReleaseTask,
    StageStatus,
    TaskStage,
    TaskStatus,
    TaskType,
    check_stage_order,
    validate_stage_transition,
    validate_task_transition,
)
from release_spine.core.repositories import Repositories
from release_spine.core.timestamps import utc_now
from release_spine.execution import DispatchOutcome, ExecutorResult, OutcomeResolver, TaskDispatcher
from release_spine.execution.executors import release_branch_name

from .decisions import (
    Action,
    CompleteCycle,
    CreateStageTasks,
    Decision,
    DispatchTask,
    OpenRegressionCycle,
    ReleaseSnapshot,
    StartCycle,
    StopCron,
    TransitionStages,
    decide,
)

logger = get_logger(__name__)

DEFAULT_MAX_STEPS = 25


@dataclass
class AdvanceResult:
    """What one ``advance()`` call did to a release."""

    release_id: str
    steps: int = 0
    dispatched: list[str] = field(default_factory=list)
    transitions: list[str] = field(default_factory=list)
    failed_tasks: list[str] = field(default_factory=list)
    idle_reason: str | None = None
    lease_lost: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "release_id": self.release_id,
            "steps": self.steps,
            "dispatched": list(self.dispatched),
            "transitions": list(self.transitions),
            "failed_tasks": list(self.failed_tasks),
            "idle_reason": self.idle_reason,
            "lease_lost": self.lease_lost,
        }


# =============================================================================
# SHARED TRANSITION HELPERS
# =============================================================================


def stage_patch_fields(
    job: CronJob,
    stages: dict[TaskStage, StageStatus],
) -> dict[str, StageStatus]:
    """Validate stage moves and return the cron job columns to write.

    Raises InvalidStageTransitionError for an illegal move and
    StageOrderError if the resulting statuses break stage ordering.
    """
    statuses = job.stage_statuses()
    for stage, target in stages.items():
        try:
            validate_stage_transition(statuses[stage], target)
        except InvalidTransitionError as e:
            raise InvalidStageTransitionError(
                f"{stage.value} cannot move to {target.value}",
                reason=str(e),
                cause=e,
            ).with_context(release_id=job.release_id, cron_job_id=job.id, stage=stage.value) from e
        statuses[stage] = target
    check_stage_order(statuses)
    return {STAGE_FIELDS[stage]: target for stage, target in stages.items()}


def _release_updates(task: ReleaseTask, outcome: DispatchOutcome, release: Release) -> dict[str, Any]:
    """Release columns filled in by a successful task."""
    updates: dict[str, Any] = {}
    if task.task_type == TaskType.FORK_BRANCH:
        updates["branch"] = outcome.output.get("branch") or release_branch_name(release)
    build_number = outcome.output.get("build_number")
    if build_number is not None and task.platform is not None and task.stage == TaskStage.PRE_RELEASE:
        updates["final_build_numbers"] = {
            **release.final_build_numbers,
            task.platform.value: str(build_number),
        }
    return updates


def persist_outcome(
    repos: Repositories,
    task: ReleaseTask,
    outcome: DispatchOutcome,
    now: datetime,
) -> None:
    """Record a dispatch outcome, failing the stage on a terminal failure."""
    validate_task_transition(TaskStatus.RUNNING, outcome.status)
    release = repos.releases.get(task.release_id)
    job = repos.cron_jobs.get_by_release(task.release_id)
    if release is None or job is None:
        raise NotFoundError(f"Release {task.release_id} not found").with_context(task_id=task.id)

    with transaction(repos.conn):
        repos.tasks.update(task.id, **outcome.task_fields())
        if outcome.succeeded:
            updates = _release_updates(task, outcome, release)
            if updates:
                repos.releases.update(release.id, **updates)
        elif outcome.failed:
            fields: dict[str, Any] = {"pause_type": PauseType.TASK_FAILURE}
            if job.stage_status(task.stage) != StageStatus.FAILED:
                fields.update(stage_patch_fields(job, {task.stage: StageStatus.FAILED}))
            repos.cron_jobs.update(job.id, **fields)

    if outcome.failed:
        logger.error(
            "task_failed",
            release_id=task.release_id,
            task=task.label,
            task_id=task.id,
            retry_count=outcome.retry_count,
            error=outcome.error.to_dict() if outcome.error else None,
        )


def retry_task(repos: Repositories, task_id: str, now: datetime | None = None) -> ReleaseTask:
    """Reset a FAILED task so the next tick dispatches it again.

    In one transaction: task back to PENDING with retries cleared, its
    stage FAILED -> IN_PROGRESS, and a TASK_FAILURE pause lifted.
    """
    task = repos.tasks.get(task_id)
    if task is None:
        raise NotFoundError(f"Task {task_id} not found").with_context(task_id=task_id)
    if task.status != TaskStatus.FAILED:
        raise InvalidStageTransitionError(
            f"Cannot retry task {task.label}",
            reason=f"Task is {task.status.value}; only FAILED tasks can be retried",
        ).with_context(task_id=task_id, release_id=task.release_id)
    job = repos.cron_jobs.get_by_release(task.release_id)
    if job is None:
        raise NotFoundError(f"Cron job for release {task.release_id} not found")

    fields: dict[str, Any] = {}
    if job.stage_status(task.stage) == StageStatus.FAILED:
        fields.update(stage_patch_fields(job, {task.stage: StageStatus.IN_PROGRESS}))
    if job.pause_type == PauseType.TASK_FAILURE:
        fields["pause_type"] = PauseType.NONE

    with transaction(repos.conn):
        repos.tasks.update(
            task.id,
            status=TaskStatus.PENDING,
            retry_count=0,
            next_attempt_at=None,
            awaiting_callback=False,
            conclusion=None,
        )
        if fields:
            repos.cron_jobs.update(job.id, **fields)

    logger.info("task_retry_requested", release_id=task.release_id, task=task.label, task_id=task.id)
    task.status = TaskStatus.PENDING
    task.retry_count = 0
    task.next_attempt_at = None
    task.awaiting_callback = False
    task.conclusion = None
    return task


def record_task_callback(
    repos: Repositories,
    resolver: OutcomeResolver,
    task_id: str,
    *,
    succeeded: bool,
    output: dict[str, Any] | None = None,
    error: str | None = None,
    now: datetime | None = None,
) -> DispatchOutcome:
    """Conclude a task that was waiting on an external callback."""
    now = now or utc_now()
    task = repos.tasks.get(task_id)
    if task is None:
        raise NotFoundError(f"Task {task_id} not found").with_context(task_id=task_id)
    if task.status != TaskStatus.RUNNING:
        raise InvalidStageTransitionError(
            f"Cannot record callback for task {task.label}",
            reason=f"Task is {task.status.value}; callbacks apply to RUNNING tasks",
        ).with_context(task_id=task_id, release_id=task.release_id)

    merged = {**task.output, **(output or {})}
    if succeeded:
        result = ExecutorResult.ok(merged, external_id=task.external_id)
    else:
        result = ExecutorResult.fail(error or "callback reported failure", output=merged)
    outcome = resolver.resolve_result(task, result, now)
    persist_outcome(repos, task, outcome, now)
    logger.info("task_callback_recorded", release_id=task.release_id, task=task.label, status=outcome.status.value)
    return outcome


# =============================================================================
# STATE MACHINE
# =============================================================================


class CronJobStateMachine:
    """Drives one release forward. Build one per lease acquisition.

    ``lease_keeper`` is called before every task dispatch. It renews the
    caller's lease and returns False once the lease belongs to someone
    else, which ends the pass without touching the release again.
    """

    def __init__(
        self,
        repos: Repositories,
        dispatcher: TaskDispatcher,
        cron_job_id: str,
        *,
        max_steps: int = DEFAULT_MAX_STEPS,
        lease_keeper: Callable[[], bool] | None = None,
    ) -> None:
        self.repos = repos
        self.dispatcher = dispatcher
        self.cron_job_id = cron_job_id
        self.max_steps = max_steps
        self.lease_keeper = lease_keeper

    def load(self, now: datetime) -> ReleaseSnapshot:
        job = self.repos.cron_jobs.get(self.cron_job_id)
        if job is None:
            raise NotFoundError(f"Cron job {self.cron_job_id} not found").with_context(
                cron_job_id=self.cron_job_id
            )
        release = self.repos.releases.get(job.release_id)
        if release is None:
            raise NotFoundError(f"Release {job.release_id} not found").with_context(
                release_id=job.release_id, cron_job_id=job.id
            )
        return ReleaseSnapshot(
            release=release,
            cron_job=job,
            tasks=self.repos.tasks.list_for_release(release.id),
            cycles=self.repos.cycles.list_for_release(release.id),
            now=now,
        )

    def advance(self, now: datetime | None = None) -> AdvanceResult:
        """Apply decisions until the release is idle for this tick."""
        now = now or utc_now()
        snapshot = self.load(now)
        result = AdvanceResult(release_id=snapshot.release.id)

        while True:
            decision = decide(snapshot)
            if decision.is_idle:
                result.idle_reason = decision.reason
                break

            result.steps += 1
            logger.debug("decision", release_id=result.release_id, reason=decision.reason)
            keep_going = self.apply(decision, snapshot, result)
            if result.lease_lost:
                result.idle_reason = "lease lost"
                break
            if decision.end_pass or not keep_going:
                result.idle_reason = decision.reason
                break
            if result.steps >= self.max_steps:
                result.idle_reason = f"step limit ({self.max_steps}) reached"
                logger.warning("advance_step_limit", release_id=result.release_id, steps=result.steps)
                break
            snapshot = self.load(now)

        return result

    def apply(self, decision: Decision, snapshot: ReleaseSnapshot, result: AdvanceResult) -> bool:
        """Apply every action of a decision. False when a dispatch failed."""
        for action in decision.actions:
            if not self._apply_action(action, snapshot, result):
                return False
        return True

    def _apply_action(self, action: Action, snapshot: ReleaseSnapshot, result: AdvanceResult) -> bool:
        job, now = snapshot.cron_job, snapshot.now
        match action:
            case CreateStageTasks():
                self._create_stage_tasks(action, snapshot, result)
            case OpenRegressionCycle():
                self._open_cycle(action, job, result)
            case StartCycle(cycle_id=cycle_id):
                with transaction(self.repos.conn):
                    self.repos.cycles.update_status(cycle_id, RegressionCycleStatus.IN_PROGRESS, now)
            case CompleteCycle(cycle_id=cycle_id):
                with transaction(self.repos.conn):
                    self.repos.cycles.update_status(cycle_id, RegressionCycleStatus.DONE, now)
                result.transitions.append(f"cycle {cycle_id} DONE")
                logger.info("regression_cycle_completed", release_id=job.release_id, cycle_id=cycle_id)
            case TransitionStages():
                self._transition(action, job, now, result)
            case StopCron(reason=reason):
                with transaction(self.repos.conn):
                    self.repos.cron_jobs.update(job.id, cron_status=CronStatus.STOPPED, stopped_at=now)
                result.transitions.append("cron STOPPED")
                logger.info("cron_stopped", release_id=job.release_id, reason=reason)
            case DispatchTask():
                return self._dispatch(action, snapshot, result)
        return True

    def _create_stage_tasks(
        self,
        action: CreateStageTasks,
        snapshot: ReleaseSnapshot,
        result: AdvanceResult,
    ) -> None:
        job, now = snapshot.cron_job, snapshot.now
        fields: dict[str, Any] = {}
        if action.stage_statuses:
            fields.update(stage_patch_fields(job, action.stage_statuses))
            if action.stage == TaskStage.KICKOFF and job.started_at is None:
                fields["started_at"] = now

        with transaction(self.repos.conn):
            self.repos.tasks.create_many(action.tasks)
            if fields:
                self.repos.cron_jobs.update(job.id, **fields)
            if action.release_status is not None:
                self.repos.releases.update(snapshot.release.id, status=action.release_status)

        for stage, status in action.stage_statuses.items():
            result.transitions.append(f"{stage.value} {status.value}")
        logger.info(
            "stage_tasks_created",
            release_id=job.release_id,
            stage=action.stage.value,
            tasks=[t.label for t in action.tasks],
        )

    def _open_cycle(self, action: OpenRegressionCycle, job: CronJob, result: AdvanceResult) -> None:
        fields: dict[str, Any] = {}
        if action.slot_id is not None:
            fields["upcoming_regressions"] = [
                slot for slot in job.upcoming_regressions if slot.id != action.slot_id
            ]
        if action.clear_rerun:
            fields["regression_rerun_requested"] = False

        with transaction(self.repos.conn):
            self.repos.cycles.create(action.cycle)
            self.repos.tasks.create_many(action.tasks)
            if fields:
                self.repos.cron_jobs.update(job.id, **fields)

        result.transitions.append(f"cycle {action.cycle.cycle_tag} opened")
        logger.info(
            "regression_cycle_opened",
            release_id=job.release_id,
            cycle_tag=action.cycle.cycle_tag,
            slot_id=action.slot_id,
            tasks=[t.label for t in action.tasks],
        )

    def _transition(
        self,
        action: TransitionStages,
        job: CronJob,
        now: datetime,
        result: AdvanceResult,
    ) -> None:
        fields: dict[str, Any] = dict(stage_patch_fields(job, action.stages))
        if action.pause_type is not None:
            fields["pause_type"] = action.pause_type
        if action.stop:
            fields["cron_status"] = CronStatus.STOPPED
            fields["stopped_at"] = now

        with transaction(self.repos.conn):
            self.repos.cron_jobs.update(job.id, **fields)

        for stage, status in action.stages.items():
            result.transitions.append(f"{stage.value} {status.value}")
        logger.info(
            "stages_transitioned",
            release_id=job.release_id,
            stages={stage.value: status.value for stage, status in action.stages.items()},
            pause_type=action.pause_type.value if action.pause_type else None,
            stopped=action.stop,
        )

    def _dispatch(self, action: DispatchTask, snapshot: ReleaseSnapshot, result: AdvanceResult) -> bool:
        task, release, now = action.task, snapshot.release, snapshot.now
        if self.lease_keeper is not None and not self.lease_keeper():
            logger.warning("lease_lost", release_id=release.id, task=task.label, task_id=task.id)
            result.lease_lost = True
            return False
        if action.catch_up:
            logger.info(
                "fork_branch_catch_up",
                release_id=release.id,
                kickoff_at=release.kickoff_at.isoformat() if release.kickoff_at else None,
            )
        if task.status == TaskStatus.RUNNING:
            logger.warning("orphaned_task_redispatched", release_id=release.id, task=task.label, task_id=task.id)

        validate_task_transition(task.status, TaskStatus.RUNNING)
        with transaction(self.repos.conn):
            self.repos.tasks.update(task.id, status=TaskStatus.RUNNING, next_attempt_at=None)

        outcome = self.dispatcher.dispatch(task, release, now)
        persist_outcome(self.repos, task, outcome, now)

        result.dispatched.append(task.label)
        logger.info(
            "task_dispatched",
            release_id=release.id,
            task=task.label,
            status=outcome.status.value,
            retry_count=outcome.retry_count,
        )
        if outcome.succeeded or outcome.awaiting_callback:
            return True
        result.failed_tasks.append(task.label)
        return False


__all__ = [
    "AdvanceResult",
    "CronJobStateMachine",
    "DEFAULT_MAX_STEPS",
    "persist_outcome",
    "record_task_callback",
    "retry_task",
    "stage_patch_fields",
]
