"""
Release operations.

Operator commands against a release: create it, trigger stages by hand,
pause/resume/archive it, add regression slots, retry failed tasks and
conclude tasks waiting on an external callback.

Every function validates against the persisted state first and returns
``INVALID_TRANSITION`` (or ``NOT_FOUND``) without writing anything when
the request does not fit. Accepted requests commit in one transaction.
The scheduler picks the change up on its next tick.

Writes hold the release lease, the same one a scheduler instance holds
while it advances the release, and read the state they validate only
after taking it. A release that is being advanced right now fails fast
with ``RELEASE_LOCKED``; retry once the tick is over.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from typing import Any

from release_spine.core.database import transaction
from release_spine.core.errors import (
    InvalidStageTransitionError,
    NotFoundError,
    ReleaseLockedError,
    ReleaseSpineError,
)
from release_spine.core.logging import get_logger
from release_spine.core.models import (
    STAGE_ORDER,
    CronJob,
    CronStatus,
    PauseType,
    RegressionSlot,
    Release,
    ReleaseStatus,
    ReleaseTask,
    StageStatus,
    TaskStage,
    TaskStatus,
    sort_slots,
)
from release_spine.core.repositories import Repositories
from release_spine.core.settings import get_settings
from release_spine.core.timestamps import ensure_utc, to_iso8601, utc_now
from release_spine.execution import OutcomeResolver, retry_strategy_from_settings
from release_spine.orchestration import state_machine
from release_spine.orchestration.state_machine import stage_patch_fields
from release_spine.ops.context import OperationContext
from release_spine.ops.requests import CreateReleaseRequest, ListReleasesRequest
from release_spine.ops.responses import (
    ReleaseCreated,
    ReleaseStateChanged,
    ReleaseStatusView,
    ReleaseSummary,
    StageTriggered,
)
from release_spine.ops.result import (
    VALIDATION_FAILED,
    OperationResult,
    PagedResult,
    fail_from_error,
    start_timer,
)
from release_spine.scheduling.lease import LeaseLockManager

logger = get_logger(__name__)

OPS_LEASE_SECONDS = 60

_AUTO_FLAGS = {
    TaskStage.REGRESSION: "auto_transition_to_stage2",
    TaskStage.PRE_RELEASE: "auto_transition_to_stage3",
}


# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _load(repos: Repositories, release_id: str) -> tuple[Release, CronJob]:
    release = repos.releases.get(release_id)
    if release is None:
        raise NotFoundError(f"Release '{release_id}' not found").with_context(release_id=release_id)
    job = repos.cron_jobs.get_by_release(release_id)
    if job is None:
        raise NotFoundError(f"Cron job for release '{release_id}' not found").with_context(
            release_id=release_id
        )
    return release, job


@contextmanager
def _release_lease(
    ctx: OperationContext,
    repos: Repositories,
    release_id: str,
) -> Iterator[tuple[Release, CronJob]]:
    """Hold the release lease and yield the release as it is under the lease.

    Dry runs write nothing and read without the lease.
    """
    release, job = _load(repos, release_id)
    if ctx.dry_run:
        yield release, job
        return

    leases = LeaseLockManager(
        repos.cron_jobs,
        instance_id=f"ops-{ctx.caller}-{ctx.request_id}",
        lease_seconds=OPS_LEASE_SECONDS,
    )
    if not leases.acquire(job.id):
        holder = leases.get_lock_holder(job.id)
        raise ReleaseLockedError(
            f"Release '{release_id}' is locked by {holder or 'another instance'}; retry shortly"
        ).with_context(release_id=release_id, cron_job_id=job.id)
    try:
        yield _load(repos, release_id)
    finally:
        leases.release(job.id)


def _reject(action: str, reason: str, release_id: str) -> InvalidStageTransitionError:
    return InvalidStageTransitionError(f"Cannot {action}", reason=reason).with_context(
        release_id=release_id
    )


def _require_active(release: Release, action: str) -> None:
    if release.status == ReleaseStatus.ARCHIVED:
        raise _reject(action, "Release is archived", release.id)


def _failure(action: str, exc: Exception, timer: Any) -> OperationResult[Any]:
    if isinstance(exc, ReleaseSpineError):
        return fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
    logger.exception("op_failed", op=action, error=str(exc))
    return OperationResult.fail("INTERNAL", f"Failed to {action}: {exc}", elapsed_ms=timer.elapsed_ms)


def _state(release: Release, job: CronJob, **changes: Any) -> ReleaseStateChanged:
    return ReleaseStateChanged(
        release_id=release.id,
        release_status=release.status.value,
        cron_status=job.cron_status.value,
        pause_type=job.pause_type.value,
        **changes,
    )


def _cron_job_view(job: CronJob) -> dict[str, Any]:
    return {
        "id": job.id,
        "cron_status": job.cron_status.value,
        "pause_type": job.pause_type.value,
        "auto_transition_to_stage2": job.auto_transition_to_stage2,
        "auto_transition_to_stage3": job.auto_transition_to_stage3,
        "has_manual_build_upload": job.has_manual_build_upload,
        "regression_rerun_requested": job.regression_rerun_requested,
        "cron_config": job.cron_config.to_dict(),
        "locked_by": job.locked_by,
        "lock_expiry": to_iso8601(job.lock_expiry),
        "last_run_at": to_iso8601(job.last_run_at),
        "started_at": to_iso8601(job.started_at),
        "stopped_at": to_iso8601(job.stopped_at),
    }


def _validate_create(request: CreateReleaseRequest) -> list[str]:
    errors: list[str] = []
    if not request.version.strip():
        errors.append("version is required")
    if not request.platforms:
        errors.append("at least one platform is required")
    kickoff = ensure_utc(request.kickoff_at) if request.kickoff_at else None
    target = ensure_utc(request.target_release_at) if request.target_release_at else None
    if kickoff and target and target <= kickoff:
        errors.append("target_release_at must be after kickoff_at")
    for slot in request.regression_slots:
        at = ensure_utc(slot.scheduled_at)
        if kickoff and at < kickoff:
            errors.append(f"regression slot {to_iso8601(at)} is before kickoff")
        if target and at > target:
            errors.append(f"regression slot {to_iso8601(at)} is after the target release date")
    if request.cron_config.interval_seconds <= 0:
        errors.append("cron_config.interval_seconds must be positive")
    return errors


# ------------------------------------------------------------------ #
# Create / read
# ------------------------------------------------------------------ #


def create_release(
    ctx: OperationContext,
    request: CreateReleaseRequest,
) -> OperationResult[ReleaseCreated]:
    """Create a release and the cron job that drives it."""
    timer = start_timer()

    errors = _validate_create(request)
    if errors:
        return OperationResult.fail(
            VALIDATION_FAILED,
            "; ".join(errors),
            details={"errors": errors},
            elapsed_ms=timer.elapsed_ms,
        )

    now = utc_now()
    release = Release.create(
        request.version.strip(),
        release_type=request.release_type,
        kickoff_at=ensure_utc(request.kickoff_at) if request.kickoff_at else None,
        target_release_at=ensure_utc(request.target_release_at) if request.target_release_at else None,
        base_branch=request.base_branch,
        parent_release_id=request.parent_release_id,
        platforms=list(request.platforms),
        has_project_management_integration=request.has_project_management_integration,
        has_test_platform_integration=request.has_test_platform_integration,
    )
    job = CronJob.create(
        release.id,
        cron_config=request.cron_config,
        auto_transition_to_stage2=request.auto_transition_to_stage2,
        auto_transition_to_stage3=request.auto_transition_to_stage3,
        has_manual_build_upload=request.has_manual_build_upload,
        upcoming_regressions=[
            replace(slot, scheduled_at=ensure_utc(slot.scheduled_at)) for slot in request.regression_slots
        ],
        started_at=now,
    )
    created = ReleaseCreated(
        release_id=release.id,
        cron_job_id=job.id,
        version=release.version,
        regression_slots=len(job.upcoming_regressions),
        dry_run=ctx.dry_run,
    )

    if ctx.dry_run:
        return OperationResult.ok(created, elapsed_ms=timer.elapsed_ms)

    try:
        repos = ctx.repositories()
        with transaction(ctx.conn):
            repos.releases.create(release)
            repos.cron_jobs.create(job)
        logger.info(
            "release_created",
            release_id=release.id,
            version=release.version,
            caller=ctx.caller,
            request_id=ctx.request_id,
        )
        return OperationResult.ok(created, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return _failure("create release", exc, timer)


def get_release_status(
    ctx: OperationContext,
    release_id: str,
) -> OperationResult[ReleaseStatusView]:
    """Stage statuses, tasks with outputs/conclusions, and regression cycles."""
    timer = start_timer()

    try:
        repos = ctx.repositories()
        release, job = _load(repos, release_id)
        view = ReleaseStatusView(
            release=release.to_dict(),
            cron_job=_cron_job_view(job),
            stages={stage.value: status.value for stage, status in job.stage_statuses().items()},
            tasks=[task.to_dict() for task in repos.tasks.list_for_release(release_id)],
            cycles=[cycle.to_dict() for cycle in repos.cycles.list_for_release(release_id)],
            upcoming_regressions=[slot.to_dict() for slot in job.upcoming_regressions],
        )
        return OperationResult.ok(view, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return _failure("load release", exc, timer)


def list_releases(
    ctx: OperationContext,
    request: ListReleasesRequest | None = None,
) -> PagedResult[ReleaseSummary]:
    """List releases in creation order with their stage statuses."""
    timer = start_timer()
    request = request or ListReleasesRequest()

    try:
        status = ReleaseStatus(request.status) if request.status else None
    except ValueError:
        return PagedResult.fail(
            VALIDATION_FAILED,
            f"Unknown release status '{request.status}'",
            elapsed_ms=timer.elapsed_ms,
        )

    try:
        repos = ctx.repositories()
        releases = repos.releases.list(status)
        jobs = {job.release_id: job for job in repos.cron_jobs.list()}
    except Exception as exc:
        logger.exception("op_failed", op="list_releases", error=str(exc))
        return PagedResult.fail("INTERNAL", f"Failed to list releases: {exc}", elapsed_ms=timer.elapsed_ms)

    page = releases[request.offset : request.offset + request.limit]
    summaries = []
    for release in page:
        job = jobs.get(release.id)
        summaries.append(
            ReleaseSummary(
                release_id=release.id,
                version=release.version,
                status=release.status.value,
                kickoff_at=to_iso8601(release.kickoff_at),
                stage1_status=job.stage1_status.value if job else None,
                stage2_status=job.stage2_status.value if job else None,
                stage3_status=job.stage3_status.value if job else None,
                cron_status=job.cron_status.value if job else None,
                pause_type=job.pause_type.value if job else None,
            )
        )
    return PagedResult.from_items(
        summaries,
        total=len(releases),
        limit=request.limit,
        offset=request.offset,
        elapsed_ms=timer.elapsed_ms,
    )


# ------------------------------------------------------------------ #
# Stage triggers
# ------------------------------------------------------------------ #


def _trigger_stage(
    ctx: OperationContext,
    release_id: str,
    stage: TaskStage,
) -> OperationResult[StageTriggered]:
    timer = start_timer()
    action = f"trigger {stage.value}"

    try:
        repos = ctx.repositories()
        with _release_lease(ctx, repos, release_id) as (release, job):
            _require_active(release, action)

            previous = STAGE_ORDER[STAGE_ORDER.index(stage) - 1]
            previous_status = job.stage_status(previous)
            if previous_status != StageStatus.COMPLETED:
                raise _reject(
                    action,
                    f"{previous.value} must be COMPLETED before triggering {stage.value}. "
                    f"Current status: {previous_status.value}",
                    release_id,
                )
            current = job.stage_status(stage)
            if current in (StageStatus.IN_PROGRESS, StageStatus.COMPLETED):
                raise _reject(action, f"{stage.value} is already {current.value}", release_id)

            fields: dict[str, Any] = {
                _AUTO_FLAGS[stage]: True,
                **stage_patch_fields(job, {stage: StageStatus.IN_PROGRESS}),
                "cron_status": CronStatus.RUNNING,
                "pause_type": PauseType.NONE,
                "stopped_at": None,
            }
            warnings: list[str] = []
            if stage == TaskStage.PRE_RELEASE and job.upcoming_regressions:
                warnings.append(
                    f"{len(job.upcoming_regressions)} upcoming regression slot(s) dropped"
                )
                fields["upcoming_regressions"] = []
                fields["regression_rerun_requested"] = False

            triggered = StageTriggered(
                release_id=release_id,
                stage=stage.value,
                stage_status=StageStatus.IN_PROGRESS.value,
                dry_run=ctx.dry_run,
            )
            if ctx.dry_run:
                return OperationResult.ok(triggered, warnings=warnings, elapsed_ms=timer.elapsed_ms)

            with transaction(ctx.conn):
                repos.cron_jobs.update(job.id, **fields)
        logger.info(
            "stage_triggered",
            release_id=release_id,
            stage=stage.value,
            caller=ctx.caller,
            request_id=ctx.request_id,
        )
        return OperationResult.ok(triggered, warnings=warnings, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return _failure(action, exc, timer)


def trigger_stage2(ctx: OperationContext, release_id: str) -> OperationResult[StageTriggered]:
    """Start regression by hand, e.g. after a manual build upload."""
    return _trigger_stage(ctx, release_id, TaskStage.REGRESSION)


def trigger_stage3(ctx: OperationContext, release_id: str) -> OperationResult[StageTriggered]:
    """Start pre-release once regression is complete."""
    return _trigger_stage(ctx, release_id, TaskStage.PRE_RELEASE)


# ------------------------------------------------------------------ #
# Lifecycle
# ------------------------------------------------------------------ #


def archive_release(ctx: OperationContext, release_id: str) -> OperationResult[ReleaseStateChanged]:
    """Cancel a release: ARCHIVED and its cron STOPPED. Idempotent."""
    timer = start_timer()

    try:
        repos = ctx.repositories()
        with _release_lease(ctx, repos, release_id) as (release, job):
            if release.status == ReleaseStatus.ARCHIVED:
                return OperationResult.ok(
                    _state(release, job, unchanged=True),
                    warnings=["Release already archived"],
                    elapsed_ms=timer.elapsed_ms,
                )

            release.status = ReleaseStatus.ARCHIVED
            job.cron_status = CronStatus.STOPPED
            if ctx.dry_run:
                return OperationResult.ok(_state(release, job, dry_run=True), elapsed_ms=timer.elapsed_ms)

            with transaction(ctx.conn):
                repos.releases.update(release.id, status=ReleaseStatus.ARCHIVED)
                repos.cron_jobs.update(job.id, cron_status=CronStatus.STOPPED, stopped_at=utc_now())
        logger.info("release_archived", release_id=release_id, caller=ctx.caller, user=ctx.user)
        return OperationResult.ok(_state(release, job), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return _failure("archive release", exc, timer)


def pause_release(ctx: OperationContext, release_id: str) -> OperationResult[ReleaseStateChanged]:
    """Stop automatic progress until :func:`resume_release`."""
    timer = start_timer()

    try:
        repos = ctx.repositories()
        with _release_lease(ctx, repos, release_id) as (release, job):
            _require_active(release, "pause release")
            if job.cron_status == CronStatus.STOPPED:
                raise _reject("pause release", "Cron job is STOPPED", release_id)
            if job.cron_status == CronStatus.PAUSED and job.pause_type == PauseType.USER_REQUESTED:
                return OperationResult.ok(_state(release, job, unchanged=True), elapsed_ms=timer.elapsed_ms)

            job.cron_status = CronStatus.PAUSED
            job.pause_type = PauseType.USER_REQUESTED
            if ctx.dry_run:
                return OperationResult.ok(_state(release, job, dry_run=True), elapsed_ms=timer.elapsed_ms)

            with transaction(ctx.conn):
                repos.cron_jobs.update(job.id, cron_status=job.cron_status, pause_type=job.pause_type)
        logger.info("release_paused", release_id=release_id, caller=ctx.caller, user=ctx.user)
        return OperationResult.ok(_state(release, job), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return _failure("pause release", exc, timer)


def resume_release(ctx: OperationContext, release_id: str) -> OperationResult[ReleaseStateChanged]:
    """Lift a user pause. Task-failure pauses are lifted by :func:`retry_task`."""
    timer = start_timer()

    try:
        repos = ctx.repositories()
        with _release_lease(ctx, repos, release_id) as (release, job):
            _require_active(release, "resume release")
            if job.cron_status == CronStatus.STOPPED:
                raise _reject("resume release", "Cron job is STOPPED", release_id)
            if job.pause_type == PauseType.TASK_FAILURE:
                raise _reject(
                    "resume release",
                    "Release is halted by a failed task; retry the task instead",
                    release_id,
                )
            if job.cron_status == CronStatus.RUNNING and job.pause_type != PauseType.USER_REQUESTED:
                return OperationResult.ok(_state(release, job, unchanged=True), elapsed_ms=timer.elapsed_ms)

            job.cron_status = CronStatus.RUNNING
            job.pause_type = PauseType.NONE
            if ctx.dry_run:
                return OperationResult.ok(_state(release, job, dry_run=True), elapsed_ms=timer.elapsed_ms)

            with transaction(ctx.conn):
                repos.cron_jobs.update(job.id, cron_status=job.cron_status, pause_type=job.pause_type)
        logger.info("release_resumed", release_id=release_id, caller=ctx.caller, user=ctx.user)
        return OperationResult.ok(_state(release, job), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return _failure("resume release", exc, timer)


# ------------------------------------------------------------------ #
# Regression slots
# ------------------------------------------------------------------ #


def _require_regression_open(release: Release, job: CronJob, action: str) -> None:
    _require_active(release, action)
    if job.cron_status == CronStatus.STOPPED:
        raise _reject(action, "Cron job is STOPPED", release.id)
    if job.stage3_status != StageStatus.NOT_STARTED:
        raise _reject(action, f"Pre-release is already {job.stage3_status.value}", release.id)


def add_regression_slot(
    ctx: OperationContext,
    release_id: str,
    slot: RegressionSlot,
) -> OperationResult[dict[str, Any]]:
    """Schedule another regression cycle.

    A completed regression stage reopens on the next tick while
    pre-release has not started. The slot list is read and rewritten
    under the release lease, so a tick consuming a slot at the same
    moment cannot drop the new one.
    """
    timer = start_timer()

    try:
        repos = ctx.repositories()
        with _release_lease(ctx, repos, release_id) as (release, job):
            _require_regression_open(release, job, "add regression slot")
            slot = replace(slot, scheduled_at=ensure_utc(slot.scheduled_at))
            if release.target_release_at and slot.scheduled_at > release.target_release_at:
                return OperationResult.fail(
                    VALIDATION_FAILED,
                    f"Regression slot {to_iso8601(slot.scheduled_at)} is after the target release date",
                    elapsed_ms=timer.elapsed_ms,
                )

            slots = sort_slots([*job.upcoming_regressions, slot])
            data = {
                "release_id": release_id,
                "slot": slot.to_dict(),
                "upcoming_regressions": len(slots),
                "dry_run": ctx.dry_run,
            }
            if ctx.dry_run:
                return OperationResult.ok(data, elapsed_ms=timer.elapsed_ms)

            with transaction(ctx.conn):
                repos.cron_jobs.update(job.id, upcoming_regressions=slots)
        logger.info(
            "regression_slot_added",
            release_id=release_id,
            slot_id=slot.id,
            scheduled_at=to_iso8601(slot.scheduled_at),
        )
        return OperationResult.ok(data, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return _failure("add regression slot", exc, timer)


def request_regression_rerun(ctx: OperationContext, release_id: str) -> OperationResult[dict[str, Any]]:
    """Ask for one extra regression cycle outside the slot schedule."""
    timer = start_timer()
    action = "request regression rerun"

    try:
        repos = ctx.repositories()
        with _release_lease(ctx, repos, release_id) as (release, job):
            _require_regression_open(release, job, action)
            if job.stage2_status == StageStatus.NOT_STARTED:
                raise _reject(action, "Regression has not started", release_id)

            data = {"release_id": release_id, "regression_rerun_requested": True, "dry_run": ctx.dry_run}
            if job.regression_rerun_requested or ctx.dry_run:
                return OperationResult.ok(data, elapsed_ms=timer.elapsed_ms)

            with transaction(ctx.conn):
                repos.cron_jobs.update(job.id, regression_rerun_requested=True)
        logger.info("regression_rerun_requested", release_id=release_id, caller=ctx.caller)
        return OperationResult.ok(data, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return _failure(action, exc, timer)


# ------------------------------------------------------------------ #
# Tasks
# ------------------------------------------------------------------ #


def _get_task(repos: Repositories, task_id: str) -> ReleaseTask:
    task = repos.tasks.get(task_id)
    if task is None:
        raise NotFoundError(f"Task '{task_id}' not found").with_context(task_id=task_id)
    return task


def retry_task(ctx: OperationContext, task_id: str) -> OperationResult[dict[str, Any]]:
    """Reset a FAILED task; its stage resumes on the next tick."""
    timer = start_timer()

    try:
        repos = ctx.repositories()
        release_id = _get_task(repos, task_id).release_id
        with _release_lease(ctx, repos, release_id) as (release, _):
            task = _get_task(repos, task_id)
            _require_active(release, f"retry task {task.label}")

            if ctx.dry_run:
                if task.status != TaskStatus.FAILED:
                    raise _reject(
                        f"retry task {task.label}",
                        f"Task is {task.status.value}; only FAILED tasks can be retried",
                        release.id,
                    )
                return OperationResult.ok({**task.to_dict(), "dry_run": True}, elapsed_ms=timer.elapsed_ms)

            task = state_machine.retry_task(repos, task_id)
        return OperationResult.ok(task.to_dict(), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return _failure("retry task", exc, timer)


def record_task_callback(
    ctx: OperationContext,
    task_id: str,
    *,
    succeeded: bool,
    output: dict[str, Any] | None = None,
    error: str | None = None,
    resolver: OutcomeResolver | None = None,
) -> OperationResult[dict[str, Any]]:
    """Conclude a task that was dispatched with ``awaiting_callback``.

    Success makes the task SUCCEEDED. A failure follows the same retry
    policy as a failure during dispatch.
    """
    timer = start_timer()

    try:
        repos = ctx.repositories()
        release_id = _get_task(repos, task_id).release_id
        with _release_lease(ctx, repos, release_id):
            if ctx.dry_run:
                task = _get_task(repos, task_id)
                if task.status != TaskStatus.RUNNING:
                    raise _reject(
                        f"record callback for {task.label}",
                        f"Task is {task.status.value}; callbacks apply to RUNNING tasks",
                        task.release_id,
                    )
                return OperationResult.ok({**task.to_dict(), "dry_run": True}, elapsed_ms=timer.elapsed_ms)

            resolver = resolver or OutcomeResolver(retry_strategy_from_settings(get_settings()))
            outcome = state_machine.record_task_callback(
                repos,
                resolver,
                task_id,
                succeeded=succeeded,
                output=output,
                error=error,
            )
        data = {
            "task_id": outcome.task_id,
            "status": outcome.status.value,
            "retry_count": outcome.retry_count,
            "next_attempt_at": to_iso8601(outcome.next_attempt_at),
            "conclusion": outcome.conclusion,
        }
        return OperationResult.ok(data, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return _failure("record task callback", exc, timer)
