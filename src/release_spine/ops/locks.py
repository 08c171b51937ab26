"""
Lease management operations.

Inspect and release per-release leases. Wraps
:class:`~release_spine.scheduling.lease.LeaseLockManager`.
"""

from __future__ import annotations

from datetime import datetime

from release_spine.core.logging import get_logger
from release_spine.core.timestamps import utc_now
from release_spine.ops.context import OperationContext
from release_spine.ops.responses import LockSummary
from release_spine.ops.result import VALIDATION_FAILED, OperationResult, PagedResult, start_timer
from release_spine.scheduling.lease import LeaseLockManager

logger = get_logger(__name__)


def _lease_manager(ctx: OperationContext) -> LeaseLockManager:
    return LeaseLockManager(ctx.repositories().cron_jobs, instance_id=f"ops-{ctx.caller}")


def list_locks(ctx: OperationContext, now: datetime | None = None) -> PagedResult[LockSummary]:
    """List unexpired release leases."""
    timer = start_timer()

    try:
        locks = [LockSummary(**row) for row in _lease_manager(ctx).list_active_locks(now or utc_now())]
        return PagedResult.from_items(locks, total=len(locks), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", op="list_locks", error=str(exc))
        return PagedResult.fail("INTERNAL", f"Failed to list locks: {exc}", elapsed_ms=timer.elapsed_ms)


def release_lock(ctx: OperationContext, cron_job_id: str) -> OperationResult[bool]:
    """Force-release a lease regardless of its holder."""
    timer = start_timer()

    if not cron_job_id:
        return OperationResult.fail(
            VALIDATION_FAILED, "cron_job_id is required", elapsed_ms=timer.elapsed_ms
        )

    if ctx.dry_run:
        return OperationResult.ok(False, elapsed_ms=timer.elapsed_ms)

    try:
        released = ctx.repositories().cron_jobs.release_lock(cron_job_id)
        if released:
            logger.warning("lease_force_released", cron_job_id=cron_job_id, caller=ctx.caller, user=ctx.user)
        return OperationResult.ok(released, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", op="release_lock", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to release lock: {exc}", elapsed_ms=timer.elapsed_ms
        )


def cleanup_expired_locks(ctx: OperationContext, now: datetime | None = None) -> OperationResult[int]:
    """Clear leases whose expiry has passed."""
    timer = start_timer()

    if ctx.dry_run:
        return OperationResult.ok(0, elapsed_ms=timer.elapsed_ms)

    try:
        count = _lease_manager(ctx).cleanup_expired_locks(now or utc_now())
        return OperationResult.ok(count, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", op="cleanup_expired_locks", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to clean up locks: {exc}", elapsed_ms=timer.elapsed_ms
        )
