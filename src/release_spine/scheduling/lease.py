"""Per-release lease locks stored on the cron job row.

Manifesto:
    Two scheduler instances must never advance the same release at the
    same time. The lease is three columns on ``cron_jobs`` claimed with a
    single compare-and-set UPDATE, so the database picks the winner. A
    lease carries an expiry: a crashed holder blocks its release for at
    most ``lease_seconds`` before another instance may take over.

Tags:
    release-spine, scheduling, distributed-locks, TTL, lease

Doc-Types:
    api-reference

    Lease Flow::

        Instance A: UPDATE ... WHERE unlocked OR expired OR mine  -> 1 row  -> holds
        Instance B: UPDATE ... (same predicate, A's lease live)   -> 0 rows -> skip
        A crashes; after lock_expiry any instance's UPDATE matches again.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import uuid4

from release_spine.core.repositories import CronJobRepository
from release_spine.core.timestamps import to_iso8601, utc_now

logger = logging.getLogger(__name__)

DEFAULT_LEASE_SECONDS = 300


class LeaseLockManager:
    """Acquire/release release leases for one scheduler instance.

    Example:
        >>> leases = LeaseLockManager(cron_jobs, instance_id="scheduler-1")
        >>> if leases.acquire(job.id):
        ...     try:
        ...         machine.advance()
        ...     finally:
        ...         leases.release(job.id)
        ... else:
        ...     print("Another instance holds the lease")
    """

    def __init__(
        self,
        cron_jobs: CronJobRepository,
        instance_id: str | None = None,
        lease_seconds: int = DEFAULT_LEASE_SECONDS,
    ) -> None:
        self.cron_jobs = cron_jobs
        self.instance_id = instance_id or str(uuid4())
        self.lease_seconds = lease_seconds

    def acquire(self, cron_job_id: str, now: datetime | None = None) -> bool:
        """Claim the lease. Re-acquiring our own lease refreshes its expiry.

        Returns:
            True if this instance now holds the lease, False if another
            instance holds an unexpired one.
        """
        acquired = self.cron_jobs.try_acquire_lock(
            cron_job_id,
            self.instance_id,
            self.lease_seconds,
            now or utc_now(),
        )
        if acquired:
            logger.debug(f"Acquired lease for cron job {cron_job_id}")
        else:
            logger.debug(f"Lease for cron job {cron_job_id} held by another instance")
        return acquired

    def release(self, cron_job_id: str) -> bool:
        """Release the lease if this instance holds it."""
        released = self.cron_jobs.release_lock(cron_job_id, self.instance_id)
        if released:
            logger.debug(f"Released lease for cron job {cron_job_id}")
        return released

    def is_locked(self, cron_job_id: str, now: datetime | None = None) -> bool:
        """True if any instance holds an unexpired lease."""
        job = self.cron_jobs.get(cron_job_id)
        return job is not None and job.is_locked(now or utc_now())

    def get_lock_holder(self, cron_job_id: str, now: datetime | None = None) -> str | None:
        job = self.cron_jobs.get(cron_job_id)
        if job is None or not job.is_locked(now or utc_now()):
            return None
        return job.locked_by

    # === Maintenance ===

    def list_active_locks(self, now: datetime | None = None) -> list[dict[str, Any]]:
        return [
            {
                "cron_job_id": job.id,
                "release_id": job.release_id,
                "locked_by": job.locked_by,
                "locked_at": to_iso8601(job.locked_at),
                "expires_at": to_iso8601(job.lock_expiry),
            }
            for job in self.cron_jobs.list_locked(now or utc_now())
        ]

    def cleanup_expired_locks(self, now: datetime | None = None) -> int:
        """Clear leases whose expiry has passed."""
        count = self.cron_jobs.clear_expired_locks(now or utc_now())
        if count > 0:
            logger.info(f"Cleaned up {count} expired leases")
        return count

    def force_release_all(self) -> int:
        """Clear every lease. Recovery and tests only."""
        count = self.cron_jobs.clear_all_locks()
        logger.warning(f"Force released {count} leases")
        return count


__all__ = ["DEFAULT_LEASE_SECONDS", "LeaseLockManager"]
