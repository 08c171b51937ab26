"""Cron job repository - stage record plus the per-release lease.

Manifesto:
    Two scheduler instances polling the same release in the same second
    must not both advance it. The lease lives on the cron job row and is
    claimed with one conditional UPDATE, so the database arbitrates: the
    statement matches only if the row is unlocked, its lease expired, or
    the caller already holds it. ``rowcount == 1`` means we own it.

Tags:
    release-spine, repository, cron-job, distributed-locks, lease

Doc-Types:
    api-reference
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from release_spine.core.models import (
    CronConfig,
    CronJob,
    CronStatus,
    PauseType,
    RegressionSlot,
    StageStatus,
    sort_slots,
)
from release_spine.core.repository import BaseRepository
from release_spine.core.timestamps import from_iso8601, to_iso8601, utc_now

from ._helpers import load_json, to_db_fields


class CronJobRepository(BaseRepository):
    """CRUD and lease compare-and-set for the ``cron_jobs`` table."""

    TABLE = "cron_jobs"

    def create(self, job: CronJob) -> CronJob:
        self.insert(self.TABLE, to_db_fields({
            "id": job.id,
            "release_id": job.release_id,
            "cron_config": job.cron_config,
            "stage1_status": job.stage1_status,
            "stage2_status": job.stage2_status,
            "stage3_status": job.stage3_status,
            "auto_transition_to_stage2": job.auto_transition_to_stage2,
            "auto_transition_to_stage3": job.auto_transition_to_stage3,
            "has_manual_build_upload": job.has_manual_build_upload,
            "upcoming_regressions": sort_slots(job.upcoming_regressions),
            "regression_rerun_requested": job.regression_rerun_requested,
            "cron_status": job.cron_status,
            "pause_type": job.pause_type,
            "started_at": job.started_at,
            "stopped_at": job.stopped_at,
            "created_at": job.created_at,
            "updated_at": job.updated_at,
        }))
        return job

    def get(self, job_id: str) -> CronJob | None:
        row = self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE id = {self.ph(1)}",
            (job_id,),
        )
        return self._row_to_cron_job(row) if row else None

    def get_by_release(self, release_id: str) -> CronJob | None:
        row = self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE release_id = {self.ph(1)}",
            (release_id,),
        )
        return self._row_to_cron_job(row) if row else None

    def update(self, job_id: str, **fields: Any) -> int:
        """Update columns on a cron job in a single statement.

        A single UPDATE is what keeps a stage transition atomic: all stage
        columns touched by one logical transition go through one call.
        """
        if "upcoming_regressions" in fields:
            fields["upcoming_regressions"] = sort_slots(list(fields["upcoming_regressions"]))
        fields.setdefault("updated_at", utc_now())
        return self.update_fields(self.TABLE, job_id, to_db_fields(fields))

    def list(self, cron_status: CronStatus | None = None) -> list[CronJob]:
        if cron_status is None:
            rows = self.query(f"SELECT * FROM {self.TABLE} ORDER BY created_at")
        else:
            rows = self.query(
                f"SELECT * FROM {self.TABLE} WHERE cron_status = {self.ph(1)} ORDER BY created_at",
                (cron_status.value,),
            )
        return [self._row_to_cron_job(row) for row in rows]

    def get_due_cron_jobs(self, now: datetime) -> list[CronJob]:
        """RUNNING cron jobs whose per-release cadence has elapsed."""
        return [job for job in self.list(CronStatus.RUNNING) if job.is_due(now)]

    # === Lease ===

    def try_acquire_lock(
        self,
        job_id: str,
        owner_id: str,
        lease_seconds: float,
        now: datetime,
    ) -> bool:
        """Atomically claim the lease. Commits immediately.

        Re-acquiring a lease we already hold refreshes its expiry.
        """
        expiry = now + timedelta(seconds=lease_seconds)
        now_iso = to_iso8601(now)
        cursor = self.execute(
            f"""
            UPDATE {self.TABLE}
            SET locked_by = {self.ph(1)}, locked_at = {self.ph(1)}, lock_expiry = {self.ph(1)}
            WHERE id = {self.ph(1)}
              AND (
                locked_by IS NULL
                OR lock_expiry IS NULL
                OR lock_expiry <= {self.ph(1)}
                OR locked_by = {self.ph(1)}
              )
            """,
            (owner_id, now_iso, to_iso8601(expiry), job_id, now_iso, owner_id),
        )
        self.commit()
        return cursor.rowcount == 1

    def release_lock(self, job_id: str, owner_id: str | None = None) -> bool:
        """Clear the lease columns. With ``owner_id``, only if we hold it."""
        sql = (
            f"UPDATE {self.TABLE} SET locked_by = NULL, locked_at = NULL, lock_expiry = NULL "
            f"WHERE id = {self.ph(1)}"
        )
        params: tuple = (job_id,)
        if owner_id is not None:
            sql += f" AND locked_by = {self.ph(1)}"
            params = (job_id, owner_id)
        cursor = self.execute(sql, params)
        self.commit()
        return cursor.rowcount == 1

    def list_locked(self, now: datetime) -> list[CronJob]:
        """Cron jobs holding an unexpired lease."""
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE locked_by IS NOT NULL "
            f"AND lock_expiry > {self.ph(1)} ORDER BY locked_at",
            (to_iso8601(now),),
        )
        return [self._row_to_cron_job(row) for row in rows]

    def clear_expired_locks(self, now: datetime) -> int:
        cursor = self.execute(
            f"UPDATE {self.TABLE} SET locked_by = NULL, locked_at = NULL, lock_expiry = NULL "
            f"WHERE locked_by IS NOT NULL AND lock_expiry <= {self.ph(1)}",
            (to_iso8601(now),),
        )
        self.commit()
        return cursor.rowcount

    def clear_all_locks(self) -> int:
        cursor = self.execute(
            f"UPDATE {self.TABLE} SET locked_by = NULL, locked_at = NULL, lock_expiry = NULL "
            f"WHERE locked_by IS NOT NULL"
        )
        self.commit()
        return cursor.rowcount

    def _row_to_cron_job(self, row: dict[str, Any]) -> CronJob:
        return CronJob(
            id=row["id"],
            release_id=row["release_id"],
            cron_config=CronConfig.from_dict(load_json(row["cron_config"], {})),
            stage1_status=StageStatus(row["stage1_status"]),
            stage2_status=StageStatus(row["stage2_status"]),
            stage3_status=StageStatus(row["stage3_status"]),
            auto_transition_to_stage2=bool(row["auto_transition_to_stage2"]),
            auto_transition_to_stage3=bool(row["auto_transition_to_stage3"]),
            has_manual_build_upload=bool(row["has_manual_build_upload"]),
            upcoming_regressions=sort_slots([
                RegressionSlot.from_dict(slot)
                for slot in load_json(row["upcoming_regressions"], [])
            ]),
            regression_rerun_requested=bool(row["regression_rerun_requested"]),
            cron_status=CronStatus(row["cron_status"]),
            pause_type=PauseType(row["pause_type"]),
            locked_by=row["locked_by"],
            locked_at=from_iso8601(row["locked_at"]),
            lock_expiry=from_iso8601(row["lock_expiry"]),
            last_run_at=from_iso8601(row["last_run_at"]),
            started_at=from_iso8601(row["started_at"]),
            stopped_at=from_iso8601(row["stopped_at"]),
            created_at=from_iso8601(row["created_at"]),
            updated_at=from_iso8601(row["updated_at"]),
        )
