"""Tests for lease operations."""

from datetime import timedelta

from conftest import KICKOFF
from release_spine.ops import VALIDATION_FAILED
from release_spine.ops.locks import cleanup_expired_locks, list_locks, release_lock


class TestLockOperations:
    def test_list_active_locks(self, ctx, repos, make_release):
        release, job = make_release()
        repos.cron_jobs.try_acquire_lock(job.id, "scheduler-1", 300, KICKOFF)

        result = list_locks(ctx, now=KICKOFF)

        assert result.success
        assert result.total == 1
        lock = result.data[0]
        assert lock.cron_job_id == job.id
        assert lock.release_id == release.id
        assert lock.locked_by == "scheduler-1"

    def test_force_release(self, ctx, repos, make_release):
        _, job = make_release()
        repos.cron_jobs.try_acquire_lock(job.id, "scheduler-1", 300, KICKOFF)

        result = release_lock(ctx, job.id)

        assert result.success and result.data is True
        assert repos.cron_jobs.get(job.id).locked_by is None
        assert release_lock(ctx, job.id).data is False

    def test_release_requires_id(self, ctx):
        assert release_lock(ctx, "").error.code == VALIDATION_FAILED

    def test_release_dry_run(self, dry_ctx, repos, make_release):
        _, job = make_release()
        repos.cron_jobs.try_acquire_lock(job.id, "scheduler-1", 300, KICKOFF)
        assert release_lock(dry_ctx, job.id).data is False
        assert repos.cron_jobs.get(job.id).locked_by == "scheduler-1"

    def test_cleanup_expired(self, ctx, repos, make_release):
        _, job = make_release()
        repos.cron_jobs.try_acquire_lock(job.id, "crashed", 60, KICKOFF)

        assert cleanup_expired_locks(ctx, now=KICKOFF).data == 0
        assert cleanup_expired_locks(ctx, now=KICKOFF + timedelta(minutes=2)).data == 1
        assert repos.cron_jobs.get(job.id).locked_by is None
