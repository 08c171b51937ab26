"""End-to-end tests for CronJobStateMachine.advance() against SQLite."""

import sqlite3
from datetime import timedelta

import pytest

from conftest import KICKOFF, slot_at
from release_spine.core.database import transaction
from release_spine.core.errors import DatabaseError, InvalidStageTransitionError, NotFoundError, StageOrderError
from release_spine.core.models import (
    CronStatus,
    PauseType,
    Platform,
    RegressionCycleStatus,
    ReleaseStatus,
    StageStatus,
    TaskStage,
    TaskStatus,
    TaskType,
)
from release_spine.orchestration import CronJobStateMachine, record_task_callback, retry_task

DAY = timedelta(days=1)


def _task(repos, release, task_type):
    return next(t for t in repos.tasks.list_for_release(release.id) if t.task_type == task_type)


class TestKickoff:
    def test_first_pass_creates_tasks(self, repos, make_release, advance, executor):
        release, job = make_release()
        result = advance(job, KICKOFF)

        assert result.steps == 1
        assert result.dispatched == []
        assert result.transitions == ["KICKOFF IN_PROGRESS"]
        assert executor.calls == []

        loaded = repos.cron_jobs.get(job.id)
        assert loaded.stage1_status == StageStatus.IN_PROGRESS
        assert loaded.started_at == KICKOFF
        assert repos.releases.get(release.id).status == ReleaseStatus.IN_PROGRESS
        assert [t.task_type for t in repos.tasks.list_for_release(release.id)] == [TaskType.FORK_BRANCH]

    def test_fork_waits_for_kickoff(self, make_release, advance, executor):
        _, job = make_release()
        early = KICKOFF - timedelta(hours=1)
        advance(job, early)
        result = advance(job, early)
        assert result.idle_reason == "kickoff: FORK_BRANCH=NOT_TIME_YET"
        assert executor.calls == []

    def test_fork_then_regression_starts(self, repos, make_release, advance):
        release, job = make_release(slots=(slot_at(2 * DAY),))
        advance(job, KICKOFF)
        result = advance(job, KICKOFF)

        assert result.steps == 2
        assert result.dispatched == ["FORK_BRANCH"]
        assert result.transitions == ["KICKOFF COMPLETED", "REGRESSION IN_PROGRESS"]
        assert result.idle_reason.startswith("next regression slot at ")
        assert repos.releases.get(release.id).branch == "release/v1.0.0"

    def test_executor_branch_output_wins(self, repos, make_release, advance, executor):
        release, job = make_release()
        executor.outputs[TaskType.FORK_BRANCH] = {"branch": "release/1.0"}
        advance(job, KICKOFF)
        advance(job, KICKOFF)
        assert repos.releases.get(release.id).branch == "release/1.0"

    def test_manual_upload_pauses_for_trigger(self, repos, make_release, advance):
        _, job = make_release(has_manual_build_upload=True)
        advance(job, KICKOFF)
        result = advance(job, KICKOFF)

        loaded = repos.cron_jobs.get(job.id)
        assert loaded.stage1_status == StageStatus.COMPLETED
        assert loaded.stage2_status == StageStatus.NOT_STARTED
        assert loaded.pause_type == PauseType.AWAITING_STAGE_TRIGGER
        assert result.transitions == ["KICKOFF COMPLETED"]
        assert advance(job, KICKOFF).idle_reason == "awaiting regression trigger"


class TestRegression:
    def test_slot_opens_and_runs_cycle(self, repos, make_release, advance):
        release, job = make_release(slots=(slot_at(2 * DAY),))
        advance(job, KICKOFF)
        advance(job, KICKOFF)

        at_slot = KICKOFF + 2 * DAY
        opened = advance(job, at_slot)
        assert opened.transitions == ["cycle v1.0.0_rc_0 opened"]
        assert repos.cron_jobs.get(job.id).upcoming_regressions == []

        ran = advance(job, at_slot)
        assert ran.dispatched == [
            "CREATE_RC_TAG",
            "CREATE_RELEASE_NOTES",
            "TRIGGER_REGRESSION_BUILDS[ANDROID]",
            "TRIGGER_REGRESSION_BUILDS[IOS]",
        ]
        assert ran.transitions[-1] == "REGRESSION COMPLETED"

        cycle = repos.cycles.get_latest(release.id)
        assert cycle.cycle_tag == "v1.0.0_rc_0"
        assert cycle.status == RegressionCycleStatus.DONE
        assert cycle.completed_at == at_slot

        loaded = repos.cron_jobs.get(job.id)
        assert loaded.stage2_status == StageStatus.COMPLETED
        assert loaded.pause_type == PauseType.AWAITING_STAGE_TRIGGER
        assert advance(job, at_slot).idle_reason == "awaiting pre-release trigger"

    def test_one_cycle_per_due_slot(self, repos, make_release, advance):
        release, job = make_release(slots=(slot_at(DAY), slot_at(2 * DAY)))
        advance(job, KICKOFF)
        advance(job, KICKOFF)

        later = KICKOFF + 3 * DAY
        assert advance(job, later).transitions == ["cycle v1.0.0_rc_0 opened"]
        second = advance(job, later)
        assert second.transitions[-1] == "cycle v1.0.0_rc_1 opened"
        assert len(repos.cron_jobs.get(job.id).upcoming_regressions) == 0

        advance(job, later)
        cycles = {c.cycle_tag: c for c in repos.cycles.list_for_release(release.id)}
        assert sorted(cycles) == ["v1.0.0_rc_0", "v1.0.0_rc_1"]
        assert all(c.status == RegressionCycleStatus.DONE for c in cycles.values())
        assert cycles["v1.0.0_rc_1"].is_latest
        assert not cycles["v1.0.0_rc_0"].is_latest

    def test_new_slot_reopens_regression(self, repos, make_release, advance):
        _, job = make_release(slots=(slot_at(2 * DAY),))
        advance(job, KICKOFF)
        advance(job, KICKOFF)
        advance(job, KICKOFF + 2 * DAY)
        advance(job, KICKOFF + 2 * DAY)

        with transaction(repos.conn):
            repos.cron_jobs.update(job.id, upcoming_regressions=[slot_at(3 * DAY)])
        result = advance(job, KICKOFF + 3 * DAY)

        assert result.transitions == ["REGRESSION IN_PROGRESS", "cycle v1.0.0_rc_1 opened"]
        loaded = repos.cron_jobs.get(job.id)
        assert loaded.stage2_status == StageStatus.IN_PROGRESS
        assert loaded.pause_type == PauseType.NONE

    def test_without_slots_waits_for_operator(self, repos, make_release, advance):
        release, job = make_release()
        advance(job, KICKOFF)
        assert advance(job, KICKOFF).idle_reason == "no regression slots scheduled"

        later = KICKOFF + DAY
        assert advance(job, later).idle_reason == "no regression slots scheduled"
        assert repos.cron_jobs.get(job.id).stage2_status == StageStatus.IN_PROGRESS
        assert repos.cycles.list_for_release(release.id) == []

        with transaction(repos.conn):
            repos.cron_jobs.update(job.id, upcoming_regressions=[slot_at(DAY)])
        assert advance(job, later).transitions == ["cycle v1.0.0_rc_0 opened"]


class TestPreRelease:
    def test_auto_stage3_runs_to_completion(self, repos, make_release, advance, executor):
        release, job = make_release(slots=(slot_at(2 * DAY),), auto_transition_to_stage3=True)
        executor.outputs[TaskType.CREATE_AAB_BUILD] = {"build_number": 412}
        at_slot = KICKOFF + 2 * DAY
        advance(job, KICKOFF)
        advance(job, KICKOFF)
        advance(job, at_slot)
        ran_cycle = advance(job, at_slot)
        assert ran_cycle.idle_reason == "pre-release tasks created"

        final = advance(job, at_slot)
        assert final.dispatched == [
            "PRE_RELEASE_CHERRY_PICKS_REMINDER",
            "CREATE_RELEASE_TAG",
            "CREATE_FINAL_RELEASE_NOTES",
            "TRIGGER_TEST_FLIGHT_BUILD[IOS]",
            "CREATE_AAB_BUILD[ANDROID]",
        ]
        loaded = repos.cron_jobs.get(job.id)
        assert loaded.stage3_status == StageStatus.COMPLETED
        assert loaded.cron_status == CronStatus.STOPPED
        assert loaded.stopped_at == at_slot

        stored = repos.releases.get(release.id)
        assert stored.final_build_numbers == {"ANDROID": "412"}
        assert stored.status == ReleaseStatus.IN_PROGRESS
        assert advance(job, at_slot).idle_reason == "cron STOPPED"

    def test_archived_release_stops(self, repos, make_release, advance):
        release, job = make_release()
        with transaction(repos.conn):
            repos.releases.update(release.id, status=ReleaseStatus.ARCHIVED)
        result = advance(job, KICKOFF)
        assert result.transitions == ["cron STOPPED"]
        assert repos.cron_jobs.get(job.id).cron_status == CronStatus.STOPPED
        assert repos.tasks.list_for_release(release.id) == []


class TestFailures:
    def test_non_retryable_failure_fails_stage(self, repos, make_release, advance, executor):
        release, job = make_release()
        executor.fail(TaskType.FORK_BRANCH, retryable=False)
        advance(job, KICKOFF)
        result = advance(job, KICKOFF)

        assert result.failed_tasks == ["FORK_BRANCH"]
        fork = _task(repos, release, TaskType.FORK_BRANCH)
        assert fork.status == TaskStatus.FAILED
        assert fork.retry_count == 1
        loaded = repos.cron_jobs.get(job.id)
        assert loaded.stage1_status == StageStatus.FAILED
        assert loaded.pause_type == PauseType.TASK_FAILURE
        assert advance(job, KICKOFF).idle_reason == "paused (TASK_FAILURE)"

    def test_retries_then_fails(self, repos, make_release, advance, executor):
        release, job = make_release()
        executor.fail(TaskType.FORK_BRANCH)
        advance(job, KICKOFF)
        for _ in range(4):
            assert advance(job, KICKOFF).failed_tasks == ["FORK_BRANCH"]

        assert executor.calls == ["FORK_BRANCH"] * 4
        fork = _task(repos, release, TaskType.FORK_BRANCH)
        assert fork.status == TaskStatus.FAILED
        assert fork.retry_count == 4
        assert fork.output["error"]["error_type"] == "ExecutorError"

    def test_executor_exception_is_contained(self, repos, make_release, advance, executor):
        release, job = make_release()
        executor.raise_on(TaskType.FORK_BRANCH, RuntimeError("git unreachable"))
        advance(job, KICKOFF)
        result = advance(job, KICKOFF)
        assert result.failed_tasks == ["FORK_BRANCH"]
        fork = _task(repos, release, TaskType.FORK_BRANCH)
        assert fork.status == TaskStatus.PENDING
        assert "RuntimeError: git unreachable" in fork.conclusion

    def test_retry_task_resumes(self, repos, make_release, advance, executor):
        release, job = make_release()
        executor.fail(TaskType.FORK_BRANCH, retryable=False)
        advance(job, KICKOFF)
        advance(job, KICKOFF)
        fork = _task(repos, release, TaskType.FORK_BRANCH)

        reset = retry_task(repos, fork.id)
        assert reset.status == TaskStatus.PENDING
        loaded = repos.cron_jobs.get(job.id)
        assert loaded.stage1_status == StageStatus.IN_PROGRESS
        assert loaded.pause_type == PauseType.NONE
        assert repos.tasks.get(fork.id).retry_count == 0

        executor.reset()
        result = advance(job, KICKOFF)
        assert result.dispatched == ["FORK_BRANCH"]
        assert repos.cron_jobs.get(job.id).stage1_status == StageStatus.COMPLETED

    def test_retry_task_requires_failed(self, repos, make_release, advance):
        release, job = make_release()
        advance(job, KICKOFF)
        fork = _task(repos, release, TaskType.FORK_BRANCH)
        with pytest.raises(InvalidStageTransitionError, match="Cannot retry"):
            retry_task(repos, fork.id)

    def test_retry_unknown_task(self, repos):
        with pytest.raises(NotFoundError):
            retry_task(repos, "missing")

    def test_corrupt_stage_order_raises(self, repos, make_release, advance):
        _, job = make_release()
        with transaction(repos.conn):
            repos.cron_jobs.update(job.id, stage2_status=StageStatus.IN_PROGRESS)
        with pytest.raises(StageOrderError):
            advance(job, KICKOFF)

    def test_unknown_cron_job(self, repos, dispatcher):
        with pytest.raises(NotFoundError):
            CronJobStateMachine(repos, dispatcher, "missing").advance(KICKOFF)


class TestCallbacks:
    def test_deferred_task_waits_for_callback(self, repos, make_release, advance, executor, dispatcher):
        release, job = make_release(platforms=(Platform.IOS,))
        executor.defer(TaskType.FORK_BRANCH, external_id="ci-77")
        advance(job, KICKOFF)
        result = advance(job, KICKOFF)

        assert result.dispatched == ["FORK_BRANCH"]
        assert result.idle_reason == "kickoff: FORK_BRANCH=AWAITING_CALLBACK"
        fork = _task(repos, release, TaskType.FORK_BRANCH)
        assert fork.status == TaskStatus.RUNNING
        assert fork.awaiting_callback is True
        assert fork.external_id == "ci-77"

        assert advance(job, KICKOFF).dispatched == []

        outcome = record_task_callback(
            repos, dispatcher, fork.id, succeeded=True, output={"branch": "release/ios-1.0.0"}, now=KICKOFF
        )
        assert outcome.succeeded
        assert repos.releases.get(release.id).branch == "release/ios-1.0.0"
        assert repos.tasks.get(fork.id).external_id == "ci-77"

        after = advance(job, KICKOFF)
        assert after.transitions[:2] == ["KICKOFF COMPLETED", "REGRESSION IN_PROGRESS"]

    def test_failed_callback_is_retried(self, repos, make_release, advance, executor, dispatcher):
        release, job = make_release()
        executor.defer(TaskType.FORK_BRANCH)
        advance(job, KICKOFF)
        advance(job, KICKOFF)
        fork = _task(repos, release, TaskType.FORK_BRANCH)

        outcome = record_task_callback(repos, dispatcher, fork.id, succeeded=False, error="CI red", now=KICKOFF)
        assert outcome.will_retry
        stored = repos.tasks.get(fork.id)
        assert stored.status == TaskStatus.PENDING
        assert stored.retry_count == 1
        assert stored.awaiting_callback is False

    def test_callback_requires_running_task(self, repos, make_release, advance, dispatcher):
        release, job = make_release()
        advance(job, KICKOFF)
        fork = _task(repos, release, TaskType.FORK_BRANCH)
        with pytest.raises(InvalidStageTransitionError):
            record_task_callback(repos, dispatcher, fork.id, succeeded=True, now=KICKOFF)


class TestReentrancy:
    def test_orphaned_running_task_redispatched(self, repos, make_release, advance, executor):
        release, job = make_release()
        advance(job, KICKOFF)
        fork = _task(repos, release, TaskType.FORK_BRANCH)
        with transaction(repos.conn):
            repos.tasks.update(fork.id, status=TaskStatus.RUNNING)

        result = advance(job, KICKOFF)
        assert result.dispatched == ["FORK_BRANCH"]
        assert repos.tasks.get(fork.id).status == TaskStatus.SUCCEEDED

    def test_step_limit(self, make_release, advance):
        _, job = make_release(slots=(slot_at(DAY),))
        advance(job, KICKOFF)
        result = advance(job, KICKOFF, max_steps=1)
        assert result.steps == 1
        assert result.idle_reason == "step limit (1) reached"

    def test_repeated_ticks_are_idempotent(self, repos, make_release, advance, executor):
        release, job = make_release(slots=(slot_at(2 * DAY),))
        advance(job, KICKOFF)
        advance(job, KICKOFF)
        for _ in range(3):
            assert advance(job, KICKOFF).steps == 0
        assert executor.calls == ["FORK_BRANCH"]
        assert len(repos.tasks.list_for_release(release.id)) == 1

    def test_result_dict(self, make_release, advance):
        release, job = make_release()
        data = advance(job, KICKOFF).to_dict()
        assert data["release_id"] == release.id
        assert data["steps"] == 1
        assert data["idle_reason"] == "kickoff tasks created"


def _failing_cron_job_update(*args, **kwargs):
    raise sqlite3.OperationalError("disk I/O error")


class TestRollback:
    def test_cycle_open_rolls_back_as_a_unit(self, repos, make_release, advance, monkeypatch):
        release, job = make_release(slots=(slot_at(2 * DAY),))
        advance(job, KICKOFF)
        advance(job, KICKOFF)
        at_slot = KICKOFF + 2 * DAY

        monkeypatch.setattr(repos.cron_jobs, "update", _failing_cron_job_update)
        with pytest.raises(DatabaseError, match="Transaction rolled back"):
            advance(job, at_slot)
        monkeypatch.undo()

        assert repos.cycles.list_for_release(release.id) == []
        assert [t.task_type for t in repos.tasks.list_for_release(release.id)] == [TaskType.FORK_BRANCH]
        loaded = repos.cron_jobs.get(job.id)
        assert len(loaded.upcoming_regressions) == 1
        assert loaded.regression_rerun_requested is False

        assert advance(job, at_slot).transitions == ["cycle v1.0.0_rc_0 opened"]
        assert repos.cron_jobs.get(job.id).upcoming_regressions == []
        assert repos.cycles.get_latest(release.id).cycle_tag == "v1.0.0_rc_0"

    def test_rerun_cycle_open_keeps_request_on_rollback(self, repos, make_release, advance, monkeypatch):
        release, job = make_release()
        advance(job, KICKOFF)
        advance(job, KICKOFF)
        with transaction(repos.conn):
            repos.cron_jobs.update(job.id, regression_rerun_requested=True)

        monkeypatch.setattr(repos.cron_jobs, "update", _failing_cron_job_update)
        with pytest.raises(DatabaseError):
            advance(job, KICKOFF)
        monkeypatch.undo()

        assert repos.cycles.list_for_release(release.id) == []
        assert repos.cron_jobs.get(job.id).regression_rerun_requested is True

    def test_terminal_failure_rolls_back_with_stage(self, repos, make_release, advance, executor, monkeypatch):
        release, job = make_release()
        executor.fail(TaskType.FORK_BRANCH, retryable=False)
        advance(job, KICKOFF)

        monkeypatch.setattr(repos.cron_jobs, "update", _failing_cron_job_update)
        with pytest.raises(DatabaseError):
            advance(job, KICKOFF)
        monkeypatch.undo()

        fork = _task(repos, release, TaskType.FORK_BRANCH)
        assert fork.status == TaskStatus.RUNNING
        assert fork.conclusion is None
        loaded = repos.cron_jobs.get(job.id)
        assert loaded.stage1_status == StageStatus.IN_PROGRESS
        assert loaded.pause_type == PauseType.NONE

        result = advance(job, KICKOFF)
        assert result.failed_tasks == ["FORK_BRANCH"]
        assert executor.calls == ["FORK_BRANCH", "FORK_BRANCH"]
        assert _task(repos, release, TaskType.FORK_BRANCH).status == TaskStatus.FAILED
        loaded = repos.cron_jobs.get(job.id)
        assert loaded.stage1_status == StageStatus.FAILED
        assert loaded.pause_type == PauseType.TASK_FAILURE


class TestLeaseKeeper:
    def test_renewed_before_each_dispatch(self, make_release, advance):
        _, job = make_release(slots=(slot_at(2 * DAY),))
        advance(job, KICKOFF)
        renewals = []

        result = advance(job, KICKOFF, lease_keeper=lambda: renewals.append(True) or True)

        assert result.dispatched == ["FORK_BRANCH"]
        assert len(renewals) == 1
        assert not result.lease_lost

    def test_lost_lease_stops_before_dispatch(self, repos, make_release, advance, executor):
        release, job = make_release()
        advance(job, KICKOFF)

        result = advance(job, KICKOFF, lease_keeper=lambda: False)

        assert result.lease_lost
        assert result.idle_reason == "lease lost"
        assert result.dispatched == []
        assert executor.calls == []
        assert _task(repos, release, TaskType.FORK_BRANCH).status == TaskStatus.PENDING
        assert result.to_dict()["lease_lost"] is True
