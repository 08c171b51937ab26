"""Tests for release_spine.core.models - enums, transitions and dataclasses."""

from datetime import UTC, datetime, timedelta

import pytest

from release_spine.core.errors import StageOrderError
from release_spine.core.models import (
    CronConfig,
    CronJob,
    CronStatus,
    InvalidTransitionError,
    PauseType,
    Platform,
    RegressionSlot,
    RegressionSlotConfig,
    ReleaseTask,
    StageStatus,
    TaskStage,
    TaskStatus,
    TaskType,
    check_stage_order,
    validate_stage_transition,
    validate_task_transition,
)

NOW = datetime(2026, 5, 4, 9, 0, tzinfo=UTC)


class TestStageTransitions:
    def test_stage_numbers(self):
        assert [s.number for s in TaskStage] == [1, 2, 3]

    def test_not_started_to_in_progress(self):
        validate_stage_transition(StageStatus.NOT_STARTED, StageStatus.IN_PROGRESS)

    def test_skipping_in_progress_rejected(self):
        with pytest.raises(InvalidTransitionError, match="NOT_STARTED → COMPLETED"):
            validate_stage_transition(StageStatus.NOT_STARTED, StageStatus.COMPLETED)

    def test_completed_regression_can_reopen(self):
        validate_stage_transition(StageStatus.COMPLETED, StageStatus.IN_PROGRESS)

    def test_failed_stage_resumes(self):
        validate_stage_transition(StageStatus.FAILED, StageStatus.IN_PROGRESS)

    def test_same_status_is_noop(self):
        validate_stage_transition(StageStatus.COMPLETED, StageStatus.COMPLETED)


class TestTaskTransitions:
    def test_running_to_pending_for_retry(self):
        validate_task_transition(TaskStatus.RUNNING, TaskStatus.PENDING)

    def test_succeeded_is_terminal(self):
        with pytest.raises(InvalidTransitionError):
            validate_task_transition(TaskStatus.SUCCEEDED, TaskStatus.PENDING)

    def test_pending_cannot_fail_without_running(self):
        with pytest.raises(InvalidTransitionError):
            validate_task_transition(TaskStatus.PENDING, TaskStatus.FAILED)


class TestStageOrder:
    def test_valid_order(self):
        check_stage_order({
            TaskStage.KICKOFF: StageStatus.COMPLETED,
            TaskStage.REGRESSION: StageStatus.IN_PROGRESS,
            TaskStage.PRE_RELEASE: StageStatus.NOT_STARTED,
        })

    def test_regression_before_kickoff_complete(self):
        with pytest.raises(StageOrderError, match="REGRESSION is IN_PROGRESS"):
            check_stage_order({
                TaskStage.KICKOFF: StageStatus.IN_PROGRESS,
                TaskStage.REGRESSION: StageStatus.IN_PROGRESS,
                TaskStage.PRE_RELEASE: StageStatus.NOT_STARTED,
            })

    def test_pre_release_needs_completed_regression(self):
        with pytest.raises(StageOrderError):
            check_stage_order({
                TaskStage.KICKOFF: StageStatus.COMPLETED,
                TaskStage.REGRESSION: StageStatus.FAILED,
                TaskStage.PRE_RELEASE: StageStatus.IN_PROGRESS,
            })


class TestPauseType:
    def test_blocking_pauses(self):
        assert PauseType.USER_REQUESTED.blocks_progress
        assert PauseType.TASK_FAILURE.blocks_progress

    def test_awaiting_trigger_does_not_block(self):
        assert not PauseType.AWAITING_STAGE_TRIGGER.blocks_progress
        assert not PauseType.NONE.blocks_progress


class TestCronJob:
    def test_create_sorts_slots(self):
        late = RegressionSlot(scheduled_at=NOW + timedelta(days=3))
        early = RegressionSlot(scheduled_at=NOW + timedelta(days=1))
        job = CronJob.create("rel-1", upcoming_regressions=[late, early])
        assert [s.id for s in job.upcoming_regressions] == [early.id, late.id]

    def test_due_without_last_run(self):
        job = CronJob.create("rel-1")
        assert job.is_due(NOW)

    def test_due_respects_interval(self):
        job = CronJob.create("rel-1", cron_config=CronConfig(interval_seconds=60), last_run_at=NOW)
        assert not job.is_due(NOW + timedelta(seconds=59))
        assert job.is_due(NOW + timedelta(seconds=60))

    def test_paused_job_not_due(self):
        job = CronJob.create("rel-1", cron_status=CronStatus.PAUSED)
        assert not job.is_due(NOW)

    def test_is_locked_until_expiry(self):
        job = CronJob.create("rel-1", locked_by="a", lock_expiry=NOW + timedelta(minutes=5))
        assert job.is_locked(NOW)
        assert not job.is_locked(NOW + timedelta(minutes=5))

    def test_active_stage(self):
        job = CronJob.create("rel-1", stage1_status=StageStatus.COMPLETED, stage2_status=StageStatus.FAILED)
        assert job.active_stage() == TaskStage.REGRESSION


class TestRegressionSlot:
    def test_offset_from_kickoff(self):
        slot = RegressionSlot.offset_from(NOW, timedelta(days=2))
        assert slot.scheduled_at == NOW + timedelta(days=2)
        assert slot.config == RegressionSlotConfig()

    def test_is_due_at_scheduled_time(self):
        slot = RegressionSlot(scheduled_at=NOW)
        assert slot.is_due(NOW)
        assert not slot.is_due(NOW - timedelta(seconds=1))

    def test_from_dict_keeps_id_and_config(self):
        slot = RegressionSlot(
            scheduled_at=NOW,
            config=RegressionSlotConfig(automation_runs=True, release_notes=False),
        )
        restored = RegressionSlot.from_dict(slot.to_dict())
        assert restored.id == slot.id
        assert restored.scheduled_at == NOW
        assert restored.config.automation_runs is True
        assert restored.config.release_notes is False

    def test_from_dict_requires_time(self):
        with pytest.raises(ValueError, match="scheduled_at"):
            RegressionSlot.from_dict({"id": "x"})


class TestConfigs:
    def test_cron_config_ignores_unknown_keys(self):
        config = CronConfig.from_dict({"interval_seconds": 30, "legacy_flag": True})
        assert config.interval_seconds == 30

    def test_cron_config_from_none(self):
        assert CronConfig.from_dict(None) == CronConfig()


class TestReleaseTask:
    def test_label_without_platform(self):
        task = ReleaseTask.create("rel-1", TaskType.FORK_BRANCH, TaskStage.KICKOFF)
        assert task.label == "FORK_BRANCH"
        assert task.status == TaskStatus.PENDING

    def test_label_with_platform(self):
        task = ReleaseTask.create(
            "rel-1", TaskType.TRIGGER_REGRESSION_BUILDS, TaskStage.REGRESSION, platform=Platform.IOS
        )
        assert task.label == "TRIGGER_REGRESSION_BUILDS[IOS]"
