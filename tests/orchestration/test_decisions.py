"""Tests for the pure decide() rules, driven by in-memory snapshots."""

from datetime import timedelta

import pytest

from conftest import KICKOFF, slot_at
from release_spine.core.errors import StageOrderError
from release_spine.core.models import (
    CronJob,
    CronStatus,
    PauseType,
    Platform,
    RegressionCycle,
    RegressionCycleStatus,
    Release,
    ReleaseStatus,
    ReleaseTask,
    StageStatus,
    TaskStage,
    TaskStatus,
    TaskType,
)
from release_spine.orchestration.decisions import (
    CompleteCycle,
    CreateStageTasks,
    DispatchTask,
    OpenRegressionCycle,
    ReleaseSnapshot,
    StartCycle,
    StopCron,
    TransitionStages,
    decide,
)


def _snapshot(now=KICKOFF, *, tasks=(), cycles=(), release_kwargs=None, **job_kwargs):
    release = Release.create(
        "2.0.0", platforms=[Platform.ANDROID, Platform.IOS], kickoff_at=KICKOFF, **(release_kwargs or {})
    )
    job = CronJob.create(release.id, **job_kwargs)
    return ReleaseSnapshot(release=release, cron_job=job, tasks=list(tasks), cycles=list(cycles), now=now)


def _succeeded(release_id, task_type, stage, **kwargs):
    task = ReleaseTask.create(release_id, task_type, stage, **kwargs)
    task.status = TaskStatus.SUCCEEDED
    return task


REGRESSION_RUNNING = {
    "stage1_status": StageStatus.COMPLETED,
    "stage2_status": StageStatus.IN_PROGRESS,
}
REGRESSION_DONE = {
    "stage1_status": StageStatus.COMPLETED,
    "stage2_status": StageStatus.COMPLETED,
}


class TestGuards:
    def test_archived_release_stops_cron(self):
        snap = _snapshot(release_kwargs={"status": ReleaseStatus.ARCHIVED})
        decision = decide(snap)
        assert isinstance(decision.actions[0], StopCron)
        assert decision.end_pass

    def test_archived_and_stopped_is_idle(self):
        snap = _snapshot(release_kwargs={"status": ReleaseStatus.ARCHIVED}, cron_status=CronStatus.STOPPED)
        assert decide(snap).is_idle

    def test_paused_cron_is_idle(self):
        decision = decide(_snapshot(cron_status=CronStatus.PAUSED))
        assert decision.is_idle
        assert decision.reason == "cron PAUSED"

    @pytest.mark.parametrize("pause", [PauseType.USER_REQUESTED, PauseType.TASK_FAILURE])
    def test_blocking_pause_is_idle(self, pause):
        decision = decide(_snapshot(pause_type=pause))
        assert decision.is_idle
        assert decision.reason == f"paused ({pause.value})"

    def test_corrupt_stage_order_raises(self):
        with pytest.raises(StageOrderError):
            decide(_snapshot(stage2_status=StageStatus.IN_PROGRESS))


class TestKickoff:
    def test_creates_kickoff_tasks_first(self):
        decision = decide(_snapshot())
        (action,) = decision.actions
        assert isinstance(action, CreateStageTasks)
        assert action.stage == TaskStage.KICKOFF
        assert action.stage_statuses == {TaskStage.KICKOFF: StageStatus.IN_PROGRESS}
        assert action.release_status == ReleaseStatus.IN_PROGRESS
        assert decision.end_pass

    def test_fork_waits_for_kickoff_time(self):
        snap = _snapshot(KICKOFF - timedelta(minutes=5), stage1_status=StageStatus.IN_PROGRESS)
        snap.tasks = [ReleaseTask.create(snap.release.id, TaskType.FORK_BRANCH, TaskStage.KICKOFF)]
        decision = decide(snap)
        assert decision.is_idle
        assert decision.reason == "kickoff: FORK_BRANCH=NOT_TIME_YET"

    def test_late_fork_is_catch_up(self):
        snap = _snapshot(KICKOFF + timedelta(hours=3), stage1_status=StageStatus.IN_PROGRESS)
        snap.tasks = [ReleaseTask.create(snap.release.id, TaskType.FORK_BRANCH, TaskStage.KICKOFF)]
        (action,) = decide(snap).actions
        assert isinstance(action, DispatchTask)
        assert action.catch_up is True

    def test_on_time_fork_is_not_catch_up(self):
        snap = _snapshot(KICKOFF, stage1_status=StageStatus.IN_PROGRESS)
        snap.tasks = [ReleaseTask.create(snap.release.id, TaskType.FORK_BRANCH, TaskStage.KICKOFF)]
        (action,) = decide(snap).actions
        assert action.catch_up is False

    def test_complete_kickoff_starts_regression(self):
        snap = _snapshot(stage1_status=StageStatus.IN_PROGRESS)
        snap.tasks = [_succeeded(snap.release.id, TaskType.FORK_BRANCH, TaskStage.KICKOFF)]
        decision = decide(snap)
        (action,) = decision.actions
        assert isinstance(action, TransitionStages)
        assert action.stages == {
            TaskStage.KICKOFF: StageStatus.COMPLETED,
            TaskStage.REGRESSION: StageStatus.IN_PROGRESS,
        }
        assert not decision.end_pass

    def test_manual_upload_waits_for_trigger(self):
        snap = _snapshot(stage1_status=StageStatus.IN_PROGRESS, has_manual_build_upload=True)
        snap.tasks = [_succeeded(snap.release.id, TaskType.FORK_BRANCH, TaskStage.KICKOFF)]
        decision = decide(snap)
        (action,) = decision.actions
        assert action.stages == {TaskStage.KICKOFF: StageStatus.COMPLETED}
        assert action.pause_type == PauseType.AWAITING_STAGE_TRIGGER
        assert decision.end_pass

    def test_without_auto_stage2_idles_after_kickoff(self):
        snap = _snapshot(stage1_status=StageStatus.COMPLETED, auto_transition_to_stage2=False)
        assert decide(snap).reason == "awaiting regression trigger"


class TestRegression:
    def test_no_slots_scheduled(self):
        decision = decide(_snapshot(**REGRESSION_RUNNING))
        assert decision.is_idle
        assert decision.reason == "no regression slots scheduled"

    def test_future_slot_reported(self):
        slot = slot_at(timedelta(days=2))
        decision = decide(_snapshot(upcoming_regressions=[slot], **REGRESSION_RUNNING))
        assert decision.reason == f"next regression slot at {slot.scheduled_at.isoformat()}"

    def test_due_slot_opens_first_cycle(self):
        slot = slot_at(timedelta(days=2))
        snap = _snapshot(KICKOFF + timedelta(days=2), upcoming_regressions=[slot], **REGRESSION_RUNNING)
        decision = decide(snap)
        (action,) = decision.actions
        assert isinstance(action, OpenRegressionCycle)
        assert action.slot_id == slot.id
        assert action.cycle.cycle_tag == "v2.0.0_rc_0"
        assert action.clear_rerun is False
        assert {t.cycle_id for t in action.tasks} == {action.cycle.id}
        assert decision.end_pass

    def test_rerun_opens_cycle_without_slot(self):
        snap = _snapshot(regression_rerun_requested=True, **REGRESSION_RUNNING)
        done = RegressionCycle.create(snap.release.id, slot_id=None, cycle_tag="v2.0.0_rc_0")
        done.status = RegressionCycleStatus.DONE
        snap.cycles = [done]
        (action,) = decide(snap).actions
        assert action.slot_id is None
        assert action.clear_rerun is True
        assert action.cycle.cycle_tag == "v2.0.0_rc_1"

    def test_first_cycle_task_starts_cycle(self):
        snap = _snapshot(**REGRESSION_RUNNING)
        cycle = RegressionCycle.create(snap.release.id, slot_id=None, cycle_tag="v2.0.0_rc_0")
        snap.cycles = [cycle]
        snap.tasks = [
            ReleaseTask.create(snap.release.id, TaskType.CREATE_RC_TAG, TaskStage.REGRESSION, cycle_id=cycle.id)
        ]
        start, dispatch = decide(snap).actions
        assert isinstance(start, StartCycle)
        assert isinstance(dispatch, DispatchTask)

    def test_finished_cycle_completes(self):
        snap = _snapshot(**REGRESSION_RUNNING)
        cycle = RegressionCycle.create(snap.release.id, slot_id=None, cycle_tag="v2.0.0_rc_0")
        cycle.status = RegressionCycleStatus.IN_PROGRESS
        snap.cycles = [cycle]
        snap.tasks = [
            _succeeded(snap.release.id, TaskType.CREATE_RC_TAG, TaskStage.REGRESSION, cycle_id=cycle.id)
        ]
        (action,) = decide(snap).actions
        assert action == CompleteCycle(cycle.id)

    def test_auto_stage3_after_last_cycle(self):
        snap = _snapshot(auto_transition_to_stage3=True, **REGRESSION_RUNNING)
        cycle = RegressionCycle.create(snap.release.id, slot_id=None, cycle_tag="v2.0.0_rc_0")
        cycle.status = RegressionCycleStatus.DONE
        snap.cycles = [cycle]
        (action,) = decide(snap).actions
        assert action.stages == {
            TaskStage.REGRESSION: StageStatus.COMPLETED,
            TaskStage.PRE_RELEASE: StageStatus.IN_PROGRESS,
        }

    def test_new_slot_reopens_completed_regression(self):
        snap = _snapshot(upcoming_regressions=[slot_at(timedelta(days=5))], **REGRESSION_DONE)
        (action,) = decide(snap).actions
        assert action.stages == {TaskStage.REGRESSION: StageStatus.IN_PROGRESS}
        assert action.pause_type == PauseType.NONE


class TestPreRelease:
    def test_awaiting_trigger(self):
        decision = decide(_snapshot(pause_type=PauseType.AWAITING_STAGE_TRIGGER, **REGRESSION_DONE))
        assert decision.reason == "awaiting pre-release trigger"

    def test_creates_tasks_when_started(self):
        snap = _snapshot(stage3_status=StageStatus.IN_PROGRESS, **REGRESSION_DONE)
        (action,) = decide(snap).actions
        assert isinstance(action, CreateStageTasks)
        assert action.stage == TaskStage.PRE_RELEASE
        assert action.stage_statuses == {}

    def test_all_succeeded_stops(self):
        snap = _snapshot(stage3_status=StageStatus.IN_PROGRESS, **REGRESSION_DONE)
        snap.tasks = [_succeeded(snap.release.id, TaskType.CREATE_RELEASE_TAG, TaskStage.PRE_RELEASE)]
        (action,) = decide(snap).actions
        assert action.stages == {TaskStage.PRE_RELEASE: StageStatus.COMPLETED}
        assert action.stop is True

    def test_completed_release_stops_cron(self):
        snap = _snapshot(stage3_status=StageStatus.COMPLETED, **REGRESSION_DONE)
        assert isinstance(decide(snap).actions[0], StopCron)
