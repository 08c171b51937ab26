"""Tests for task ordering and block reasons within a stage."""

from datetime import timedelta

import pytest

from conftest import KICKOFF
from release_spine.core.models import (
    CronConfig,
    Platform,
    Release,
    ReleaseTask,
    TaskStage,
    TaskStatus,
    TaskType,
)
from release_spine.orchestration.sequencing import (
    TaskBlockReason,
    all_succeeded,
    describe_blocked,
    get_block_reason,
    next_executable,
    ordered_tasks,
)


@pytest.fixture()
def release():
    return Release.create("1.0.0", platforms=[Platform.ANDROID, Platform.IOS], kickoff_at=KICKOFF)


def _task(release, task_type, stage=TaskStage.KICKOFF, status=TaskStatus.PENDING, platform=None):
    task = ReleaseTask.create(release.id, task_type, stage, platform=platform)
    task.status = status
    return task


class TestOrdering:
    def test_orders_by_type_then_platform(self, release):
        ios = _task(release, TaskType.TRIGGER_PRE_REGRESSION_BUILDS, platform=Platform.IOS)
        android = _task(release, TaskType.TRIGGER_PRE_REGRESSION_BUILDS, platform=Platform.ANDROID)
        fork = _task(release, TaskType.FORK_BRANCH)
        ticket = _task(release, TaskType.CREATE_PROJECT_MANAGEMENT_TICKET)
        assert [t.label for t in ordered_tasks([ios, ticket, android, fork])] == [
            "FORK_BRANCH",
            "CREATE_PROJECT_MANAGEMENT_TICKET",
            "TRIGGER_PRE_REGRESSION_BUILDS[ANDROID]",
            "TRIGGER_PRE_REGRESSION_BUILDS[IOS]",
        ]


class TestBlockReasons:
    def test_fork_waits_for_kickoff(self, release):
        fork = _task(release, TaskType.FORK_BRANCH)
        config = CronConfig()
        before = KICKOFF - timedelta(minutes=1)
        assert get_block_reason(fork, [fork], release, config, before) == TaskBlockReason.NOT_TIME_YET
        assert get_block_reason(fork, [fork], release, config, KICKOFF) == TaskBlockReason.EXECUTABLE

    def test_reminder_runs_ahead_of_kickoff(self, release):
        reminder = _task(release, TaskType.PRE_KICKOFF_REMINDER)
        config = CronConfig(kickoff_reminder=True, kickoff_reminder_lead_seconds=3600)
        assert (
            get_block_reason(reminder, [reminder], release, config, KICKOFF - timedelta(hours=2))
            == TaskBlockReason.NOT_TIME_YET
        )
        assert (
            get_block_reason(reminder, [reminder], release, config, KICKOFF - timedelta(hours=1))
            == TaskBlockReason.EXECUTABLE
        )

    def test_no_kickoff_time_means_no_gate(self):
        release = Release.create("1.0.0", platforms=[Platform.IOS])
        fork = _task(release, TaskType.FORK_BRANCH)
        assert get_block_reason(fork, [fork], release, CronConfig(), KICKOFF) == TaskBlockReason.EXECUTABLE

    def test_previous_incomplete(self, release):
        fork = _task(release, TaskType.FORK_BRANCH)
        ticket = _task(release, TaskType.CREATE_PROJECT_MANAGEMENT_TICKET)
        reason = get_block_reason(ticket, [fork, ticket], release, CronConfig(), KICKOFF)
        assert reason == TaskBlockReason.PREVIOUS_INCOMPLETE

    def test_same_rank_platforms_independent(self, release):
        android = _task(
            release, TaskType.TRIGGER_PRE_REGRESSION_BUILDS, status=TaskStatus.FAILED, platform=Platform.ANDROID
        )
        ios = _task(release, TaskType.TRIGGER_PRE_REGRESSION_BUILDS, platform=Platform.IOS)
        assert get_block_reason(ios, [android, ios], release, CronConfig(), KICKOFF) == TaskBlockReason.EXECUTABLE
        assert get_block_reason(android, [android, ios], release, CronConfig(), KICKOFF) == TaskBlockReason.FAILED

    def test_awaiting_callback(self, release):
        fork = _task(release, TaskType.FORK_BRANCH, status=TaskStatus.RUNNING)
        fork.awaiting_callback = True
        assert get_block_reason(fork, [fork], release, CronConfig(), KICKOFF) == TaskBlockReason.AWAITING_CALLBACK

    def test_orphaned_running_task_executable(self, release):
        fork = _task(release, TaskType.FORK_BRANCH, status=TaskStatus.RUNNING)
        assert get_block_reason(fork, [fork], release, CronConfig(), KICKOFF) == TaskBlockReason.EXECUTABLE

    def test_retry_backoff(self, release):
        fork = _task(release, TaskType.FORK_BRANCH)
        fork.next_attempt_at = KICKOFF + timedelta(seconds=30)
        assert get_block_reason(fork, [fork], release, CronConfig(), KICKOFF) == TaskBlockReason.RETRY_BACKOFF
        later = KICKOFF + timedelta(seconds=30)
        assert get_block_reason(fork, [fork], release, CronConfig(), later) == TaskBlockReason.EXECUTABLE


class TestNextExecutable:
    def test_first_executable_in_order(self, release):
        fork = _task(release, TaskType.FORK_BRANCH, status=TaskStatus.SUCCEEDED)
        ticket = _task(release, TaskType.CREATE_PROJECT_MANAGEMENT_TICKET)
        suite = _task(release, TaskType.CREATE_TEST_SUITE)
        chosen, reasons = next_executable([suite, ticket, fork], release, CronConfig(), KICKOFF)
        assert chosen is ticket
        assert reasons == {
            "FORK_BRANCH": TaskBlockReason.ALREADY_SUCCEEDED,
            "CREATE_PROJECT_MANAGEMENT_TICKET": TaskBlockReason.EXECUTABLE,
            "CREATE_TEST_SUITE": TaskBlockReason.PREVIOUS_INCOMPLETE,
        }

    def test_nothing_executable(self, release):
        fork = _task(release, TaskType.FORK_BRANCH)
        ticket = _task(release, TaskType.CREATE_PROJECT_MANAGEMENT_TICKET)
        chosen, reasons = next_executable([fork, ticket], release, CronConfig(), KICKOFF - timedelta(hours=1))
        assert chosen is None
        assert describe_blocked(reasons) == "FORK_BRANCH=NOT_TIME_YET"


class TestAllSucceeded:
    def test_empty_group_is_not_done(self):
        assert all_succeeded([]) is False

    def test_all_done(self, release):
        assert all_succeeded([_task(release, TaskType.FORK_BRANCH, status=TaskStatus.SUCCEEDED)])

    def test_describe_when_only_successes(self):
        assert describe_blocked({"FORK_BRANCH": TaskBlockReason.ALREADY_SUCCEEDED}) == "no executable task"
