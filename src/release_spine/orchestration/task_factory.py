"""Builds the task set of each stage from release and cron configuration.

Optional tasks are simply not created when their integration or flag is
absent, so sequencing never has to reason about "not required" tasks.

Tags:
    release-spine, orchestration, task-creation
"""

from __future__ import annotations

from release_spine.core.models import (
    CronJob,
    Platform,
    RegressionCycle,
    RegressionSlotConfig,
    Release,
    ReleaseTask,
    TaskStage,
    TaskType,
)

from .sequencing import ordered_tasks


def cycle_tag(release: Release, cycle_index: int) -> str:
    """Tag of the n-th (zero-based) regression cycle, e.g. ``v1.2.0_rc_0``."""
    return f"v{release.version}_rc_{cycle_index}"


def _per_platform(
    release: Release,
    task_type: TaskType,
    stage: TaskStage,
    cycle_id: str | None = None,
) -> list[ReleaseTask]:
    return [
        ReleaseTask.create(release.id, task_type, stage, platform=platform, cycle_id=cycle_id)
        for platform in release.platforms
    ]


def kickoff_tasks(release: Release, cron_job: CronJob) -> list[ReleaseTask]:
    stage = TaskStage.KICKOFF
    config = cron_job.cron_config
    tasks: list[ReleaseTask] = []
    if config.kickoff_reminder:
        tasks.append(ReleaseTask.create(release.id, TaskType.PRE_KICKOFF_REMINDER, stage))
    tasks.append(ReleaseTask.create(release.id, TaskType.FORK_BRANCH, stage))
    if release.has_project_management_integration:
        tasks.append(ReleaseTask.create(release.id, TaskType.CREATE_PROJECT_MANAGEMENT_TICKET, stage))
    if release.has_test_platform_integration:
        tasks.append(ReleaseTask.create(release.id, TaskType.CREATE_TEST_SUITE, stage))
    if config.pre_regression_builds and not cron_job.has_manual_build_upload:
        tasks.extend(_per_platform(release, TaskType.TRIGGER_PRE_REGRESSION_BUILDS, stage))
    return ordered_tasks(tasks)


def regression_cycle_tasks(
    release: Release,
    cron_job: CronJob,
    cycle: RegressionCycle,
    slot_config: RegressionSlotConfig,
    *,
    is_first_cycle: bool,
) -> list[ReleaseTask]:
    stage = TaskStage.REGRESSION

    def one(task_type: TaskType) -> ReleaseTask:
        return ReleaseTask.create(release.id, task_type, stage, cycle_id=cycle.id)

    tasks: list[ReleaseTask] = []
    if not is_first_cycle and release.has_test_platform_integration:
        tasks.append(one(TaskType.RESET_TEST_SUITE))
    tasks.append(one(TaskType.CREATE_RC_TAG))
    if slot_config.release_notes:
        tasks.append(one(TaskType.CREATE_RELEASE_NOTES))
    if slot_config.regression_builds and not cron_job.has_manual_build_upload:
        tasks.extend(_per_platform(release, TaskType.TRIGGER_REGRESSION_BUILDS, stage, cycle.id))
    if slot_config.automation_builds:
        tasks.append(one(TaskType.TRIGGER_AUTOMATION_RUNS))
    if slot_config.automation_runs:
        tasks.append(one(TaskType.AUTOMATION_RUNS))
    return ordered_tasks(tasks)


def pre_release_tasks(release: Release, cron_job: CronJob) -> list[ReleaseTask]:
    stage = TaskStage.PRE_RELEASE
    tasks = [
        ReleaseTask.create(release.id, TaskType.PRE_RELEASE_CHERRY_PICKS_REMINDER, stage),
        ReleaseTask.create(release.id, TaskType.CREATE_RELEASE_TAG, stage),
        ReleaseTask.create(release.id, TaskType.CREATE_FINAL_RELEASE_NOTES, stage),
    ]
    if Platform.IOS in release.platforms and cron_job.cron_config.test_flight_builds:
        tasks.append(ReleaseTask.create(
            release.id, TaskType.TRIGGER_TEST_FLIGHT_BUILD, stage, platform=Platform.IOS,
        ))
    if Platform.ANDROID in release.platforms:
        tasks.append(ReleaseTask.create(
            release.id, TaskType.CREATE_AAB_BUILD, stage, platform=Platform.ANDROID,
        ))
    if release.has_project_management_integration:
        tasks.append(ReleaseTask.create(release.id, TaskType.CHECK_PROJECT_RELEASE_APPROVAL, stage))
    return ordered_tasks(tasks)


__all__ = [
    "cycle_tag",
    "kickoff_tasks",
    "pre_release_tasks",
    "regression_cycle_tasks",
]
