"""
CLI: ``release-spine release`` - create and steer releases.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta

import typer

from release_spine.cli.utils import console, make_context, output_paged, output_result, print_table
from release_spine.core.models import CronConfig, Platform, RegressionSlot, RegressionSlotConfig, ReleaseType
from release_spine.core.timestamps import ensure_utc

app = typer.Typer(no_args_is_help=True)

_OFFSET = re.compile(r"^\+(\d+)([dhm])$")
_OFFSET_UNITS = {"d": "days", "h": "hours", "m": "minutes"}


def parse_slot(
    value: str,
    kickoff_at: datetime | None,
    config: RegressionSlotConfig | None = None,
) -> RegressionSlot:
    """``2026-05-04T09:00`` (UTC) or an offset from kickoff such as ``+2d``."""
    match = _OFFSET.match(value.strip())
    if match:
        if kickoff_at is None:
            raise typer.BadParameter(f"Relative slot '{value}' needs --kickoff")
        amount, unit = match.groups()
        return RegressionSlot.offset_from(
            kickoff_at, timedelta(**{_OFFSET_UNITS[unit]: int(amount)}), config
        )
    try:
        scheduled_at = ensure_utc(datetime.fromisoformat(value))
    except ValueError as exc:
        raise typer.BadParameter(f"Invalid slot '{value}': use ISO-8601 or +Nd/+Nh/+Nm") from exc
    return RegressionSlot(scheduled_at=scheduled_at, config=config or RegressionSlotConfig())


@app.command("create")
def create(
    version: str = typer.Argument(..., help="Release version, e.g. 2.4.0"),
    platforms: list[Platform] = typer.Option(..., "--platform", "-p", help="Target platform (repeatable)"),
    kickoff: datetime | None = typer.Option(None, "--kickoff", help="Kickoff time, UTC"),
    target: datetime | None = typer.Option(None, "--target", help="Target release date, UTC"),
    release_type: ReleaseType = typer.Option(ReleaseType.PLANNED, "--type"),
    base_branch: str = typer.Option("main", "--base-branch"),
    parent: str | None = typer.Option(None, "--parent", help="Parent release for hotfixes"),
    slots: list[str] = typer.Option([], "--slot", help="Regression slot: ISO time or +2d (repeatable)"),
    interval: int = typer.Option(60, "--interval", help="Seconds between evaluations"),
    kickoff_reminder: bool = typer.Option(False, "--kickoff-reminder"),
    pre_regression_builds: bool = typer.Option(False, "--pre-regression-builds"),
    automation: bool = typer.Option(False, "--automation", help="Automation builds and runs in each cycle"),
    pm_integration: bool = typer.Option(False, "--pm-integration"),
    test_platform_integration: bool = typer.Option(False, "--test-platform-integration"),
    auto_stage2: bool = typer.Option(True, "--auto-stage2/--no-auto-stage2"),
    auto_stage3: bool = typer.Option(False, "--auto-stage3/--no-auto-stage3"),
    manual_upload: bool = typer.Option(False, "--manual-upload", help="Builds are uploaded by hand"),
    database: str | None = typer.Option(None, "--database", "-d"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Create a release and start its cron job."""
    from release_spine.ops.releases import create_release
    from release_spine.ops.requests import CreateReleaseRequest

    kickoff_at = ensure_utc(kickoff) if kickoff else None
    slot_config = RegressionSlotConfig(automation_builds=automation, automation_runs=automation)
    regression_slots = [parse_slot(s, kickoff_at, slot_config) for s in slots]

    request = CreateReleaseRequest(
        version=version,
        platforms=platforms,
        kickoff_at=kickoff_at,
        target_release_at=ensure_utc(target) if target else None,
        release_type=release_type,
        base_branch=base_branch,
        parent_release_id=parent,
        has_project_management_integration=pm_integration,
        has_test_platform_integration=test_platform_integration,
        cron_config=CronConfig(
            interval_seconds=interval,
            kickoff_reminder=kickoff_reminder,
            pre_regression_builds=pre_regression_builds,
        ),
        regression_slots=regression_slots,
        auto_transition_to_stage2=auto_stage2,
        auto_transition_to_stage3=auto_stage3,
        has_manual_build_upload=manual_upload,
    )
    ctx, _ = make_context(database, dry_run=dry_run)
    output_result(create_release(ctx, request), as_json=json_out, title="Release Created")


@app.command("list")
def list_releases(
    status: str | None = typer.Option(None, "--status", help="PENDING, IN_PROGRESS, RELEASED or ARCHIVED"),
    limit: int = typer.Option(50, "--limit"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List releases with their stage statuses."""
    from release_spine.ops.releases import list_releases as _list
    from release_spine.ops.requests import ListReleasesRequest

    ctx, _ = make_context(database)
    result = _list(ctx, ListReleasesRequest(status=status.upper() if status else None, limit=limit, offset=offset))
    output_paged(result, as_json=json_out, title="Releases")


@app.command("status")
def status(
    release_id: str = typer.Argument(..., help="Release ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show stages, tasks and regression cycles of a release."""
    from release_spine.ops.releases import get_release_status

    ctx, _ = make_context(database)
    result = get_release_status(ctx, release_id)
    if json_out or not result.success:
        output_result(result, as_json=json_out)
        return

    view = result.data
    release, cron = view.release, view.cron_job
    console.print(f"[bold]Release {release['version']}[/bold] ({release['id']}) {release['status']}")
    console.print(
        f"  cron: {cron['cron_status']}  pause: {cron['pause_type']}  "
        f"branch: {release['branch'] or '-'}"
    )
    for stage, stage_status in view.stages.items():
        console.print(f"  [cyan]{stage}[/cyan]: {stage_status}")
    if view.tasks:
        print_table(
            view.tasks,
            columns=["task_type", "platform", "stage", "status", "retry_count", "conclusion", "id"],
            title="Tasks",
        )
    if view.cycles:
        print_table(view.cycles, columns=["cycle_tag", "status", "is_latest", "created_at"], title="Cycles")
    if view.upcoming_regressions:
        print_table(view.upcoming_regressions, columns=["id", "scheduled_at"], title="Upcoming regressions")


@app.command("trigger-stage2")
def trigger_stage2(
    release_id: str = typer.Argument(..., help="Release ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Start regression (after a manual build upload)."""
    from release_spine.ops.releases import trigger_stage2 as _trigger

    ctx, _ = make_context(database, dry_run=dry_run)
    output_result(_trigger(ctx, release_id), as_json=json_out, title="Regression Triggered")


@app.command("trigger-stage3")
def trigger_stage3(
    release_id: str = typer.Argument(..., help="Release ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Start pre-release."""
    from release_spine.ops.releases import trigger_stage3 as _trigger

    ctx, _ = make_context(database, dry_run=dry_run)
    output_result(_trigger(ctx, release_id), as_json=json_out, title="Pre-release Triggered")


@app.command("archive")
def archive(
    release_id: str = typer.Argument(..., help="Release ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Archive (cancel) a release and stop its cron job."""
    from release_spine.ops.releases import archive_release

    ctx, _ = make_context(database, dry_run=dry_run)
    output_result(archive_release(ctx, release_id), as_json=json_out, title="Release Archived")


@app.command("pause")
def pause(
    release_id: str = typer.Argument(..., help="Release ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Pause automatic progress."""
    from release_spine.ops.releases import pause_release

    ctx, _ = make_context(database)
    output_result(pause_release(ctx, release_id), as_json=json_out, title="Release Paused")


@app.command("resume")
def resume(
    release_id: str = typer.Argument(..., help="Release ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Resume a paused release."""
    from release_spine.ops.releases import resume_release

    ctx, _ = make_context(database)
    output_result(resume_release(ctx, release_id), as_json=json_out, title="Release Resumed")


@app.command("add-slot")
def add_slot(
    release_id: str = typer.Argument(..., help="Release ID"),
    at: str = typer.Option(..., "--at", help="ISO time (UTC) or offset from kickoff, e.g. +3d"),
    automation: bool = typer.Option(False, "--automation", help="Automation builds and runs"),
    no_release_notes: bool = typer.Option(False, "--no-release-notes"),
    database: str | None = typer.Option(None, "--database", "-d"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Schedule another regression cycle."""
    from release_spine.ops.releases import add_regression_slot, get_release_status

    ctx, _ = make_context(database, dry_run=dry_run)
    kickoff_at = None
    if _OFFSET.match(at.strip()):
        current = get_release_status(ctx, release_id)
        if not current.success:
            output_result(current, as_json=json_out)
            return
        kickoff_raw = current.data.release["kickoff_at"]
        kickoff_at = datetime.fromisoformat(kickoff_raw) if kickoff_raw else None
    slot_config = RegressionSlotConfig(
        release_notes=not no_release_notes,
        automation_builds=automation,
        automation_runs=automation,
    )
    slot = parse_slot(at, kickoff_at, slot_config)
    output_result(add_regression_slot(ctx, release_id, slot), as_json=json_out, title="Regression Slot Added")


@app.command("rerun-regression")
def rerun_regression(
    release_id: str = typer.Argument(..., help="Release ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Request one extra regression cycle now."""
    from release_spine.ops.releases import request_regression_rerun

    ctx, _ = make_context(database)
    output_result(request_regression_rerun(ctx, release_id), as_json=json_out, title="Regression Rerun Requested")


@app.command("retry-task")
def retry_task(
    task_id: str = typer.Argument(..., help="Failed task ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Reset a FAILED task so the next tick runs it again."""
    from release_spine.ops.releases import retry_task as _retry

    ctx, _ = make_context(database, dry_run=dry_run)
    output_result(_retry(ctx, task_id), as_json=json_out, title="Task Reset")


@app.command("complete-task")
def complete_task(
    task_id: str = typer.Argument(..., help="Task waiting on a callback"),
    failed: bool = typer.Option(False, "--failed", help="Report failure instead of success"),
    error: str | None = typer.Option(None, "--error", help="Failure detail"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Conclude a task dispatched with awaiting_callback."""
    from release_spine.ops.releases import record_task_callback

    ctx, _ = make_context(database)
    result = record_task_callback(ctx, task_id, succeeded=not failed, error=error)
    output_result(result, as_json=json_out, title="Task Callback Recorded")
