"""
CLI: ``release-spine scheduler`` - run the global scheduler.

``run`` keeps an interval scheduler in the foreground; ``tick`` performs a
single pass and exits, for deployments where system cron or another
scheduler owns the cadence.
"""

from __future__ import annotations

import json
import time

import typer

from release_spine.cli.utils import (
    console,
    err_console,
    get_connection,
    print_table,
    resolve_executor,
    resolve_settings,
)

app = typer.Typer(no_args_is_help=True)


@app.command("run")
def run(
    executor: str | None = typer.Option(None, "--executor", "-e", help="Executor as module:attr"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Use the synthetic dry-run executor"),
    interval: float | None = typer.Option(None, "--interval", help="Seconds between ticks"),
    instance_id: str | None = typer.Option(None, "--instance-id", help="Lease owner id"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Run the interval scheduler until interrupted.

    Example::

        release-spine scheduler run --executor myapp.release:executor
        release-spine scheduler run --dry-run --interval 15
    """
    from release_spine.scheduling import ThreadSchedulerBackend, create_scheduler

    task_executor = resolve_executor(dry_run=dry_run, executor=executor)
    settings = resolve_settings(database, tick_interval_seconds=interval, instance_id=instance_id)
    scheduler = create_scheduler(
        task_executor,
        settings=settings,
        conn=get_connection(settings.database_path),
        backend=ThreadSchedulerBackend(),
    )

    console.print(
        f"[bold green]Starting release-spine scheduler[/bold green] "
        f"(instance={scheduler.instance_id}, interval={scheduler.interval}s)"
    )
    scheduler.start()
    try:
        while scheduler.is_running:
            time.sleep(1.0)
    except KeyboardInterrupt:
        console.print("\n[yellow]Scheduler stopped by user[/yellow]")
    finally:
        scheduler.stop()


@app.command("tick")
def tick(
    executor: str | None = typer.Option(None, "--executor", "-e", help="Executor as module:attr"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Use the synthetic dry-run executor"),
    instance_id: str | None = typer.Option(None, "--instance-id", help="Lease owner id"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Process every due release once and exit."""
    from release_spine.scheduling import WebhookSchedulerBackend, create_scheduler

    task_executor = resolve_executor(dry_run=dry_run, executor=executor)
    settings = resolve_settings(database, instance_id=instance_id)
    scheduler = create_scheduler(
        task_executor,
        settings=settings,
        conn=get_connection(settings.database_path),
        backend=WebhookSchedulerBackend(),
    )
    result = scheduler.tick()

    if json_out:
        console.print_json(json.dumps(result.to_dict(), default=str))
    else:
        console.print(
            f"processed={result.processed_count} skipped={result.skipped_count} "
            f"failed={result.failed_count} ({result.duration_ms:.0f} ms)"
        )
        if result.advanced:
            print_table(
                [a.to_dict() for a in result.advanced],
                columns=["release_id", "steps", "dispatched", "transitions", "idle_reason"],
                title="Advanced",
            )
        for error in result.errors:
            release_id = error.get("context", {}).get("release_id", "-")
            err_console.print(f"[red]{release_id}[/red]: {error.get('message')}")

    if not result.success:
        raise typer.Exit(code=1)
