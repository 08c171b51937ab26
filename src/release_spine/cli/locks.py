"""
CLI: ``release-spine locks`` - inspect and release per-release leases.
"""

from __future__ import annotations

import typer

from release_spine.cli.utils import console, make_context, output_paged, output_result

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_locks(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List releases currently leased by a scheduler instance."""
    from release_spine.ops.locks import list_locks as _list

    ctx, _ = make_context(database)
    output_paged(_list(ctx), as_json=json_out, title="Active Leases")


@app.command("release")
def release_lock(
    cron_job_id: str = typer.Argument(..., help="Cron job whose lease to drop"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Force-release a lease held by a crashed instance."""
    from release_spine.ops.locks import release_lock as _release

    ctx, _ = make_context(database)
    result = _release(ctx, cron_job_id)
    if result.success and not json_out:
        if result.data:
            console.print(f"[green]Lease on {cron_job_id} released[/green]")
        else:
            console.print(f"[dim]No lease held on {cron_job_id}[/dim]")
        return
    output_result(result, as_json=json_out)


@app.command("cleanup")
def cleanup(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Clear expired leases."""
    from release_spine.ops.locks import cleanup_expired_locks

    ctx, _ = make_context(database)
    output_result(cleanup_expired_locks(ctx), as_json=json_out, title="Expired Leases Cleared")
