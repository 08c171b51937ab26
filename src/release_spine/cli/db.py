"""
CLI: ``release-spine db`` - database management commands.
"""

from __future__ import annotations

import typer

from release_spine.cli.utils import make_context, output_result

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="Database path"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview without changes"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Initialise the database schema (create tables)."""
    from release_spine.ops.database import initialize_database

    ctx, _conn = make_context(database, dry_run=dry_run)
    result = initialize_database(ctx)
    output_result(result, as_json=json_out, title="Database Init")


@app.command()
def tables(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show row counts for the release tables."""
    from release_spine.ops.database import get_table_counts

    ctx, _conn = make_context(database)
    result = get_table_counts(ctx)
    output_result(result, as_json=json_out, title="Table Counts")
