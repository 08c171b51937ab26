"""
CLI utility helpers: output formatting, connections and executor loading.
"""

from __future__ import annotations

import importlib
import json
from dataclasses import asdict
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from release_spine.core.database import connect, init_schema
from release_spine.core.settings import OrchestratorSettings, get_settings
from release_spine.execution import DryRunExecutor, TaskExecutor
from release_spine.ops.context import OperationContext
from release_spine.ops.result import OperationResult, PagedResult

console = Console()
err_console = Console(stderr=True)


# ── Settings / connection helpers ────────────────────────────────────────


def resolve_settings(database: str | None = None, **overrides: Any) -> OrchestratorSettings:
    """Cached settings with CLI flags applied on top."""
    updates = {k: v for k, v in overrides.items() if v is not None}
    if database:
        updates["database_path"] = database
    settings = get_settings()
    return settings.model_copy(update=updates) if updates else settings


def get_connection(database: str | None = None) -> Any:
    """Open the configured database, creating the tables if needed."""
    conn = connect(resolve_settings(database).database_path)
    init_schema(conn)
    return conn


def make_context(
    database: str | None = None,
    *,
    dry_run: bool = False,
) -> tuple[OperationContext, Any]:
    """Create an ``OperationContext`` + connection pair for CLI commands."""
    conn = get_connection(database)
    ctx = OperationContext(conn=conn, caller="cli", dry_run=dry_run)
    return ctx, conn


# ── Executor loading ─────────────────────────────────────────────────────


def load_executor(target: str) -> TaskExecutor:
    """Import ``module:attr``. A class or factory is called with no arguments."""
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise typer.BadParameter(f"Expected 'module:attribute', got '{target}'")
    try:
        module = importlib.import_module(module_name)
        obj = getattr(module, attr)
    except (ImportError, AttributeError) as exc:
        raise typer.BadParameter(f"Cannot load executor '{target}': {exc}") from exc

    if isinstance(obj, type) or (callable(obj) and not hasattr(obj, "execute")):
        obj = obj()
    if not isinstance(obj, TaskExecutor):
        raise typer.BadParameter(f"'{target}' does not provide an execute(task, release) method")
    return obj


def resolve_executor(*, dry_run: bool, executor: str | None) -> TaskExecutor:
    if dry_run:
        return DryRunExecutor()
    if executor:
        return load_executor(executor)
    err_console.print(
        "[bold red]Error[/bold red]: pass --executor module:attr or --dry-run"
    )
    raise typer.Exit(code=2)


# ── Output helpers ───────────────────────────────────────────────────────


def _plain(obj: Any) -> Any:
    """Response dataclasses and dicts as JSON-ready values; anything else as ``{"value": str}``."""
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def _emit_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def _exit_on_failure(result: OperationResult) -> None:
    if result.success:
        return
    err = result.error
    code, msg = (err.code, err.message) if err else ("ERROR", "Unknown error")
    err_console.print(f"[bold red]Error[/bold red] ({code}): {msg}")
    raise typer.Exit(code=1)


def output_result(result: OperationResult, *, as_json: bool = False, title: str = "") -> None:
    """Print an operation's payload; exit 1 with its error code on failure."""
    _exit_on_failure(result)
    data = result.data

    if as_json:
        _emit_json([_plain(d) for d in data] if isinstance(data, list | tuple) else _plain(data))
        return

    for warning in result.warnings:
        err_console.print(f"[yellow]Warning[/yellow]: {warning}")
    if isinstance(data, list):
        print_table(data, title=title)
        return
    if title:
        console.print(f"[bold]{title}[/bold]")
    for key, value in _plain(data).items():
        console.print(f"  [cyan]{key}[/cyan]: {_cell(value)}")


def output_paged(result: PagedResult, *, as_json: bool = False, title: str = "") -> None:
    """Like :func:`output_result`, plus the page window."""
    _exit_on_failure(result)
    items = result.data or []

    if as_json:
        _emit_json({
            "items": [_plain(d) for d in items],
            "total": result.total,
            "limit": result.limit,
            "offset": result.offset,
            "has_more": result.has_more,
        })
        return

    print_table(items, title=title)
    if items:
        console.print(f"\n[dim]Showing {len(items)} of {result.total} (offset {result.offset})[/dim]")


def print_table(items: list, *, title: str = "", columns: list[str] | None = None) -> None:
    if not items:
        console.print("[dim]No items.[/dim]")
        return
    rows = [_plain(item) for item in items]
    columns = columns or list(rows[0])
    table = Table(title=title or None, pad_edge=False)
    for col in columns:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*(_cell(row.get(col)) for col in columns))
    console.print(table)


def _cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    return str(value)
