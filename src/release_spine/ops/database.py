"""
Database operations.

Thin wrappers around :mod:`release_spine.core.database` for table
creation and row counts.
"""

from __future__ import annotations

from release_spine.core.database import RELEASE_TABLES, init_schema
from release_spine.core.logging import get_logger
from release_spine.ops.context import OperationContext
from release_spine.ops.responses import DatabaseInitResult, TableCount
from release_spine.ops.result import OperationResult, start_timer

logger = get_logger(__name__)


def initialize_database(ctx: OperationContext) -> OperationResult[DatabaseInitResult]:
    """Create the release tables (idempotent)."""
    timer = start_timer()

    if ctx.dry_run:
        return OperationResult.ok(
            DatabaseInitResult(tables_created=list(RELEASE_TABLES), dry_run=True),
            elapsed_ms=timer.elapsed_ms,
        )

    try:
        init_schema(ctx.conn)
        return OperationResult.ok(
            DatabaseInitResult(tables_created=list(RELEASE_TABLES)),
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        logger.exception("op_failed", op="initialize_database", error=str(exc))
        return OperationResult.fail(
            "INTERNAL",
            f"Failed to create tables: {exc}",
            elapsed_ms=timer.elapsed_ms,
        )


def get_table_counts(ctx: OperationContext) -> OperationResult[list[TableCount]]:
    """Return row counts for the release tables."""
    timer = start_timer()

    try:
        counts = [
            TableCount(table=table, count=ctx.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])
            for table in RELEASE_TABLES
        ]
        return OperationResult.ok(counts, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", op="get_table_counts", error=str(exc))
        return OperationResult.fail(
            "INTERNAL",
            f"Failed to count rows: {exc}",
            elapsed_ms=timer.elapsed_ms,
        )
