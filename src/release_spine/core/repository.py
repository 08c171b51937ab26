"""Base class for the release repositories.

A repository pairs a :class:`~release_spine.core.protocols.Connection`
with a :class:`~release_spine.core.dialect.Dialect`, so the SQL in
``core/repositories`` only ever spells placeholders through ``ph()``.

Repositories never commit on their own. The state machine and the ops
layer group writes with :func:`release_spine.core.database.transaction`;
the lease methods of :class:`CronJobRepository` are the one exception,
because a lease must be visible to other scheduler instances at once.

Tags:
    repository, database, release-spine
"""

from __future__ import annotations

from typing import Any

from release_spine.core.dialect import Dialect, SQLiteDialect
from release_spine.core.protocols import Connection


class BaseRepository:
    """Row-as-dict access plus single-row inserts and updates."""

    def __init__(self, conn: Connection, dialect: Dialect | None = None) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()

    def ph(self, count: int) -> str:
        """``count`` placeholders for the dialect, e.g. ``"?, ?"``."""
        return self.dialect.placeholders(count)

    def execute(self, sql: str, params: tuple = ()) -> Any:
        return self.conn.execute(sql, params)

    def query(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        cursor = self.conn.execute(sql, params)
        rows = cursor.fetchall()
        if not rows:
            return []
        columns = [desc[0] for desc in cursor.description]
        return [dict(zip(columns, tuple(row), strict=True)) for row in rows]

    def query_one(self, sql: str, params: tuple = ()) -> dict[str, Any] | None:
        rows = self.query(sql, params)
        return rows[0] if rows else None

    def insert(self, table: str, row: dict[str, Any]) -> Any:
        sql = f"INSERT INTO {table} ({', '.join(row)}) VALUES ({self.ph(len(row))})"
        return self.conn.execute(sql, tuple(row.values()))

    def update_fields(
        self,
        table: str,
        row_id: str,
        data: dict[str, Any],
    ) -> int:
        """``UPDATE table SET ... WHERE id = ?``; returns the affected row count."""
        if not data:
            return 0
        assignments = ", ".join(f"{column} = {self.ph(1)}" for column in data)
        sql = f"UPDATE {table} SET {assignments} WHERE id = {self.ph(1)}"
        return self.conn.execute(sql, (*data.values(), row_id)).rowcount

    def commit(self) -> None:
        self.conn.commit()


__all__ = ["BaseRepository"]
