"""SQL dialect abstraction for the release repositories.

Repositories build SQL through a ``Dialect`` so placeholder style stays out
of query templates. SQLite ships as the reference backend; a PostgreSQL
dialect is included for deployments running several scheduler instances
against a shared database.

Examples:
    >>> d = SQLiteDialect()
    >>> d.placeholders(3)
    '?, ?, ?'

Tags:
    dialect, sql, abstraction, portability, release-spine
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Dialect(Protocol):
    """SQL dialect contract."""

    @property
    def name(self) -> str:
        """Human-readable dialect name (e.g. ``'sqlite'``)."""
        ...

    def placeholder(self, index: int) -> str:
        """Single positional placeholder (0-based index)."""
        ...

    def placeholders(self, count: int) -> str:
        """Comma-separated placeholder list."""
        ...


class SQLiteDialect:
    """SQLite: anonymous ``?`` placeholders."""

    name = "sqlite"

    def placeholder(self, index: int) -> str:
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))


class PostgreSQLDialect:
    """PostgreSQL (psycopg): ``%s`` placeholders."""

    name = "postgresql"

    def placeholder(self, index: int) -> str:
        return "%s"

    def placeholders(self, count: int) -> str:
        return ", ".join("%s" for _ in range(count))


__all__ = ["Dialect", "PostgreSQLDialect", "SQLiteDialect"]
