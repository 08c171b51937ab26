"""
Canonical protocol definitions for release-spine.

Repositories, the lease manager and the state machine only need the
DB-API shape below, so any sqlite3 or psycopg-style connection works.

Tags:
    protocol, connection, database, release-spine, contracts
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """
    Minimal SYNCHRONOUS connection interface for database operations.

    Satisfied by ``sqlite3.Connection`` out of the box. ``commit`` and
    ``rollback`` are driven by :func:`release_spine.core.database.transaction`
    so one logical transition lands as one transaction.
    """

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute a single statement and return a cursor."""
        ...

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        """Execute a statement once per parameter tuple."""
        ...

    def commit(self) -> None:
        """Commit the current transaction."""
        ...

    def rollback(self) -> None:
        """Roll back the current transaction."""
        ...


__all__ = ["Connection"]
