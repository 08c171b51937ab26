"""
Request-scoped context for operations.

Every operation function receives an :class:`OperationContext` as its first
argument. The context carries the database connection, caller identity
and dry-run flag. Operations open repositories through it rather than
building them from the raw connection.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from release_spine.core.dialect import Dialect
from release_spine.core.protocols import Connection
from release_spine.core.repositories import Repositories


@dataclass
class OperationContext:
    """Context passed to every operation function.

    Attributes:
        conn: Database connection satisfying :class:`release_spine.core.protocols.Connection`.
        request_id: Unique ID for this operation invocation (auto-generated).
        caller: Origin of the request: ``"cli"``, ``"sdk"`` or ``"webhook"``.
        user: Optional operator identifier, recorded in logs.
        dry_run: When ``True``, operations validate and return a preview without side effects.
        dialect: SQL dialect for the repositories (SQLite when ``None``).
    """

    conn: Connection
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    caller: str = "sdk"
    user: str | None = None
    dry_run: bool = False
    dialect: Dialect | None = None

    def repositories(self) -> Repositories:
        return Repositories.for_connection(self.conn, self.dialect)
