"""SQLite connection, schema bootstrap and transaction helpers."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from release_spine.core.errors import DatabaseConnectionError, DatabaseError
from release_spine.core.protocols import Connection

SCHEMA_PATH = Path(__file__).parent / "schema" / "releases.sql"

RELEASE_TABLES: tuple[str, ...] = ("releases", "cron_jobs", "regression_cycles", "release_tasks")


def connect(path: str = ":memory:", *, timeout: float = 5.0) -> sqlite3.Connection:
    """Open a SQLite connection usable from the scheduler thread."""
    if path != ":memory:" and not path.startswith("file:"):
        Path(path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        path = str(Path(path).expanduser())

    try:
        conn = sqlite3.connect(
            path,
            timeout=timeout,
            check_same_thread=False,
            uri=path.startswith("file:"),
        )
    except sqlite3.Error as e:
        raise DatabaseConnectionError(f"Failed to connect to SQLite: {e}", cause=e) from e

    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    """Create the release tables if they do not exist."""
    conn.executescript(SCHEMA_PATH.read_text(encoding="utf-8"))
    conn.commit()


@contextmanager
def transaction(conn: Connection) -> Iterator[Connection]:
    """Commit on success, roll back and raise ``DatabaseError`` on driver errors.

    Non-database exceptions are re-raised unchanged after the rollback.
    """
    try:
        yield conn
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        raise DatabaseError(f"Transaction rolled back: {e}", cause=e) from e
    except Exception:
        conn.rollback()
        raise


__all__ = ["RELEASE_TABLES", "SCHEMA_PATH", "connect", "init_schema", "transaction"]
