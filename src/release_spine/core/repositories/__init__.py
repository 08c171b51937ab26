"""Repositories for release orchestration tables.

Each repository class extends :class:`BaseRepository` and satisfies one of
the Protocols in :mod:`.contracts`.

Architecture::

    ┌────────────────────────────────────────────────────────────────┐
    │  orchestration/state_machine.py,  scheduling/scheduler.py,     │
    │  ops/releases.py                                               │
    └────────────────────────────┬───────────────────────────────────┘
                                 │ uses
                                 ▼
    ┌────────────────────────────────────────────────────────────────┐
    │  release_spine.core.repositories  (this package)              │
    │                                                               │
    │  contracts.py  - ReleaseStore, CronJobStore,                  │
    │                  ReleaseTaskStore, RegressionCycleStore       │
    │  releases.py   - ReleaseRepository                            │
    │  cron_jobs.py  - CronJobRepository (+ lease CAS)              │
    │  tasks.py      - ReleaseTaskRepository                        │
    │  cycles.py     - RegressionCycleRepository                    │
    └────────────────────────────────────────────────────────────────┘

Tags:
    repository, sql, release-spine, data-access
"""

from dataclasses import dataclass

from release_spine.core.dialect import Dialect
from release_spine.core.protocols import Connection

from .contracts import CronJobStore, RegressionCycleStore, ReleaseStore, ReleaseTaskStore
from .cron_jobs import CronJobRepository
from .cycles import RegressionCycleRepository
from .releases import ReleaseRepository
from .tasks import ReleaseTaskRepository


@dataclass
class Repositories:
    """The four stores bound to one connection."""

    conn: Connection
    releases: ReleaseStore
    cron_jobs: CronJobStore
    tasks: ReleaseTaskStore
    cycles: RegressionCycleStore

    @classmethod
    def for_connection(cls, conn: Connection, dialect: Dialect | None = None) -> "Repositories":
        return cls(
            conn=conn,
            releases=ReleaseRepository(conn, dialect),
            cron_jobs=CronJobRepository(conn, dialect),
            tasks=ReleaseTaskRepository(conn, dialect),
            cycles=RegressionCycleRepository(conn, dialect),
        )


__all__ = [
    "CronJobRepository",
    "CronJobStore",
    "RegressionCycleRepository",
    "RegressionCycleStore",
    "ReleaseRepository",
    "ReleaseStore",
    "ReleaseTaskRepository",
    "ReleaseTaskStore",
    "Repositories",
]
