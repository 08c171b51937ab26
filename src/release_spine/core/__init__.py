"""release-spine core: the foundation every other layer builds on.

Manifesto:
    The orchestrator is rebuilt from the database on every tick, so the
    core owns everything that must stay consistent across processes:
    the models, the schema, the repositories and the lease columns.
    Nothing here knows about schedulers or executors.

Architecture::

    Layer 1 -- Types & Errors
        errors.py          ReleaseSpineError hierarchy
        models/            Release, CronJob, ReleaseTask, RegressionCycle + enums
        timestamps.py      UTC helpers, ULIDs, sortable ISO strings

    Layer 2 -- Persistence
        protocols.py       Connection protocol
        dialect.py         SQL placeholder dialects
        database.py        connect(), init_schema(), transaction()
        repository.py      BaseRepository
        repositories/      Release / CronJob / Task / Cycle stores
        schema/            releases.sql

    Layer 3 -- Ambient
        settings.py        pydantic-settings configuration
        logging.py         structlog configuration and context binding

Tags:
    release-spine, core, foundation
"""

from release_spine.core.errors import (
    ErrorCategory,
    InvalidStageTransitionError,
    NotFoundError,
    ReleaseSpineError,
)
from release_spine.core.logging import configure_logging, get_logger
from release_spine.core.settings import OrchestratorSettings, get_settings

__all__ = [
    "ErrorCategory",
    "InvalidStageTransitionError",
    "NotFoundError",
    "OrchestratorSettings",
    "ReleaseSpineError",
    "configure_logging",
    "get_logger",
    "get_settings",
]
