"""
Typed response objects for operations.

Each dataclass represents the *output* of a single operation beyond the
generic :class:`OperationResult` envelope. Responses carry only domain
data: no exit codes, no CLI formatting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ------------------------------------------------------------------ #
# Release responses
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class ReleaseCreated:
    """Result payload for :func:`release_spine.ops.releases.create_release`."""

    release_id: str
    cron_job_id: str
    version: str
    regression_slots: int = 0
    dry_run: bool = False


@dataclass(frozen=True, slots=True)
class StageTriggered:
    """Result payload for the ``trigger_stage*`` operations."""

    release_id: str
    stage: str
    stage_status: str
    dry_run: bool = False


@dataclass(frozen=True, slots=True)
class ReleaseStateChanged:
    """Result payload for archive/pause/resume/rerun."""

    release_id: str
    release_status: str
    cron_status: str
    pause_type: str
    unchanged: bool = False
    dry_run: bool = False


@dataclass(slots=True)
class ReleaseSummary:
    """Compact release representation for list views."""

    release_id: str
    version: str
    status: str
    kickoff_at: str | None = None
    stage1_status: str | None = None
    stage2_status: str | None = None
    stage3_status: str | None = None
    cron_status: str | None = None
    pause_type: str | None = None


@dataclass(slots=True)
class ReleaseStatusView:
    """Full release picture for :func:`release_spine.ops.releases.get_release_status`."""

    release: dict[str, Any]
    cron_job: dict[str, Any]
    stages: dict[str, str]
    tasks: list[dict[str, Any]] = field(default_factory=list)
    cycles: list[dict[str, Any]] = field(default_factory=list)
    upcoming_regressions: list[dict[str, Any]] = field(default_factory=list)


# ------------------------------------------------------------------ #
# Lock responses
# ------------------------------------------------------------------ #


@dataclass(slots=True)
class LockSummary:
    """Active release lease."""

    cron_job_id: str
    release_id: str
    locked_by: str | None = None
    locked_at: str | None = None
    expires_at: str | None = None


# ------------------------------------------------------------------ #
# Database responses
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class DatabaseInitResult:
    """Result payload for :func:`release_spine.ops.database.initialize_database`."""

    tables_created: list[str]
    dry_run: bool = False


@dataclass(frozen=True, slots=True)
class TableCount:
    """Row count for a single table."""

    table: str
    count: int
