"""
Typed request objects for operations.

Each dataclass represents the *input* contract for a single operation
function. Requests carry only validated, transport-agnostic data: no raw
HTTP bodies, no typer params.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from release_spine.core.models import (
    CronConfig,
    Platform,
    RegressionSlot,
    ReleaseType,
)

# ------------------------------------------------------------------ #
# Release operations
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class CreateReleaseRequest:
    """Request for :func:`release_spine.ops.releases.create_release`.

    Attributes:
        version: Semantic version, e.g. ``"2.4.0"``.
        platforms: Platforms built for this release.
        kickoff_at: When the release branch is forked (UTC).
        target_release_at: Planned store submission date (UTC).
        release_type: ``PLANNED``, ``HOTFIX`` or ``MAJOR``.
        base_branch: Branch the release branch is forked from.
        parent_release_id: Release a hotfix is based on.
        cron_config: Optional kickoff tasks and tick interval.
        regression_slots: Scheduled regression cycles.
        auto_transition_to_stage2: Start regression as soon as kickoff completes.
        auto_transition_to_stage3: Start pre-release as soon as regression completes.
        has_manual_build_upload: Builds are uploaded by hand; regression waits
            for an explicit trigger.
    """

    version: str
    platforms: list[Platform] = field(default_factory=list)
    kickoff_at: datetime | None = None
    target_release_at: datetime | None = None
    release_type: ReleaseType = ReleaseType.PLANNED
    base_branch: str = "main"
    parent_release_id: str | None = None
    has_project_management_integration: bool = False
    has_test_platform_integration: bool = False
    cron_config: CronConfig = field(default_factory=CronConfig)
    regression_slots: list[RegressionSlot] = field(default_factory=list)
    auto_transition_to_stage2: bool = True
    auto_transition_to_stage3: bool = False
    has_manual_build_upload: bool = False


@dataclass(frozen=True, slots=True)
class ListReleasesRequest:
    """Filter and pagination for :func:`release_spine.ops.releases.list_releases`."""

    status: str | None = None
    limit: int = 50
    offset: int = 0
