"""Release repository - CRUD for ``releases``.

Tags:
    release-spine, repository, release

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Any

from release_spine.core.models import Platform, Release, ReleaseStatus, ReleaseType
from release_spine.core.repository import BaseRepository
from release_spine.core.timestamps import from_iso8601, utc_now

from ._helpers import load_json, to_db_fields


class ReleaseRepository(BaseRepository):
    """CRUD for the ``releases`` table."""

    TABLE = "releases"

    def create(self, release: Release) -> Release:
        """Insert a release row."""
        self.insert(self.TABLE, to_db_fields({
            "id": release.id,
            "version": release.version,
            "release_type": release.release_type,
            "status": release.status,
            "kickoff_at": release.kickoff_at,
            "target_release_at": release.target_release_at,
            "base_branch": release.base_branch,
            "branch": release.branch,
            "parent_release_id": release.parent_release_id,
            "platforms": [p.value for p in release.platforms],
            "final_build_numbers": release.final_build_numbers,
            "has_project_management_integration": release.has_project_management_integration,
            "has_test_platform_integration": release.has_test_platform_integration,
            "created_at": release.created_at,
            "updated_at": release.updated_at,
        }))
        return release

    def get(self, release_id: str) -> Release | None:
        row = self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE id = {self.ph(1)}",
            (release_id,),
        )
        return self._row_to_release(row) if row else None

    def update(self, release_id: str, **fields: Any) -> int:
        """Update columns on a release. ``updated_at`` is stamped automatically."""
        if "platforms" in fields:
            fields["platforms"] = [Platform(p).value for p in fields["platforms"]]
        fields.setdefault("updated_at", utc_now())
        return self.update_fields(self.TABLE, release_id, to_db_fields(fields))

    def list(self, status: ReleaseStatus | None = None) -> list[Release]:
        if status is None:
            rows = self.query(f"SELECT * FROM {self.TABLE} ORDER BY created_at")
        else:
            rows = self.query(
                f"SELECT * FROM {self.TABLE} WHERE status = {self.ph(1)} ORDER BY created_at",
                (status.value,),
            )
        return [self._row_to_release(row) for row in rows]

    def _row_to_release(self, row: dict[str, Any]) -> Release:
        return Release(
            id=row["id"],
            version=row["version"],
            release_type=ReleaseType(row["release_type"]),
            status=ReleaseStatus(row["status"]),
            kickoff_at=from_iso8601(row["kickoff_at"]),
            target_release_at=from_iso8601(row["target_release_at"]),
            base_branch=row["base_branch"],
            branch=row["branch"],
            parent_release_id=row["parent_release_id"],
            platforms=[Platform(p) for p in load_json(row["platforms"], [])],
            final_build_numbers=load_json(row["final_build_numbers"], {}),
            has_project_management_integration=bool(row["has_project_management_integration"]),
            has_test_platform_integration=bool(row["has_test_platform_integration"]),
            created_at=from_iso8601(row["created_at"]),
            updated_at=from_iso8601(row["updated_at"]),
        )
