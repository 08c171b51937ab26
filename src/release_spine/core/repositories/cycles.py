"""Regression cycle repository - CRUD for ``regression_cycles``.

Tags:
    release-spine, repository, regression

Doc-Types:
    api-reference
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from release_spine.core.models import RegressionCycle, RegressionCycleStatus
from release_spine.core.repository import BaseRepository
from release_spine.core.timestamps import from_iso8601

from ._helpers import to_db_fields


class RegressionCycleRepository(BaseRepository):
    """CRUD for the ``regression_cycles`` table."""

    TABLE = "regression_cycles"

    def create(self, cycle: RegressionCycle) -> RegressionCycle:
        """Insert a cycle as the latest one for its release."""
        self.execute(
            f"UPDATE {self.TABLE} SET is_latest = 0 "
            f"WHERE release_id = {self.ph(1)} AND is_latest = 1",
            (cycle.release_id,),
        )
        cycle.is_latest = True
        self.insert(self.TABLE, to_db_fields({
            "id": cycle.id,
            "release_id": cycle.release_id,
            "slot_id": cycle.slot_id,
            "is_latest": cycle.is_latest,
            "status": cycle.status,
            "cycle_tag": cycle.cycle_tag,
            "created_at": cycle.created_at,
            "completed_at": cycle.completed_at,
        }))
        return cycle

    def get(self, cycle_id: str) -> RegressionCycle | None:
        row = self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE id = {self.ph(1)}",
            (cycle_id,),
        )
        return self._row_to_cycle(row) if row else None

    def get_latest(self, release_id: str) -> RegressionCycle | None:
        row = self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE release_id = {self.ph(1)} AND is_latest = 1",
            (release_id,),
        )
        return self._row_to_cycle(row) if row else None

    def list_for_release(self, release_id: str) -> list[RegressionCycle]:
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE release_id = {self.ph(1)} ORDER BY created_at, id",
            (release_id,),
        )
        return [self._row_to_cycle(row) for row in rows]

    def update_status(
        self,
        cycle_id: str,
        status: RegressionCycleStatus,
        now: datetime | None = None,
    ) -> int:
        fields: dict[str, Any] = {"status": status}
        if status == RegressionCycleStatus.DONE:
            fields["completed_at"] = now
        return self.update_fields(self.TABLE, cycle_id, to_db_fields(fields))

    def _row_to_cycle(self, row: dict[str, Any]) -> RegressionCycle:
        return RegressionCycle(
            id=row["id"],
            release_id=row["release_id"],
            slot_id=row["slot_id"],
            is_latest=bool(row["is_latest"]),
            status=RegressionCycleStatus(row["status"]),
            cycle_tag=row["cycle_tag"],
            created_at=from_iso8601(row["created_at"]),
            completed_at=from_iso8601(row["completed_at"]),
        )
