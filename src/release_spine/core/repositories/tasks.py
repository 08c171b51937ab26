"""Release task repository - CRUD for ``release_tasks``.

Tags:
    release-spine, repository, task

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Any

from release_spine.core.models import Platform, ReleaseTask, TaskStage, TaskStatus, TaskType
from release_spine.core.repository import BaseRepository
from release_spine.core.timestamps import from_iso8601, utc_now

from ._helpers import load_json, to_db_fields


class ReleaseTaskRepository(BaseRepository):
    """CRUD for the ``release_tasks`` table."""

    TABLE = "release_tasks"

    def create_many(self, tasks: list[ReleaseTask]) -> int:
        for task in tasks:
            self.insert(self.TABLE, to_db_fields({
                "id": task.id,
                "release_id": task.release_id,
                "task_type": task.task_type,
                "stage": task.stage,
                "platform": task.platform,
                "cycle_id": task.cycle_id,
                "status": task.status,
                "retry_count": task.retry_count,
                "next_attempt_at": task.next_attempt_at,
                "awaiting_callback": task.awaiting_callback,
                "conclusion": task.conclusion,
                "output": task.output,
                "external_id": task.external_id,
                "created_at": task.created_at,
                "updated_at": task.updated_at,
            }))
        return len(tasks)

    def get(self, task_id: str) -> ReleaseTask | None:
        row = self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE id = {self.ph(1)}",
            (task_id,),
        )
        return self._row_to_task(row) if row else None

    def list_for_release(
        self,
        release_id: str,
        stage: TaskStage | None = None,
    ) -> list[ReleaseTask]:
        sql = f"SELECT * FROM {self.TABLE} WHERE release_id = {self.ph(1)}"
        params: tuple = (release_id,)
        if stage is not None:
            sql += f" AND stage = {self.ph(1)}"
            params = (release_id, stage.value)
        rows = self.query(sql + " ORDER BY created_at, id", params)
        return [self._row_to_task(row) for row in rows]

    def list_for_cycle(self, cycle_id: str) -> list[ReleaseTask]:
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE cycle_id = {self.ph(1)} ORDER BY created_at, id",
            (cycle_id,),
        )
        return [self._row_to_task(row) for row in rows]

    def update(self, task_id: str, **fields: Any) -> int:
        fields.setdefault("updated_at", utc_now())
        return self.update_fields(self.TABLE, task_id, to_db_fields(fields))

    def _row_to_task(self, row: dict[str, Any]) -> ReleaseTask:
        return ReleaseTask(
            id=row["id"],
            release_id=row["release_id"],
            task_type=TaskType(row["task_type"]),
            stage=TaskStage(row["stage"]),
            status=TaskStatus(row["status"]),
            platform=Platform(row["platform"]) if row["platform"] else None,
            cycle_id=row["cycle_id"],
            retry_count=row["retry_count"],
            next_attempt_at=from_iso8601(row["next_attempt_at"]),
            awaiting_callback=bool(row["awaiting_callback"]),
            conclusion=row["conclusion"],
            output=load_json(row["output"], {}),
            external_id=row["external_id"],
            created_at=from_iso8601(row["created_at"]),
            updated_at=from_iso8601(row["updated_at"]),
        )
