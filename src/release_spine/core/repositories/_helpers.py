"""Shared helpers for repository classes.

Tags:
    release-spine, repository, helpers
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any

from release_spine.core.timestamps import to_iso8601


def _json_default(obj: Any) -> Any:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return to_iso8601(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def to_db_value(value: Any) -> Any:
    """Convert a model attribute to its column representation."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return to_iso8601(value)
    if isinstance(value, (dict, list)) or hasattr(value, "to_dict"):
        return json.dumps(value, default=_json_default)
    return value


def to_db_fields(fields: dict[str, Any]) -> dict[str, Any]:
    return {column: to_db_value(value) for column, value in fields.items()}


def load_json(raw: str | None, default: Any) -> Any:
    if not raw:
        return default
    return json.loads(raw)
