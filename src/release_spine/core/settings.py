"""
Centralized settings for release-spine.

Manifesto:
    Tick cadence, lease length and retry ceilings decide how fast a
    release moves and how hard the orchestrator leans on integrations.
    They belong in one validated, cached, environment-driven object
    rather than in scattered module constants.

All fields can be set via ``RELEASE_SPINE_*`` environment variables (e.g.
``RELEASE_SPINE_LEASE_SECONDS=600``) or a ``.env`` file.

Tags:
    release-spine, configuration, settings, pydantic, caching

Doc-Types:
    api-reference
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_TICK_INTERVAL_SECONDS = 10


class SchedulerType(str, Enum):
    """How ticks are produced."""

    INTERVAL = "interval"  # in-process timer thread
    WEBHOOK = "webhook"  # external trigger calls the tick endpoint/CLI


class OrchestratorSettings(BaseSettings):
    """release-spine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RELEASE_SPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ─────────────────────────────────────────────────
    database_path: str = Field(
        default_factory=lambda: str(Path.home() / ".release-spine" / "release_spine.db"),
    )

    # ── Scheduler ────────────────────────────────────────────────
    scheduler_type: SchedulerType = Field(default=SchedulerType.INTERVAL)
    tick_interval_seconds: float = Field(default=60.0)
    lease_seconds: int = Field(default=300, gt=0)
    instance_id: str | None = Field(default=None)

    # ── Task execution ───────────────────────────────────────────
    max_task_retries: int = Field(default=3, ge=0)
    retry_base_delay_seconds: float = Field(default=0.0, ge=0)
    retry_max_delay_seconds: float = Field(default=600.0, ge=0)
    task_timeout_seconds: float = Field(default=120.0, gt=0)
    max_steps_per_advance: int = Field(default=25, gt=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_json: bool | None = Field(default=None)

    @field_validator("tick_interval_seconds")
    @classmethod
    def _clamp_interval(cls, value: float) -> float:
        return max(value, MIN_TICK_INTERVAL_SECONDS)

    @model_validator(mode="after")
    def _lease_outlives_task(self) -> OrchestratorSettings:
        # A dispatch renews the lease first, so one task call must fit inside it.
        if self.lease_seconds <= self.task_timeout_seconds:
            raise ValueError(
                f"lease_seconds ({self.lease_seconds}) must be longer than "
                f"task_timeout_seconds ({self.task_timeout_seconds})"
            )
        return self


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, OrchestratorSettings] = {}


def get_settings(*, _force_reload: bool = False) -> OrchestratorSettings:
    """Return the cached settings, building them on first use."""
    if _force_reload or "default" not in _settings_cache:
        _settings_cache["default"] = OrchestratorSettings()
    return _settings_cache["default"]


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = [
    "MIN_TICK_INTERVAL_SECONDS",
    "OrchestratorSettings",
    "SchedulerType",
    "clear_settings_cache",
    "get_settings",
]
