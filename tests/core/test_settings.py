"""Tests for release_spine.core.settings."""

import pytest
from pydantic import ValidationError

from release_spine.core.settings import (
    MIN_TICK_INTERVAL_SECONDS,
    OrchestratorSettings,
    SchedulerType,
    clear_settings_cache,
    get_settings,
)


class TestOrchestratorSettings:
    def test_defaults(self):
        settings = OrchestratorSettings()
        assert settings.scheduler_type == SchedulerType.INTERVAL
        assert settings.lease_seconds == 300
        assert settings.max_task_retries == 3
        assert settings.database_path.endswith("release_spine.db")

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("RELEASE_SPINE_LEASE_SECONDS", "600")
        monkeypatch.setenv("RELEASE_SPINE_SCHEDULER_TYPE", "webhook")
        settings = OrchestratorSettings()
        assert settings.lease_seconds == 600
        assert settings.scheduler_type == SchedulerType.WEBHOOK

    def test_tick_interval_clamped(self):
        settings = OrchestratorSettings(tick_interval_seconds=1)
        assert settings.tick_interval_seconds == MIN_TICK_INTERVAL_SECONDS


class TestGetSettings:
    def test_cached(self):
        assert get_settings() is get_settings()

    def test_cache_cleared(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("RELEASE_SPINE_INSTANCE_ID", "scheduler-9")
        clear_settings_cache()
        second = get_settings()
        assert second is not first
        assert second.instance_id == "scheduler-9"

    def test_force_reload(self):
        first = get_settings()
        assert get_settings(_force_reload=True) is not first


class TestLeaseValidation:
    def test_lease_must_outlive_task_timeout(self):
        with pytest.raises(ValidationError, match="must be longer than task_timeout_seconds"):
            OrchestratorSettings(lease_seconds=100, task_timeout_seconds=120)

    def test_equal_lease_and_timeout_rejected(self):
        with pytest.raises(ValidationError):
            OrchestratorSettings(lease_seconds=120, task_timeout_seconds=120)

    def test_env_values_validated_together(self, monkeypatch):
        monkeypatch.setenv("RELEASE_SPINE_LEASE_SECONDS", "60")
        with pytest.raises(ValidationError):
            OrchestratorSettings()
        monkeypatch.setenv("RELEASE_SPINE_TASK_TIMEOUT_SECONDS", "30")
        assert OrchestratorSettings().task_timeout_seconds == 30
