"""Tests for CLI helpers."""

from datetime import UTC, datetime, timedelta

import pytest
import typer

from conftest import KICKOFF
from release_spine.cli.release import parse_slot
from release_spine.cli.utils import load_executor, resolve_executor, resolve_settings
from release_spine.core.models import RegressionSlotConfig
from release_spine.execution import DryRunExecutor, HandlerRegistryExecutor


class TestParseSlot:
    def test_relative_days(self):
        slot = parse_slot("+2d", KICKOFF)
        assert slot.scheduled_at == KICKOFF + timedelta(days=2)

    def test_relative_hours_with_config(self):
        config = RegressionSlotConfig(automation_runs=True)
        slot = parse_slot("+6h", KICKOFF, config)
        assert slot.scheduled_at == KICKOFF + timedelta(hours=6)
        assert slot.config.automation_runs is True

    def test_relative_needs_kickoff(self):
        with pytest.raises(typer.BadParameter, match="needs --kickoff"):
            parse_slot("+2d", None)

    def test_absolute_naive_is_utc(self):
        slot = parse_slot("2026-05-06T09:00", None)
        assert slot.scheduled_at == datetime(2026, 5, 6, 9, 0, tzinfo=UTC)

    def test_invalid(self):
        with pytest.raises(typer.BadParameter, match="Invalid slot"):
            parse_slot("next tuesday", KICKOFF)


class TestLoadExecutor:
    def test_class_is_instantiated(self):
        assert isinstance(load_executor("release_spine.execution:DryRunExecutor"), DryRunExecutor)

    def test_registry_class(self):
        assert isinstance(load_executor("release_spine.execution:HandlerRegistryExecutor"), HandlerRegistryExecutor)

    def test_not_an_executor(self):
        with pytest.raises(typer.BadParameter, match="does not provide"):
            load_executor("release_spine.core.timestamps:utc_now")

    def test_malformed_target(self):
        with pytest.raises(typer.BadParameter, match="module:attribute"):
            load_executor("nope")

    def test_missing_module(self):
        with pytest.raises(typer.BadParameter, match="Cannot load executor"):
            load_executor("release_spine.nowhere:Executor")

    def test_dry_run_wins(self):
        assert isinstance(resolve_executor(dry_run=True, executor="ignored:thing"), DryRunExecutor)

    def test_nothing_configured_exits(self):
        with pytest.raises(typer.Exit):
            resolve_executor(dry_run=False, executor=None)


class TestResolveSettings:
    def test_overrides_applied(self, tmp_path):
        settings = resolve_settings(str(tmp_path / "x.db"), instance_id="cli-1", tick_interval_seconds=None)
        assert settings.database_path == str(tmp_path / "x.db")
        assert settings.instance_id == "cli-1"

    def test_no_overrides_returns_cached(self):
        assert resolve_settings() is resolve_settings()
