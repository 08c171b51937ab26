"""Tests for the release-spine CLI."""

import json

import pytest
from typer.testing import CliRunner

from release_spine.cli.app import app

runner = CliRunner()


@pytest.fixture()
def db_path(tmp_path):
    return str(tmp_path / "cli.db")


@pytest.fixture()
def invoke(db_path):
    """Run a subcommand against the temporary database."""

    def _invoke(*args):
        return runner.invoke(app, ["--log-level", "ERROR", *args, "--database", db_path])

    return _invoke


def _json(result):
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


@pytest.fixture()
def release_id(invoke):
    created = _json(invoke(
        "release", "create", "5.0.0",
        "--platform", "ANDROID",
        "--platform", "IOS",
        "--kickoff", "2020-01-06T09:00:00",
        "--target", "2020-01-20T09:00:00",
        "--slot", "+2d",
        "--json",
    ))
    return created["release_id"]


class TestRootCommand:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "release-spine" in result.output

    def test_help_lists_groups(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for group in ("db", "scheduler", "release", "locks"):
            assert group in result.output


class TestDbCommands:
    def test_init_and_tables(self, invoke):
        init = _json(invoke("db", "init", "--json"))
        assert init["tables_created"] == ["releases", "cron_jobs", "regression_cycles", "release_tasks"]

        counts = _json(invoke("db", "tables", "--json"))
        assert {row["table"]: row["count"] for row in counts}["releases"] == 0


class TestReleaseCommands:
    def test_create_and_status(self, invoke, release_id):
        status = _json(invoke("release", "status", release_id, "--json"))
        assert status["release"]["version"] == "5.0.0"
        assert status["release"]["platforms"] == ["ANDROID", "IOS"]
        assert status["stages"]["KICKOFF"] == "NOT_STARTED"
        assert status["upcoming_regressions"][0]["scheduled_at"].startswith("2020-01-08T09:00:00")

    def test_list(self, invoke, release_id):
        listed = _json(invoke("release", "list", "--json"))
        assert listed["total"] == 1
        assert listed["items"][0]["release_id"] == release_id

    def test_create_rejects_slot_after_target(self, invoke):
        result = invoke(
            "release", "create", "5.0.1",
            "--platform", "IOS",
            "--kickoff", "2020-01-06T09:00:00",
            "--target", "2020-01-07T09:00:00",
            "--slot", "+2d",
        )
        assert result.exit_code == 1
        assert "VALIDATION_FAILED" in result.output

    def test_trigger_stage3_too_early(self, invoke, release_id):
        result = invoke("release", "trigger-stage3", release_id)
        assert result.exit_code == 1
        assert "INVALID_TRANSITION" in result.output

    def test_pause_resume(self, invoke, release_id):
        paused = _json(invoke("release", "pause", release_id, "--json"))
        assert paused["cron_status"] == "PAUSED"
        resumed = _json(invoke("release", "resume", release_id, "--json"))
        assert resumed["cron_status"] == "RUNNING"

    def test_add_relative_slot(self, invoke, release_id):
        added = _json(invoke("release", "add-slot", release_id, "--at", "+4d", "--json"))
        assert added["upcoming_regressions"] == 2
        assert added["slot"]["scheduled_at"].startswith("2020-01-10T09:00:00")

    def test_archive(self, invoke, release_id):
        archived = _json(invoke("release", "archive", release_id, "--json"))
        assert archived["release_status"] == "ARCHIVED"

    def test_unknown_release(self, invoke):
        result = invoke("release", "status", "missing")
        assert result.exit_code == 1
        assert "NOT_FOUND" in result.output


class TestSchedulerCommands:
    def test_tick_dry_run(self, invoke, release_id):
        tick = _json(invoke("scheduler", "tick", "--dry-run", "--json"))
        assert tick["processed_count"] == 1
        assert tick["advanced"][0]["release_id"] == release_id

        status = _json(invoke("release", "status", release_id, "--json"))
        assert status["stages"]["KICKOFF"] == "IN_PROGRESS"

    def test_tick_requires_executor(self, invoke):
        result = invoke("scheduler", "tick")
        assert result.exit_code == 2

    def test_tick_with_executor_path(self, invoke, release_id):
        tick = _json(invoke(
            "scheduler", "tick", "--executor", "release_spine.execution:DryRunExecutor", "--json",
        ))
        assert tick["success"] is True


class TestLockCommands:
    def test_list_empty(self, invoke):
        listed = _json(invoke("locks", "list", "--json"))
        assert listed["items"] == []

    def test_release_without_lease(self, invoke):
        result = invoke("locks", "release", "no-such-job")
        assert result.exit_code == 0
        assert "No lease held" in result.output

    def test_cleanup(self, invoke):
        cleared = _json(invoke("locks", "cleanup", "--json"))
        assert cleared == {"value": "0"}
