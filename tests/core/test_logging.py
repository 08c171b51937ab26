"""Tests for structlog configuration and context binding."""

import logging

import structlog

from release_spine.core.logging import LogContext, bind_context, clear_context, configure_logging, get_logger


class TestLogContext:
    def test_binds_and_unbinds(self):
        clear_context()
        with LogContext(release_id="rel-1", cron_job_id="cj-1"):
            bound = structlog.contextvars.get_contextvars()
            assert bound["release_id"] == "rel-1"
        assert "release_id" not in structlog.contextvars.get_contextvars()

    def test_keeps_outer_context(self):
        clear_context()
        bind_context(instance_id="scheduler-1")
        with LogContext(release_id="rel-1"):
            pass
        assert structlog.contextvars.get_contextvars() == {"instance_id": "scheduler-1"}
        clear_context()


class TestConfigureLogging:
    def test_json_lines_carry_event_fields(self, caplog):
        """JSON mode renders event name and bound fields through stdlib logging."""
        caplog.set_level(logging.INFO)
        configure_logging(level="INFO", json_format=True)
        try:
            get_logger("release_spine.test").info("release_created", release_id="rel-1")
        finally:
            structlog.reset_defaults()

        messages = [record.getMessage() for record in caplog.records]
        assert any('"event": "release_created"' in m and '"release_id": "rel-1"' in m for m in messages)
