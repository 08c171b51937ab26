"""Tests for the scheduler timing backends."""

import threading

import pytest

from release_spine.scheduling import SchedulerBackend, ThreadSchedulerBackend, WebhookSchedulerBackend


class TestThreadSchedulerBackend:
    def test_ticks_on_interval(self):
        ticked = threading.Event()

        async def tick():
            ticked.set()

        backend = ThreadSchedulerBackend(join_timeout=2.0)
        backend.start(tick, interval_seconds=0.01)
        try:
            assert ticked.wait(timeout=5.0)
            assert backend.is_running
        finally:
            backend.stop()

        assert not backend.is_running
        health = backend.get_health()
        assert health.backend == "thread"
        assert health.tick_count >= 1
        assert health.to_dict()["interval_seconds"] == 0.01

    def test_failing_tick_keeps_thread_alive(self):
        calls = []
        second = threading.Event()

        async def tick():
            calls.append(1)
            if len(calls) >= 2:
                second.set()
            raise RuntimeError("tick exploded")

        backend = ThreadSchedulerBackend(join_timeout=2.0)
        backend.start(tick, interval_seconds=0.01)
        try:
            assert second.wait(timeout=5.0)
        finally:
            backend.stop()

    def test_stop_without_start(self):
        ThreadSchedulerBackend().stop()

    def test_satisfies_protocol(self):
        assert isinstance(ThreadSchedulerBackend(), SchedulerBackend)


class TestWebhookSchedulerBackend:
    def test_trigger_runs_callback(self):
        async def tick():
            return "ticked"

        backend = WebhookSchedulerBackend()
        backend.start(tick)
        assert backend.is_running
        assert backend.trigger() == "ticked"
        assert backend.tick_count == 1
        assert backend.get_health().last_tick is not None

    def test_trigger_requires_start(self):
        with pytest.raises(RuntimeError, match="not started"):
            WebhookSchedulerBackend().trigger()

    async def test_trigger_async(self):
        async def tick():
            return 42

        backend = WebhookSchedulerBackend()
        backend.start(tick)
        assert await backend.trigger_async() == 42

    def test_stop_disarms(self):
        async def tick():
            return None

        backend = WebhookSchedulerBackend()
        backend.start(tick)
        backend.stop()
        assert not backend.is_running
        assert not backend.get_health().healthy
