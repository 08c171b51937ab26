"""Scheduler timing backends.

Backends decide WHEN a tick happens; :class:`GlobalScheduler` decides
WHAT a tick does. The tick callback is async so a backend can be driven
from sync threads (``asyncio.run``) or from an existing event loop.

┌──────────────────────────────────────────────────────────────────────────────┐
│  BACKENDS                                                                     │
│                                                                               │
│   ┌─────────────────────────┐     tick()      ┌─────────────────────────┐    │
│   │ ThreadSchedulerBackend  │ ──────────────► │                         │    │
│   │ (interval mode)         │                 │    GlobalScheduler      │    │
│   └─────────────────────────┘                 │    .tick()              │    │
│                                               │                         │    │
│   ┌─────────────────────────┐     tick()      │  - due cron jobs        │    │
│   │ WebhookSchedulerBackend │ ──────────────► │  - lease per release    │    │
│   │ (external trigger:      │                 │  - advance()            │    │
│   │  cron, Cronicle, CLI)   │                 │                         │    │
│   └─────────────────────────┘                 └─────────────────────────┘    │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


TickCallback = Callable[[], Awaitable[Any]]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Protocol for pluggable scheduler timing backends.

    A backend is responsible ONLY for timing: calling the tick callback
    at the specified interval, or when triggered.
    """

    name: str

    def start(self, tick_callback: TickCallback, interval_seconds: float = 60.0) -> None:
        ...

    def stop(self) -> None:
        ...

    def get_health(self) -> BackendHealth:
        ...

    @property
    def is_running(self) -> bool:
        ...


@dataclass
class BackendHealth:
    """Structured backend health response."""

    healthy: bool
    backend: str
    tick_count: int = 0
    last_tick: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            **self.extra,
        }


class ThreadSchedulerBackend:
    """Interval backend: a daemon thread calls the tick every N seconds.

    Example:
        >>> backend = ThreadSchedulerBackend()
        >>> backend.start(scheduler.tick_async, interval_seconds=60.0)
        >>> # ... later ...
        >>> backend.stop()
    """

    name = "thread"

    def __init__(self, *, join_timeout: float = 5.0) -> None:
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._interval: float = 60.0
        self._started = False
        self._join_timeout = join_timeout
        self._lock = threading.Lock()

    def start(self, tick_callback: TickCallback, interval_seconds: float = 60.0) -> None:
        if self._started:
            logger.warning("ThreadSchedulerBackend already started")
            return

        self._interval = interval_seconds
        self._stop_event.clear()

        def _loop() -> None:
            logger.info(f"ThreadSchedulerBackend started (interval={interval_seconds}s)")
            while not self._stop_event.wait(interval_seconds):
                with self._lock:
                    self._tick_count += 1
                    self._last_tick = datetime.now(UTC)

                try:
                    asyncio.run(tick_callback())
                except Exception as e:
                    logger.exception(f"Tick failed: {e}")

            logger.info("ThreadSchedulerBackend stopped")

        self._thread = threading.Thread(target=_loop, daemon=True, name="release-spine-scheduler")
        self._thread.start()
        self._started = True

    def stop(self) -> None:
        """Stop issuing ticks. A tick already running finishes on its own."""
        if not self._started:
            return

        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=self._join_timeout)
            if self._thread.is_alive():
                logger.warning("Scheduler thread still finishing its current tick")

        self._started = False
        logger.info("ThreadSchedulerBackend shutdown complete")

    def get_health(self) -> BackendHealth:
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            last_tick=self._last_tick,
            extra={"interval_seconds": self._interval},
        )

    @property
    def is_running(self) -> bool:
        return self._started and self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count


class WebhookSchedulerBackend:
    """Trigger backend: ticks happen only when ``trigger()`` is called.

    Used when an external scheduler (system cron, Cronicle) owns the
    cadence and calls ``release-spine scheduler tick`` or an endpoint.
    """

    name = "webhook"

    def __init__(self) -> None:
        self._callback: TickCallback | None = None
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._lock = threading.Lock()

    def start(self, tick_callback: TickCallback, interval_seconds: float = 60.0) -> None:
        if self._callback is not None:
            logger.warning("WebhookSchedulerBackend already started")
            return
        self._callback = tick_callback
        logger.info("WebhookSchedulerBackend armed; waiting for external triggers")

    def stop(self) -> None:
        if self._callback is None:
            return
        self._callback = None
        logger.info("WebhookSchedulerBackend disarmed")

    async def trigger_async(self) -> Any:
        """Run one tick from inside an event loop."""
        if self._callback is None:
            raise RuntimeError("WebhookSchedulerBackend is not started")
        with self._lock:
            self._tick_count += 1
            self._last_tick = datetime.now(UTC)
        return await self._callback()

    def trigger(self) -> Any:
        """Run one tick synchronously and return the callback's result."""
        return asyncio.run(self.trigger_async())

    def get_health(self) -> BackendHealth:
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            last_tick=self._last_tick,
        )

    @property
    def is_running(self) -> bool:
        return self._callback is not None

    @property
    def tick_count(self) -> int:
        return self._tick_count


__all__ = [
    "BackendHealth",
    "SchedulerBackend",
    "ThreadSchedulerBackend",
    "TickCallback",
    "WebhookSchedulerBackend",
]
