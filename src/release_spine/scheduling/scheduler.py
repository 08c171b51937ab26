"""Global scheduler: one tick over every in-flight release.

Manifesto:
    The scheduler owns no release state. Each tick it asks the cron job
    store which releases are due, claims each release's lease, lets the
    state machine advance it, and lets go. Any number of instances can
    run side by side; the lease keeps them off each other's releases, and
    one release failing never stops the others.

Tags:
    release-spine, scheduling, orchestrator, beat-as-poller, lease

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  GLOBAL SCHEDULER                                                             │
│                                                                               │
│   Backend (timing) ──► tick_async() ──► tick(now)                             │
│                                           │                                   │
│                        overlap guard ─────┤ (previous tick still running      │
│                                           │  in this process -> skip)         │
│                                           ▼                                   │
│                          cron_jobs.get_due_cron_jobs(now)                     │
│                                           │                                   │
│                          for each job:  process_one(job, now)                 │
│                            ├── LeaseLockManager.acquire()  ── held? SKIPPED   │
│                            ├── CronJobStateMachine.advance(now)               │
│                            │     renews the lease before every dispatch;      │
│                            │     a lost lease ends the pass                   │
│                            ├── stamp last_run_at                              │
│                            └── finally: LeaseLockManager.release()            │
│                                           │                                   │
│                                           ▼                                   │
│                 TickResult(processed, skipped, failed, errors, duration)      │
│                                                                               │
│   Public API: start() / stop() -> bool, tick(), process_one(), health(),      │
│               get_stats(), reset_stats()                                      │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from release_spine.core.database import connect, init_schema, transaction
from release_spine.core.dialect import Dialect
from release_spine.core.errors import ReleaseSpineError
from release_spine.core.logging import LogContext
from release_spine.core.models import CronJob, CronStatus
from release_spine.core.protocols import Connection
from release_spine.core.repositories import Repositories
from release_spine.core.settings import OrchestratorSettings, SchedulerType, get_settings
from release_spine.core.timestamps import utc_now
from release_spine.execution import (
    DEFAULT_TASK_TIMEOUT_SECONDS,
    RetryStrategy,
    TaskDispatcher,
    TaskExecutor,
    retry_strategy_from_settings,
)
from release_spine.orchestration import AdvanceResult, CronJobStateMachine
from release_spine.orchestration.state_machine import DEFAULT_MAX_STEPS

from .backends import BackendHealth, SchedulerBackend, ThreadSchedulerBackend, WebhookSchedulerBackend
from .lease import DEFAULT_LEASE_SECONDS, LeaseLockManager

logger = logging.getLogger(__name__)

LOCK_CLEANUP_EVERY_N_TICKS = 10


class ProcessOutcome(str, Enum):
    PROCESSED = "PROCESSED"
    SKIPPED_LOCKED = "SKIPPED_LOCKED"
    FAILED = "FAILED"


@dataclass
class TickResult:
    """Summary of one scheduler tick."""

    success: bool = True
    processed_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    duration_ms: float = 0.0
    overlapped: bool = False
    advanced: list[AdvanceResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "processed_count": self.processed_count,
            "skipped_count": self.skipped_count,
            "failed_count": self.failed_count,
            "errors": list(self.errors),
            "duration_ms": round(self.duration_ms, 2),
            "overlapped": self.overlapped,
            "advanced": [a.to_dict() for a in self.advanced],
        }


@dataclass
class SchedulerStats:
    """Statistics for the scheduler."""

    tick_count: int = 0
    releases_processed: int = 0
    releases_skipped: int = 0
    releases_failed: int = 0
    overlapped_ticks: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None


@dataclass
class SchedulerHealth:
    """Health status for the scheduler."""

    healthy: bool
    backend: BackendHealth
    instance_id: str
    running_cron_jobs: int = 0
    active_locks: int = 0
    last_tick: datetime | None = None
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend.to_dict(),
            "instance_id": self.instance_id,
            "running_cron_jobs": self.running_cron_jobs,
            "active_locks": self.active_locks,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "stats": {
                "tick_count": self.stats.tick_count,
                "releases_processed": self.stats.releases_processed,
                "releases_skipped": self.stats.releases_skipped,
                "releases_failed": self.stats.releases_failed,
                "overlapped_ticks": self.stats.overlapped_ticks,
            },
        }


class GlobalScheduler:
    """Ticks over all due releases under per-release leases.

    Example:
        >>> scheduler = GlobalScheduler(
        ...     backend=ThreadSchedulerBackend(),
        ...     conn=conn,
        ...     executor=executor,
        ...     instance_id="scheduler-1",
        ... )
        >>> scheduler.start()
        True
        >>> # Later...
        >>> scheduler.stop()
        True
    """

    def __init__(
        self,
        backend: SchedulerBackend,
        conn: Connection,
        executor: TaskExecutor,
        *,
        instance_id: str | None = None,
        interval_seconds: float = 60.0,
        lease_seconds: int = DEFAULT_LEASE_SECONDS,
        max_steps_per_advance: int = DEFAULT_MAX_STEPS,
        retry_strategy: RetryStrategy | None = None,
        task_timeout_seconds: float = DEFAULT_TASK_TIMEOUT_SECONDS,
        dialect: Dialect | None = None,
    ) -> None:
        if lease_seconds <= task_timeout_seconds:
            raise ValueError(
                f"lease_seconds ({lease_seconds}) must be longer than "
                f"task_timeout_seconds ({task_timeout_seconds})"
            )
        self.backend = backend
        self.conn = conn
        self.interval = interval_seconds
        self.max_steps_per_advance = max_steps_per_advance

        self.repos = Repositories.for_connection(conn, dialect)
        self.leases = LeaseLockManager(self.repos.cron_jobs, instance_id, lease_seconds)
        self.dispatcher = TaskDispatcher(
            executor,
            retry_strategy=retry_strategy,
            timeout_seconds=task_timeout_seconds,
        )

        self._stats = SchedulerStats()
        self._running = False
        self._tick_guard = threading.Lock()

    @property
    def instance_id(self) -> str:
        return self.leases.instance_id

    # === Lifecycle ===

    def start(self) -> bool:
        """Start ticking. Returns False if already running."""
        if self._running:
            logger.warning("GlobalScheduler already running")
            return False

        logger.info(
            f"Starting GlobalScheduler {self.instance_id} with {self.backend.name} backend "
            f"(interval={self.interval}s)"
        )
        self.backend.start(self.tick_async, self.interval)
        self._running = True
        return True

    def stop(self) -> bool:
        """Stop issuing ticks. Returns False if not running.

        An ``advance()`` already in flight runs to completion.
        """
        if not self._running:
            return False

        logger.info("Stopping GlobalScheduler...")
        self.backend.stop()
        self._running = False
        logger.info("GlobalScheduler stopped")
        return True

    @property
    def is_running(self) -> bool:
        return self._running

    # === Tick Processing ===

    async def tick_async(self) -> TickResult:
        """Backend callback."""
        return self.tick()

    def tick(self, now: datetime | None = None) -> TickResult:
        """Advance every due release once."""
        if not self._tick_guard.acquire(blocking=False):
            logger.warning("Previous tick still running, skipping this one")
            self._stats.overlapped_ticks += 1
            return TickResult(success=True, overlapped=True)

        started = time.monotonic()
        result = TickResult()
        try:
            now = now or utc_now()
            self._stats.tick_count += 1
            self._stats.last_tick = now

            if self._stats.tick_count % LOCK_CLEANUP_EVERY_N_TICKS == 0:
                self.leases.cleanup_expired_locks(now)

            due = self.repos.cron_jobs.get_due_cron_jobs(now)
            if not due:
                logger.debug("No releases due")
            else:
                logger.info(f"Found {len(due)} due release(s)")

            for job in due:
                outcome, advance, error = self._process(job, now)
                if outcome == ProcessOutcome.PROCESSED:
                    result.processed_count += 1
                    if advance is not None:
                        result.advanced.append(advance)
                elif outcome == ProcessOutcome.SKIPPED_LOCKED:
                    result.skipped_count += 1
                else:
                    result.failed_count += 1
                    if error is not None:
                        result.errors.append(error)

        except Exception as e:
            self._stats.last_error = str(e)
            logger.exception(f"Tick failed: {e}")
            result.errors.append({"error_type": type(e).__name__, "message": str(e)})
            result.success = False
        finally:
            self._tick_guard.release()

        result.success = result.success and result.failed_count == 0
        result.duration_ms = (time.monotonic() - started) * 1000
        return result

    def process_one(self, cron_job: CronJob, now: datetime | None = None) -> ProcessOutcome:
        """Lease, advance and release one release."""
        outcome, _, _ = self._process(cron_job, now or utc_now())
        return outcome

    def _process(
        self,
        job: CronJob,
        now: datetime,
    ) -> tuple[ProcessOutcome, AdvanceResult | None, dict[str, Any] | None]:
        with LogContext(release_id=job.release_id, cron_job_id=job.id, instance_id=self.instance_id):
            try:
                acquired = self.leases.acquire(job.id, now)
            except Exception as e:
                return self._failed(job, e)
            if not acquired:
                logger.debug(f"Release {job.release_id} locked by another instance")
                self._stats.releases_skipped += 1
                return ProcessOutcome.SKIPPED_LOCKED, None, None

            try:
                machine = CronJobStateMachine(
                    self.repos,
                    self.dispatcher,
                    job.id,
                    max_steps=self.max_steps_per_advance,
                    lease_keeper=self._lease_keeper(job, now),
                )
                advance = machine.advance(now)
                if advance.lease_lost:
                    logger.warning(f"Lost lease on release {job.release_id} after {advance.steps} step(s)")
                else:
                    with transaction(self.conn):
                        self.repos.cron_jobs.update(job.id, last_run_at=now)
                self._stats.releases_processed += 1
                logger.info(
                    f"Advanced release {job.release_id}: steps={advance.steps} "
                    f"dispatched={advance.dispatched} ({advance.idle_reason})"
                )
                return ProcessOutcome.PROCESSED, advance, None

            except Exception as e:
                return self._failed(job, e)

            finally:
                self.leases.release(job.id)

    def _lease_keeper(self, job: CronJob, now: datetime) -> Callable[[], bool]:
        """Renew the lease at ``now`` plus the time this pass has taken so far."""
        started = time.monotonic()

        def renew() -> bool:
            return self.leases.acquire(job.id, now + timedelta(seconds=time.monotonic() - started))

        return renew

    def _failed(
        self,
        job: CronJob,
        e: Exception,
    ) -> tuple[ProcessOutcome, AdvanceResult | None, dict[str, Any] | None]:
        if isinstance(e, ReleaseSpineError):
            e.with_context(release_id=job.release_id, cron_job_id=job.id, instance_id=self.instance_id)
            details = e.to_dict()
        else:
            details = {
                "error_type": type(e).__name__,
                "message": str(e),
                "context": {"release_id": job.release_id, "cron_job_id": job.id},
            }
        logger.exception(f"Release {job.release_id} failed to advance: {details}")
        self._stats.releases_failed += 1
        self._stats.last_error = str(e)
        return ProcessOutcome.FAILED, None, details

    # === Health & Stats ===

    def health(self) -> SchedulerHealth:
        backend_health = self.backend.get_health()
        return SchedulerHealth(
            healthy=self._running and backend_health.healthy,
            backend=backend_health,
            instance_id=self.instance_id,
            running_cron_jobs=len(self.repos.cron_jobs.list(CronStatus.RUNNING)),
            active_locks=len(self.leases.list_active_locks()),
            last_tick=self._stats.last_tick,
            stats=self._stats,
        )

    def get_stats(self) -> SchedulerStats:
        return self._stats

    def reset_stats(self) -> None:
        self._stats = SchedulerStats()


def create_scheduler(
    executor: TaskExecutor,
    *,
    settings: OrchestratorSettings | None = None,
    conn: Connection | None = None,
    backend: SchedulerBackend | None = None,
) -> GlobalScheduler:
    """Build a scheduler from settings.

    Opens (and initializes) the configured database unless ``conn`` is
    given, and picks the backend from ``settings.scheduler_type``.
    """
    settings = settings or get_settings()
    if conn is None:
        conn = connect(settings.database_path)
        init_schema(conn)
    if backend is None:
        if settings.scheduler_type == SchedulerType.WEBHOOK:
            backend = WebhookSchedulerBackend()
        else:
            backend = ThreadSchedulerBackend()

    return GlobalScheduler(
        backend,
        conn,
        executor,
        instance_id=settings.instance_id,
        interval_seconds=settings.tick_interval_seconds,
        lease_seconds=settings.lease_seconds,
        max_steps_per_advance=settings.max_steps_per_advance,
        retry_strategy=retry_strategy_from_settings(settings),
        task_timeout_seconds=settings.task_timeout_seconds,
    )


__all__ = [
    "GlobalScheduler",
    "ProcessOutcome",
    "SchedulerHealth",
    "SchedulerStats",
    "TickResult",
    "create_scheduler",
]
