"""Release scheduling: global tick, per-release leases, timing backends.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULING PACKAGE                                                           │
│                                                                               │
│  ┌────────────────────┐   ┌────────────────────┐   ┌────────────────────┐    │
│  │  backends.py       │   │  scheduler.py      │   │  lease.py          │    │
│  │                    │   │                    │   │                    │    │
│  │  Thread (interval) │──►│  GlobalScheduler   │──►│  LeaseLockManager  │    │
│  │  Webhook (trigger) │   │  tick/process_one  │   │  CAS on cron_jobs  │    │
│  └────────────────────┘   └─────────┬──────────┘   └────────────────────┘    │
│                                     │                                         │
│                                     ▼                                         │
│                  orchestration.CronJobStateMachine.advance()                  │
│                                                                               │
│  Usage:                                                                       │
│      scheduler = create_scheduler(executor)                                   │
│      scheduler.start()          # interval mode                               │
│      scheduler.tick()           # one pass, e.g. from a webhook               │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from .backends import (
    BackendHealth,
    SchedulerBackend,
    ThreadSchedulerBackend,
    TickCallback,
    WebhookSchedulerBackend,
)
from .lease import DEFAULT_LEASE_SECONDS, LeaseLockManager
from .scheduler import (
    GlobalScheduler,
    ProcessOutcome,
    SchedulerHealth,
    SchedulerStats,
    TickResult,
    create_scheduler,
)

__all__ = [
    "DEFAULT_LEASE_SECONDS",
    "BackendHealth",
    "GlobalScheduler",
    "LeaseLockManager",
    "ProcessOutcome",
    "SchedulerBackend",
    "SchedulerHealth",
    "SchedulerStats",
    "ThreadSchedulerBackend",
    "TickCallback",
    "TickResult",
    "WebhookSchedulerBackend",
    "create_scheduler",
]
