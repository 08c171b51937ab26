"""
Structured logging for the orchestrator.

A release moves through many ticks, often on different scheduler
instances. Log lines are only useful when each one names the release,
the cron job and the instance behind it, so the scheduler binds those ids
once per processed job (:class:`LogContext`) and structlog merges them
into every event emitted underneath, including the state machine's.

::

    configure_logging(level="INFO", json_format=None)
          │
          ▼
    TimeStamper(iso) → merge_contextvars → add_log_level / add_logger_name
          → service name → JSONRenderer (non-tty) | ConsoleRenderer (tty)

The scheduling and execution modules log through the standard library;
``configure_logging`` also sets up the root handler for them.

Example:
    >>> configure_logging(level="DEBUG")
    >>> logger = get_logger(__name__)
    >>> with LogContext(release_id="rel-1"):
    ...     logger.info("task_dispatched", task_type="FORK_BRANCH")

Tags:
    logging, structlog, observability, release-spine
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

SERVICE_NAME = "release-spine"


def _add_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def configure_logging(level: str = "INFO", json_format: bool | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: DEBUG, INFO, WARNING or ERROR.
        json_format: JSON lines when True, coloured console when False,
            JSON unless stdout is a terminal when None.
    """
    if json_format is None:
        json_format = not sys.stdout.isatty()
    numeric_level = getattr(logging, level.upper())

    processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service,
    ]
    if json_format:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind ids to every subsequent event in this thread or task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind ids for the duration of a block and unbind only those on exit.

    Example:
        with LogContext(release_id=job.release_id, cron_job_id=job.id):
            machine.advance(now)
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args: object) -> None:
        structlog.contextvars.unbind_contextvars(*self._context)


__all__ = [
    "SERVICE_NAME",
    "LogContext",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
]
