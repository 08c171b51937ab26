"""Retry policies for release tasks.

A failed task either goes back to PENDING with a ``next_attempt_at`` in
the future or becomes FAILED. The policy only looks at how many retries
the task has already spent (``ReleaseTask.retry_count``); whether an
error is retryable at all is decided by the error itself.

Delays are deterministic so a release replayed with the same clock takes
the same path.

Example:
    >>> policy = ExponentialBackoff(max_retries=3, base_delay=30.0)
    >>> [policy.next_delay(n) for n in range(3)]
    [30.0, 60.0, 120.0]
    >>> policy.should_retry(3)
    False
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta

from release_spine.core.settings import OrchestratorSettings


class RetryStrategy(ABC):
    """How many times a task may fail, and how long it waits in between."""

    @abstractmethod
    def next_delay(self, retry_count: int) -> float:
        """Seconds to wait before retry number ``retry_count + 1``."""

    @abstractmethod
    def should_retry(self, retry_count: int) -> bool:
        """True while the task still has retries left."""

    def next_attempt_at(self, retry_count: int, now: datetime) -> datetime:
        return now + timedelta(seconds=self.next_delay(retry_count))


@dataclass
class ExponentialBackoff(RetryStrategy):
    """``min(base_delay * multiplier ** retry_count, max_delay)``."""

    max_retries: int = 3
    base_delay: float = 0.0
    max_delay: float = 600.0
    multiplier: float = 2.0

    def next_delay(self, retry_count: int) -> float:
        return min(self.base_delay * (self.multiplier ** retry_count), self.max_delay)

    def should_retry(self, retry_count: int) -> bool:
        return retry_count < self.max_retries


@dataclass
class ConstantBackoff(RetryStrategy):
    max_retries: int = 3
    delay: float = 60.0

    def next_delay(self, retry_count: int) -> float:
        return self.delay

    def should_retry(self, retry_count: int) -> bool:
        return retry_count < self.max_retries


class NoRetry(RetryStrategy):
    """First failure is final."""

    def next_delay(self, retry_count: int) -> float:
        return 0.0

    def should_retry(self, retry_count: int) -> bool:
        return False


def default_retry_strategy(
    max_retries: int = 3,
    base_delay: float = 0.0,
    max_delay: float = 600.0,
) -> RetryStrategy:
    """Policy used when none is configured: three retries, no wait by default."""
    return ExponentialBackoff(max_retries=max_retries, base_delay=base_delay, max_delay=max_delay)


def retry_strategy_from_settings(settings: OrchestratorSettings) -> RetryStrategy:
    return default_retry_strategy(
        max_retries=settings.max_task_retries,
        base_delay=settings.retry_base_delay_seconds,
        max_delay=settings.retry_max_delay_seconds,
    )


__all__ = [
    "ConstantBackoff",
    "ExponentialBackoff",
    "NoRetry",
    "RetryStrategy",
    "default_retry_strategy",
    "retry_strategy_from_settings",
]
