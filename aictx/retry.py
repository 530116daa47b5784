"""Bounded retry with backoff for transient chat-source failures."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackoffPolicy:
    """How many times to try, and how long to wait between tries."""

    max_attempts: int = 3
    initial_delay: float = 0.1
    backoff_factor: float = 2.0
    max_delay: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    def delays(self) -> list[float]:
        """Sleep durations between consecutive attempts (max_attempts - 1 items)."""
        result: list[float] = []
        delay = self.initial_delay
        for _ in range(self.max_attempts - 1):
            result.append(min(delay, self.max_delay))
            delay *= self.backoff_factor
        return result


def retry_with_backoff(
    func: Callable[[], T],
    policy: BackoffPolicy,
    retryable_exceptions: tuple[type[Exception], ...] = (OSError,),
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``func`` until it succeeds or the policy is exhausted.

    Args:
        func: Function to retry (no arguments)
        policy: Attempt count and delays
        retryable_exceptions: Exception types that trigger another attempt
        sleep: Sleep function (injectable for tests)

    Returns:
        Result from the first successful call

    Raises:
        The last exception once every attempt has failed
    """
    delays = policy.delays()
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return func()
        except retryable_exceptions as e:
            if attempt == policy.max_attempts:
                raise
            logger.debug("Attempt %d/%d failed: %s", attempt, policy.max_attempts, e)
            sleep(delays[attempt - 1])

    raise RuntimeError("retry_with_backoff exhausted without exception")
