"""
Retry mechanism for resilient operations.

Bounded retry with a uniformly jittered delay between attempts. Knows
nothing about HTTP; callers decide what counts as retryable.
"""

import asyncio
import random
from typing import Awaitable, Callable, Optional, TypeVar

from shared.logging import get_logger

T = TypeVar("T")

ShouldRetry = Callable[[BaseException, int], bool]


class RetryConfig:
    """Configuration for retry behavior.

    ``retries`` is the number of retries after the first attempt, so up to
    ``retries + 1`` attempts are made. Delays are in seconds.
    """

    def __init__(self,
                 retries: int = 1,
                 min_delay: float = 0.5,
                 max_delay: float = 1.5):
        self.retries = retries
        self.min_delay = min_delay
        self.max_delay = max_delay

    @property
    def max_attempts(self) -> int:
        return self.retries + 1


def compute_delay(min_delay: float, max_delay: float) -> float:
    """Sample a delay uniformly from [min_delay, max_delay]."""
    if max_delay <= min_delay:
        return min_delay
    return min_delay + random.random() * (max_delay - min_delay)


async def with_retry(operation: Callable[[int], Awaitable[T]],
                     config: RetryConfig,
                     should_retry: Optional[ShouldRetry] = None,
                     name: Optional[str] = None) -> T:
    """Run ``operation(attempt)`` until it succeeds or the budget runs out.

    The first attempt runs immediately. A failure is retried only while
    ``attempt <= config.retries`` and ``should_retry`` (when given) accepts
    the error; otherwise it is re-raised without waiting. The last failure
    propagates once every attempt is used.
    """
    logger = get_logger(f"retry.{name or getattr(operation, '__name__', 'operation')}")
    last_error: Optional[BaseException] = None

    for attempt in range(1, config.max_attempts + 1):
        logger.debug("Retry attempt", attempt=attempt, max_attempts=config.max_attempts)
        try:
            return await operation(attempt)
        except Exception as e:
            last_error = e
            allow_retry = attempt <= config.retries and (
                should_retry is None or should_retry(e, attempt)
            )
            if not allow_retry:
                raise

            delay = compute_delay(config.min_delay, config.max_delay)
            logger.warning(
                "Retry attempt failed, waiting before next attempt",
                attempt=attempt,
                delay=round(delay, 3),
                error_type=type(e).__name__,
            )
            await asyncio.sleep(delay)

    # Only reachable with a negative retry budget
    raise last_error or RuntimeError("Retry loop exited without running an attempt")

