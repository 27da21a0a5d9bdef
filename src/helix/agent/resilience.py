"""Retry policies for agent work.

Each failure class gets its own attempt budget and backoff curve. The
background worker asks the policy what to do after every failed attempt;
``retry_async`` applies the same backoff inline for one-off calls.

Example:
    delay = TURN_RETRY_POLICY.delay_for(error, attempt=1)
    if delay is None:
        raise error
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from .exceptions import (
    BadRequestError,
    ModelNotFoundError,
    NetworkError,
    RateLimitError,
    ServerError,
    TransientProviderError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(
    attempt: int,
    initial_delay: float,
    backoff_factor: float,
    max_delay: float,
    jitter: bool = True,
) -> float:
    """Delay before the retry that follows ``attempt`` (1-based)."""
    delay = min(initial_delay * (backoff_factor ** (attempt - 1)), max_delay)
    if jitter:
        delay = delay * (0.5 + random.random())
    return delay


@dataclass
class RetryRule:
    """Retry settings for one family of exceptions.

    Attributes:
        exceptions: Exception types this rule applies to
        max_attempts: Total attempts including the first one
        initial_delay: Delay in seconds after the first failure
        backoff_factor: Multiplier applied per further failure
        max_delay: Upper bound on any single delay
        jitter: Randomize delays to spread retries out
    """

    exceptions: tuple[type[BaseException], ...]
    max_attempts: int = 3
    initial_delay: float = 3.0
    backoff_factor: float = 2.0
    max_delay: float = 300.0
    jitter: bool = True

    def matches(self, error: BaseException) -> bool:
        return isinstance(error, self.exceptions)


@dataclass
class RetryPolicy:
    """Ordered retry rules; the first matching rule wins."""

    rules: list[RetryRule] = field(default_factory=list)

    def rule_for(self, error: BaseException) -> Optional[RetryRule]:
        for rule in self.rules:
            if rule.matches(error):
                return rule
        return None

    def delay_for(self, error: BaseException, attempt: int) -> Optional[float]:
        """Seconds to wait before retrying, or None to give up.

        Args:
            error: Exception raised by the failed attempt
            attempt: Number of attempts made so far (1-based)
        """
        rule = self.rule_for(error)
        if rule is None or attempt >= rule.max_attempts:
            return None

        if isinstance(error, RateLimitError) and error.retry_after:
            return float(error.retry_after)

        return backoff_delay(
            attempt,
            rule.initial_delay,
            rule.backoff_factor,
            rule.max_delay,
            rule.jitter,
        )


# Agent turns: a stale model id gets one more try after the registry
# refresh; the rest back off with growing delays.
TURN_RETRY_POLICY = RetryPolicy(
    rules=[
        RetryRule((ModelNotFoundError,), max_attempts=2, initial_delay=5.0,
                  backoff_factor=1.0, jitter=False),
        RetryRule((BadRequestError,), max_attempts=3),
        RetryRule((ServerError,), max_attempts=3),
        RetryRule((RateLimitError,), max_attempts=5),
        RetryRule((NetworkError,), max_attempts=3),
    ]
)

# Sweep items only retry failures that are likely to clear on their own.
SWEEP_RETRY_POLICY = RetryPolicy(
    rules=[
        RetryRule((RateLimitError,), max_attempts=3, initial_delay=30.0),
        RetryRule((TransientProviderError,), max_attempts=2, initial_delay=10.0),
    ]
)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args,
    max_attempts: int = 3,
    backoff_factor: float = 2.0,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    retryable_exceptions: tuple = (TransientProviderError, asyncio.TimeoutError),
    **kwargs,
) -> T:
    """Call an async function, retrying retryable failures with backoff.

    Args:
        func: Async function to call
        *args: Positional arguments for func
        max_attempts: Maximum number of attempts
        backoff_factor: Multiplier for delay
        initial_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        retryable_exceptions: Exceptions to retry on
        **kwargs: Keyword arguments for func

    Returns:
        Result of func
    """
    for attempt in range(1, max_attempts + 1):
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            if attempt >= max_attempts:
                logger.error(f"All {max_attempts} attempts failed. Last error: {e}")
                raise

            if isinstance(e, RateLimitError) and e.retry_after:
                delay = float(e.retry_after)
            else:
                delay = backoff_delay(attempt, initial_delay, backoff_factor, max_delay)

            logger.warning(
                f"Attempt {attempt}/{max_attempts} failed: {e}. "
                f"Retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)

    raise RuntimeError("Retry logic error")
