"""
Retry with exponential backoff and jitter.

    delay = min(initial_delay_ms * 2**attempt, max_delay_ms)
    delay += jitter_factor * delay * (random() - 0.5)

A RateLimitError carrying retry_after_seconds overrides the computed delay.
"""

import asyncio
import math
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from aiguard.services.errors import (
    MaxRetriesExceededError,
    RateLimitError,
    is_retryable_error,
)
from aiguard.services.logger import Logger, ai_logger

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behaviour."""

    max_retries: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 30000
    jitter_factor: float = 0.2  # 0-1
    is_retryable: Callable[[BaseException], bool] = is_retryable_error


@dataclass
class RetryAttempt:
    """State of a failed attempt that is about to be retried."""

    attempt_index: int
    delay_ms: float
    last_error: BaseException


DEFAULT_RETRY_CONFIG = RetryConfig()


def calculate_backoff_delay(
    attempt: int,
    config: RetryConfig,
    rng: Callable[[], float] = random.random,
) -> float:
    """Backoff delay in milliseconds for a 0-based attempt index."""
    capped = min(config.initial_delay_ms * (2**attempt), config.max_delay_ms)
    jitter = config.jitter_factor * capped * (rng() - 0.5)
    return max(0, math.floor(capped + jitter))


def next_delay_ms(
    attempt: int,
    error: BaseException,
    config: RetryConfig,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay before the next attempt; the server's Retry-After wins."""
    if isinstance(error, RateLimitError) and error.retry_after_seconds:
        return error.retry_after_seconds * 1000
    return calculate_backoff_delay(attempt, config, rng)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    correlation_id: str | None = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: Callable[[], float] = random.random,
    logger: Logger | None = None,
) -> T:
    """
    Run `fn` until it succeeds or retries are exhausted.

    Args:
        fn: Zero-argument coroutine function to execute
        config: Retry configuration (defaults to DEFAULT_RETRY_CONFIG)
        correlation_id: Correlation ID attached to logs and the final error
        sleep: Awaitable sleep taking seconds
        rng: Source of uniform randoms in [0, 1) for jitter

    Returns:
        Whatever `fn` returns on its first successful attempt

    Raises:
        MaxRetriesExceededError: wrapping the last error once retries stop.
            With max_retries == 0 the original error is raised as-is.
    """
    config = config or DEFAULT_RETRY_CONFIG
    log = logger or ai_logger

    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            if config.max_retries == 0:
                raise

            if attempt >= config.max_retries or not config.is_retryable(e):
                raise MaxRetriesExceededError(
                    config.max_retries, e, correlation_id=correlation_id
                ) from e

            retry = RetryAttempt(
                attempt_index=attempt,
                delay_ms=next_delay_ms(attempt, e, config, rng),
                last_error=e,
            )
            log.warn(
                f"Retrying operation (attempt {retry.attempt_index + 1}/"
                f"{config.max_retries}) after {retry.delay_ms}ms",
                {
                    "attempt": retry.attempt_index,
                    "delay_ms": retry.delay_ms,
                    "error_type": type(e).__name__,
                },
                correlation_id,
                e,
            )
            await sleep(retry.delay_ms / 1000)
            attempt += 1
