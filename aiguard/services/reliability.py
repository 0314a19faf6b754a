"""
Reliability facade: circuit breaker around retry.

The breaker admits one logical call, and all retries for that call happen
inside it, so a burst of retries counts at most once toward the breaker.
"""

from typing import Awaitable, Callable, TypeVar

from aiguard.services.circuit_breaker import CircuitBreaker
from aiguard.services.logger import Logger
from aiguard.services.retry import RetryConfig, with_retry

T = TypeVar("T")


async def with_reliability(
    fn: Callable[[], Awaitable[T]],
    retry_config: RetryConfig | None = None,
    correlation_id: str | None = None,
    *,
    circuit_breaker: CircuitBreaker,
    logger: Logger | None = None,
) -> T:
    """Execute `fn` with both retry and circuit breaker protection."""
    return await circuit_breaker.execute(
        lambda: with_retry(fn, retry_config, correlation_id, logger=logger),
        correlation_id,
    )


class ReliabilityFacade:
    """
    Binds a circuit breaker and a default retry configuration together.

    Usage:
        facade = ReliabilityFacade(registry.get("DeepSeek API"), RetryConfig())
        response = await facade.execute(lambda: post_completion(payload), cid)
    """

    def __init__(
        self,
        circuit_breaker: CircuitBreaker,
        retry_config: RetryConfig | None = None,
        logger: Logger | None = None,
    ):
        self.circuit_breaker = circuit_breaker
        self.retry_config = retry_config
        self._logger = logger

    async def execute(
        self,
        fn: Callable[[], Awaitable[T]],
        retry_config: RetryConfig | None = None,
        correlation_id: str | None = None,
    ) -> T:
        return await with_reliability(
            fn,
            retry_config or self.retry_config,
            correlation_id,
            circuit_breaker=self.circuit_breaker,
            logger=self._logger,
        )
