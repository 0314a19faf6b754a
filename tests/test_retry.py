"""Tests for retry with exponential backoff."""

import pytest

from aiguard.services.errors import (
    AuthenticationError,
    MaxRetriesExceededError,
    NetworkError,
    RateLimitError,
    ServiceUnavailableError,
)
from aiguard.services.logger import LogLevel
from aiguard.services.retry import (
    RetryConfig,
    calculate_backoff_delay,
    next_delay_ms,
    with_retry,
)


class FlakyOperation:
    """Raises the given errors in order, then returns `result`."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestCalculateBackoffDelay:
    def test_exponential_without_jitter(self):
        config = RetryConfig(initial_delay_ms=100, max_delay_ms=10_000, jitter_factor=0)
        delays = [calculate_backoff_delay(i, config) for i in range(5)]
        assert delays == [100, 200, 400, 800, 1600]

    def test_capped_at_max_delay(self):
        config = RetryConfig(initial_delay_ms=1000, max_delay_ms=3000, jitter_factor=0)
        assert calculate_backoff_delay(10, config) == 3000

    def test_jitter_bounds(self):
        config = RetryConfig(initial_delay_ms=1000, max_delay_ms=4000, jitter_factor=0.5)
        low = calculate_backoff_delay(0, config, rng=lambda: 0.0)
        high = calculate_backoff_delay(0, config, rng=lambda: 0.999999)
        assert low == 750
        assert high <= 1250

    @pytest.mark.parametrize("attempt", range(8))
    @pytest.mark.parametrize("r", [0.0, 0.25, 0.5, 0.75, 0.999])
    def test_always_within_range(self, attempt, r):
        config = RetryConfig(initial_delay_ms=500, max_delay_ms=8000, jitter_factor=1.0)
        delay = calculate_backoff_delay(attempt, config, rng=lambda: r)
        assert 0 <= delay <= 8000 * (1 + 1.0 / 2)

    def test_never_negative(self):
        config = RetryConfig(initial_delay_ms=10, max_delay_ms=10, jitter_factor=5.0)
        assert calculate_backoff_delay(0, config, rng=lambda: 0.0) == 0

    def test_non_decreasing_at_midpoint(self):
        config = RetryConfig(initial_delay_ms=250, max_delay_ms=5000, jitter_factor=0.2)
        delays = [calculate_backoff_delay(i, config, rng=lambda: 0.5) for i in range(8)]
        assert delays == sorted(delays)

    def test_retry_after_overrides_backoff(self):
        config = RetryConfig(initial_delay_ms=100, max_delay_ms=200)
        error = RateLimitError("slow", retry_after_seconds=7)
        assert next_delay_ms(3, error, config) == 7000


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, sleep, logger):
        op = FlakyOperation([])
        assert await with_retry(op, RetryConfig(), sleep=sleep, logger=logger) == "ok"
        assert op.calls == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_two_network_failures_then_success(self, sleep, logger):
        op = FlakyOperation([NetworkError("reset"), NetworkError("reset")], "done")
        config = RetryConfig(max_retries=3, initial_delay_ms=100, jitter_factor=0)
        result = await with_retry(op, config, sleep=sleep, logger=logger)
        assert result == "done"
        assert op.calls == 3
        assert sleep.calls == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_exhausted_retries_wrap_last_error(self, sleep, logger):
        last = ServiceUnavailableError("still down")
        op = FlakyOperation([ServiceUnavailableError("down")] * 3 + [last])
        config = RetryConfig(max_retries=3, initial_delay_ms=10, jitter_factor=0)
        with pytest.raises(MaxRetriesExceededError) as exc_info:
            await with_retry(op, config, "cid-7", sleep=sleep, logger=logger)
        assert op.calls == 4
        assert exc_info.value.original_error is last
        assert exc_info.value.max_retries == 3
        assert exc_info.value.correlation_id == "cid-7"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_retries", [1, 2, 5])
    async def test_invocations_bounded(self, sleep, logger, max_retries):
        op = FlakyOperation([NetworkError("x")] * 20)
        config = RetryConfig(max_retries=max_retries, initial_delay_ms=1)
        with pytest.raises(MaxRetriesExceededError):
            await with_retry(op, config, sleep=sleep, logger=logger)
        assert op.calls == max_retries + 1

    @pytest.mark.asyncio
    async def test_non_retryable_stops_immediately(self, sleep, logger):
        auth = AuthenticationError("bad key")
        op = FlakyOperation([auth])
        with pytest.raises(MaxRetriesExceededError) as exc_info:
            await with_retry(op, RetryConfig(max_retries=3), sleep=sleep, logger=logger)
        assert op.calls == 1
        assert exc_info.value.original_error is auth
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_zero_retries_propagates_original(self, sleep, logger):
        error = NetworkError("reset")
        op = FlakyOperation([error])
        with pytest.raises(NetworkError) as exc_info:
            await with_retry(op, RetryConfig(max_retries=0), sleep=sleep, logger=logger)
        assert exc_info.value is error
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_rate_limit_retry_after_used_verbatim(self, sleep, logger):
        op = FlakyOperation([RateLimitError("slow", retry_after_seconds=2)])
        config = RetryConfig(initial_delay_ms=50, max_delay_ms=100)
        assert await with_retry(op, config, sleep=sleep, logger=logger) == "ok"
        assert sleep.calls == [2.0]

    @pytest.mark.asyncio
    async def test_custom_is_retryable(self, sleep, logger):
        op = FlakyOperation([ValueError("transient")])
        config = RetryConfig(
            initial_delay_ms=1, is_retryable=lambda e: isinstance(e, ValueError)
        )
        assert await with_retry(op, config, sleep=sleep, logger=logger) == "ok"
        assert op.calls == 2

    @pytest.mark.asyncio
    async def test_each_retry_logged_at_warn(self, sleep, logger, records):
        op = FlakyOperation([NetworkError("a"), NetworkError("b")])
        config = RetryConfig(initial_delay_ms=100, jitter_factor=0)
        await with_retry(op, config, "cid-3", sleep=sleep, logger=logger)
        warnings = [r for r in records if r.level == LogLevel.WARN]
        assert len(warnings) == 2
        assert [r.context["attempt"] for r in warnings] == [0, 1]
        assert [r.context["delay_ms"] for r in warnings] == [100, 200]
        assert all(r.correlation_id == "cid-3" for r in warnings)
