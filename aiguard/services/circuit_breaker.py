"""
CircuitBreaker - Prevents cascading failures by stopping requests to failing services.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Service is failing, requests are rejected with CircuitOpenError
- HALF_OPEN: A limited number of probe requests test whether the service recovered

Transitions:
- CLOSED → OPEN: When failure_threshold failures land inside failure_window
- OPEN → HALF_OPEN: Once reset_timeout has elapsed (checked on the next call)
- HALF_OPEN → CLOSED: On a successful probe
- HALF_OPEN → OPEN: On a failed probe
"""

import time
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from aiguard.services.errors import CircuitOpenError, is_breaker_failure
from aiguard.services.logger import Logger, ai_logger

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Blocking requests
    HALF_OPEN = "HALF_OPEN"  # Testing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # Failures before opening
    failure_window: timedelta = timedelta(seconds=60)  # Rolling failure window
    reset_timeout: timedelta = timedelta(seconds=30)  # Time before half-open
    half_open_max_requests: int = 3  # Concurrent probes allowed in half-open state
    is_failure: Callable[[BaseException], bool] = is_breaker_failure


class CircuitBreaker:
    """
    Circuit breaker for a single protected dependency.

    Usage:
        cb = CircuitBreaker("DeepSeek API")
        result = await cb.execute(lambda: call_api(), correlation_id)

    `clock` returns seconds from a monotonic source; tests inject a fake one.
    """

    def __init__(
        self,
        service_name: str,
        config: CircuitBreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        logger: Logger | None = None,
    ):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._logger = logger or ai_logger

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None
        self._open_until: float | None = None
        self._half_open_in_flight = 0

    @property
    def state(self) -> CircuitState:
        return self.get_state()

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def half_open_in_flight(self) -> int:
        return self._half_open_in_flight

    def get_state(self) -> CircuitState:
        """Effective state at the current time. Does not mutate the breaker."""
        if self._state == CircuitState.OPEN and self._reset_due():
            return CircuitState.HALF_OPEN
        return self._state

    async def execute(
        self,
        fn: Callable[[], Awaitable[T]],
        correlation_id: str | None = None,
    ) -> T:
        """
        Run `fn` under circuit breaker protection.

        Raises:
            CircuitOpenError: If the breaker rejects the call before invoking `fn`
            Whatever `fn` raises, unchanged
        """
        is_probe = self._admit(correlation_id)

        try:
            result = await fn()
        except Exception as e:
            self._on_error(e, is_probe, correlation_id)
            raise

        self._on_success(is_probe, correlation_id)
        return result

    def _admit(self, correlation_id: str | None) -> bool:
        """
        Decide whether a call may proceed; returns True if it is a half-open probe.

        Runs without awaiting so that check-then-increment cannot interleave
        with other calls.
        """
        if self._state == CircuitState.OPEN and self._reset_due():
            self._half_open()

        if self._state == CircuitState.OPEN:
            raise self._open_error(correlation_id)

        if self._state == CircuitState.HALF_OPEN:
            if self._half_open_in_flight >= self.config.half_open_max_requests:
                raise self._open_error(correlation_id)
            self._half_open_in_flight += 1
            return True

        return False

    def _on_success(self, is_probe: bool, correlation_id: str | None) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._close(correlation_id)
        elif is_probe:
            self._release_probe()

    def _on_error(
        self, error: BaseException, is_probe: bool, correlation_id: str | None
    ) -> None:
        if not self.config.is_failure(error):
            if is_probe:
                self._release_probe()
            return

        self._record_failure()

        if self._state == CircuitState.HALF_OPEN:
            # Any failure in half-open reopens the circuit
            self._open(correlation_id)
        elif (
            self._state == CircuitState.CLOSED
            and self._failure_count >= self.config.failure_threshold
        ):
            self._open(correlation_id)

    def _record_failure(self) -> None:
        now = self._clock()
        window = self.config.failure_window.total_seconds()
        if self._last_failure_time is None or now - self._last_failure_time > window:
            self._failure_count = 0
        self._failure_count += 1
        self._last_failure_time = now

    def _release_probe(self) -> None:
        if self._half_open_in_flight > 0:
            self._half_open_in_flight -= 1

    def _reset_due(self) -> bool:
        return self._open_until is not None and self._clock() >= self._open_until

    def _open_error(self, correlation_id: str | None) -> CircuitOpenError:
        return CircuitOpenError(
            self.service_name,
            self.get_time_until_reset() or 0,
            correlation_id=correlation_id,
        )

    def _open(self, correlation_id: str | None = None) -> None:
        """Transition to OPEN state."""
        self._state = CircuitState.OPEN
        self._open_until = self._clock() + self.config.reset_timeout.total_seconds()
        self._half_open_in_flight = 0
        self._logger.warn(
            f"Circuit breaker '{self.service_name}' OPENED after "
            f"{self._failure_count} failures",
            {
                "service_name": self.service_name,
                "failure_count": self._failure_count,
                "reset_timeout_s": self.config.reset_timeout.total_seconds(),
            },
            correlation_id,
        )

    def _half_open(self) -> None:
        """Transition to HALF_OPEN state."""
        self._state = CircuitState.HALF_OPEN
        self._half_open_in_flight = 0
        self._logger.info(
            f"Circuit breaker '{self.service_name}' transitioned to HALF_OPEN",
            {"service_name": self.service_name},
        )

    def _close(self, correlation_id: str | None = None) -> None:
        """Transition to CLOSED state."""
        self._clear()
        self._logger.info(
            f"Circuit breaker '{self.service_name}' CLOSED (recovered)",
            {"service_name": self.service_name},
            correlation_id,
        )

    def _clear(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = None
        self._open_until = None
        self._half_open_in_flight = 0

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._clear()
        self._logger.info(
            f"Circuit breaker '{self.service_name}' manually reset",
            {"service_name": self.service_name},
        )

    def get_time_until_reset(self) -> float | None:
        """Get seconds until circuit transitions to half-open."""
        if self._state != CircuitState.OPEN or self._open_until is None:
            return None
        return max(0.0, self._open_until - self._clock())

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        return {
            "service_name": self.service_name,
            "state": self.get_state().value,
            "failure_count": self._failure_count,
            "half_open_in_flight": self._half_open_in_flight,
            "time_until_reset": self.get_time_until_reset(),
        }


class CircuitBreakerRegistry:
    """
    Caller-owned registry holding one circuit breaker per dependency.

    Usage:
        registry = CircuitBreakerRegistry()
        cb = registry.get("DeepSeek API")
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        logger: Logger | None = None,
    ):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._logger = logger or ai_logger

    def get(
        self,
        service_name: str,
        config: CircuitBreakerConfig | None = None,
    ) -> CircuitBreaker:
        """Get or create the circuit breaker for a dependency."""
        if service_name not in self._breakers:
            self._breakers[service_name] = CircuitBreaker(
                service_name,
                config or self._default_config,
                clock=self._clock,
                logger=self._logger,
            )
        return self._breakers[service_name]

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        """Get status of all circuit breakers."""
        return {name: cb.get_status() for name, cb in self._breakers.items()}

    def reset_all(self) -> None:
        """Reset all circuit breakers."""
        for cb in self._breakers.values():
            cb.reset()
        self._logger.info(f"Reset {len(self._breakers)} circuit breakers")

    def reset(self, service_name: str) -> bool:
        """Reset a specific circuit breaker."""
        if service_name in self._breakers:
            self._breakers[service_name].reset()
            return True
        return False

    def get_open_circuits(self) -> list[str]:
        """Get list of dependencies with open circuits."""
        return [
            name
            for name, cb in self._breakers.items()
            if cb.get_state() == CircuitState.OPEN
        ]
