"""
RequestDeduplicator - Shares one in-flight generation among concurrent callers.

When several coroutines miss the cache for the same key at once, only the
first one runs the generator; the rest await its result (or its error).
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from aiguard.services.logger import Logger, ai_logger

T = TypeVar("T")


class RequestDeduplicator:
    """
    Deduplicates concurrent async requests by key.

    Usage:
        dedup = RequestDeduplicator()
        answer = await dedup.dedupe(cache_key, lambda: generate(prompt))
    """

    def __init__(self, logger: Logger | None = None):
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._logger = logger or ai_logger
        self._stats = DeduplicatorStats()

    async def dedupe(
        self,
        key: str,
        request_fn: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Execute request with deduplication.

        If a request with the same key is already in flight, wait for and
        return its result instead of starting a new one.
        """
        task = self._in_flight.get(key)
        if task is not None:
            self._stats.deduplicated += 1
            self._logger.debug(
                "Joining in-flight request", {"entry_hash": key[:16]}
            )
        else:
            self._stats.total += 1
            task = asyncio.ensure_future(self._execute_and_cleanup(key, request_fn))
            self._in_flight[key] = task

        return await asyncio.shield(task)

    async def _execute_and_cleanup(
        self,
        key: str,
        request_fn: Callable[[], Awaitable[T]],
    ) -> T:
        try:
            return await request_fn()
        finally:
            # A cancelled task may finish after a newer one took over the key
            if self._in_flight.get(key) is asyncio.current_task():
                del self._in_flight[key]

    def cancel(self, key: str) -> bool:
        """Cancel an in-flight request."""
        task = self._in_flight.pop(key, None)
        if task is None:
            return False
        task.cancel()
        return True

    def cancel_all(self) -> int:
        """Cancel all in-flight requests."""
        count = len(self._in_flight)
        for task in self._in_flight.values():
            task.cancel()
        self._in_flight.clear()
        return count

    def get_in_flight_count(self) -> int:
        return len(self._in_flight)

    def get_stats(self) -> "DeduplicatorStats":
        """Get deduplication statistics."""
        self._stats.in_flight = len(self._in_flight)
        return self._stats


class DeduplicatorStats:
    """Statistics for request deduplication."""

    def __init__(self):
        self.total: int = 0  # Generations actually started
        self.deduplicated: int = 0  # Callers that joined an existing one
        self.in_flight: int = 0

    @property
    def dedup_rate(self) -> float:
        total = self.total + self.deduplicated
        if total == 0:
            return 0.0
        return self.deduplicated / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_requests": self.total,
            "deduplicated": self.deduplicated,
            "in_flight": self.in_flight,
            "dedup_rate": f"{self.dedup_rate:.2%}",
        }
