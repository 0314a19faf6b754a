"""
ResponseCache - Caching for AI responses over a pluggable CacheStore.

Features:
- Content-hash cache keys, independent of parameter key order
- Tiered TTLs chosen by request intent (template, short conversation, default)
- Eligibility policy: no high-temperature, very long, or streaming requests
- Get-or-generate; store failures degrade to a cache miss
- Optional single-flight generation for concurrent misses on the same key
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from aiguard.services.deduplicator import RequestDeduplicator
from aiguard.services.logger import Logger, ai_logger
from aiguard.services.stores import CacheStore, create_cache_store

T = TypeVar("T")


class CacheTTL:
    """TTL tiers."""

    SHORT = timedelta(minutes=5)
    MEDIUM = timedelta(minutes=30)
    LONG = timedelta(hours=24)


MAX_CACHEABLE_TEMPERATURE = 0.7
MAX_CACHEABLE_PROMPT_LENGTH = 1000
SHORT_CONVERSATION_MESSAGES = 3


def _normalize(value: Any) -> Any:
    # JSON object keys are strings; converting first keeps sort_keys from
    # comparing mixed key types
    if isinstance(value, Mapping):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


def generate_cache_key(params: Any) -> str:
    """SHA-256 of the parameters serialized with keys sorted at every level."""
    canonical = json.dumps(
        _normalize(params), sort_keys=True, separators=(",", ":"), default=str
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def should_cache_request(params: Mapping[str, Any]) -> bool:
    """Whether a request's response is deterministic enough to cache."""
    temperature = params.get("temperature")
    if temperature is not None and temperature > MAX_CACHEABLE_TEMPERATURE:
        return False

    prompt = params.get("prompt")
    if isinstance(prompt, str) and len(prompt) > MAX_CACHEABLE_PROMPT_LENGTH:
        return False

    if params.get("stream") is True:
        return False

    return True


def determine_cache_ttl(params: Mapping[str, Any]) -> timedelta:
    """Pick a TTL tier from the caller's description of the request."""
    if params.get("is_system_prompt") or params.get("is_template"):
        return CacheTTL.LONG

    messages = params.get("messages")
    if messages is not None:
        count = messages if isinstance(messages, int) else len(messages)
        if count <= SHORT_CONVERSATION_MESSAGES:
            return CacheTTL.MEDIUM

    return CacheTTL.SHORT


@dataclass
class CacheResult:
    """Result from cache lookup."""

    data: Any
    from_cache: str  # store name, 'memory' | 'redis'


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "errors": self.errors,
            "hit_rate": f"{self.hit_rate:.2%}",
        }


class ResponseCache:
    """
    Get-or-generate cache for AI responses.

    Usage:
        cache = ResponseCache(MemoryCacheStore())
        key = generate_cache_key({"prompt": prompt, "model": model})
        answer = await cache.get_cached_or_generate(
            key, lambda: call_model(prompt), ttl=CacheTTL.MEDIUM
        )

    Concurrent misses for the same key each run their own generator unless
    `single_flight=True`.
    """

    def __init__(
        self,
        store: CacheStore,
        default_ttl: timedelta = CacheTTL.MEDIUM,
        logger: Logger | None = None,
        single_flight: bool = False,
    ):
        self.store = store
        self._default_ttl = default_ttl
        self._logger = logger or ai_logger
        self._deduplicator = (
            RequestDeduplicator(logger=self._logger) if single_flight else None
        )
        self._stats = CacheStats()

    async def get(self, key: str) -> CacheResult | None:
        """Return the cached value, or None on a miss or store failure."""
        try:
            entry = await self.store.get(key)
        except Exception as e:
            self._stats.errors += 1
            self._logger.error(
                "Error getting cached item",
                {"entry_hash": key[:16], "store": self.store.name},
                error=e,
            )
            return None

        if entry is None:
            self._stats.misses += 1
            return None

        self._stats.hits += 1
        return CacheResult(data=entry.value, from_cache=self.store.name)

    async def set(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        if ttl is None:
            ttl = self._default_ttl
        try:
            await self.store.set(key, value, ttl)
            self._stats.sets += 1
        except Exception as e:
            self._stats.errors += 1
            self._logger.error(
                "Error setting cached item",
                {"entry_hash": key[:16], "store": self.store.name},
                error=e,
            )

    async def invalidate(self, key: str) -> None:
        try:
            await self.store.delete(key)
        except Exception as e:
            self._stats.errors += 1
            self._logger.error(
                "Error invalidating cached item",
                {"entry_hash": key[:16], "store": self.store.name},
                error=e,
            )

    async def clear(self) -> None:
        try:
            await self.store.clear()
        except Exception as e:
            self._stats.errors += 1
            self._logger.error(
                "Error clearing cache", {"store": self.store.name}, error=e
            )

    async def get_cached_or_generate(
        self,
        key: str,
        generator: Callable[[], Awaitable[T]],
        ttl: timedelta | None = None,
    ) -> T:
        """
        Return the cached value for `key`, or generate, store, and return it.

        Errors raised by `generator` propagate and nothing is stored.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached.data

        async def generate_and_store() -> T:
            value = await generator()
            await self.set(key, value, ttl)
            return value

        if self._deduplicator is not None:
            return await self._deduplicator.dedupe(key, generate_and_store)
        return await generate_and_store()

    def get_stats(self) -> CacheStats:
        return self._stats


def create_response_cache(settings=None, logger: Logger | None = None) -> ResponseCache:
    """Build a ResponseCache over the store selected in settings."""
    if settings is None:
        from aiguard.settings import global_settings as settings

    return ResponseCache(
        create_cache_store(settings, logger=logger),
        logger=logger,
        single_flight=settings.cache_single_flight,
    )
