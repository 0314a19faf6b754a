"""
Key/value stores backing the response cache.

Both stores implement the CacheStore protocol and are interchangeable:
- MemoryCacheStore: process-local LRU with per-entry expiry
- RedisCacheStore: distributed store; expiry is delegated to Redis
"""

import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Protocol, runtime_checkable

import redis.asyncio as aioredis

from aiguard.services.logger import Logger, ai_logger


@dataclass
class CacheEntry:
    """A single cache entry; `expires_at` is epoch seconds."""

    key: str
    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@runtime_checkable
class CacheStore(Protocol):
    """Async key/value capability used by ResponseCache."""

    name: str

    async def get(self, key: str) -> CacheEntry | None: ...

    async def set(self, key: str, value: Any, ttl: timedelta) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def clear(self) -> None: ...


class MemoryCacheStore:
    """
    In-process LRU store.

    Usage:
        store = MemoryCacheStore(max_size=500)
        await store.set("k", {"answer": 42}, timedelta(minutes=5))
        entry = await store.get("k")
    """

    name = "memory"

    def __init__(
        self,
        max_size: int = 500,
        *,
        clock: Callable[[], float] = time.time,
        logger: Logger | None = None,
    ):
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._max_size = max_size
        self._clock = clock
        self._logger = logger or ai_logger
        self.evictions = 0

    async def get(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry

    async def set(self, key: str, value: Any, ttl: timedelta) -> None:
        entry = CacheEntry(
            key=key, value=value, expires_at=self._clock() + ttl.total_seconds()
        )
        if key in self._entries:
            self._entries.move_to_end(key)
        elif len(self._entries) >= self._max_size:
            self._evict_oldest()
        self._entries[key] = entry

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def clear(self) -> None:
        self._entries.clear()

    async def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        now = self._clock()
        expired = [k for k, v in self._entries.items() if v.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _evict_oldest(self) -> None:
        """Evict the least recently used entry."""
        if not self._entries:
            return
        oldest_key, _ = self._entries.popitem(last=False)
        self.evictions += 1
        self._logger.debug("Cache entry evicted", {"entry_hash": oldest_key[:16]})

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheStore:
    """
    Redis-backed store. Values are JSON-encoded.

    Usage:
        store = RedisCacheStore("redis://localhost:6379/0")
        await store.set("k", "cached answer", timedelta(minutes=30))
        await store.close()
    """

    name = "redis"

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        *,
        prefix: str = "aiguard:",
        client: Any = None,
        clock: Callable[[], float] = time.time,
    ):
        self._redis = client or aioredis.from_url(redis_url, decode_responses=True)
        self._prefix = prefix
        self._clock = clock

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> CacheEntry | None:
        raw = await self._redis.get(self._key(key))
        if raw is None:
            return None
        envelope = json.loads(raw)
        return CacheEntry(
            key=key, value=envelope["value"], expires_at=envelope["expires_at"]
        )

    async def set(self, key: str, value: Any, ttl: timedelta) -> None:
        ttl_ms = max(1, int(ttl.total_seconds() * 1000))
        envelope = {
            "value": value,
            "expires_at": self._clock() + ttl.total_seconds(),
        }
        await self._redis.set(self._key(key), json.dumps(envelope), px=ttl_ms)

    async def delete(self, key: str) -> bool:
        return bool(await self._redis.delete(self._key(key)))

    async def clear(self) -> None:
        keys = [k async for k in self._redis.scan_iter(match=f"{self._prefix}*")]
        if keys:
            await self._redis.delete(*keys)

    async def close(self) -> None:
        await self._redis.aclose()


def create_cache_store(settings=None, logger: Logger | None = None) -> CacheStore:
    """Build the store selected by CACHE_BACKEND."""
    if settings is None:
        from aiguard.settings import global_settings as settings

    if settings.cache_backend == "redis":
        return RedisCacheStore(settings.redis_url, prefix=settings.cache_key_prefix)
    return MemoryCacheStore(max_size=settings.cache_max_size, logger=logger)
