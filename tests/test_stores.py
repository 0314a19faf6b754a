"""Tests for the memory and Redis cache stores."""

import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from aiguard.services.stores import (
    CacheStore,
    MemoryCacheStore,
    RedisCacheStore,
    create_cache_store,
)
from aiguard.settings import Settings


class TestMemoryCacheStore:
    @pytest.mark.asyncio
    async def test_set_and_get(self, clock):
        store = MemoryCacheStore(clock=clock)
        await store.set("k", {"answer": 42}, timedelta(minutes=5))
        entry = await store.get("k")
        assert entry.value == {"answer": 42}
        assert entry.expires_at == clock() + 300

    @pytest.mark.asyncio
    async def test_expired_entries_are_absent(self, clock):
        store = MemoryCacheStore(clock=clock)
        await store.set("k", "v", timedelta(seconds=10))
        clock.advance(9)
        assert await store.get("k") is not None
        clock.advance(1)
        assert await store.get("k") is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_reads_do_not_extend_expiry(self, clock):
        store = MemoryCacheStore(clock=clock)
        await store.set("k", "v", timedelta(seconds=10))
        for _ in range(3):
            clock.advance(4)
            await store.get("k")
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_evicts_least_recently_used(self, clock, logger):
        store = MemoryCacheStore(max_size=2, clock=clock, logger=logger)
        ttl = timedelta(minutes=5)
        await store.set("a", 1, ttl)
        await store.set("b", 2, ttl)
        await store.get("a")
        await store.set("c", 3, ttl)
        assert await store.get("b") is None
        assert (await store.get("a")).value == 1
        assert (await store.get("c")).value == 3
        assert store.evictions == 1

    @pytest.mark.asyncio
    async def test_overwrite_does_not_evict(self, clock):
        store = MemoryCacheStore(max_size=2, clock=clock)
        ttl = timedelta(minutes=5)
        await store.set("a", 1, ttl)
        await store.set("b", 2, ttl)
        await store.set("a", 10, ttl)
        assert len(store) == 2
        assert store.evictions == 0
        assert (await store.get("a")).value == 10

    @pytest.mark.asyncio
    async def test_delete_clear_and_cleanup(self, clock):
        store = MemoryCacheStore(clock=clock)
        await store.set("short", 1, timedelta(seconds=1))
        await store.set("long", 2, timedelta(hours=1))
        await store.set("gone", 3, timedelta(hours=1))

        assert await store.delete("gone") is True
        assert await store.delete("gone") is False

        clock.advance(2)
        assert await store.cleanup_expired() == 1
        assert len(store) == 1

        await store.clear()
        assert len(store) == 0

    def test_satisfies_protocol(self):
        assert isinstance(MemoryCacheStore(), CacheStore)


async def _scan(*keys):
    for key in keys:
        yield key


@pytest.fixture
def redis_client() -> MagicMock:
    client = MagicMock()
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock()
    client.delete = AsyncMock(return_value=1)
    client.aclose = AsyncMock()
    return client


class TestRedisCacheStore:
    @pytest.mark.asyncio
    async def test_set_uses_prefix_and_millisecond_expiry(self, redis_client, clock):
        store = RedisCacheStore(prefix="test:", client=redis_client, clock=clock)
        await store.set("abc", "cached answer", timedelta(minutes=30))

        args, kwargs = redis_client.set.call_args
        assert args[0] == "test:abc"
        assert kwargs == {"px": 1_800_000}
        envelope = json.loads(args[1])
        assert envelope == {"value": "cached answer", "expires_at": clock() + 1800}

    @pytest.mark.asyncio
    async def test_get_decodes_envelope(self, redis_client):
        redis_client.get.return_value = json.dumps(
            {"value": {"a": 1}, "expires_at": 1234.5}
        )
        store = RedisCacheStore(prefix="test:", client=redis_client)
        entry = await store.get("abc")
        redis_client.get.assert_awaited_once_with("test:abc")
        assert entry.key == "abc"
        assert entry.value == {"a": 1}
        assert entry.expires_at == 1234.5

    @pytest.mark.asyncio
    async def test_get_miss(self, redis_client):
        store = RedisCacheStore(client=redis_client)
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_delete(self, redis_client):
        store = RedisCacheStore(prefix="test:", client=redis_client)
        assert await store.delete("abc") is True
        redis_client.delete.assert_awaited_once_with("test:abc")
        redis_client.delete.return_value = 0
        assert await store.delete("abc") is False

    @pytest.mark.asyncio
    async def test_clear_only_touches_prefixed_keys(self, redis_client):
        redis_client.scan_iter = MagicMock(return_value=_scan("test:a", "test:b"))
        store = RedisCacheStore(prefix="test:", client=redis_client)
        await store.clear()
        redis_client.scan_iter.assert_called_once_with(match="test:*")
        redis_client.delete.assert_awaited_once_with("test:a", "test:b")

    @pytest.mark.asyncio
    async def test_clear_with_no_keys(self, redis_client):
        redis_client.scan_iter = MagicMock(return_value=_scan())
        store = RedisCacheStore(client=redis_client)
        await store.clear()
        redis_client.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_close(self, redis_client):
        store = RedisCacheStore(client=redis_client)
        await store.close()
        redis_client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_errors_propagate_to_caller(self, redis_client):
        redis_client.get.side_effect = ConnectionError("redis down")
        store = RedisCacheStore(client=redis_client)
        with pytest.raises(ConnectionError):
            await store.get("abc")


class TestCreateCacheStore:
    def test_memory_backend(self):
        store = create_cache_store(Settings(cache_backend="memory", cache_max_size=7))
        assert isinstance(store, MemoryCacheStore)
        assert store._max_size == 7

    def test_redis_backend(self):
        store = create_cache_store(
            Settings(cache_backend="redis", cache_key_prefix="svc:")
        )
        assert isinstance(store, RedisCacheStore)
        assert store._key("x") == "svc:x"
