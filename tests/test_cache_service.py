"""Tests for the cache backends."""
from types import SimpleNamespace

import pytest

from bazaarmkt.jobs.payout_jobs import cleanup_cache
from bazaarmkt.services.cache_service import InMemoryCache, RedisCache, create_cache


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestInMemoryCache:
    """Tests for InMemoryCache."""

    async def test_set_and_get(self):
        cache = InMemoryCache()

        await cache.set("key", {"value": 1})

        assert await cache.get("key") == {"value": 1}
        assert await cache.get("missing") is None

    async def test_entries_expire(self, clock):
        cache = InMemoryCache(clock=clock)
        await cache.set("key", "value", ttl=10)

        clock.advance(9)
        assert await cache.get("key") == "value"

        clock.advance(1)
        assert await cache.get("key") is None
        assert len(cache) == 0

    async def test_least_recently_used_evicted(self):
        """Test reading an entry protects it from eviction."""
        cache = InMemoryCache(max_entries=2)
        await cache.set("a", 1)
        await cache.set("b", 2)
        await cache.get("a")

        await cache.set("c", 3)

        assert await cache.get("a") == 1
        assert await cache.get("b") is None
        assert await cache.get("c") == 3
        assert len(cache) == 2

    async def test_overwrite_does_not_grow(self):
        cache = InMemoryCache(max_entries=2)
        await cache.set("a", 1)
        await cache.set("a", 2)

        assert len(cache) == 1
        assert await cache.get("a") == 2

    async def test_delete(self):
        cache = InMemoryCache()
        await cache.set("key", "value")

        assert await cache.delete("key") is True
        assert await cache.delete("key") is False
        assert await cache.get("key") is None

    async def test_clear_pattern(self):
        cache = InMemoryCache()
        await cache.set("platform_settings:effective", 1)
        await cache.set("platform_settings:other", 2)
        await cache.set("wallet:1", 3)

        removed = await cache.clear_pattern("platform_settings:*")

        assert removed == 2
        assert await cache.get("wallet:1") == 3

    async def test_cleanup_expired(self, clock):
        cache = InMemoryCache(clock=clock)
        await cache.set("short", 1, ttl=5)
        await cache.set("long", 2, ttl=60)
        clock.advance(10)

        assert await cleanup_cache(cache) == 1
        assert len(cache) == 1

    async def test_close_clears(self):
        cache = InMemoryCache()
        await cache.set("key", "value")

        await cache.close()

        assert len(cache) == 0

    def test_rejects_empty_bound(self):
        with pytest.raises(ValueError):
            InMemoryCache(max_entries=0)


class TestCreateCache:
    """Tests for backend selection."""

    def test_in_memory_without_redis(self):
        cache = create_cache(SimpleNamespace(REDIS_URL=None, CACHE_ENABLED=True, CACHE_MAX_ENTRIES=10))

        assert isinstance(cache, InMemoryCache)

    def test_in_memory_when_disabled(self):
        cache = create_cache(
            SimpleNamespace(REDIS_URL="redis://localhost:6379/0", CACHE_ENABLED=False, CACHE_MAX_ENTRIES=10)
        )

        assert isinstance(cache, InMemoryCache)

    async def test_redis_when_configured(self):
        cache = create_cache(
            SimpleNamespace(REDIS_URL="redis://localhost:6379/0", CACHE_ENABLED=True, CACHE_MAX_ENTRIES=10)
        )

        assert isinstance(cache, RedisCache)
        await cache.close()
