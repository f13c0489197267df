"""
Cache component for settlement lookups.

One backend instance is built at application start by ``create_cache`` and
kept on ``app.state.cache``; services receive it explicitly. There is no
module-level singleton.

Supports:
1. Redis (preferred for multi-instance deployments)
2. In-memory LRU + TTL (single process, development, tests)

Usage:
    cache = create_cache(settings)
    await cache.set("platform_settings", data, ttl=300)
    data = await cache.get("platform_settings")
    await cache.close()
"""
import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Callable, Optional

import redis.asyncio as redis

from bazaarmkt.database import custom_json_dumps

logger = logging.getLogger(__name__)


class CacheBackend(ABC):
    """Abstract cache backend interface."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        """Set value in cache with TTL (seconds)."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key from cache."""
        pass

    @abstractmethod
    async def clear_pattern(self, pattern: str) -> int:
        """Clear all keys matching pattern."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass


class InMemoryCache(CacheBackend):
    """
    Bounded in-process cache.

    Entries expire after their TTL and the least recently used entry is
    evicted once ``max_entries`` is reached. Not shared between workers.
    """

    def __init__(self, max_entries: int = 1024, clock: Callable[[], float] = time.monotonic):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._cache: "OrderedDict[str, tuple[Any, float]]" = OrderedDict()
        self._lock = asyncio.Lock()
        self._max_entries = max_entries
        self._clock = clock

    def __len__(self) -> int:
        return len(self._cache)

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._cache[key]
                return None
            self._cache.move_to_end(key)
            return value

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        async with self._lock:
            self._cache[key] = (value, self._clock() + ttl)
            self._cache.move_to_end(key)
            while len(self._cache) > self._max_entries:
                evicted, _ = self._cache.popitem(last=False)
                logger.debug(f"Cache evicted {evicted}")
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._cache.pop(key, None) is not None

    async def clear_pattern(self, pattern: str) -> int:
        """Clear keys matching pattern (simple prefix match)."""
        async with self._lock:
            prefix = pattern.rstrip('*')
            keys_to_delete = [k for k in self._cache.keys() if k.startswith(prefix)]
            for key in keys_to_delete:
                del self._cache[key]
            return len(keys_to_delete)

    async def cleanup_expired(self) -> int:
        """Remove expired entries."""
        async with self._lock:
            now = self._clock()
            expired_keys = [
                k for k, (_, expires_at) in self._cache.items()
                if expires_at <= now
            ]
            for key in expired_keys:
                del self._cache[key]
            return len(expired_keys)

    async def close(self) -> None:
        async with self._lock:
            self._cache.clear()


class RedisCache(CacheBackend):
    """Redis cache backend. Values are stored as JSON."""

    def __init__(self, redis_url: str, namespace: str = "bazaarmkt"):
        self._client = redis.from_url(redis_url, decode_responses=True)
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        try:
            value = await self._client.get(self._key(key))
        except redis.RedisError as e:
            logger.warning(f"Redis get failed for {key}: {e}")
            return None
        if value:
            return json.loads(value)
        return None

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        try:
            await self._client.set(self._key(key), custom_json_dumps(value), ex=ttl)
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis set failed for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._client.delete(self._key(key)))
        except redis.RedisError as e:
            logger.warning(f"Redis delete failed for {key}: {e}")
            return False

    async def clear_pattern(self, pattern: str) -> int:
        cursor = 0
        deleted = 0
        while True:
            cursor, keys = await self._client.scan(cursor, match=self._key(pattern), count=100)
            if keys:
                await self._client.delete(*keys)
                deleted += len(keys)
            if cursor == 0:
                break
        return deleted

    async def close(self) -> None:
        await self._client.aclose()


def create_cache(app_settings) -> CacheBackend:
    """Build the cache backend selected by configuration."""
    if app_settings.REDIS_URL and app_settings.CACHE_ENABLED:
        logger.info("Cache initialized with Redis backend")
        return RedisCache(app_settings.REDIS_URL)
    logger.info(
        f"Cache initialized with in-memory backend "
        f"(max_entries={app_settings.CACHE_MAX_ENTRIES})"
    )
    return InMemoryCache(max_entries=app_settings.CACHE_MAX_ENTRIES)
