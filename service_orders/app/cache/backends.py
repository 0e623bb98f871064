"""
Cache backends for the Orders Service.

Backends only move strings around and are free to raise; the
``CacheAdapter`` turns their failures into best-effort behaviour.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis.asyncio as redis

from shared.logging import get_logger


class CacheBackend(ABC):
    """String-keyed get / set-with-TTL / delete."""

    name = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored payload or None."""

    @abstractmethod
    async def set(self, key: str, payload: str, ttl_seconds: int) -> None:
        """Store ``payload`` under ``key`` for ``ttl_seconds``."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``; a missing key is not an error."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


@dataclass
class _Entry:
    payload: str
    expires_at: float


class InMemoryCacheBackend(CacheBackend):
    """Process-local TTL map with a bounded number of entries."""

    name = "memory"

    def __init__(self, max_entries: int = 10000, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[str, _Entry] = {}
        self._max_entries = max_entries
        self._clock = clock

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry.payload

    async def set(self, key: str, payload: str, ttl_seconds: int) -> None:
        if key not in self._entries and len(self._entries) >= self._max_entries:
            self._evict()
        self._entries[key] = _Entry(payload, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def keys(self):
        """Live keys, for diagnostics and tests."""
        now = self._clock()
        return [k for k, e in self._entries.items() if e.expires_at > now]

    def _evict(self) -> None:
        """Drop expired entries, then the ones closest to expiry."""
        now = self._clock()
        for key in [k for k, e in self._entries.items() if e.expires_at <= now]:
            del self._entries[key]

        overflow = len(self._entries) - self._max_entries + 1
        if overflow > 0:
            oldest = sorted(self._entries, key=lambda k: self._entries[k].expires_at)
            for key in oldest[:overflow]:
                del self._entries[key]


class RedisCacheBackend(CacheBackend):
    """Redis (or a managed Redis-compatible service via ``rediss://``)."""

    name = "redis"

    def __init__(self, redis_url: str, socket_timeout: float = 0.5):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.logger = get_logger("orders.cache.redis")
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self.socket_timeout,
                socket_timeout=self.socket_timeout,
                health_check_interval=30
            )
            self.logger.info("Redis cache client created")
        return self._redis

    async def get(self, key: str) -> Optional[str]:
        client = await self._get_redis()
        return await client.get(key)

    async def set(self, key: str, payload: str, ttl_seconds: int) -> None:
        client = await self._get_redis()
        await client.setex(key, ttl_seconds, payload)

    async def delete(self, key: str) -> None:
        client = await self._get_redis()
        await client.delete(key)

    async def ping(self) -> bool:
        client = await self._get_redis()
        return bool(await client.ping())

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self.logger.info("Redis cache client closed")


def create_cache_backend(kind: str, *, redis_url: str = "", max_entries: int = 10000,
                         socket_timeout: float = 0.5) -> CacheBackend:
    """Build the configured backend."""
    if kind == "memory":
        return InMemoryCacheBackend(max_entries=max_entries)
    if kind == "redis":
        return RedisCacheBackend(redis_url, socket_timeout=socket_timeout)
    raise ValueError(f"Unknown cache backend: {kind}")
