"""Key-value cache backends for session snapshots.

The cache only accelerates session lookups. It is keyed by session token and
every entry carries a TTL so stray entries expire on their own.

Redis is used when REDIS_URL is set. The in-memory backend is for a single
development instance and for tests.
"""

import time
from abc import ABC, abstractmethod
from collections.abc import Callable

from redis import asyncio as redis_async
from redis.exceptions import RedisError


class SessionCacheError(Exception):
    """The cache backend could not complete an operation."""


class SessionCache(ABC):
    """Abstract key-value backend for session snapshots."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored value, or None if absent or expired."""
        ...

    @abstractmethod
    async def put(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        """Store a value, optionally expiring after ttl_seconds."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key. No-op if not found."""
        ...

    @abstractmethod
    async def list(self) -> list[str]:
        """Return all live keys. Maintenance tooling only."""
        ...

    async def close(self) -> None:
        return None


class RedisSessionCache(SessionCache):
    """Redis-backed cache. Keys are namespaced under ``session:``."""

    prefix = "session:"

    def __init__(self, client: redis_async.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str, *, timeout: float = 0.5) -> "RedisSessionCache":
        client = redis_async.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=timeout,
            socket_timeout=timeout,
            health_check_interval=30,
        )
        return cls(client)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(self._key(key))
        except RedisError as e:
            raise SessionCacheError(f"get failed: {e}") from e

    async def put(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        try:
            await self._client.set(self._key(key), value, ex=ttl_seconds)
        except RedisError as e:
            raise SessionCacheError(f"put failed: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(self._key(key))
        except RedisError as e:
            raise SessionCacheError(f"delete failed: {e}") from e

    async def list(self) -> list[str]:
        try:
            keys = [k async for k in self._client.scan_iter(match=f"{self.prefix}*")]
        except RedisError as e:
            raise SessionCacheError(f"list failed: {e}") from e
        return [k[len(self.prefix):] for k in keys]

    async def close(self) -> None:
        await self._client.aclose()


class InMemorySessionCache(SessionCache):
    """In-process cache with TTL support. No network I/O."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        # key -> (value, deadline or None)
        self._store: dict[str, tuple[str, float | None]] = {}

    def _live(self, key: str) -> str | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        value, deadline = entry
        if deadline is not None and deadline <= self._clock():
            del self._store[key]
            return None
        return value

    async def get(self, key: str) -> str | None:
        return self._live(key)

    async def put(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        deadline = self._clock() + ttl_seconds if ttl_seconds is not None else None
        self._store[key] = (value, deadline)

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    async def list(self) -> list[str]:
        return [k for k in list(self._store) if self._live(k) is not None]


def create_cache(redis_url: str, *, timeout: float = 0.5) -> SessionCache:
    """Build the cache backend for the configured URL."""
    if redis_url:
        return RedisSessionCache.from_url(redis_url, timeout=timeout)
    return InMemorySessionCache()


# Module-level singleton, replaced in tests
_cache: SessionCache | None = None


def get_cache() -> SessionCache:
    """Get the current cache backend."""
    global _cache
    if _cache is None:
        from silroad.config import settings
        _cache = create_cache(settings.redis_url, timeout=settings.cache_timeout_seconds)
    return _cache


def set_cache(backend: SessionCache | None) -> None:
    """Set the cache backend (used for testing)."""
    global _cache
    _cache = backend
