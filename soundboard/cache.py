"""Key/value cache backends for quota counters, settings and rate limits.

Two interchangeable implementations of :class:`CacheBackend`:

  - :class:`RedisCacheBackend`: shared across processes (``redis.asyncio``)
  - :class:`InMemoryCacheBackend`: single process, TTL map

Selection happens once at startup via :func:`create_cache_backend`: a
configured ``SOUNDBOARD_REDIS_URL`` picks Redis, otherwise memory.  Backends
raise :class:`CacheError` subclasses; consumers decide whether a failure is
fatal (none of the current ones treat it so).
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Protocol, runtime_checkable

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class CacheError(Exception):
    """Base error for cache operations."""


class CacheConnectionError(CacheError):
    """The backing store could not be reached or the command failed."""


class CacheKeyError(CacheError):
    """The key is empty or otherwise unusable."""


@runtime_checkable
class CacheBackend(Protocol):
    """Async string key/value store with optional per-key TTL."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def incr(self, key: str, ttl_seconds: int | None = None) -> int:
        """Increment an integer counter; *ttl_seconds* applies when the key is created."""
        ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


def _check_key(key: str) -> None:
    if not key:
        raise CacheKeyError("Cache key cannot be empty")


# ── In-memory ─────────────────────────────────────────────────────


class InMemoryCacheBackend:
    """Process-local TTL map.  Expired entries are dropped lazily on access."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}

    def _live(self, key: str) -> tuple[str, float | None] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return entry

    def _expiry(self, ttl_seconds: int | None) -> float | None:
        return None if ttl_seconds is None else self._clock() + ttl_seconds

    async def get(self, key: str) -> str | None:
        _check_key(key)
        entry = self._live(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        _check_key(key)
        if ttl_seconds is not None and ttl_seconds <= 0:
            self._data.pop(key, None)
            return
        self._data[key] = (value, self._expiry(ttl_seconds))

    async def delete(self, key: str) -> None:
        _check_key(key)
        self._data.pop(key, None)

    async def incr(self, key: str, ttl_seconds: int | None = None) -> int:
        _check_key(key)
        entry = self._live(key)
        if entry is None:
            self._data[key] = ("1", self._expiry(ttl_seconds))
            return 1
        value, expires_at = entry
        try:
            new_value = int(value) + 1
        except ValueError as e:
            raise CacheError(f"Value for key '{key}' is not an integer") from e
        self._data[key] = (str(new_value), expires_at)
        return new_value

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._data.clear()


# ── Redis ─────────────────────────────────────────────────────────


class RedisCacheBackend:
    """Redis-backed cache.  Every client failure surfaces as :class:`CacheConnectionError`."""

    def __init__(self, client: Any) -> None:
        self._client = client

    async def get(self, key: str) -> str | None:
        _check_key(key)
        try:
            return await self._client.get(key)
        except Exception as e:
            raise CacheConnectionError(f"Redis GET failed for '{key}': {e}") from e

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        _check_key(key)
        try:
            if ttl_seconds is not None and ttl_seconds <= 0:
                await self._client.delete(key)
            elif ttl_seconds is not None:
                await self._client.setex(key, ttl_seconds, value)
            else:
                await self._client.set(key, value)
        except Exception as e:
            raise CacheConnectionError(f"Redis SET failed for '{key}': {e}") from e

    async def delete(self, key: str) -> None:
        _check_key(key)
        try:
            await self._client.delete(key)
        except Exception as e:
            raise CacheConnectionError(f"Redis DEL failed for '{key}': {e}") from e

    async def incr(self, key: str, ttl_seconds: int | None = None) -> int:
        _check_key(key)
        try:
            value = int(await self._client.incr(key))
            if value == 1 and ttl_seconds is not None:
                await self._client.expire(key, ttl_seconds)
            return value
        except Exception as e:
            raise CacheConnectionError(f"Redis INCR failed for '{key}': {e}") from e

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except Exception as e:
            logger.warning("Redis ping failed: %s", e)
            return False

    async def close(self) -> None:
        await self._client.aclose()


# ── Factory ───────────────────────────────────────────────────────


def create_cache_backend(redis_url: str | None = None) -> CacheBackend:
    """Build the backend for this process.

    The Redis client connects lazily, so an unreachable server shows up as
    :class:`CacheConnectionError` on first use rather than here.
    """
    if redis_url:
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
        )
        logger.info("Using Redis cache backend at %s", redis_url)
        return RedisCacheBackend(client)
    logger.info("Using in-memory cache backend")
    return InMemoryCacheBackend()
