"""Per-owner sound count cache.

Counting a user's sounds is the quota check on every upload; the count is
cached for five minutes under ``quota:count:<identity>`` and invalidated
after each create/delete.  The cache is never authoritative: any read
failure is reported as a miss and the caller counts rows instead.
"""

from __future__ import annotations

import logging

from soundboard import store
from soundboard.cache import CacheBackend
from soundboard.config import QUOTA_TTL_SECONDS
from soundboard.fallback import TRY_NEXT, first_available

logger = logging.getLogger(__name__)

KEY_PREFIX = "quota:count:"


class QuotaCache:
    """TTL cache mapping an owner identity to their sound count."""

    def __init__(self, backend: CacheBackend, ttl_seconds: int = QUOTA_TTL_SECONDS) -> None:
        self._backend = backend
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(identity: str) -> str:
        return f"{KEY_PREFIX}{identity}"

    async def get(self, identity: str) -> int | None:
        """Cached count, or ``None`` on miss *or* any backend/decoding error."""
        try:
            raw = await self._backend.get(self._key(identity))
            return int(raw) if raw is not None else None
        except Exception as e:
            logger.warning("Failed to read cached quota count for %s: %s", identity, e)
            return None

    async def set(self, identity: str, count: int, ttl_seconds: int | None = None) -> None:
        try:
            await self._backend.set(
                self._key(identity), str(count), ttl_seconds or self.ttl_seconds
            )
        except Exception as e:
            logger.warning("Failed to cache quota count for %s: %s", identity, e)

    async def invalidate(self, identity: str) -> None:
        try:
            await self._backend.delete(self._key(identity))
        except Exception as e:
            logger.warning("Failed to invalidate quota cache for %s: %s", identity, e)

    async def count(self, identity: str, user_id: str) -> int:
        """Current sound count: cache first, then the ``sounds`` table (re-cached)."""

        async def from_cache() -> int | object:
            cached = await self.get(identity)
            return TRY_NEXT if cached is None else cached

        async def from_store() -> int:
            count = store.count_sounds(user_id)
            await self.set(identity, count)
            return count

        return await first_available([from_cache, from_store])
