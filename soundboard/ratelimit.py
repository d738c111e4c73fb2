"""Per-identity upload rate limiting (fixed window in the cache backend).

Five uploads per sixty seconds by default.  The limiter fails open: if the
cache backend is unreachable the upload is allowed and the error logged.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable

from soundboard.cache import CacheBackend, CacheError
from soundboard.config import UPLOAD_RATE_LIMIT_POINTS, UPLOAD_RATE_LIMIT_WINDOW_SECONDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after_seconds: int = 0

    def to_headers(self) -> dict[str, str]:
        headers = {"X-RateLimit-Remaining": str(max(0, self.remaining))}
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers


class UploadRateLimiter:
    """Counts uploads per identity in windows of ``window_seconds``."""

    def __init__(
        self,
        backend: CacheBackend,
        points: int = UPLOAD_RATE_LIMIT_POINTS,
        window_seconds: int = UPLOAD_RATE_LIMIT_WINDOW_SECONDS,
        key_prefix: str = "ratelimit:upload:",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend = backend
        self.points = points
        self.window_seconds = window_seconds
        self._prefix = key_prefix
        self._clock = clock

    async def consume(self, identity: str) -> RateLimitResult:
        now = self._clock()
        window = int(now // self.window_seconds)
        key = f"{self._prefix}{identity}:{window}"
        try:
            used = await self._backend.incr(key, ttl_seconds=self.window_seconds)
        except CacheError as e:
            logger.error("Rate limiter backend error, allowing upload for %s: %s", identity, e)
            return RateLimitResult(allowed=True, remaining=self.points)

        if used <= self.points:
            return RateLimitResult(allowed=True, remaining=self.points - used)

        retry_after = math.ceil((window + 1) * self.window_seconds - now)
        return RateLimitResult(allowed=False, remaining=0, retry_after_seconds=max(1, retry_after))
