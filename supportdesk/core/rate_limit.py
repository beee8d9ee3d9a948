"""Fixed-window rate limiting backed by redis counters.

Failure policy: if redis is disabled or unreachable the check fails open,
because reaching support matters more than strict throttling.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from redis.exceptions import RedisError

from supportdesk.core.config import settings
from supportdesk.core.redis_client import get_async_redis_client

logger = logging.getLogger(__name__)

REDIS_ERROR_TYPES: tuple[type[BaseException], ...] = (RedisError, OSError)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_in_seconds: int


class FixedWindowRateLimiter:
    """INCR a per-key counter; the first hit in a window sets its expiry."""

    def __init__(
        self,
        prefix: str,
        limit: int,
        window_seconds: int,
        client_factory: Callable[[], object] | None = None,
    ):
        self.prefix = prefix
        self.limit = limit
        self.window_seconds = window_seconds
        self._client_factory = client_factory

    def _key(self, key: object) -> str:
        return f"{self.prefix}{key}"

    def _fail_open(self) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            remaining=self.limit,
            reset_in_seconds=self.window_seconds,
        )

    async def check(self, key: object) -> RateLimitResult:
        redis = (self._client_factory or get_async_redis_client)()
        if redis is None:
            return self._fail_open()

        cache_key = self._key(key)
        try:
            count = await redis.incr(cache_key)
            if count == 1:
                await redis.expire(cache_key, self.window_seconds)
            ttl = await redis.ttl(cache_key)
            if ttl == -1:
                # Counter lost its expiry (EXPIRE failed after INCR); re-arm the window
                await redis.expire(cache_key, self.window_seconds)
                ttl = self.window_seconds
        except REDIS_ERROR_TYPES as e:
            logger.error("Rate limit check failed for %s: %s", cache_key, type(e).__name__)
            return self._fail_open()

        allowed = count <= self.limit
        if not allowed:
            logger.warning("Rate limit exceeded for %s (count=%s)", cache_key, count)

        return RateLimitResult(
            allowed=allowed,
            remaining=max(0, self.limit - count),
            reset_in_seconds=ttl if ttl > 0 else self.window_seconds,
        )


user_limiter = FixedWindowRateLimiter(
    "rate:user:", settings.RATE_LIMIT_USER, settings.RATE_LIMIT_USER_WINDOW
)
ip_limiter = FixedWindowRateLimiter(
    "rate:ip:", settings.RATE_LIMIT_IP, settings.RATE_LIMIT_IP_WINDOW
)
ws_limiter = FixedWindowRateLimiter(
    "rate:ws:", settings.RATE_LIMIT_WS, settings.RATE_LIMIT_WS_WINDOW
)
