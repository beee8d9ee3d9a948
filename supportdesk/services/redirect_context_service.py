"""
Redirect context store (redis).

An ask-support landing stores its attribution under a short id for one hour;
the bot's /start handler pops it and keeps it per user for 24 hours, until
the first ticket of that user consumes it. Both reads are GETDEL so a value
is handed out at most once.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ValidationError
from redis.exceptions import RedisError

from supportdesk.core.redis_client import get_async_redis_client

logger = logging.getLogger(__name__)

REDIRECT_DATA_TTL_SECONDS = 60 * 60
REDIRECT_CONTEXT_TTL_SECONDS = 24 * 60 * 60

REDIS_ERROR_TYPES: tuple[type[BaseException], ...] = (RedisError, OSError)


class RedirectContext(BaseModel):
    source_url: str | None = None
    source_city: str | None = None
    question: str | None = None


def _redirect_key(short_id: str) -> str:
    return f"redirect:{short_id}"


def _context_key(platform_user_id: int) -> str:
    return f"user_context:{platform_user_id}"


def _decode(raw: str | None) -> RedirectContext | None:
    if not raw:
        return None
    try:
        return RedirectContext.model_validate_json(raw)
    except ValidationError:
        logger.warning("Discarding malformed redirect context")
        return None


async def store_redirect_data(short_id: str, data: RedirectContext) -> bool:
    redis = get_async_redis_client()
    if redis is None:
        return False
    try:
        await redis.setex(_redirect_key(short_id), REDIRECT_DATA_TTL_SECONDS, data.model_dump_json())
    except REDIS_ERROR_TYPES as e:
        logger.error("Failed to store redirect data: %s", type(e).__name__)
        return False
    return True


async def pop_redirect_data(short_id: str) -> RedirectContext | None:
    redis = get_async_redis_client()
    if redis is None:
        return None
    try:
        raw = await redis.getdel(_redirect_key(short_id))
    except REDIS_ERROR_TYPES as e:
        logger.error("Failed to read redirect data: %s", type(e).__name__)
        return None
    return _decode(raw)


async def store_redirect_context(platform_user_id: int, context: RedirectContext) -> bool:
    redis = get_async_redis_client()
    if redis is None:
        return False
    try:
        await redis.setex(
            _context_key(platform_user_id), REDIRECT_CONTEXT_TTL_SECONDS, context.model_dump_json()
        )
    except REDIS_ERROR_TYPES as e:
        logger.error("Failed to store redirect context: %s", type(e).__name__)
        return False
    return True


async def get_redirect_context(platform_user_id: int) -> RedirectContext | None:
    """Read and delete the user's redirect context."""
    redis = get_async_redis_client()
    if redis is None:
        return None
    try:
        raw = await redis.getdel(_context_key(platform_user_id))
    except REDIS_ERROR_TYPES as e:
        logger.error("Failed to read redirect context: %s", type(e).__name__)
        return None
    return _decode(raw)
