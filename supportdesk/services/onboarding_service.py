"""Per-user onboarding state (redis, 1 hour, readable many times)."""

from __future__ import annotations

import logging

from pydantic import BaseModel, ValidationError
from redis.exceptions import RedisError

from supportdesk.core.exceptions import UpstreamUnavailableError
from supportdesk.core.redis_client import get_async_redis_client
from supportdesk.db.enums import OnboardingStep

logger = logging.getLogger(__name__)

ONBOARDING_TTL_SECONDS = 60 * 60

REDIS_ERROR_TYPES: tuple[type[BaseException], ...] = (RedisError, OSError)


class OnboardingState(BaseModel):
    step: OnboardingStep = OnboardingStep.AWAITING_QUESTION
    source_url: str | None = None
    source_city: str | None = None
    question: str | None = None


def _key(platform_user_id: int) -> str:
    return f"onboarding:{platform_user_id}"


async def get_onboarding_state(platform_user_id: int) -> OnboardingState | None:
    redis = get_async_redis_client()
    if redis is None:
        return None
    try:
        raw = await redis.get(_key(platform_user_id))
    except REDIS_ERROR_TYPES as e:
        logger.error("Failed to read onboarding state: %s", type(e).__name__)
        return None
    if not raw:
        return None
    try:
        return OnboardingState.model_validate_json(raw)
    except ValidationError:
        logger.warning("Discarding malformed onboarding state")
        return None


async def set_onboarding_state(platform_user_id: int, state: OnboardingState) -> None:
    """
    Store onboarding state for one hour.

    Raises:
        UpstreamUnavailableError: redis is disabled or the write failed
    """
    redis = get_async_redis_client()
    if redis is None:
        raise UpstreamUnavailableError("Onboarding store is not configured")
    try:
        await redis.setex(_key(platform_user_id), ONBOARDING_TTL_SECONDS, state.model_dump_json())
    except REDIS_ERROR_TYPES as e:
        raise UpstreamUnavailableError(f"Failed to store onboarding state: {type(e).__name__}") from e


async def clear_onboarding_state(platform_user_id: int) -> None:
    redis = get_async_redis_client()
    if redis is None:
        return None
    try:
        await redis.delete(_key(platform_user_id))
    except REDIS_ERROR_TYPES as e:
        logger.error("Failed to clear onboarding state: %s", type(e).__name__)
    return None
