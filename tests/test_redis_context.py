import pytest

from supportdesk.core.exceptions import UpstreamUnavailableError
from supportdesk.db.enums import OnboardingStep
from supportdesk.services import onboarding_service, redirect_context_service
from supportdesk.services.onboarding_service import OnboardingState
from supportdesk.services.redirect_context_service import RedirectContext


@pytest.fixture
def redis_backed(monkeypatch, fake_redis):
    monkeypatch.setattr(redirect_context_service, "get_async_redis_client", lambda: fake_redis)
    monkeypatch.setattr(onboarding_service, "get_async_redis_client", lambda: fake_redis)
    return fake_redis


@pytest.mark.asyncio
async def test_redirect_data_is_handed_out_once(redis_backed):
    context = RedirectContext(source_url="https://shop.example/p/1", source_city="Berlin", question="Size?")

    assert await redirect_context_service.store_redirect_data("ab12cd34", context) is True
    assert redis_backed.ttls["redirect:ab12cd34"] == 60 * 60

    assert await redirect_context_service.pop_redirect_data("ab12cd34") == context
    assert await redirect_context_service.pop_redirect_data("ab12cd34") is None


@pytest.mark.asyncio
async def test_user_context_lives_a_day_and_is_read_once(redis_backed):
    context = RedirectContext(source_url="https://shop.example/p/2")

    await redirect_context_service.store_redirect_context(42, context)

    assert redis_backed.ttls["user_context:42"] == 24 * 60 * 60
    assert await redirect_context_service.get_redirect_context(42) == context
    assert await redirect_context_service.get_redirect_context(42) is None


@pytest.mark.asyncio
async def test_malformed_redirect_payload_is_discarded(redis_backed):
    redis_backed.store["redirect:broken"] = "{not json"

    assert await redirect_context_service.pop_redirect_data("broken") is None


@pytest.mark.asyncio
async def test_redirect_store_degrades_when_redis_fails(redis_backed):
    redis_backed.fail = True

    assert await redirect_context_service.store_redirect_data("x", RedirectContext()) is False
    assert await redirect_context_service.pop_redirect_data("x") is None


@pytest.mark.asyncio
async def test_onboarding_state_round_trip_and_clear(redis_backed):
    state = OnboardingState(source_url="https://shop.example", source_city="Hamburg")

    await onboarding_service.set_onboarding_state(42, state)

    assert redis_backed.ttls["onboarding:42"] == 60 * 60
    # Readable more than once
    assert await onboarding_service.get_onboarding_state(42) == state
    assert (await onboarding_service.get_onboarding_state(42)).step == OnboardingStep.AWAITING_QUESTION

    await onboarding_service.clear_onboarding_state(42)
    assert await onboarding_service.get_onboarding_state(42) is None


@pytest.mark.asyncio
async def test_onboarding_write_failure_raises(redis_backed):
    redis_backed.fail = True

    with pytest.raises(UpstreamUnavailableError):
        await onboarding_service.set_onboarding_state(42, OnboardingState())
    assert await onboarding_service.get_onboarding_state(42) is None


@pytest.mark.asyncio
async def test_onboarding_without_redis(monkeypatch):
    monkeypatch.setattr(onboarding_service, "get_async_redis_client", lambda: None)

    with pytest.raises(UpstreamUnavailableError):
        await onboarding_service.set_onboarding_state(42, OnboardingState())
    assert await onboarding_service.get_onboarding_state(42) is None
