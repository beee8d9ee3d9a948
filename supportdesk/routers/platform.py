"""Platform webhook: receives Bot API updates and relays them in the background."""

import hmac

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException

from supportdesk.core.config import settings
from supportdesk.core.deps import get_relay
from supportdesk.schemas.platform import PlatformUpdate
from supportdesk.services.relay_service import RelayService

router = APIRouter(prefix="/platform", tags=["Platform"])


@router.post("/webhook")
async def platform_webhook(
    update: PlatformUpdate,
    background_tasks: BackgroundTasks,
    x_telegram_bot_api_secret_token: str | None = Header(None),
    relay: RelayService = Depends(get_relay),
):
    """Acknowledge immediately; the update is processed after the response is sent."""
    if settings.PLATFORM_WEBHOOK_SECRET and not hmac.compare_digest(
        x_telegram_bot_api_secret_token or "", settings.PLATFORM_WEBHOOK_SECRET
    ):
        raise HTTPException(status_code=403, detail="Invalid webhook secret")

    background_tasks.add_task(relay.dispatch_update, update)
    return {"ok": True}
