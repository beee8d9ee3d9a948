"""Ask-support landing: remembers where the customer came from, then opens the bot."""

import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse

from supportdesk.core.config import settings
from supportdesk.core.deps import enforce_ip_rate_limit
from supportdesk.core.security import generate_short_id
from supportdesk.services import redirect_context_service
from supportdesk.services.redirect_context_service import RedirectContext

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Ask support"])


def bot_link(start: str | None = None) -> str:
    url = f"https://t.me/{settings.PLATFORM_BOT_USERNAME}"
    return f"{url}?start={start}" if start else url


@router.get("/ask-support", dependencies=[Depends(enforce_ip_rate_limit)])
async def ask_support(
    request: Request,
    source: str | None = Query(None, max_length=2048),
    city: str | None = Query(None, max_length=255),
    question: str | None = Query(None, max_length=1000),
):
    """Store attribution under a short id and redirect to the bot deep link."""
    context = RedirectContext(
        source_url=source or request.headers.get("referer"),
        source_city=city,
        question=question,
    )
    short_id = generate_short_id()
    if not await redirect_context_service.store_redirect_data(short_id, context):
        logger.warning("Redirect data not stored; redirecting without attribution")
        return RedirectResponse(bot_link(), status_code=307)
    return RedirectResponse(bot_link(short_id), status_code=307)
