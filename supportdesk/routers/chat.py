"""Web chat widget HTTP endpoints."""

import logging
import mimetypes

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from supportdesk.core.config import settings
from supportdesk.core.deps import enforce_ip_rate_limit, get_db, get_relay
from supportdesk.core.exceptions import NotFoundError, PlatformAPIError, UpstreamUnavailableError, ValidationError
from supportdesk.core.security import SESSION_COOKIE_NAME, is_valid_session_id
from supportdesk.routers.ask_support import bot_link
from supportdesk.schemas.chat import ChatHistoryResponse, ChatMessageRead, ChatSessionRead, LinkTokenRead
from supportdesk.services import ticket_service, web_chat_service
from supportdesk.services.relay_service import RelayService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/chat",
    tags=["Web chat"],
    dependencies=[Depends(enforce_ip_rate_limit)],
)

SESSION_COOKIE_MAX_AGE = 30 * 24 * 60 * 60
MEDIA_CACHE_SECONDS = 24 * 60 * 60
MIN_FILE_ID_LENGTH = 10


def _require_session(request: Request) -> str:
    session_id = request.cookies.get(SESSION_COOKIE_NAME)
    if not is_valid_session_id(session_id):
        raise HTTPException(status_code=401, detail="Chat session required")
    return session_id


@router.post("/session", response_model=ChatSessionRead)
def create_session(request: Request, response: Response, db: Session = Depends(get_db)):
    """Issue a session cookie, or refresh the existing valid one."""
    session_id = web_chat_service.init_session(request.cookies.get(SESSION_COOKIE_NAME))
    response.set_cookie(
        SESSION_COOKIE_NAME,
        session_id,
        max_age=SESSION_COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=settings.ENV != "dev",
    )
    ticket = ticket_service.find_by_web_session(db, session_id)
    return ChatSessionRead(
        session_id=session_id,
        ticket_id=ticket.id if ticket else None,
        status=ticket.status if ticket else None,
    )


@router.get("/history", response_model=ChatHistoryResponse)
def chat_history(
    session_id: str = Depends(_require_session),
    db: Session = Depends(get_db),
):
    ticket, rows = web_chat_service.get_history(db, session_id)
    return ChatHistoryResponse(
        ticket_id=ticket.id if ticket else None,
        status=ticket.status if ticket else None,
        messages=[ChatMessageRead.model_validate(row) for row in rows],
    )


@router.post("/link-token", response_model=LinkTokenRead)
def create_link_token(
    session_id: str = Depends(_require_session),
    db: Session = Depends(get_db),
):
    """Token the customer can redeem in the bot (/start link_...) to continue there."""
    try:
        link = web_chat_service.issue_link_token(db, session_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return LinkTokenRead(token=link.token, expires_at=link.expires_at, deep_link=bot_link(link.token))


@router.get("/media/{file_id}")
async def media_proxy(file_id: str, relay: RelayService = Depends(get_relay)):
    """Serve an operator photo or voice message without exposing the bot token."""
    if len(file_id) < MIN_FILE_ID_LENGTH:
        raise HTTPException(status_code=400, detail="Invalid file id")

    try:
        file = await relay.platform.get_file(file_id)
        file_path = (file or {}).get("file_path")
        content = await relay.platform.download_file(file_path) if file_path else None
    except PlatformAPIError as e:
        logger.info("Media file rejected by platform: %s", e.description)
        raise HTTPException(status_code=404, detail="File not found")
    except UpstreamUnavailableError as e:
        logger.warning("Media file not fetched: %s", e)
        raise HTTPException(status_code=502, detail="Failed to fetch file")
    if content is None:
        raise HTTPException(status_code=404, detail="File not found")

    media_type, _ = mimetypes.guess_type(file_path)
    return Response(
        content=content,
        media_type=media_type or "application/octet-stream",
        headers={"Cache-Control": f"public, max-age={MEDIA_CACHE_SECONDS}"},
    )
