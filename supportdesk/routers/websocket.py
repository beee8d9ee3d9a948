"""
WebSocket router for the web chat widget.

Provides a WebSocket endpoint that:
1. Identifies the browser by its UUID v4 chat session (query or cookie)
2. Optionally redeems a link token (?link=link_...) to join an existing ticket
3. Relays widget messages into the ticket thread and pushes replies back
"""

import json
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as FrameValidationError
from sqlalchemy.exc import SQLAlchemyError

from supportdesk.core.exceptions import (
    ConflictError,
    InvalidTokenError,
    MessageTooLongError,
    SupportDeskError,
    ValidationError,
)
from supportdesk.core.rate_limit import ws_limiter
from supportdesk.core.security import SESSION_COOKIE_NAME, is_valid_session_id
from supportdesk.core.structured_logging import build_log_context
from supportdesk.schemas.chat import ClientFrame, ErrorFrame
from supportdesk.services import web_chat_service
from supportdesk.services.relay_service import RelayService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["WebSocket"])


class ErrorCode:
    INVALID_MESSAGE = "INVALID_MESSAGE"
    MESSAGE_TOO_LONG = "MESSAGE_TOO_LONG"
    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    TICKET_CLOSED = "TICKET_CLOSED"
    INVALID_TOKEN = "INVALID_TOKEN"


async def send_error(websocket: WebSocket, code: str, message: str) -> None:
    frame = {"type": "error", "data": ErrorFrame(code=code, message=message).model_dump()}
    await websocket.send_text(json.dumps(frame))


@router.websocket("/chat")
async def websocket_chat(
    websocket: WebSocket,
    session: str | None = Query(None),
    link: str | None = Query(None),
):
    """
    WebSocket endpoint for the chat widget.

    Client frames: message, typing, close, pong.
    Server frames: connected, message, typing, status, channel_linked, error, ping.
    """
    session_id = session or websocket.cookies.get(SESSION_COOKIE_NAME)
    if not is_valid_session_id(session_id):
        await websocket.close(code=4001, reason="Invalid session")
        return

    relay: RelayService = websocket.app.state.relay
    connections = relay.connections
    await connections.connect(websocket, session_id)

    try:
        ticket = await web_chat_service.attach_session(relay, session_id)
        await connections.send_to_session(
            session_id,
            "connected",
            {
                "session_id": session_id,
                "ticket_id": str(ticket.id) if ticket else None,
                "status": ticket.status if ticket else None,
            },
        )

        if link:
            try:
                await web_chat_service.link_session(relay, session_id, link)
            except (InvalidTokenError, ConflictError, ValidationError) as e:
                logger.info("Link token rejected: %s", type(e).__name__, extra=build_log_context(session_id=session_id))
                await send_error(websocket, ErrorCode.INVALID_TOKEN, "Link is invalid or expired")

        # Keep connection alive, handle incoming frames
        while True:
            try:
                raw = await websocket.receive_text()
            except WebSocketDisconnect:
                break
            connections.touch(websocket)
            await handle_client_frame(relay, websocket, session_id, raw)
    except WebSocketDisconnect:
        pass
    finally:
        await connections.disconnect(websocket, session_id)


async def handle_client_frame(relay: RelayService, websocket: WebSocket, session_id: str, raw: str) -> None:
    try:
        frame = ClientFrame.model_validate_json(raw)
    except FrameValidationError:
        await send_error(websocket, ErrorCode.INVALID_MESSAGE, "Malformed frame")
        return

    if frame.type in ("pong", "typing"):
        return

    if frame.type == "message":
        await _handle_message(relay, websocket, session_id, frame.data)
    elif frame.type == "close":
        await _handle_close(relay, websocket, session_id, frame.data)
    else:
        await send_error(websocket, ErrorCode.INVALID_MESSAGE, f"Unknown frame type: {frame.type}")


async def _handle_message(relay: RelayService, websocket: WebSocket, session_id: str, data: dict) -> None:
    rate = await ws_limiter.check(session_id)
    if not rate.allowed:
        await send_error(
            websocket, ErrorCode.RATE_LIMITED, f"Too many messages, retry in {rate.reset_in_seconds}s"
        )
        return

    text = data.get("text")
    if not isinstance(text, str):
        await send_error(websocket, ErrorCode.INVALID_MESSAGE, "Message text is required")
        return

    try:
        ack = await web_chat_service.send_message(relay, session_id, text)
    except MessageTooLongError as e:
        await send_error(websocket, ErrorCode.MESSAGE_TOO_LONG, str(e))
        return
    except ValidationError as e:
        await send_error(websocket, ErrorCode.INVALID_MESSAGE, str(e))
        return
    except (SupportDeskError, SQLAlchemyError) as e:
        logger.error(
            "Web message not relayed: %s",
            type(e).__name__,
            extra=build_log_context(session_id=session_id, route="ws"),
        )
        await send_error(websocket, ErrorCode.INTERNAL_ERROR, "Message could not be delivered, please retry")
        return

    await relay.connections.send_to_session(session_id, "message", ack)


async def _handle_close(relay: RelayService, websocket: WebSocket, session_id: str, data: dict) -> None:
    feedback = data.get("feedback")
    try:
        closed = await web_chat_service.close(
            relay,
            session_id,
            resolved=bool(data.get("resolved", True)),
            feedback=feedback if isinstance(feedback, str) else None,
        )
    except (SupportDeskError, SQLAlchemyError) as e:
        logger.error("Web close failed: %s", type(e).__name__, extra=build_log_context(session_id=session_id))
        await send_error(websocket, ErrorCode.INTERNAL_ERROR, "Could not close the ticket")
        return
    if not closed:
        await send_error(websocket, ErrorCode.TICKET_CLOSED, "There is no open ticket")
