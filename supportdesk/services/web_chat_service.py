"""Web chat widget operations: sessions, history, link tokens and messages."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from supportdesk.core.async_utils import run_in_session
from supportdesk.core.config import settings
from supportdesk.core.exceptions import InvalidTokenError, MessageTooLongError, NotFoundError, ValidationError
from supportdesk.core.security import generate_session_id, is_link_token, is_valid_session_id
from supportdesk.core.structured_logging import build_log_context
from supportdesk.db.models import MessageMap, Ticket, WebLinkToken
from supportdesk.services import ticket_service
from supportdesk.services.relay_service import RelayService, chat_message_frame

logger = logging.getLogger(__name__)


def init_session(session_id: str | None) -> str:
    """Reuse a valid session id or mint a new one."""
    if is_valid_session_id(session_id):
        return session_id
    return generate_session_id()


def get_history(db: Session, session_id: str, limit: int = 100) -> tuple[Ticket | None, list[MessageMap]]:
    """Latest ticket of the session (closed included) and its messages, oldest first."""
    ticket = ticket_service.find_latest_by_web_session(db, session_id)
    if not ticket:
        return None, []
    return ticket, ticket_service.list_messages(db, ticket.id, limit=limit)


def issue_link_token(db: Session, session_id: str) -> WebLinkToken:
    """
    Issue a single-use token for the session's open ticket.

    Raises:
        NotFoundError: the session has no open ticket
    """
    ticket = ticket_service.find_by_web_session(db, session_id)
    if not ticket:
        raise NotFoundError("No open ticket for this session")
    return ticket_service.create_link_token(db, ticket.id, settings.LINK_TOKEN_TTL_MINUTES)


def _redeem(db: Session, session_id: str, token: str) -> Ticket:
    ticket = ticket_service.consume_link_token(db, token)
    return ticket_service.bind_web_session(db, ticket.id, session_id)


async def link_session(relay: RelayService, session_id: str, token: str) -> Ticket:
    """
    Bind a web session to the ticket a link token belongs to.

    Raises:
        InvalidTokenError: malformed, unknown, expired or used token
        ConflictError: the session already owns another open ticket
    """
    if not is_link_token(token):
        raise InvalidTokenError("Malformed link token")

    ticket = await run_in_session(relay.session_factory, _redeem, session_id, token)
    await relay.connections.bind(session_id, ticket.id)
    await relay.connections.send_to_session(
        session_id, "channel_linked", {"ticket_id": str(ticket.id), "status": ticket.status}
    )
    logger.info(
        "Web session linked",
        extra=build_log_context(ticket_id=ticket.id, thread_id=ticket.thread_id, session_id=session_id),
    )
    await relay.status.refresh_card(ticket)
    return ticket


async def attach_session(relay: RelayService, session_id: str) -> Ticket | None:
    """Route pushes for the session's open ticket (if any) to its sockets."""
    ticket = await run_in_session(relay.session_factory, ticket_service.find_by_web_session, session_id)
    if ticket:
        await relay.connections.bind(session_id, ticket.id)
    return ticket


async def send_message(relay: RelayService, session_id: str, text: str) -> dict:
    """
    Relay one widget message. Returns the acknowledgment payload.

    Raises:
        ValidationError: empty text
        MessageTooLongError: text over the length limit
        UpstreamUnavailableError: the message could not reach the thread
    """
    text = (text or "").strip()
    if not text:
        raise ValidationError("Message text is empty")
    if len(text) > settings.WS_MAX_MESSAGE_LENGTH:
        raise MessageTooLongError(f"Message text exceeds {settings.WS_MAX_MESSAGE_LENGTH} characters")

    row = await relay.handle_web_message(session_id, text)
    return chat_message_frame(row, "user", channel="web")


async def close(relay: RelayService, session_id: str, resolved: bool, feedback: str | None = None) -> bool:
    """Close the session's open ticket. Returns False when there was none."""
    result = await relay.close_from_web(session_id, resolved, feedback)
    return result is not None

