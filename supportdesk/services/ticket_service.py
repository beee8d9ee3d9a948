"""Ticket store - the only writer of ticket status and the audit trail."""

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from supportdesk.core.exceptions import (
    ConflictError,
    InvalidTokenError,
    InvalidTransitionError,
    NotFoundError,
    RaceConditionNoop,
    ValidationError,
)
from supportdesk.core.security import generate_link_token
from supportdesk.db.enums import MessageChannel, MessageDirection, TicketEventType, TicketStatus
from supportdesk.db.models import MessageMap, Ticket, TicketEvent, WebLinkToken

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    TicketStatus.NEW.value: frozenset(
        {TicketStatus.IN_PROGRESS.value, TicketStatus.WAITING_CLIENT.value, TicketStatus.CLOSED.value}
    ),
    TicketStatus.IN_PROGRESS.value: frozenset(
        {TicketStatus.WAITING_CLIENT.value, TicketStatus.CLOSED.value}
    ),
    TicketStatus.WAITING_CLIENT.value: frozenset(
        {TicketStatus.IN_PROGRESS.value, TicketStatus.CLOSED.value}
    ),
    TicketStatus.CLOSED.value: frozenset(),
}


def _status_value(status: TicketStatus | str) -> str:
    try:
        return TicketStatus(status).value
    except ValueError as exc:
        raise ValidationError(f"Unknown ticket status: {status}") from exc


def can_transition(old_status: str, new_status: str) -> bool:
    return new_status in ALLOWED_TRANSITIONS.get(old_status, frozenset())


# =============================================================================
# Lookups
# =============================================================================


def get_ticket(db: Session, ticket_id: UUID) -> Ticket | None:
    return db.query(Ticket).filter(Ticket.id == ticket_id).first()


def find_by_identity(db: Session, platform_user_id: int) -> Ticket | None:
    """Open ticket of a platform user, if any."""
    return (
        db.query(Ticket)
        .filter(
            Ticket.platform_user_id == platform_user_id,
            Ticket.status != TicketStatus.CLOSED.value,
        )
        .first()
    )


def find_by_web_session(db: Session, session_id: str) -> Ticket | None:
    """Open ticket bound to a web chat session, if any."""
    return (
        db.query(Ticket)
        .filter(
            Ticket.web_session_id == session_id,
            Ticket.status != TicketStatus.CLOSED.value,
        )
        .first()
    )


def find_latest_by_web_session(db: Session, session_id: str) -> Ticket | None:
    """Most recent ticket of a web session, closed or not."""
    return (
        db.query(Ticket)
        .filter(Ticket.web_session_id == session_id)
        .order_by(Ticket.created_at.desc())
        .first()
    )


def find_by_thread(db: Session, thread_id: int) -> Ticket | None:
    return db.query(Ticket).filter(Ticket.thread_id == thread_id).first()


# =============================================================================
# Lifecycle
# =============================================================================


def create_ticket(
    db: Session,
    *,
    thread_id: int,
    display_name: str,
    platform_user_id: int | None = None,
    web_session_id: str | None = None,
    username: str | None = None,
    question: str | None = None,
    source_url: str | None = None,
    source_city: str | None = None,
) -> Ticket:
    """
    Create a ticket and its OPENED event in one transaction.

    Raises:
        ValidationError: no identity given
        ConflictError: identity already has an open ticket, or thread is bound
    """
    if platform_user_id is None and not web_session_id:
        raise ValidationError("A ticket needs a platform user or a web session")

    if platform_user_id is not None and find_by_identity(db, platform_user_id):
        raise ConflictError(f"Platform user {platform_user_id} already has an open ticket")
    if web_session_id and find_by_web_session(db, web_session_id):
        raise ConflictError("Web session already has an open ticket")
    if find_by_thread(db, thread_id):
        raise ConflictError(f"Thread {thread_id} is already bound to a ticket")

    ticket = Ticket(
        platform_user_id=platform_user_id,
        web_session_id=web_session_id,
        display_name=display_name,
        username=username,
        status=TicketStatus.NEW.value,
        thread_id=thread_id,
        source_url=source_url,
        source_city=source_city,
    )
    try:
        db.add(ticket)
        db.flush()
        db.add(
            TicketEvent(
                ticket_id=ticket.id,
                event_type=TicketEventType.OPENED.value,
                new_value=TicketStatus.NEW.value,
                question=question,
                source_url=source_url,
            )
        )
        db.commit()
    except IntegrityError as exc:
        # Lost a race against a concurrent open for the same identity or thread
        db.rollback()
        raise ConflictError("Ticket identity or thread is already bound") from exc
    except Exception:
        db.rollback()
        raise

    db.refresh(ticket)
    return ticket


def change_status(
    db: Session,
    ticket_id: UUID,
    new_status: TicketStatus | str,
    expected_status: TicketStatus | str | None = None,
) -> Ticket:
    """
    Move a ticket to a new status and append one STATUS_CHANGED event.

    Setting the current status again is a no-op without an event. With
    expected_status the move only happens if the ticket is still in that
    status when read inside this transaction.

    Raises:
        NotFoundError: unknown ticket
        RaceConditionNoop: the ticket is no longer in expected_status
        InvalidTransitionError: move not allowed from the current status
    """
    target = _status_value(new_status)
    query = db.query(Ticket).filter(Ticket.id == ticket_id)
    if expected_status is not None:
        query = query.with_for_update().populate_existing()
    ticket = query.first()
    if not ticket:
        raise NotFoundError(f"Ticket {ticket_id} not found")

    old_status = ticket.status
    if expected_status is not None and old_status != _status_value(expected_status):
        db.rollback()
        raise RaceConditionNoop(f"Ticket {ticket_id} is {old_status}, expected {_status_value(expected_status)}")
    if old_status == target:
        return ticket
    if not can_transition(old_status, target):
        raise InvalidTransitionError(old_status, target)

    try:
        ticket.status = target
        db.add(
            TicketEvent(
                ticket_id=ticket.id,
                event_type=TicketEventType.STATUS_CHANGED.value,
                old_value=old_status,
                new_value=target,
            )
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(f"Ticket {ticket_id} status change conflicted") from exc
    except Exception:
        db.rollback()
        raise

    db.refresh(ticket)
    logger.info("Ticket %s status %s -> %s", ticket.id, old_status, target)
    return ticket


def list_events(db: Session, ticket_id: UUID) -> list[TicketEvent]:
    """Audit trail, newest first."""
    return (
        db.query(TicketEvent)
        .filter(TicketEvent.ticket_id == ticket_id)
        .order_by(TicketEvent.created_at.desc(), TicketEvent.id.desc())
        .all()
    )


def set_card_message_id(db: Session, ticket_id: UUID, message_id: int) -> Ticket:
    ticket = get_ticket(db, ticket_id)
    if not ticket:
        raise NotFoundError(f"Ticket {ticket_id} not found")
    ticket.card_message_id = message_id
    db.commit()
    db.refresh(ticket)
    return ticket


# =============================================================================
# Identity linking
# =============================================================================


def _append_linked_event(db: Session, ticket: Ticket, old_value: str | None, new_value: str) -> None:
    db.add(
        TicketEvent(
            ticket_id=ticket.id,
            event_type=TicketEventType.LINKED.value,
            old_value=old_value,
            new_value=new_value,
        )
    )


def _linkable_ticket(db: Session, ticket_id: UUID) -> Ticket:
    ticket = get_ticket(db, ticket_id)
    if not ticket:
        raise NotFoundError(f"Ticket {ticket_id} not found")
    if ticket.is_closed:
        raise ValidationError(f"Ticket {ticket_id} is closed")
    return ticket


def bind_web_session(db: Session, ticket_id: UUID, session_id: str) -> Ticket:
    """Attach a web chat session to an open ticket."""
    ticket = _linkable_ticket(db, ticket_id)
    if ticket.web_session_id == session_id:
        return ticket
    if ticket.web_session_id:
        raise ConflictError(f"Ticket {ticket_id} is bound to another web session")
    other = find_by_web_session(db, session_id)
    if other and other.id != ticket.id:
        raise ConflictError("Web session already has an open ticket")

    try:
        ticket.web_session_id = session_id
        _append_linked_event(db, ticket, None, f"web:{session_id}")
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Web session already has an open ticket") from exc
    db.refresh(ticket)
    return ticket


def bind_platform_user(
    db: Session,
    ticket_id: UUID,
    platform_user_id: int,
    username: str | None = None,
) -> Ticket:
    """Attach a platform account to an open ticket. The platform id never changes once set."""
    ticket = _linkable_ticket(db, ticket_id)
    if ticket.platform_user_id == platform_user_id:
        return ticket
    if ticket.platform_user_id is not None:
        raise ConflictError(f"Ticket {ticket_id} is bound to another platform user")
    other = find_by_identity(db, platform_user_id)
    if other and other.id != ticket.id:
        raise ConflictError(f"Platform user {platform_user_id} already has an open ticket")

    try:
        ticket.platform_user_id = platform_user_id
        if username and not ticket.username:
            ticket.username = username
        _append_linked_event(db, ticket, None, f"platform:{platform_user_id}")
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(f"Platform user {platform_user_id} already has an open ticket") from exc
    db.refresh(ticket)
    return ticket


# =============================================================================
# Link tokens
# =============================================================================


def create_link_token(db: Session, ticket_id: UUID, ttl_minutes: int = 60) -> WebLinkToken:
    _linkable_ticket(db, ticket_id)
    link = WebLinkToken(
        ticket_id=ticket_id,
        token=generate_link_token(),
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=ttl_minutes),
    )
    db.add(link)
    db.commit()
    db.refresh(link)
    return link


def find_valid_link_token(db: Session, token: str) -> WebLinkToken | None:
    """Token that is neither expired nor used."""
    return (
        db.query(WebLinkToken)
        .filter(
            WebLinkToken.token == token,
            WebLinkToken.expires_at > datetime.now(timezone.utc),
            WebLinkToken.used_at.is_(None),
        )
        .first()
    )


def consume_link_token(db: Session, token: str) -> Ticket:
    """
    Mark a link token used and return its open ticket.

    The used_at condition makes concurrent consumers race on one UPDATE,
    so a token is redeemed at most once.

    Raises:
        InvalidTokenError: unknown, expired, used, or ticket already closed
    """
    link = find_valid_link_token(db, token)
    if not link:
        raise InvalidTokenError("Link token is invalid, expired or already used")

    ticket = get_ticket(db, link.ticket_id)
    if not ticket or ticket.is_closed:
        raise InvalidTokenError("Link token points to a closed ticket")

    result = db.execute(
        update(WebLinkToken)
        .where(WebLinkToken.id == link.id, WebLinkToken.used_at.is_(None))
        .values(used_at=datetime.now(timezone.utc))
    )
    if result.rowcount != 1:
        db.rollback()
        raise InvalidTokenError("Link token was already used")
    db.commit()
    return ticket


# =============================================================================
# Message mapping (edit propagation and web history)
# =============================================================================


def record_message(
    db: Session,
    *,
    ticket_id: UUID,
    direction: MessageDirection,
    channel: MessageChannel,
    customer_message_id: int | None = None,
    thread_message_id: int | None = None,
    text: str | None = None,
) -> MessageMap:
    row = MessageMap(
        ticket_id=ticket_id,
        direction=direction.value,
        channel=channel.value,
        customer_message_id=customer_message_id,
        thread_message_id=thread_message_id,
        text=text,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def find_message_by_customer_id(db: Session, ticket_id: UUID, customer_message_id: int) -> MessageMap | None:
    return (
        db.query(MessageMap)
        .filter(
            MessageMap.ticket_id == ticket_id,
            MessageMap.customer_message_id == customer_message_id,
        )
        .first()
    )


def find_message_by_thread_id(db: Session, thread_message_id: int) -> MessageMap | None:
    return (
        db.query(MessageMap)
        .filter(MessageMap.thread_message_id == thread_message_id)
        .order_by(MessageMap.created_at.desc())
        .first()
    )


def update_message_text(db: Session, message_id: UUID, text: str) -> None:
    row = db.query(MessageMap).filter(MessageMap.id == message_id).first()
    if row:
        row.text = text
        db.commit()


def list_messages(db: Session, ticket_id: UUID, limit: int = 100) -> list[MessageMap]:
    """Conversation history, oldest first."""
    rows = (
        db.query(MessageMap)
        .filter(MessageMap.ticket_id == ticket_id)
        .order_by(MessageMap.created_at.desc())
        .limit(limit)
        .all()
    )
    return list(reversed(rows))
