"""Ticketing ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from supportdesk.db.base import Base
from supportdesk.db.enums import TicketStatus
from supportdesk.db.models._common import utcnow

_OPEN = text(f"status != '{TicketStatus.CLOSED.value}'")


class Ticket(Base):
    """
    One support conversation, mirrored into one forum thread.

    A ticket is born from a platform DM (platform_user_id) or from the web
    widget (web_session_id) and may carry both once linked. Each identity
    has at most one open ticket.
    """

    __tablename__ = "tickets"
    __table_args__ = (
        Index(
            "uq_tickets_open_platform_user",
            "platform_user_id",
            unique=True,
            postgresql_where=_OPEN,
            sqlite_where=_OPEN,
        ),
        Index(
            "uq_tickets_open_web_session",
            "web_session_id",
            unique=True,
            postgresql_where=_OPEN,
            sqlite_where=_OPEN,
        ),
        Index("idx_tickets_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    platform_user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    web_session_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        default=TicketStatus.NEW.value,
        server_default=text(f"'{TicketStatus.NEW.value}'"),
        nullable=False,
    )
    thread_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)
    card_message_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    # Attribution
    source_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_city: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )

    @property
    def is_closed(self) -> bool:
        return self.status == TicketStatus.CLOSED.value


class TicketEvent(Base):
    """Write-once audit trail entry for a ticket."""

    __tablename__ = "ticket_events"
    __table_args__ = (Index("idx_ticket_events_ticket_created", "ticket_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(30), nullable=False)
    old_value: Mapped[str | None] = mapped_column(String(255), nullable=True)
    new_value: Mapped[str | None] = mapped_column(String(255), nullable=True)
    question: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now(), nullable=False)


class MessageMap(Base):
    """Pairs a customer-side message with its thread-side counterpart for edits."""

    __tablename__ = "message_maps"
    __table_args__ = (
        UniqueConstraint("ticket_id", "customer_message_id", name="uq_message_maps_customer"),
        UniqueConstraint("ticket_id", "thread_message_id", name="uq_message_maps_thread"),
        Index("idx_message_maps_thread_message", "thread_message_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    direction: Mapped[str] = mapped_column(String(30), nullable=False)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    customer_message_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    thread_message_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    text: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now(), nullable=False)


class WebLinkToken(Base):
    """Single-use token that binds a web session to an existing ticket."""

    __tablename__ = "web_link_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now(), nullable=False)
