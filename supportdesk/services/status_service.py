"""
Ticket status changes with their side effects.

The store call is the source of truth and happens first. Timer updates,
socket pushes and the ticket card refresh follow and are best-effort: a
failure there is logged and never undoes the status change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from supportdesk.core import messages
from supportdesk.core.async_utils import run_in_session
from supportdesk.core.exceptions import (
    NotFoundError,
    RaceConditionNoop,
    SupportDeskError,
    UpstreamUnavailableError,
)
from supportdesk.core.structured_logging import build_log_context
from supportdesk.core.websocket import ConnectionManager
from supportdesk.db.enums import StatusTrigger, TicketEventType, TicketStatus
from supportdesk.db.models import Ticket, TicketEvent
from supportdesk.services import ticket_service
from supportdesk.services.platform_client import PlatformClient
from supportdesk.services.timer_service import TimerKey, TimerRegistry

logger = logging.getLogger(__name__)

OPERATOR_STATUSES = (
    TicketStatus.IN_PROGRESS.value,
    TicketStatus.WAITING_CLIENT.value,
    TicketStatus.CLOSED.value,
)


@dataclass
class StatusChangeResult:
    ticket: Ticket
    old_status: str
    new_status: str

    @property
    def changed(self) -> bool:
        return self.old_status != self.new_status


def resolve_trigger(current_status: str, trigger: StatusTrigger) -> str | None:
    """Target status for an automatic trigger, or None when it does not apply."""
    if trigger == StatusTrigger.SUPPORT_REPLY and current_status == TicketStatus.NEW.value:
        return TicketStatus.IN_PROGRESS.value
    if trigger == StatusTrigger.CLIENT_REPLY and current_status == TicketStatus.WAITING_CLIENT.value:
        return TicketStatus.IN_PROGRESS.value
    if trigger == StatusTrigger.CLIENT_RESOLVED and current_status != TicketStatus.CLOSED.value:
        return TicketStatus.CLOSED.value
    return None


def timer_key(ticket: Ticket) -> TimerKey:
    return TimerKey(ticket_id=ticket.id, thread_id=ticket.thread_id)


def format_ticket_card(ticket: Ticket) -> str:
    lines = ["Ticket", "", f"Customer: {ticket.display_name}"]
    if ticket.username:
        lines.append(f"Username: @{ticket.username}")
    if ticket.platform_user_id is not None:
        lines.append(f"Platform ID: {ticket.platform_user_id}")
    if ticket.web_session_id:
        lines.append(f"Web session: {ticket.web_session_id[:8]}")
    if ticket.source_url:
        lines.append(f"Source: {ticket.source_url}")
    if ticket.source_city:
        lines.append(f"City: {ticket.source_city}")
    lines.append(f"Created: {ticket.created_at:%Y-%m-%d %H:%M} UTC")
    lines.extend(["", f"Status: {messages.status_label(ticket.status)}"])
    return "\n".join(lines)


def _truncate(text: str, limit: int = 50) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def format_history_line(event: TicketEvent) -> str:
    line = f"• {event.created_at:%d.%m %H:%M} {messages.event_label(event.event_type)}"
    if event.event_type == TicketEventType.OPENED.value:
        return f'{line}: "{_truncate(event.question)}"' if event.question else line
    if event.event_type == TicketEventType.STATUS_CHANGED.value:
        old = messages.status_label(event.old_value) if event.old_value else "?"
        new = messages.status_label(event.new_value) if event.new_value else "?"
        return f"{line}: {old} -> {new}"
    return f"{line}: {event.new_value}" if event.new_value else line


def format_ticket_history(events: list[TicketEvent]) -> str:
    """Audit trail for the thread, oldest first (the store lists newest first)."""
    if not events:
        return messages.HISTORY_EMPTY
    lines = [format_history_line(event) for event in reversed(events)]
    return "\n".join([messages.HISTORY_TITLE, "", *lines])


def card_keyboard(ticket: Ticket) -> dict | None:
    if ticket.is_closed:
        return None
    buttons = [
        {
            "text": messages.status_label(status),
            "callback_data": f"status:{status}:{ticket.id}",
        }
        for status in OPERATOR_STATUSES
        if status != ticket.status
    ]
    return {"inline_keyboard": [buttons]}


def _transition(
    db: Session, ticket_id: UUID, new_status: str, expected_status: str | None = None
) -> StatusChangeResult:
    if expected_status is not None:
        ticket = ticket_service.change_status(db, ticket_id, new_status, expected_status=expected_status)
        return StatusChangeResult(ticket=ticket, old_status=expected_status, new_status=ticket.status)

    ticket = ticket_service.get_ticket(db, ticket_id)
    if not ticket:
        raise NotFoundError(f"Ticket {ticket_id} not found")
    old_status = ticket.status
    ticket = ticket_service.change_status(db, ticket_id, new_status)
    return StatusChangeResult(ticket=ticket, old_status=old_status, new_status=ticket.status)


def _apply_trigger(db: Session, ticket_id: UUID, trigger: StatusTrigger) -> StatusChangeResult | None:
    ticket = ticket_service.get_ticket(db, ticket_id)
    if not ticket:
        raise NotFoundError(f"Ticket {ticket_id} not found")
    target = resolve_trigger(ticket.status, trigger)
    if target is None:
        return None
    old_status = ticket.status
    ticket = ticket_service.change_status(db, ticket_id, target, expected_status=old_status)
    return StatusChangeResult(ticket=ticket, old_status=old_status, new_status=ticket.status)


class StatusService:
    """Applies status changes and keeps timers, sockets and the card in step."""

    def __init__(
        self,
        session_factory: sessionmaker,
        platform: PlatformClient,
        timers: TimerRegistry,
        connections: ConnectionManager,
        support_group_id: int,
    ):
        self.session_factory = session_factory
        self.platform = platform
        self.timers = timers
        self.connections = connections
        self.support_group_id = support_group_id

    async def set_status(
        self,
        ticket_id: UUID,
        new_status: TicketStatus | str,
        expected_status: TicketStatus | str | None = None,
    ) -> StatusChangeResult:
        """
        Operator or system status change.

        expected_status is compared in the same transaction as the write.

        Raises:
            NotFoundError: unknown ticket
            RaceConditionNoop: the ticket left expected_status before the write
            InvalidTransitionError: move not allowed
        """
        target = TicketStatus(new_status).value
        expected = TicketStatus(expected_status).value if expected_status is not None else None
        result = await run_in_session(self.session_factory, _transition, ticket_id, target, expected)
        if result.changed:
            await self._after_change(result)
        return result

    async def apply_trigger(self, ticket_id: UUID, trigger: StatusTrigger) -> StatusChangeResult | None:
        """Automatic change driven by conversation activity. Never raises."""
        try:
            result = await run_in_session(self.session_factory, _apply_trigger, ticket_id, trigger)
        except RaceConditionNoop as e:
            logger.info(
                "Skipped %s trigger: %s",
                trigger.value,
                e,
                extra=build_log_context(ticket_id=ticket_id),
            )
            return None
        except (SupportDeskError, SQLAlchemyError) as e:
            logger.error(
                "Failed to apply %s trigger: %s",
                trigger.value,
                type(e).__name__,
                extra=build_log_context(ticket_id=ticket_id),
            )
            return None
        if result is None:
            return None
        logger.info(
            "Auto status change %s -> %s (%s)",
            result.old_status,
            result.new_status,
            trigger.value,
            extra=build_log_context(ticket_id=ticket_id, thread_id=result.ticket.thread_id),
        )
        await self._after_change(result)
        return result

    async def _after_change(self, result: StatusChangeResult) -> None:
        ticket = result.ticket
        await self._sync_timers(ticket, result.old_status, result.new_status)

        if ticket.web_session_id:
            await self.connections.send_to_ticket(ticket.id, "status", {"status": result.new_status})

        await self.refresh_card(ticket)

    async def _sync_timers(self, ticket: Ticket, old_status: str, new_status: str) -> None:
        key = timer_key(ticket)
        if new_status == TicketStatus.CLOSED.value:
            await self.timers.cancel_all(key)
            return
        if old_status == TicketStatus.NEW.value:
            await self.timers.cancel_all_sla_timers(key)
        if old_status == TicketStatus.WAITING_CLIENT.value:
            await self.timers.cancel_autoclose_timer(key)
        if new_status == TicketStatus.WAITING_CLIENT.value:
            if not await self.timers.start_autoclose_timer(key):
                logger.warning(
                    "Auto-close timer not armed",
                    extra=build_log_context(ticket_id=ticket.id, thread_id=ticket.thread_id),
                )

    async def refresh_card(self, ticket: Ticket) -> None:
        if not ticket.card_message_id:
            return
        try:
            await self.platform.edit_message_text(
                self.support_group_id,
                ticket.card_message_id,
                format_ticket_card(ticket),
                reply_markup=card_keyboard(ticket),
            )
        except UpstreamUnavailableError as e:
            logger.warning(
                "Failed to update ticket card: %s",
                e,
                extra=build_log_context(ticket_id=ticket.id, thread_id=ticket.thread_id),
            )

    async def post_thread_notice(self, ticket: Ticket, text: str) -> None:
        try:
            await self.platform.send_message(
                self.support_group_id, text, message_thread_id=ticket.thread_id
            )
        except UpstreamUnavailableError as e:
            logger.warning(
                "Failed to post thread notice: %s",
                e,
                extra=build_log_context(ticket_id=ticket.id, thread_id=ticket.thread_id),
            )
