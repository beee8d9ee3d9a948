"""SLA reminder job handlers."""

from __future__ import annotations

import logging

from supportdesk.core import messages
from supportdesk.core.async_utils import run_in_session
from supportdesk.core.exceptions import RaceConditionNoop
from supportdesk.core.structured_logging import build_log_context
from supportdesk.db.enums import JobType, TicketStatus
from supportdesk.services import ticket_service
from supportdesk.services.timer_service import TimerKey

logger = logging.getLogger(__name__)

SLA_TEXTS = {  # templates, formatted with the configured delay
    JobType.SLA_FIRST.value: messages.SLA_FIRST,
    JobType.SLA_SECOND.value: messages.SLA_SECOND,
    JobType.SLA_ESCALATION.value: messages.SLA_ESCALATION,
}


def reminder_text(job_type: str, delay_seconds: int) -> str:
    return SLA_TEXTS[job_type].format(elapsed=messages.format_duration(delay_seconds))


async def process_sla_reminder(ctx, job) -> None:
    """Post an SLA reminder into the thread while the ticket still has no operator reply."""
    key = TimerKey.from_payload(job.payload or {})
    ticket = await run_in_session(ctx.session_factory, ticket_service.get_ticket, key.ticket_id)
    if ticket is None or ticket.thread_id != key.thread_id:
        raise RaceConditionNoop(f"Ticket {key.ticket_id} no longer owns thread {key.thread_id}")
    if ticket.status != TicketStatus.NEW.value:
        raise RaceConditionNoop(f"Ticket {ticket.id} is {ticket.status}")

    logger.info(
        "Sending SLA reminder",
        extra=build_log_context(ticket_id=ticket.id, thread_id=ticket.thread_id, purpose=job.job_type),
    )
    await ctx.platform.send_message(
        ctx.support_group_id,
        reminder_text(job.job_type, ctx.timers.delay_for(JobType(job.job_type))),
        message_thread_id=ticket.thread_id,
    )
