"""Auto-close job handler."""

from __future__ import annotations

import logging

from supportdesk.core import messages
from supportdesk.core.async_utils import run_in_session
from supportdesk.core.exceptions import RaceConditionNoop, UpstreamUnavailableError
from supportdesk.core.structured_logging import build_log_context
from supportdesk.db.enums import JobType, TicketStatus
from supportdesk.services import ticket_service
from supportdesk.services.timer_service import TimerKey

logger = logging.getLogger(__name__)


async def process_autoclose(ctx, job) -> None:
    """Close a ticket that is still waiting on the customer, then tell everyone."""
    key = TimerKey.from_payload(job.payload or {})
    ticket = await run_in_session(ctx.session_factory, ticket_service.get_ticket, key.ticket_id)
    if ticket is None or ticket.thread_id != key.thread_id:
        raise RaceConditionNoop(f"Ticket {key.ticket_id} no longer owns thread {key.thread_id}")
    if ticket.status != TicketStatus.WAITING_CLIENT.value:
        raise RaceConditionNoop(f"Ticket {ticket.id} is {ticket.status}")

    # A customer reply between the read above and this write wins
    result = await ctx.status.set_status(
        ticket.id, TicketStatus.CLOSED, expected_status=TicketStatus.WAITING_CLIENT
    )
    log_context = build_log_context(ticket_id=ticket.id, thread_id=ticket.thread_id, purpose=JobType.AUTOCLOSE.value)
    logger.info("Ticket auto-closed", extra=log_context)

    if ticket.platform_user_id is not None:
        try:
            await ctx.platform.send_message(ticket.platform_user_id, messages.AUTOCLOSE_CLIENT)
        except UpstreamUnavailableError as e:
            logger.warning("Auto-close notice not delivered: %s", e, extra=log_context)

    if ticket.web_session_id:
        await ctx.connections.send_to_ticket(
            ticket.id, "message", {"text": messages.AUTOCLOSE_CLIENT, "from": "system"}
        )

    elapsed = messages.format_duration(ctx.timers.delay_for(JobType.AUTOCLOSE))
    await ctx.status.post_thread_notice(result.ticket, messages.AUTOCLOSE_THREAD.format(elapsed=elapsed))
