"""
Message relay between platform DMs, the web chat widget and operator threads.

Ordering rule: a ticket is made durable in the store before anything is
mirrored, and a failed mirror never undoes a store write. Mirroring is
at-least-once with no deduplication on the platform side.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from supportdesk.core import messages
from supportdesk.core.async_utils import run_in_session
from supportdesk.core.config import settings
from supportdesk.core.exceptions import (
    ConflictError,
    InvalidTokenError,
    InvalidTransitionError,
    PlatformAPIError,
    SupportDeskError,
    UpstreamUnavailableError,
)
from supportdesk.core.rate_limit import FixedWindowRateLimiter, user_limiter
from supportdesk.core.security import is_link_token
from supportdesk.core.structured_logging import build_log_context
from supportdesk.core.websocket import ConnectionManager
from supportdesk.db.enums import MessageChannel, MessageDirection, OnboardingStep, StatusTrigger, TicketStatus
from supportdesk.db.models import MessageMap, Ticket
from supportdesk.schemas.platform import CallbackQuery, PlatformMessage, PlatformUpdate, PlatformUser
from supportdesk.services import onboarding_service, redirect_context_service, ticket_service
from supportdesk.services.platform_client import PlatformClient
from supportdesk.services.status_service import (
    OPERATOR_STATUSES,
    StatusService,
    card_keyboard,
    format_ticket_card,
    format_ticket_history,
    timer_key,
)
from supportdesk.services.timer_service import TimerRegistry

logger = logging.getLogger(__name__)

DM_PREFIX = "[TG] "
WEB_PREFIX = "[WEB] "
MEDIA_PLACEHOLDER = "[attachment]"
IMAGE_PLACEHOLDER = "[image]"
VOICE_PLACEHOLDER = "[voice message]"


def is_internal_note(text: str | None, prefixes: tuple[str, ...] = ("//", "#internal")) -> bool:
    """Operator-only note that must never reach the customer."""
    if not text:
        return False
    return text.startswith(prefixes)


def is_automated_origin(sender_id: int | None, sender_is_bot: bool, own_id: int | None) -> bool:
    """True for messages the bot itself (or any other bot) produced."""
    if sender_is_bot:
        return True
    return own_id is not None and sender_id == own_id


def command_name(text: str | None) -> str | None:
    """Name of a slash command ("/history@SupportBot" -> "history"), else None."""
    if not text or not text.startswith("/"):
        return None
    return text.split(maxsplit=1)[0][1:].split("@", 1)[0].lower() or None


def web_thread_name(session_id: str) -> str:
    return f"Web: {session_id[:8]}"


def platform_thread_name(user: PlatformUser) -> str:
    return f"{user.display_name} ({user.id})"


def media_url(file_id: str) -> str:
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/chat/media/{file_id}"


def web_media_fields(message: PlatformMessage) -> dict:
    """Photo and voice links for the widget, served through the media proxy."""
    fields = {}
    if message.photo_file_id:
        fields["imageUrl"] = media_url(message.photo_file_id)
    voice = message.voice
    if voice and voice.get("file_id"):
        fields["voiceUrl"] = media_url(voice["file_id"])
        if voice.get("duration") is not None:
            fields["voiceDuration"] = voice["duration"]
    return fields


def media_placeholder(fields: dict) -> str:
    if "voiceUrl" in fields:
        return VOICE_PLACEHOLDER
    if "imageUrl" in fields:
        return IMAGE_PLACEHOLDER
    return MEDIA_PLACEHOLDER


def chat_message_frame(row: MessageMap, sender: str, **extra) -> dict:
    frame = {
        "id": str(row.id),
        "text": row.text,
        "from": sender,
        "timestamp": row.created_at.isoformat(),
    }
    frame.update(extra)
    return frame


class RelayService:
    """Routes conversation events across channels and drives status triggers."""

    def __init__(
        self,
        session_factory: sessionmaker,
        platform: PlatformClient,
        timers: TimerRegistry,
        connections: ConnectionManager,
        support_group_id: int | None = None,
        bot_id: int | None = None,
        limiter: FixedWindowRateLimiter = user_limiter,
        internal_note_prefixes: tuple[str, ...] | None = None,
    ):
        self.session_factory = session_factory
        self.platform = platform
        self.timers = timers
        self.connections = connections
        self.support_group_id = support_group_id if support_group_id is not None else settings.SUPPORT_GROUP_ID
        self.bot_id = bot_id
        self.limiter = limiter
        self.internal_note_prefixes = internal_note_prefixes or settings.internal_note_prefixes
        self.status = StatusService(
            session_factory, platform, timers, connections, self.support_group_id
        )

    async def _store(self, func, *args, **kwargs):
        return await run_in_session(self.session_factory, func, *args, **kwargs)

    async def _reply(self, chat_id: int, text: str, reply_markup: dict | None = None) -> None:
        try:
            await self.platform.send_message(chat_id, text, reply_markup=reply_markup)
        except UpstreamUnavailableError as e:
            logger.warning("Failed to reply to chat %s: %s", chat_id, e)

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def dispatch_update(self, update: PlatformUpdate) -> None:
        try:
            if update.message:
                if update.message.is_private:
                    await self.handle_private_message(update.message)
                elif update.message.chat.id == self.support_group_id:
                    await self.handle_thread_message(update.message)
            elif update.edited_message:
                if update.edited_message.is_private:
                    await self.handle_private_edit(update.edited_message)
                elif update.edited_message.chat.id == self.support_group_id:
                    await self.handle_thread_edit(update.edited_message)
            elif update.callback_query:
                await self.handle_callback(update.callback_query)
        except (SupportDeskError, SQLAlchemyError):
            logger.exception("Failed to process platform update %s", update.update_id)

    # =========================================================================
    # Customer side (platform DM)
    # =========================================================================

    async def handle_private_message(self, message: PlatformMessage) -> None:
        sender = message.from_user
        if sender is None or sender.is_bot:
            return

        rate = await self.limiter.check(sender.id)
        if not rate.allowed:
            await self._reply(message.chat.id, messages.RATE_LIMITED.format(seconds=rate.reset_in_seconds))
            return

        if not message.body and not message.has_media:
            return

        text = message.text or ""
        if text.startswith("/start"):
            await self._handle_start(message, sender, text[len("/start"):].strip())
            return
        if text.strip() == "/weblink":
            await self._handle_weblink(message, sender)
            return

        ticket = await self._store(ticket_service.find_by_identity, sender.id)
        if ticket is None:
            await self._open_from_platform(message, sender)
            return

        await self._mirror_customer_message(ticket, message)

    async def _handle_start(self, message: PlatformMessage, sender: PlatformUser, arg: str) -> None:
        if is_link_token(arg):
            await self._link_platform_account(message, sender, arg)
            return

        context = None
        if arg:
            context = await redirect_context_service.pop_redirect_data(arg)
            if context:
                await redirect_context_service.store_redirect_context(sender.id, context)

        state = onboarding_service.OnboardingState(
            step=OnboardingStep.AWAITING_QUESTION,
            source_url=context.source_url if context else None,
            source_city=context.source_city if context else None,
            question=context.question if context else None,
        )
        try:
            await onboarding_service.set_onboarding_state(sender.id, state)
        except UpstreamUnavailableError as e:
            logger.warning(
                "Onboarding state not stored: %s",
                e,
                extra=build_log_context(platform_user_id=sender.id),
            )
        await self._reply(message.chat.id, messages.WELCOME)

    async def _link_platform_account(self, message: PlatformMessage, sender: PlatformUser, token: str) -> None:
        try:
            ticket = await self._store(ticket_service.consume_link_token, token)
            ticket = await self._store(
                ticket_service.bind_platform_user, ticket.id, sender.id, sender.username
            )
        except (InvalidTokenError, ConflictError) as e:
            logger.info(
                "Platform link rejected: %s",
                type(e).__name__,
                extra=build_log_context(platform_user_id=sender.id),
            )
            await self._reply(message.chat.id, messages.LINK_INVALID)
            return

        logger.info(
            "Platform account linked",
            extra=build_log_context(ticket_id=ticket.id, platform_user_id=sender.id),
        )
        await self.connections.send_to_ticket(ticket.id, "channel_linked", {"channel": "platform"})
        await self.status.refresh_card(ticket)
        await self._reply(message.chat.id, messages.LINK_SUCCESS)

    async def _handle_weblink(self, message: PlatformMessage, sender: PlatformUser) -> None:
        ticket = await self._store(ticket_service.find_by_identity, sender.id)
        if ticket is None:
            await self._reply(message.chat.id, messages.WELCOME)
            return
        link = await self._store(
            ticket_service.create_link_token, ticket.id, settings.LINK_TOKEN_TTL_MINUTES
        )
        await self._reply(message.chat.id, messages.WEB_LINK_CODE.format(token=link.token))

    async def _open_from_platform(self, message: PlatformMessage, sender: PlatformUser) -> None:
        onboarding = await onboarding_service.get_onboarding_state(sender.id)
        redirect = await redirect_context_service.get_redirect_context(sender.id)
        source_url = (onboarding and onboarding.source_url) or (redirect and redirect.source_url) or None
        source_city = (onboarding and onboarding.source_city) or (redirect and redirect.source_city) or None
        landing_question = (onboarding and onboarding.question) or (redirect and redirect.question) or None

        try:
            topic = await self.platform.create_forum_topic(self.support_group_id, platform_thread_name(sender))
            ticket = await self._store(
                ticket_service.create_ticket,
                thread_id=topic["message_thread_id"],
                platform_user_id=sender.id,
                display_name=sender.display_name,
                username=sender.username,
                question=landing_question or message.body or None,
                source_url=source_url,
                source_city=source_city,
            )
        except ConflictError:
            # A concurrent message from the same user opened the ticket first
            ticket = await self._store(ticket_service.find_by_identity, sender.id)
            if ticket is None:
                await self._reply(message.chat.id, messages.TICKET_CREATE_ERROR)
                return
            await self._mirror_customer_message(ticket, message)
            return
        except (SupportDeskError, SQLAlchemyError) as e:
            logger.error(
                "Failed to open ticket: %s",
                type(e).__name__,
                extra=build_log_context(platform_user_id=sender.id),
            )
            await self._reply(message.chat.id, messages.TICKET_CREATE_ERROR)
            return

        logger.info(
            "Ticket opened from platform",
            extra=build_log_context(ticket_id=ticket.id, thread_id=ticket.thread_id, platform_user_id=sender.id),
        )
        await onboarding_service.clear_onboarding_state(sender.id)
        ticket = await self._post_card(ticket)
        if landing_question:
            await self.status.post_thread_notice(
                ticket, messages.LANDING_QUESTION.format(question=landing_question)
            )
        await self._start_sla(ticket)

        try:
            await self._forward_customer_message(ticket, message)
        except UpstreamUnavailableError as e:
            logger.warning(
                "Opening message not mirrored: %s",
                e,
                extra=build_log_context(ticket_id=ticket.id, thread_id=ticket.thread_id),
            )

        await self._reply(
            message.chat.id,
            messages.TICKET_CREATED,
            reply_markup={
                "inline_keyboard": [[{"text": messages.RESOLVE_BUTTON, "callback_data": f"resolve:{ticket.id}"}]]
            },
        )

    async def _mirror_customer_message(self, ticket: Ticket, message: PlatformMessage) -> None:
        try:
            await self._forward_customer_message(ticket, message)
        except PlatformAPIError as e:
            logger.warning(
                "Customer message not mirrored: %s",
                e,
                extra=build_log_context(ticket_id=ticket.id, thread_id=ticket.thread_id),
            )
            if e.is_rate_limited:
                await self._reply(
                    message.chat.id, messages.RATE_LIMITED.format(seconds=e.retry_after or 60)
                )
            else:
                await self._reply(message.chat.id, messages.DELIVERY_FAILED)
            return
        except UpstreamUnavailableError as e:
            logger.warning(
                "Customer message not mirrored: %s",
                e,
                extra=build_log_context(ticket_id=ticket.id, thread_id=ticket.thread_id),
            )
            await self._reply(message.chat.id, messages.DELIVERY_FAILED)
            return

        if ticket.status == TicketStatus.WAITING_CLIENT.value:
            await self.timers.cancel_autoclose_timer(timer_key(ticket))
        await self.status.apply_trigger(ticket.id, StatusTrigger.CLIENT_REPLY)

    def _dm_prefix(self, ticket: Ticket) -> str:
        return DM_PREFIX if ticket.web_session_id else ""

    async def _forward_customer_message(self, ticket: Ticket, message: PlatformMessage) -> MessageMap | None:
        """Copy a DM into the ticket thread and remember the pairing."""
        prefix = self._dm_prefix(ticket)
        if message.has_media:
            result = await self.platform.copy_message(
                self.support_group_id,
                message.chat.id,
                message.message_id,
                message_thread_id=ticket.thread_id,
                caption=f"{prefix}{message.caption}" if message.caption else None,
            )
        else:
            result = await self.platform.send_message(
                self.support_group_id,
                f"{prefix}{message.body}",
                message_thread_id=ticket.thread_id,
            )

        try:
            return await self._store(
                ticket_service.record_message,
                ticket_id=ticket.id,
                direction=MessageDirection.CUSTOMER_TO_SUPPORT,
                channel=MessageChannel.PLATFORM,
                customer_message_id=message.message_id,
                thread_message_id=result["message_id"],
                text=message.body or None,
            )
        except (SupportDeskError, SQLAlchemyError) as e:
            logger.warning(
                "Message mapping not stored: %s",
                type(e).__name__,
                extra=build_log_context(ticket_id=ticket.id, thread_id=ticket.thread_id),
            )
            return None

    async def handle_private_edit(self, message: PlatformMessage) -> None:
        sender = message.from_user
        if sender is None or sender.is_bot:
            return

        ticket = await self._store(ticket_service.find_by_identity, sender.id)
        if ticket is None:
            return
        row = await self._store(ticket_service.find_message_by_customer_id, ticket.id, message.message_id)
        if row is None or row.thread_message_id is None:
            return

        text = f"{self._dm_prefix(ticket)}{message.body}"
        try:
            if message.has_media:
                await self.platform.edit_message_caption(self.support_group_id, row.thread_message_id, text)
            else:
                await self.platform.edit_message_text(self.support_group_id, row.thread_message_id, text)
        except UpstreamUnavailableError as e:
            logger.warning(
                "Edit not mirrored to thread: %s",
                e,
                extra=build_log_context(ticket_id=ticket.id, thread_id=ticket.thread_id),
            )
            return
        await self._store(ticket_service.update_message_text, row.id, message.body)

    # =========================================================================
    # Operator side (forum thread)
    # =========================================================================

    def _is_relayable_thread_message(self, message: PlatformMessage) -> bool:
        sender = message.from_user
        if sender is None:
            return False
        if is_automated_origin(sender.id, sender.is_bot, self.bot_id):
            return False
        if message.thread_id is None:
            return False
        # Service updates (pins, topic edits) carry neither text nor media
        if not message.body and not message.has_media:
            return False
        return not is_internal_note(message.body, self.internal_note_prefixes)

    async def handle_thread_message(self, message: PlatformMessage) -> None:
        if not self._is_relayable_thread_message(message):
            return
        if command_name(message.text) == "history":
            await self._handle_history(message)
            return

        ticket = await self._store(ticket_service.find_by_thread, message.thread_id)
        if ticket is None:
            logger.warning("No ticket for thread", extra=build_log_context(thread_id=message.thread_id))
            return

        log_context = build_log_context(ticket_id=ticket.id, thread_id=ticket.thread_id)
        try:
            row = None
            if ticket.platform_user_id is not None:
                row = await self._forward_support_message(ticket, message)
            if ticket.web_session_id:
                await self._push_support_message(ticket, message, row)
        except PlatformAPIError as e:
            logger.warning("Support message not delivered: %s", e, extra=log_context)
            if e.is_bot_blocked:
                await self.status.post_thread_notice(ticket, messages.SUPPORT_BOT_BLOCKED)
            else:
                await self.status.post_thread_notice(
                    ticket, messages.SUPPORT_DELIVERY_FAILED.format(reason=e.description)
                )
            return
        except UpstreamUnavailableError as e:
            logger.warning("Support message not delivered: %s", e, extra=log_context)
            await self.status.post_thread_notice(
                ticket, messages.SUPPORT_DELIVERY_FAILED.format(reason="platform unavailable")
            )
            return

        await self.timers.cancel_all_sla_timers(timer_key(ticket))
        await self.status.apply_trigger(ticket.id, StatusTrigger.SUPPORT_REPLY)

    async def _handle_history(self, message: PlatformMessage) -> None:
        """Operator command: post the ticket's audit trail into its thread."""
        ticket = await self._store(ticket_service.find_by_thread, message.thread_id)
        if ticket is None:
            logger.warning("No ticket for thread", extra=build_log_context(thread_id=message.thread_id))
            return
        events = await self._store(ticket_service.list_events, ticket.id)
        await self.status.post_thread_notice(ticket, format_ticket_history(events))

    async def _forward_support_message(self, ticket: Ticket, message: PlatformMessage) -> MessageMap | None:
        if message.has_media:
            result = await self.platform.copy_message(
                ticket.platform_user_id, message.chat.id, message.message_id
            )
        else:
            result = await self.platform.send_message(ticket.platform_user_id, message.body)

        try:
            return await self._store(
                ticket_service.record_message,
                ticket_id=ticket.id,
                direction=MessageDirection.SUPPORT_TO_CUSTOMER,
                channel=MessageChannel.PLATFORM,
                customer_message_id=result["message_id"],
                thread_message_id=message.message_id,
                text=message.body or None,
            )
        except (SupportDeskError, SQLAlchemyError) as e:
            logger.warning(
                "Message mapping not stored: %s",
                type(e).__name__,
                extra=build_log_context(ticket_id=ticket.id, thread_id=ticket.thread_id),
            )
            return None

    async def _push_support_message(
        self, ticket: Ticket, message: PlatformMessage, row: MessageMap | None
    ) -> None:
        media = web_media_fields(message)
        if row is None:
            row = await self._store(
                ticket_service.record_message,
                ticket_id=ticket.id,
                direction=MessageDirection.SUPPORT_TO_CUSTOMER,
                channel=MessageChannel.WEB,
                thread_message_id=message.message_id,
                text=message.body or media_placeholder(media),
            )
        frame = chat_message_frame(row, "support", **media)
        frame["text"] = message.body or ("" if media else MEDIA_PLACEHOLDER)
        delivered = await self.connections.send_to_ticket(ticket.id, "message", frame)
        if not delivered:
            logger.info("No open web socket for ticket", extra=build_log_context(ticket_id=ticket.id))

    async def handle_thread_edit(self, message: PlatformMessage) -> None:
        if not self._is_relayable_thread_message(message):
            return

        ticket = await self._store(ticket_service.find_by_thread, message.thread_id)
        if ticket is None:
            return
        row = await self._store(ticket_service.find_message_by_thread_id, message.message_id)
        if row is None or row.ticket_id != ticket.id:
            return

        try:
            if row.channel == MessageChannel.PLATFORM.value and row.customer_message_id and ticket.platform_user_id:
                if message.has_media:
                    await self.platform.edit_message_caption(
                        ticket.platform_user_id, row.customer_message_id, message.body
                    )
                else:
                    await self.platform.edit_message_text(
                        ticket.platform_user_id, row.customer_message_id, message.body
                    )
        except UpstreamUnavailableError as e:
            logger.warning(
                "Edit not mirrored to customer: %s",
                e,
                extra=build_log_context(ticket_id=ticket.id, thread_id=ticket.thread_id),
            )
            return

        await self._store(ticket_service.update_message_text, row.id, message.body)
        if ticket.web_session_id:
            row.text = message.body
            await self.connections.send_to_ticket(
                ticket.id, "message", chat_message_frame(row, "support", edited=True)
            )

    # =========================================================================
    # Web side
    # =========================================================================

    async def handle_web_message(self, session_id: str, text: str) -> MessageMap:
        """
        Relay a widget message into the ticket thread, opening a ticket first if needed.

        Raises:
            UpstreamUnavailableError: the thread could not be reached or the ticket opened
        """
        ticket = await self._store(ticket_service.find_by_web_session, session_id)
        if ticket is None:
            ticket = await self._open_from_web(session_id, text)
        else:
            await self.connections.bind(session_id, ticket.id)

        log_context = build_log_context(ticket_id=ticket.id, thread_id=ticket.thread_id, session_id=session_id)
        result = await self.platform.send_message(
            self.support_group_id, f"{WEB_PREFIX}{text}", message_thread_id=ticket.thread_id
        )
        try:
            row = await self._store(
                ticket_service.record_message,
                ticket_id=ticket.id,
                direction=MessageDirection.CUSTOMER_TO_SUPPORT,
                channel=MessageChannel.WEB,
                thread_message_id=result["message_id"],
                text=text,
            )
        except SQLAlchemyError as e:
            logger.error("Web message mirrored but not stored: %s", type(e).__name__, extra=log_context)
            raise UpstreamUnavailableError("Message store unavailable") from e

        if ticket.status == TicketStatus.WAITING_CLIENT.value:
            await self.timers.cancel_autoclose_timer(timer_key(ticket))
        await self.status.apply_trigger(ticket.id, StatusTrigger.CLIENT_REPLY)
        return row

    async def _open_from_web(self, session_id: str, text: str) -> Ticket:
        log_context = build_log_context(session_id=session_id)
        try:
            topic = await self.platform.create_forum_topic(self.support_group_id, web_thread_name(session_id))
            ticket = await self._store(
                ticket_service.create_ticket,
                thread_id=topic["message_thread_id"],
                web_session_id=session_id,
                display_name=web_thread_name(session_id),
                question=text,
            )
        except ConflictError:
            ticket = await self._store(ticket_service.find_by_web_session, session_id)
            if ticket is None:
                raise UpstreamUnavailableError("Ticket could not be opened")
        except SQLAlchemyError as e:
            logger.error("Failed to open web ticket: %s", type(e).__name__, extra=log_context)
            raise UpstreamUnavailableError("Ticket could not be opened") from e
        else:
            logger.info(
                "Ticket opened from web chat",
                extra=build_log_context(ticket_id=ticket.id, thread_id=ticket.thread_id, session_id=session_id),
            )
            ticket = await self._post_card(ticket)
            await self._start_sla(ticket)

        await self.connections.bind(session_id, ticket.id)
        return ticket

    async def close_from_web(self, session_id: str, resolved: bool, feedback: str | None = None):
        """Customer closed the ticket from the widget. Returns the status change, or None."""
        ticket = await self._store(ticket_service.find_by_web_session, session_id)
        if ticket is None:
            return None

        notice = f"{WEB_PREFIX}{messages.WEB_CLOSED_BY_CUSTOMER.format(resolved='yes' if resolved else 'no')}"
        if feedback:
            notice = f"{notice}\n{messages.WEB_FEEDBACK.format(feedback=feedback)}"
        await self.status.post_thread_notice(ticket, notice)
        return await self.status.apply_trigger(ticket.id, StatusTrigger.CLIENT_RESOLVED)

    # =========================================================================
    # Ticket opening helpers
    # =========================================================================

    async def _post_card(self, ticket: Ticket) -> Ticket:
        """Post and pin the ticket card in its thread. Best-effort."""
        try:
            card = await self.platform.send_message(
                self.support_group_id,
                format_ticket_card(ticket),
                message_thread_id=ticket.thread_id,
                reply_markup=card_keyboard(ticket),
            )
        except UpstreamUnavailableError as e:
            logger.warning(
                "Ticket card not posted: %s",
                e,
                extra=build_log_context(ticket_id=ticket.id, thread_id=ticket.thread_id),
            )
            return ticket

        try:
            await self.platform.pin_chat_message(self.support_group_id, card["message_id"])
        except UpstreamUnavailableError as e:
            logger.warning("Ticket card not pinned: %s", e, extra=build_log_context(thread_id=ticket.thread_id))

        try:
            return await self._store(ticket_service.set_card_message_id, ticket.id, card["message_id"])
        except (SupportDeskError, SQLAlchemyError) as e:
            logger.warning("Card id not stored: %s", type(e).__name__, extra=build_log_context(ticket_id=ticket.id))
            return ticket

    async def _start_sla(self, ticket: Ticket) -> None:
        if not await self.timers.start_sla_timers(timer_key(ticket)):
            logger.warning(
                "SLA timers not fully armed",
                extra=build_log_context(ticket_id=ticket.id, thread_id=ticket.thread_id),
            )

    # =========================================================================
    # Callback buttons
    # =========================================================================

    async def handle_callback(self, callback: CallbackQuery) -> None:
        data = callback.data or ""
        if data.startswith("resolve:"):
            answer = await self._handle_resolve(callback, data.split(":", 1)[1])
        elif data.startswith("status:"):
            answer = await self._handle_operator_status(callback, data)
        else:
            answer = messages.CALLBACK_UNKNOWN

        try:
            await self.platform.answer_callback_query(callback.id, answer)
        except UpstreamUnavailableError as e:
            logger.warning("Callback not answered: %s", e)

    async def _handle_resolve(self, callback: CallbackQuery, raw_ticket_id: str) -> str:
        try:
            ticket_id = UUID(raw_ticket_id)
        except ValueError:
            return messages.CALLBACK_UNKNOWN

        ticket = await self._store(ticket_service.get_ticket, ticket_id)
        if ticket is None:
            return messages.CALLBACK_TICKET_NOT_FOUND
        if ticket.platform_user_id != callback.from_user.id:
            return messages.CALLBACK_NOT_YOUR_TICKET
        if ticket.is_closed:
            return messages.CALLBACK_ALREADY_CLOSED

        result = await self.status.apply_trigger(ticket.id, StatusTrigger.CLIENT_RESOLVED)
        if result is None:
            return messages.CALLBACK_STATUS_ERROR
        await self.status.post_thread_notice(result.ticket, messages.STATUS_CLIENT_CLOSED)
        return messages.CALLBACK_THANKS_CLOSED

    async def _handle_operator_status(self, callback: CallbackQuery, data: str) -> str:
        parts = data.split(":")
        if len(parts) != 3 or parts[1] not in OPERATOR_STATUSES:
            return messages.CALLBACK_UNKNOWN
        if callback.message is None or callback.message.chat.id != self.support_group_id:
            return messages.CALLBACK_UNKNOWN
        try:
            ticket_id = UUID(parts[2])
        except ValueError:
            return messages.CALLBACK_UNKNOWN

        new_status = parts[1]
        ticket = await self._store(ticket_service.get_ticket, ticket_id)
        if ticket is None:
            return messages.CALLBACK_TICKET_NOT_FOUND
        if ticket.status == new_status:
            return messages.CALLBACK_STATUS_ALREADY_SET

        try:
            result = await self.status.set_status(ticket_id, new_status)
        except (InvalidTransitionError, SQLAlchemyError) as e:
            logger.warning(
                "Operator status change rejected: %s",
                e,
                extra=build_log_context(ticket_id=ticket_id, thread_id=ticket.thread_id),
            )
            return messages.CALLBACK_STATUS_ERROR

        await self.status.post_thread_notice(
            result.ticket,
            messages.STATUS_CHANGED.format(
                old=messages.status_label(result.old_status),
                new=messages.status_label(result.new_status),
            ),
        )
        return messages.CALLBACK_STATUS_CHANGED.format(status=messages.status_label(new_status))
