import re

import pytest

from conftest import BOT_ID, GROUP_ID, OPERATOR_ID, FakeWebSocket, failing, new_session_id, private_message, thread_message
from supportdesk.core import messages
from supportdesk.core.exceptions import UpstreamUnavailableError
from supportdesk.core.rate_limit import FixedWindowRateLimiter
from supportdesk.db.enums import JobStatus, JobType, MessageChannel, TicketEventType, TicketStatus
from supportdesk.schemas.platform import PlatformUpdate
from supportdesk.services import job_service, onboarding_service, redirect_context_service, ticket_service, web_chat_service
from supportdesk.services.redirect_context_service import RedirectContext
from supportdesk.services.status_service import format_ticket_history
from supportdesk.services.relay_service import command_name, is_automated_origin, is_internal_note

USER_ID = 42


def _update(**kwargs) -> PlatformUpdate:
    return PlatformUpdate.model_validate({"update_id": 1, **kwargs})


async def _open_platform_ticket(relay, fetch, text="Where is my order?", message_id=10):
    await relay.dispatch_update(_update(message=private_message(USER_ID, message_id, text)))
    return fetch(ticket_service.find_by_identity, USER_ID)


async def _operator_says(relay, ticket, message_id=3000, text="How can we help?", **kwargs):
    await relay.dispatch_update(_update(message=thread_message(ticket.thread_id, message_id, text, **kwargs)))


def _callback(data, from_id, chat_id=GROUP_ID, chat_type="supergroup"):
    return _update(
        callback_query={
            "id": "cb-1",
            "from": {"id": from_id, "first_name": "Someone"},
            "data": data,
            "message": {"message_id": 1, "chat": {"id": chat_id, "type": chat_type}},
        }
    )


def _pending(fetch, job_type=None):
    return fetch(job_service.list_jobs, status=JobStatus.PENDING, job_type=job_type)


# =============================================================================
# Filters
# =============================================================================


def test_internal_note_prefixes_are_exact_and_case_sensitive():
    assert is_internal_note("// call the warehouse")
    assert is_internal_note("#internal refund approved")
    assert not is_internal_note("#Internal refund approved")
    assert not is_internal_note(" // leading space")
    assert not is_internal_note(None)


def test_automated_origin():
    assert is_automated_origin(5, True, BOT_ID)
    assert is_automated_origin(BOT_ID, False, BOT_ID)
    assert not is_automated_origin(OPERATOR_ID, False, BOT_ID)
    assert not is_automated_origin(OPERATOR_ID, False, None)


# =============================================================================
# Customer DMs
# =============================================================================


@pytest.mark.asyncio
async def test_first_dm_opens_ticket_posts_card_and_mirrors(relay, platform, fetch):
    ticket = await _open_platform_ticket(relay, fetch)

    assert ticket.status == TicketStatus.NEW.value
    assert ticket.display_name == "Anna"
    assert platform.calls_for("create_forum_topic")[0]["name"] == "Anna (42)"

    thread_posts = [c for c in platform.calls_for("send_message") if c["chat_id"] == GROUP_ID]
    card, mirrored = thread_posts
    assert card["message_thread_id"] == ticket.thread_id
    assert "Customer: Anna" in card["text"]
    assert card["reply_markup"]["inline_keyboard"][0]
    assert mirrored["text"] == "Where is my order?"
    assert platform.calls_for("pin_chat_message")[0]["message_id"] == ticket.card_message_id

    reply = [c for c in platform.calls_for("send_message") if c["chat_id"] == USER_ID][0]
    assert reply["text"] == messages.TICKET_CREATED
    assert reply["reply_markup"]["inline_keyboard"][0][0]["callback_data"] == f"resolve:{ticket.id}"

    assert sorted(job.job_type for job in _pending(fetch)) == ["sla-escalation", "sla-first", "sla-second"]
    assert fetch(ticket_service.find_message_by_customer_id, ticket.id, 10) is not None


@pytest.mark.asyncio
async def test_follow_up_dm_is_mirrored_without_new_thread(relay, platform, fetch):
    ticket = await _open_platform_ticket(relay, fetch)

    await relay.dispatch_update(_update(message=private_message(USER_ID, 11, "Any news?")))

    assert len(platform.calls_for("create_forum_topic")) == 1
    assert platform.sent_texts(GROUP_ID)[-1] == "Any news?"
    assert fetch(ticket_service.get_ticket, ticket.id).status == TicketStatus.NEW.value


@pytest.mark.asyncio
async def test_media_dm_is_copied_with_caption(relay, platform, fetch):
    ticket = await _open_platform_ticket(relay, fetch)

    photo = private_message(USER_ID, 12, None, photo=[{"file_id": "abc"}], caption="receipt")
    await relay.dispatch_update(_update(message=photo))

    copied = platform.calls_for("copy_message")[-1]
    assert copied["chat_id"] == GROUP_ID
    assert copied["from_chat_id"] == USER_ID
    assert copied["message_id"] == 12
    assert copied["message_thread_id"] == ticket.thread_id
    assert copied["caption"] == "receipt"


@pytest.mark.asyncio
async def test_user_rate_limit_blocks_second_message(relay_factory, platform, fake_redis, fetch):
    limiter = FixedWindowRateLimiter("rate:user:", 1, 60, client_factory=lambda: fake_redis)
    relay = relay_factory(limiter=limiter)

    await _open_platform_ticket(relay, fetch)
    await relay.dispatch_update(_update(message=private_message(USER_ID, 11, "again")))

    assert platform.sent_texts(USER_ID)[-1] == messages.RATE_LIMITED.format(seconds=60)
    assert "again" not in platform.sent_texts(GROUP_ID)


@pytest.mark.asyncio
async def test_bot_authored_dm_is_ignored(relay, platform):
    message = private_message(USER_ID, 10)
    message["from"]["is_bot"] = True

    await relay.dispatch_update(_update(message=message))

    assert platform.calls == []


@pytest.mark.asyncio
async def test_mirror_failure_tells_customer(relay, platform, fetch):
    await _open_platform_ticket(relay, fetch)
    platform.fail("send_message", failing("Bad Request: message thread not found"), chat_id=GROUP_ID)

    await relay.dispatch_update(_update(message=private_message(USER_ID, 11, "hello?")))

    assert platform.sent_texts(USER_ID)[-1] == messages.DELIVERY_FAILED


@pytest.mark.asyncio
async def test_platform_throttling_tells_customer_to_wait(relay, platform, fetch):
    await _open_platform_ticket(relay, fetch)
    platform.fail("send_message", failing("Too Many Requests", code=429), chat_id=GROUP_ID)

    await relay.dispatch_update(_update(message=private_message(USER_ID, 11, "hello?")))

    assert platform.sent_texts(USER_ID)[-1] == messages.RATE_LIMITED.format(seconds=60)


@pytest.mark.asyncio
async def test_private_edit_is_propagated_to_thread(relay, platform, fetch):
    ticket = await _open_platform_ticket(relay, fetch)
    row = fetch(ticket_service.find_message_by_customer_id, ticket.id, 10)

    await relay.dispatch_update(_update(edited_message=private_message(USER_ID, 10, "Where is order #5?")))

    edit = platform.calls_for("edit_message_text")[-1]
    assert edit["chat_id"] == GROUP_ID
    assert edit["message_id"] == row.thread_message_id
    assert edit["text"] == "Where is order #5?"
    assert fetch(ticket_service.find_message_by_customer_id, ticket.id, 10).text == "Where is order #5?"


@pytest.mark.asyncio
async def test_edit_of_unknown_message_is_ignored(relay, platform, fetch):
    await _open_platform_ticket(relay, fetch)
    before = len(platform.calls)

    await relay.dispatch_update(_update(edited_message=private_message(USER_ID, 999, "edited")))

    assert len(platform.calls) == before


# =============================================================================
# Operator thread
# =============================================================================


@pytest.mark.asyncio
async def test_operator_reply_reaches_customer_and_starts_work(relay, platform, fetch):
    ticket = await _open_platform_ticket(relay, fetch)

    await _operator_says(relay, ticket)

    assert platform.sent_texts(USER_ID)[-1] == "How can we help?"
    assert fetch(ticket_service.get_ticket, ticket.id).status == TicketStatus.IN_PROGRESS.value
    assert _pending(fetch) == []
    card_edit = platform.calls_for("edit_message_text")[-1]
    assert card_edit["message_id"] == ticket.card_message_id
    assert "Status: In progress" in card_edit["text"]


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["// check the invoice", "#internal refund approved"])
async def test_internal_notes_stay_in_thread(relay, platform, fetch, text):
    ticket = await _open_platform_ticket(relay, fetch)
    before = platform.sent_texts(USER_ID)

    await _operator_says(relay, ticket, text=text)

    assert platform.sent_texts(USER_ID) == before
    assert fetch(ticket_service.get_ticket, ticket.id).status == TicketStatus.NEW.value


@pytest.mark.asyncio
@pytest.mark.parametrize("sender_id,is_bot", [(BOT_ID, False), (555, True)])
async def test_bot_echo_in_thread_is_ignored(relay, platform, fetch, sender_id, is_bot):
    ticket = await _open_platform_ticket(relay, fetch)
    before = platform.sent_texts(USER_ID)

    await _operator_says(relay, ticket, sender_id=sender_id, is_bot=is_bot)

    assert platform.sent_texts(USER_ID) == before


@pytest.mark.asyncio
async def test_group_message_outside_topic_is_ignored(relay, platform, fetch):
    ticket = await _open_platform_ticket(relay, fetch)
    before = platform.sent_texts(USER_ID)

    await _operator_says(relay, ticket, is_topic_message=False)

    assert platform.sent_texts(USER_ID) == before


@pytest.mark.asyncio
async def test_blocked_bot_posts_notice_and_keeps_status(relay, platform, fetch):
    ticket = await _open_platform_ticket(relay, fetch)
    platform.fail(
        "send_message", failing("Forbidden: bot was blocked by the user", code=403), chat_id=USER_ID
    )

    await _operator_says(relay, ticket)

    assert platform.sent_texts(GROUP_ID)[-1] == messages.SUPPORT_BOT_BLOCKED
    assert fetch(ticket_service.get_ticket, ticket.id).status == TicketStatus.NEW.value
    assert len(_pending(fetch)) == 3


@pytest.mark.asyncio
async def test_operator_edit_is_propagated_to_customer(relay, platform, fetch):
    ticket = await _open_platform_ticket(relay, fetch)
    await _operator_says(relay, ticket, message_id=3000)
    row = fetch(ticket_service.find_message_by_thread_id, 3000)

    edited = thread_message(ticket.thread_id, 3000, "How can we help you today?")
    await relay.dispatch_update(_update(edited_message=edited))

    edit = platform.calls_for("edit_message_text")[-1]
    assert edit["chat_id"] == USER_ID
    assert edit["message_id"] == row.customer_message_id
    assert edit["text"] == "How can we help you today?"


@pytest.mark.asyncio
async def test_customer_reply_while_waiting_resumes_work(relay, platform, fetch):
    ticket = await _open_platform_ticket(relay, fetch)
    await relay.dispatch_update(_callback(f"status:WAITING_CLIENT:{ticket.id}", OPERATOR_ID))
    assert len(_pending(fetch, JobType.AUTOCLOSE)) == 1

    await relay.dispatch_update(_update(message=private_message(USER_ID, 11, "Here are the details")))

    assert fetch(ticket_service.get_ticket, ticket.id).status == TicketStatus.IN_PROGRESS.value
    assert _pending(fetch, JobType.AUTOCLOSE) == []


# =============================================================================
# Callback buttons
# =============================================================================


@pytest.mark.asyncio
async def test_operator_status_button(relay, platform, fetch):
    ticket = await _open_platform_ticket(relay, fetch)

    await relay.dispatch_update(_callback(f"status:WAITING_CLIENT:{ticket.id}", OPERATOR_ID))

    assert fetch(ticket_service.get_ticket, ticket.id).status == TicketStatus.WAITING_CLIENT.value
    answer = platform.calls_for("answer_callback_query")[-1]
    assert answer["text"] == messages.CALLBACK_STATUS_CHANGED.format(status="Waiting for customer")
    assert platform.sent_texts(GROUP_ID)[-1] == messages.STATUS_CHANGED.format(
        old="New", new="Waiting for customer"
    )
    assert [job.job_type for job in _pending(fetch)] == ["autoclose"]


@pytest.mark.asyncio
async def test_operator_button_for_current_status(relay, platform, fetch):
    ticket = await _open_platform_ticket(relay, fetch)
    await relay.dispatch_update(_callback(f"status:IN_PROGRESS:{ticket.id}", OPERATOR_ID))

    await relay.dispatch_update(_callback(f"status:IN_PROGRESS:{ticket.id}", OPERATOR_ID))

    assert platform.calls_for("answer_callback_query")[-1]["text"] == messages.CALLBACK_STATUS_ALREADY_SET


@pytest.mark.asyncio
async def test_operator_button_outside_support_group_is_rejected(relay, platform, fetch):
    ticket = await _open_platform_ticket(relay, fetch)

    await relay.dispatch_update(
        _callback(f"status:CLOSED:{ticket.id}", USER_ID, chat_id=USER_ID, chat_type="private")
    )

    assert platform.calls_for("answer_callback_query")[-1]["text"] == messages.CALLBACK_UNKNOWN
    assert fetch(ticket_service.get_ticket, ticket.id).status == TicketStatus.NEW.value


@pytest.mark.asyncio
async def test_customer_resolve_button_closes_ticket(relay, platform, fetch):
    ticket = await _open_platform_ticket(relay, fetch)

    await relay.dispatch_update(_callback(f"resolve:{ticket.id}", USER_ID, chat_id=USER_ID, chat_type="private"))

    assert fetch(ticket_service.get_ticket, ticket.id).status == TicketStatus.CLOSED.value
    assert platform.calls_for("answer_callback_query")[-1]["text"] == messages.CALLBACK_THANKS_CLOSED
    assert platform.sent_texts(GROUP_ID)[-1] == messages.STATUS_CLIENT_CLOSED
    assert _pending(fetch) == []


@pytest.mark.asyncio
async def test_resolve_button_of_someone_else(relay, platform, fetch):
    ticket = await _open_platform_ticket(relay, fetch)

    await relay.dispatch_update(_callback(f"resolve:{ticket.id}", 7, chat_id=7, chat_type="private"))

    assert platform.calls_for("answer_callback_query")[-1]["text"] == messages.CALLBACK_NOT_YOUR_TICKET
    assert fetch(ticket_service.get_ticket, ticket.id).status == TicketStatus.NEW.value


@pytest.mark.asyncio
async def test_dm_after_close_opens_new_ticket(relay, platform, fetch):
    first = await _open_platform_ticket(relay, fetch)
    await relay.dispatch_update(_callback(f"resolve:{first.id}", USER_ID, chat_id=USER_ID, chat_type="private"))

    second = await _open_platform_ticket(relay, fetch, text="One more thing", message_id=20)

    assert second.id != first.id
    assert second.thread_id != first.thread_id


# =============================================================================
# Onboarding and redirect context
# =============================================================================


@pytest.mark.asyncio
async def test_start_with_redirect_id_attributes_next_ticket(relay, platform, fetch, fake_redis, monkeypatch):
    monkeypatch.setattr(redirect_context_service, "get_async_redis_client", lambda: fake_redis)
    monkeypatch.setattr(onboarding_service, "get_async_redis_client", lambda: fake_redis)
    await redirect_context_service.store_redirect_data(
        "ab12cd34", RedirectContext(source_url="https://shop.example/p/1", source_city="Berlin")
    )

    await relay.dispatch_update(_update(message=private_message(USER_ID, 1, "/start ab12cd34")))

    assert platform.sent_texts(USER_ID) == [messages.WELCOME]
    assert "redirect:ab12cd34" not in fake_redis.store
    assert f"onboarding:{USER_ID}" in fake_redis.store

    ticket = await _open_platform_ticket(relay, fetch)

    assert ticket.source_url == "https://shop.example/p/1"
    assert ticket.source_city == "Berlin"
    assert f"onboarding:{USER_ID}" not in fake_redis.store
    assert f"user_context:{USER_ID}" not in fake_redis.store


@pytest.mark.asyncio
async def test_start_without_redis_still_welcomes(relay, platform):
    await relay.dispatch_update(_update(message=private_message(USER_ID, 1, "/start")))

    assert platform.sent_texts(USER_ID) == [messages.WELCOME]
    assert platform.calls_for("create_forum_topic") == []


# =============================================================================
# Web chat and linking
# =============================================================================


@pytest.mark.asyncio
async def test_web_message_opens_ticket_and_posts_prefixed(relay, platform, connections, fetch):
    session_id = new_session_id()
    ws = FakeWebSocket()
    await connections.connect(ws, session_id)

    row = await relay.handle_web_message(session_id, "Hi from the site")

    ticket = fetch(ticket_service.find_by_web_session, session_id)
    assert row.ticket_id == ticket.id
    assert row.channel == MessageChannel.WEB.value
    assert platform.calls_for("create_forum_topic")[0]["name"] == f"Web: {session_id[:8]}"
    assert platform.sent_texts(GROUP_ID)[-1] == "[WEB] Hi from the site"
    assert connections.get_ticket_id(session_id) == ticket.id
    assert len(_pending(fetch)) == 3


@pytest.mark.asyncio
async def test_operator_reply_is_pushed_to_web_socket(relay, platform, connections, fetch):
    session_id = new_session_id()
    ws = FakeWebSocket()
    await connections.connect(ws, session_id)
    await relay.handle_web_message(session_id, "Hi from the site")
    ticket = fetch(ticket_service.find_by_web_session, session_id)

    await _operator_says(relay, ticket, message_id=3100, text="Hello, web customer")

    pushed = ws.frames("message")[-1]
    assert pushed["text"] == "Hello, web customer"
    assert pushed["from"] == "support"
    assert ws.frames("status")[-1] == {"status": TicketStatus.IN_PROGRESS.value}
    assert fetch(ticket_service.find_message_by_thread_id, 3100).channel == MessageChannel.WEB.value


@pytest.mark.asyncio
async def test_web_message_fails_when_thread_unreachable(relay, platform, fetch):
    session_id = new_session_id()
    platform.fail("send_message", failing("Bad Request: message thread not found"))

    with pytest.raises(UpstreamUnavailableError):
        await relay.handle_web_message(session_id, "Hi")

    # The ticket is durable even though the mirror failed
    assert fetch(ticket_service.find_by_web_session, session_id) is not None


@pytest.mark.asyncio
async def test_weblink_token_links_web_session_and_prefixes_dms(relay, platform, connections, fetch):
    ticket = await _open_platform_ticket(relay, fetch)
    await relay.dispatch_update(_update(message=private_message(USER_ID, 11, "/weblink")))
    token = re.search(r"link_[0-9a-f]{32}", platform.sent_texts(USER_ID)[-1]).group(0)

    session_id = new_session_id()
    ws = FakeWebSocket()
    await connections.connect(ws, session_id)
    linked = await web_chat_service.link_session(relay, session_id, token)

    assert linked.id == ticket.id
    assert ws.frames("channel_linked")[-1]["ticket_id"] == str(ticket.id)

    await relay.dispatch_update(_update(message=private_message(USER_ID, 12, "Now from the app")))
    assert platform.sent_texts(GROUP_ID)[-1] == "[TG] Now from the app"

    await _operator_says(relay, ticket, message_id=3200, text="Got it")
    assert platform.sent_texts(USER_ID)[-1] == "Got it"
    assert ws.frames("message")[-1]["text"] == "Got it"
    rows = fetch(ticket_service.list_messages, ticket.id)
    assert len([r for r in rows if r.thread_message_id == 3200]) == 1


@pytest.mark.asyncio
async def test_start_with_link_token_binds_platform_account(relay, platform, connections, fetch):
    session_id = new_session_id()
    ws = FakeWebSocket()
    await connections.connect(ws, session_id)
    await relay.handle_web_message(session_id, "Hi from the site")
    link = fetch(web_chat_service.issue_link_token, session_id)

    await relay.dispatch_update(_update(message=private_message(USER_ID, 1, f"/start {link.token}")))

    ticket = fetch(ticket_service.find_by_web_session, session_id)
    assert ticket.platform_user_id == USER_ID
    assert platform.sent_texts(USER_ID)[-1] == messages.LINK_SUCCESS
    assert ws.frames("channel_linked")[-1] == {"channel": "platform"}


@pytest.mark.asyncio
async def test_start_with_unknown_link_token(relay, platform):
    await relay.dispatch_update(_update(message=private_message(USER_ID, 1, "/start link_" + "f" * 32)))

    assert platform.sent_texts(USER_ID) == [messages.LINK_INVALID]


@pytest.mark.asyncio
async def test_web_close_posts_feedback_and_closes(relay, platform, connections, fetch):
    session_id = new_session_id()
    ws = FakeWebSocket()
    await connections.connect(ws, session_id)
    await relay.handle_web_message(session_id, "Hi")
    ticket = fetch(ticket_service.find_by_web_session, session_id)

    closed = await web_chat_service.close(relay, session_id, resolved=True, feedback="Quick help, thanks")

    assert closed is True
    assert fetch(ticket_service.get_ticket, ticket.id).status == TicketStatus.CLOSED.value
    notice = platform.sent_texts(GROUP_ID)[-1]
    assert notice.startswith("[WEB] ")
    assert "Quick help, thanks" in notice
    assert ws.frames("status")[-1] == {"status": TicketStatus.CLOSED.value}
    assert _pending(fetch) == []
    assert await web_chat_service.close(relay, session_id, resolved=True) is False


# =============================================================================
# Thread service updates and commands
# =============================================================================


def test_command_name():
    assert command_name("/history") == "history"
    assert command_name("/history@SupportBot") == "history"
    assert command_name("/start ab12cd34") == "start"
    assert command_name("history") is None
    assert command_name(None) is None


@pytest.mark.asyncio
async def test_pin_service_update_is_not_relayed(relay, platform, fetch):
    ticket = await _open_platform_ticket(relay, fetch)
    before = platform.sent_texts(USER_ID)

    await _operator_says(relay, ticket, text=None, pinned_message={"message_id": ticket.card_message_id})

    assert platform.sent_texts(USER_ID) == before
    assert platform.calls_for("copy_message") == []
    assert fetch(ticket_service.get_ticket, ticket.id).status == TicketStatus.NEW.value
    assert len(_pending(fetch)) == 3


def test_empty_history():
    assert format_ticket_history([]) == messages.HISTORY_EMPTY


@pytest.mark.asyncio
async def test_history_command_posts_audit_trail_to_thread(relay, platform, fetch):
    ticket = await _open_platform_ticket(relay, fetch)
    before = platform.sent_texts(USER_ID)

    await _operator_says(relay, ticket, text="/history")

    notice = platform.calls_for("send_message")[-1]
    assert notice["chat_id"] == GROUP_ID
    assert notice["message_thread_id"] == ticket.thread_id
    lines = notice["text"].splitlines()
    assert lines[0] == messages.HISTORY_TITLE
    assert lines[2].endswith('Opened: "Where is my order?"')
    assert platform.sent_texts(USER_ID) == before
    assert fetch(ticket_service.get_ticket, ticket.id).status == TicketStatus.NEW.value


@pytest.mark.asyncio
async def test_history_lists_status_changes_oldest_first(relay, platform, fetch):
    ticket = await _open_platform_ticket(relay, fetch)
    await relay.status.set_status(ticket.id, TicketStatus.IN_PROGRESS)
    await relay.status.set_status(ticket.id, TicketStatus.WAITING_CLIENT)

    await _operator_says(relay, ticket, text="/history@SupportBot")

    lines = platform.sent_texts(GROUP_ID)[-1].splitlines()[2:]
    assert len(lines) == 3
    assert "Opened" in lines[0]
    assert lines[1].endswith("Status: New -> In progress")
    assert lines[2].endswith("Status: In progress -> Waiting for customer")


# =============================================================================
# Operator media to the web widget
# =============================================================================


async def _open_web_ticket(relay, connections, fetch):
    session_id = new_session_id()
    ws = FakeWebSocket()
    await connections.connect(ws, session_id)
    await relay.handle_web_message(session_id, "Hi from the site")
    return ws, fetch(ticket_service.find_by_web_session, session_id)


@pytest.mark.asyncio
async def test_operator_photo_reaches_widget_as_media_link(relay, connections, fetch):
    ws, ticket = await _open_web_ticket(relay, connections, fetch)
    photo = [{"file_id": "small-size"}, {"file_id": "AgACAgIAAxkBAAIB"}]

    await _operator_says(relay, ticket, message_id=3200, text=None, photo=photo)

    pushed = ws.frames("message")[-1]
    assert pushed["imageUrl"] == "/chat/media/AgACAgIAAxkBAAIB"
    assert pushed["text"] == ""
    assert fetch(ticket_service.find_message_by_thread_id, 3200).text == "[image]"


@pytest.mark.asyncio
async def test_operator_voice_reaches_widget_with_duration(relay, connections, fetch):
    ws, ticket = await _open_web_ticket(relay, connections, fetch)

    await _operator_says(
        relay, ticket, message_id=3300, text=None, voice={"file_id": "AwACAgIAAxkBAAIC", "duration": 7}
    )

    pushed = ws.frames("message")[-1]
    assert pushed["voiceUrl"] == "/chat/media/AwACAgIAAxkBAAIC"
    assert pushed["voiceDuration"] == 7
    assert fetch(ticket_service.find_message_by_thread_id, 3300).text == "[voice message]"


# =============================================================================
# Landing page question
# =============================================================================


@pytest.mark.asyncio
async def test_landing_question_is_recorded_and_shown_in_thread(relay, platform, fetch, fake_redis, monkeypatch):
    monkeypatch.setattr(redirect_context_service, "get_async_redis_client", lambda: fake_redis)
    monkeypatch.setattr(onboarding_service, "get_async_redis_client", lambda: fake_redis)
    await redirect_context_service.store_redirect_data(
        "ef56ab78", RedirectContext(source_url="https://shop.example/p/2", question="Do you ship to Norway?")
    )
    await relay.dispatch_update(_update(message=private_message(USER_ID, 1, "/start ef56ab78")))

    ticket = await _open_platform_ticket(relay, fetch, text="Hello")

    opened = [e for e in fetch(ticket_service.list_events, ticket.id) if e.event_type == TicketEventType.OPENED.value]
    assert opened[0].question == "Do you ship to Norway?"
    assert messages.LANDING_QUESTION.format(question="Do you ship to Norway?") in platform.sent_texts(GROUP_ID)
    assert platform.sent_texts(GROUP_ID)[-1] == "Hello"
