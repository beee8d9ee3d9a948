"""Customer- and operator-facing notice texts."""

from supportdesk.db.enums import TicketEventType, TicketStatus

WELCOME = (
    "Hello! Describe your question in one message and an operator will reply here."
)
TICKET_CREATED = "Thanks! Your request has been received. We will reply as soon as possible."
TICKET_CREATE_ERROR = "We could not register your request. Please try again in a minute."
DELIVERY_FAILED = "Your message could not be delivered to support. Please try again."
RATE_LIMITED = "You are sending messages too fast. Please wait {seconds} seconds."
RESOLVE_BUTTON = "My question is resolved"

LINK_SUCCESS = "Your chat is now linked. You can continue the conversation here."
LINK_INVALID = "This link is invalid or has expired."
WEB_LINK_CODE = "Open the web chat and enter this code to continue there: {token}"
LANDING_QUESTION = "Question from the website: {question}"

STATUS_CHANGED = "Status changed: {old} -> {new}"
HISTORY_TITLE = "Ticket history:"
HISTORY_EMPTY = "Ticket history is empty."
STATUS_CLIENT_CLOSED = "The customer marked the request as resolved."

SLA_FIRST = "No reply yet: the customer has been waiting for {elapsed}."
SLA_SECOND = "Still no reply: the customer has been waiting for {elapsed}."
SLA_ESCALATION = "Escalation: the customer has been waiting for {elapsed} without a reply."

AUTOCLOSE_CLIENT = (
    "We closed your request because we did not hear back. "
    "Just write to us again if you still need help."
)
AUTOCLOSE_THREAD = "Ticket closed automatically after {elapsed} without a customer reply."

SUPPORT_DELIVERY_FAILED = "Message was not delivered to the customer: {reason}"
SUPPORT_BOT_BLOCKED = "Message was not delivered: the customer blocked the bot."

CALLBACK_UNKNOWN = "Unknown command"
CALLBACK_TICKET_NOT_FOUND = "Ticket not found"
CALLBACK_STATUS_ALREADY_SET = "Status is already set"
CALLBACK_STATUS_CHANGED = 'Status changed to "{status}"'
CALLBACK_STATUS_ERROR = "Could not change the status"
CALLBACK_NOT_YOUR_TICKET = "This is not your ticket"
CALLBACK_ALREADY_CLOSED = "This request is already closed"
CALLBACK_THANKS_CLOSED = "Thank you! The request is closed."

WEB_CLOSED_BY_CUSTOMER = "Web chat closed by the customer (resolved: {resolved})."
WEB_FEEDBACK = "Customer feedback: {feedback}"

STATUS_LABELS: dict[str, str] = {
    TicketStatus.NEW.value: "New",
    TicketStatus.IN_PROGRESS.value: "In progress",
    TicketStatus.WAITING_CLIENT.value: "Waiting for customer",
    TicketStatus.CLOSED.value: "Closed",
}


def status_label(status: str) -> str:
    return STATUS_LABELS.get(status, status)


EVENT_LABELS: dict[str, str] = {
    TicketEventType.OPENED.value: "Opened",
    TicketEventType.STATUS_CHANGED.value: "Status",
    TicketEventType.LINKED.value: "Linked",
}


def event_label(event_type: str) -> str:
    return EVENT_LABELS.get(event_type, event_type)


DURATION_UNITS = (
    (24 * 60 * 60, "day"),
    (60 * 60, "hour"),
    (60, "minute"),
)


def format_duration(seconds: int) -> str:
    """Largest unit that divides the delay exactly: 600 -> "10 minutes", 604800 -> "7 days"."""
    for unit_seconds, unit in DURATION_UNITS:
        if seconds >= unit_seconds and seconds % unit_seconds == 0:
            count = seconds // unit_seconds
            return f"{count} {unit}" if count == 1 else f"{count} {unit}s"
    return "1 second" if seconds == 1 else f"{seconds} seconds"
