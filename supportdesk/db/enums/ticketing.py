"""Ticketing enums."""

from enum import Enum


class TicketStatus(str, Enum):
    """Ticket lifecycle status."""

    NEW = "NEW"
    IN_PROGRESS = "IN_PROGRESS"
    WAITING_CLIENT = "WAITING_CLIENT"
    CLOSED = "CLOSED"


class TicketEventType(str, Enum):
    """Audit trail entry kind."""

    OPENED = "OPENED"
    STATUS_CHANGED = "STATUS_CHANGED"
    LINKED = "LINKED"


class StatusTrigger(str, Enum):
    """Conversation events that move a ticket automatically."""

    SUPPORT_REPLY = "SUPPORT_REPLY"
    CLIENT_REPLY = "CLIENT_REPLY"
    CLIENT_RESOLVED = "CLIENT_RESOLVED"


class MessageDirection(str, Enum):
    CUSTOMER_TO_SUPPORT = "CUSTOMER_TO_SUPPORT"
    SUPPORT_TO_CUSTOMER = "SUPPORT_TO_CUSTOMER"


class MessageChannel(str, Enum):
    PLATFORM = "PLATFORM"
    WEB = "WEB"


class OnboardingStep(str, Enum):
    AWAITING_QUESTION = "awaiting_question"
