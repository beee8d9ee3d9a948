"""SQLAlchemy ORM models."""

from supportdesk.db.models.jobs import Job
from supportdesk.db.models.ticketing import MessageMap, Ticket, TicketEvent, WebLinkToken

__all__ = ["Job", "MessageMap", "Ticket", "TicketEvent", "WebLinkToken"]
