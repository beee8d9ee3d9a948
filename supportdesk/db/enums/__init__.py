"""Enum definitions for application constants."""

from supportdesk.db.enums.jobs import DEFAULT_JOB_STATUS, JobStatus, JobType, SLA_JOB_TYPES
from supportdesk.db.enums.ticketing import (
    MessageChannel,
    MessageDirection,
    OnboardingStep,
    StatusTrigger,
    TicketEventType,
    TicketStatus,
)

__all__ = [
    "DEFAULT_JOB_STATUS",
    "JobStatus",
    "JobType",
    "MessageChannel",
    "MessageDirection",
    "OnboardingStep",
    "SLA_JOB_TYPES",
    "StatusTrigger",
    "TicketEventType",
    "TicketStatus",
]
