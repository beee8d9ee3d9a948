"""Job-related enums."""

from enum import Enum


class JobType(str, Enum):
    """Types of background jobs. Each is also a timer purpose."""

    SLA_FIRST = "sla-first"
    SLA_SECOND = "sla-second"
    SLA_ESCALATION = "sla-escalation"
    AUTOCLOSE = "autoclose"


class JobStatus(str, Enum):
    """Status of background jobs."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


DEFAULT_JOB_STATUS = JobStatus.PENDING

SLA_JOB_TYPES = (JobType.SLA_FIRST, JobType.SLA_SECOND, JobType.SLA_ESCALATION)
