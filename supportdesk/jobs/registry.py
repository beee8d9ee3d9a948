"""Job handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from supportdesk.db.enums import JobType
from supportdesk.jobs.handlers import autoclose, sla

JobHandler = Callable[[object, object], Awaitable[None]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    JobType.SLA_FIRST.value: sla.process_sla_reminder,
    JobType.SLA_SECOND.value: sla.process_sla_reminder,
    JobType.SLA_ESCALATION.value: sla.process_sla_reminder,
    JobType.AUTOCLOSE.value: autoclose.process_autoclose,
}


def resolve_job_handler(job_type: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_type)
    if not handler:
        raise ValueError(f"Unknown job type: {job_type}")
    return handler
