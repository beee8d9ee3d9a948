"""
Timer registry - SLA reminders and auto-close as persisted delayed jobs.

Timers are best-effort: scheduling or cancelling never raises into the
caller. A failure is logged and reported as False so the conversation keeps
flowing; the job handlers re-check ticket state when they fire.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from supportdesk.core.async_utils import run_in_session
from supportdesk.core.config import settings
from supportdesk.core.structured_logging import build_log_context
from supportdesk.db.enums import JobType, SLA_JOB_TYPES
from supportdesk.services import job_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimerKey:
    ticket_id: UUID
    thread_id: int

    def idempotency_key(self, purpose: JobType) -> str:
        return f"{purpose.value}:{self.ticket_id}:{self.thread_id}"

    def payload(self) -> dict:
        return {"ticket_id": str(self.ticket_id), "thread_id": self.thread_id}

    @classmethod
    def from_payload(cls, payload: dict) -> TimerKey:
        return cls(ticket_id=UUID(str(payload["ticket_id"])), thread_id=int(payload["thread_id"]))


class TimerRegistry:
    """Schedules and cancels ticket timers on the job table."""

    def __init__(
        self,
        session_factory: sessionmaker,
        sla_delays: dict[str, int] | None = None,
        autoclose_seconds: int | None = None,
    ):
        self._session_factory = session_factory
        self._sla_delays = sla_delays if sla_delays is not None else settings.sla_delays
        self._autoclose_seconds = (
            autoclose_seconds if autoclose_seconds is not None else settings.AUTOCLOSE_SECONDS
        )

    def delay_for(self, purpose: JobType) -> int:
        """Configured delay of a timer purpose, in seconds."""
        if purpose == JobType.AUTOCLOSE:
            return self._autoclose_seconds
        return self._sla_delays[purpose.value]

    async def schedule(self, key: TimerKey, purpose: JobType, delay_seconds: int) -> bool:
        """Arm one timer. Returns False if it could not be stored (including already armed)."""
        run_at = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
        try:
            await run_in_session(
                self._session_factory,
                job_service.schedule_job,
                job_type=purpose,
                payload=key.payload(),
                run_at=run_at,
                idempotency_key=key.idempotency_key(purpose),
            )
        except SQLAlchemyError as e:
            logger.error(
                "Failed to schedule %s timer: %s",
                purpose.value,
                type(e).__name__,
                extra=build_log_context(ticket_id=key.ticket_id, thread_id=key.thread_id, purpose=purpose.value),
            )
            return False
        return True

    async def cancel(self, key: TimerKey, purpose: JobType) -> bool:
        """Disarm one timer. Cancelling a timer that is not armed succeeds."""
        try:
            await run_in_session(
                self._session_factory,
                job_service.cancel_jobs,
                key.idempotency_key(purpose),
            )
        except SQLAlchemyError as e:
            logger.error(
                "Failed to cancel %s timer: %s",
                purpose.value,
                type(e).__name__,
                extra=build_log_context(ticket_id=key.ticket_id, thread_id=key.thread_id, purpose=purpose.value),
            )
            return False
        return True

    async def start_sla_timers(self, key: TimerKey) -> bool:
        results = [
            await self.schedule(key, purpose, self.delay_for(purpose))
            for purpose in SLA_JOB_TYPES
        ]
        return all(results)

    async def cancel_all_sla_timers(self, key: TimerKey) -> int:
        """Cancel every SLA timer. Returns how many cancellations failed."""
        failed = 0
        for purpose in SLA_JOB_TYPES:
            if not await self.cancel(key, purpose):
                failed += 1
        return failed

    async def start_autoclose_timer(self, key: TimerKey) -> bool:
        return await self.schedule(key, JobType.AUTOCLOSE, self.delay_for(JobType.AUTOCLOSE))

    async def cancel_autoclose_timer(self, key: TimerKey) -> bool:
        return await self.cancel(key, JobType.AUTOCLOSE)

    async def cancel_all(self, key: TimerKey) -> int:
        failed = await self.cancel_all_sla_timers(key)
        if not await self.cancel_autoclose_timer(key):
            failed += 1
        return failed
