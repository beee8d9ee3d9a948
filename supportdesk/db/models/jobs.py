"""Background job model (persisted delayed timers)."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, Index, Integer, String, Text, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from supportdesk.db.base import Base
from supportdesk.db.enums import DEFAULT_JOB_STATUS
from supportdesk.db.models._common import utcnow

_PENDING = text(f"status = '{DEFAULT_JOB_STATUS.value}'")


class Job(Base):
    """
    Background job for delayed processing.

    Used for: SLA reminders and ticket auto-close.
    Worker polls for due pending jobs and processes them. At most one
    pending job may exist per idempotency key, which is the timer key.
    """

    __tablename__ = "jobs"
    __table_args__ = (
        Index(
            "idx_jobs_pending",
            "status",
            "run_at",
            postgresql_where=_PENDING,
            sqlite_where=_PENDING,
        ),
        Index(
            "uq_job_pending_idempotency",
            "idempotency_key",
            unique=True,
            postgresql_where=_PENDING,
            sqlite_where=_PENDING,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    job_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    run_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now(), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=DEFAULT_JOB_STATUS.value,
        server_default=text(f"'{DEFAULT_JOB_STATUS.value}'"),
        nullable=False,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, server_default=text("0"), nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, server_default=text("3"), nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now(), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Timer key "{purpose}:{ticket_id}:{thread_id}"
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
