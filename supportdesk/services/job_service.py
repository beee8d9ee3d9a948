"""Job service - business logic for background job scheduling and processing."""

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from supportdesk.db.models import Job
from supportdesk.db.enums import JobStatus, JobType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def schedule_job(
    db: Session,
    job_type: JobType,
    payload: dict,
    run_at: datetime | None = None,
    idempotency_key: str | None = None,
) -> Job:
    """
    Schedule a new background job.

    If run_at is None, the job runs immediately.
    If idempotency_key is provided and a pending job with the same key exists,
    the insert fails with IntegrityError (caller should catch and handle).
    """
    job = Job(
        job_type=job_type.value,
        payload=payload,
        run_at=run_at or _utcnow(),
        status=JobStatus.PENDING.value,
        idempotency_key=idempotency_key,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def cancel_jobs(db: Session, idempotency_key: str) -> int:
    """
    Cancel the pending job for a key.

    Only pending rows are touched, so a job already claimed by the worker
    keeps running and its handler re-checks ticket state instead.
    """
    result = db.execute(
        update(Job)
        .where(
            Job.idempotency_key == idempotency_key,
            Job.status == JobStatus.PENDING.value,
        )
        .values(status=JobStatus.CANCELLED.value, completed_at=_utcnow())
    )
    db.commit()
    return result.rowcount or 0


def claim_pending_jobs(db: Session, limit: int = 10) -> list[Job]:
    """
    Claim due jobs for this worker.

    Rows are locked with SKIP LOCKED and flipped to running in one
    transaction, so a concurrent cancel either wins before the claim or
    finds nothing pending.
    """
    jobs = (
        db.query(Job)
        .filter(
            Job.status == JobStatus.PENDING.value,
            Job.run_at <= _utcnow(),
        )
        .order_by(Job.run_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )
    for job in jobs:
        job.status = JobStatus.RUNNING.value
        job.attempts += 1
    db.commit()
    return jobs


def get_job(db: Session, job_id: UUID) -> Job | None:
    return db.query(Job).filter(Job.id == job_id).first()


def find_pending_job(db: Session, idempotency_key: str) -> Job | None:
    return (
        db.query(Job)
        .filter(
            Job.idempotency_key == idempotency_key,
            Job.status == JobStatus.PENDING.value,
        )
        .first()
    )


def list_jobs(
    db: Session,
    status: JobStatus | None = None,
    job_type: JobType | None = None,
    limit: int = 50,
) -> list[Job]:
    """List jobs with optional filters."""
    query = db.query(Job)
    if status:
        query = query.filter(Job.status == status.value)
    if job_type:
        query = query.filter(Job.job_type == job_type.value)
    return query.order_by(Job.created_at.desc()).limit(limit).all()


def mark_job_completed(db: Session, job: Job) -> Job:
    """Mark a job as completed."""
    job.status = JobStatus.COMPLETED.value
    job.completed_at = _utcnow()
    job.last_error = None
    db.commit()
    db.refresh(job)
    return job


def mark_job_failed(db: Session, job: Job, error: str) -> Job:
    """
    Mark a job as failed.

    If attempts < max_attempts, reset to pending for retry.
    """
    job.last_error = error
    retry = job.attempts < job.max_attempts
    if retry and job.idempotency_key and find_pending_job(db, job.idempotency_key):
        # The timer was re-armed while this run was in flight
        retry = False
    if retry:
        job.status = JobStatus.PENDING.value
    else:
        job.status = JobStatus.FAILED.value
    db.commit()
    db.refresh(job)
    return job


def complete_job(db: Session, job_id: UUID) -> Job | None:
    job = get_job(db, job_id)
    if job:
        mark_job_completed(db, job)
    return job


def fail_job(db: Session, job_id: UUID, error: str) -> Job | None:
    job = get_job(db, job_id)
    if job:
        mark_job_failed(db, job, error)
    return job
