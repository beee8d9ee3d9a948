"""
Background worker for firing due timers (SLA reminders, auto-close).

Usage:
    supportdesk-worker

The API process runs the same loop in its lifespan unless WORKER_ENABLED is
off; this entry point runs it standalone.
"""

import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError

from supportdesk.core.async_utils import run_in_session
from supportdesk.core.config import settings
from supportdesk.core.exceptions import RaceConditionNoop
from supportdesk.core.structured_logging import build_log_context
from supportdesk.jobs.context import JobContext
from supportdesk.jobs.registry import resolve_job_handler
from supportdesk.services import job_service

logger = logging.getLogger(__name__)


async def process_job(ctx: JobContext, job) -> None:
    """Run a claimed job once and record the outcome."""
    log_context = build_log_context(purpose=job.job_type, ticket_id=(job.payload or {}).get("ticket_id"))
    logger.info("Processing job %s (type=%s, attempt=%s)", job.id, job.job_type, job.attempts, extra=log_context)

    try:
        handler = resolve_job_handler(job.job_type)
        await handler(ctx, job)
    except RaceConditionNoop as e:
        logger.info("Job %s no longer applies: %s", job.id, e, extra=log_context)
    except Exception as e:
        await run_in_session(ctx.session_factory, job_service.fail_job, job.id, f"{type(e).__name__}: {e}")
        logger.error("Job %s failed: %s", job.id, type(e).__name__, extra=log_context)
        return

    await run_in_session(ctx.session_factory, job_service.complete_job, job.id)
    logger.info("Job %s completed successfully", job.id, extra=log_context)


async def run_due_jobs(ctx: JobContext, batch_size: int | None = None) -> int:
    """Claim and process one batch of due jobs. Returns how many were claimed."""
    jobs = await run_in_session(
        ctx.session_factory,
        job_service.claim_pending_jobs,
        limit=batch_size or settings.WORKER_BATCH_SIZE,
    )
    if jobs:
        logger.info("Found %s pending jobs", len(jobs))
    for job in jobs:
        await process_job(ctx, job)
    return len(jobs)


async def worker_loop(ctx: JobContext, poll_interval: float | None = None) -> None:
    """Main worker loop - polls for and processes due jobs."""
    interval = poll_interval or settings.WORKER_POLL_INTERVAL
    logger.info("Worker starting (poll interval: %ss, batch size: %s)", interval, settings.WORKER_BATCH_SIZE)

    while True:
        try:
            await run_due_jobs(ctx)
        except SQLAlchemyError as e:
            logger.error("Error in worker loop: %s", type(e).__name__)
        await asyncio.sleep(interval)


async def _run_standalone() -> None:
    from supportdesk.core.deps import build_relay

    relay = build_relay()
    try:
        await worker_loop(JobContext(relay=relay))
    finally:
        await relay.platform.aclose()


def main() -> None:
    """Entry point for the worker."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    try:
        asyncio.run(_run_standalone())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        logger.exception("Worker crashed", extra=build_log_context(route="worker"))
        raise


if __name__ == "__main__":
    main()
