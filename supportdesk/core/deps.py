"""FastAPI dependencies and service wiring."""

from typing import Generator

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from supportdesk.core.config import settings
from supportdesk.core.rate_limit import ip_limiter
from supportdesk.core.websocket import manager
from supportdesk.db.session import SessionLocal
from supportdesk.services.platform_client import PlatformClient
from supportdesk.services.relay_service import RelayService
from supportdesk.services.timer_service import TimerRegistry


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def build_relay(platform: PlatformClient | None = None) -> RelayService:
    """Wire the relay with the process-wide store, timers and socket manager."""
    return RelayService(
        session_factory=SessionLocal,
        platform=platform or PlatformClient(),
        timers=TimerRegistry(SessionLocal),
        connections=manager,
        support_group_id=settings.SUPPORT_GROUP_ID,
    )


def get_relay(request: Request) -> RelayService:
    return request.app.state.relay


async def enforce_ip_rate_limit(request: Request) -> None:
    """Per-client-IP fixed-window limit for public HTTP endpoints."""
    client_ip = request.client.host if request.client else "unknown"
    result = await ip_limiter.check(client_ip)
    if not result.allowed:
        raise HTTPException(
            status_code=429,
            detail="Too many requests",
            headers={"Retry-After": str(result.reset_in_seconds)},
        )
