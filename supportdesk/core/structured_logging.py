"""Structured logging helpers (PII-safe)."""

from typing import Any


def build_log_context(
    *,
    ticket_id: object | None = None,
    thread_id: int | None = None,
    platform_user_id: int | None = None,
    session_id: str | None = None,
    purpose: str | None = None,
    route: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict with only the identifiers that were provided."""
    context: dict[str, Any] = {}
    if ticket_id:
        context["ticket_id"] = str(ticket_id)
    if thread_id:
        context["thread_id"] = thread_id
    if platform_user_id:
        context["platform_user_id"] = platform_user_id
    if session_id:
        context["session_id"] = session_id
    if purpose:
        context["purpose"] = purpose
    if route:
        context["route"] = route
    return context
