"""Session identifiers and link tokens for the web chat widget."""

import re
import secrets
import uuid

SESSION_COOKIE_NAME = "webchat_session"
LINK_TOKEN_PREFIX = "link_"

_SESSION_ID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
_LINK_TOKEN_RE = re.compile(r"^link_[0-9a-f]{32}$")


def is_valid_session_id(value: str | None) -> bool:
    """Web session ids are canonical UUID v4 strings."""
    if not value:
        return False
    return bool(_SESSION_ID_RE.match(value))


def generate_session_id() -> str:
    return str(uuid.uuid4())


def generate_link_token() -> str:
    """Single-use token that binds a web session to a ticket."""
    return f"{LINK_TOKEN_PREFIX}{secrets.token_hex(16)}"


def is_link_token(value: str | None) -> bool:
    if not value:
        return False
    return bool(_LINK_TOKEN_RE.match(value))


def generate_short_id() -> str:
    """Short id for ask-support deep links (8 hex chars)."""
    return secrets.token_hex(4)
