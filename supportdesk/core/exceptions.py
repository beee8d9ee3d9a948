"""Error taxonomy shared by the store, relay, timers and socket layer."""


class SupportDeskError(Exception):
    """Base exception for support desk errors."""

    pass


class ValidationError(SupportDeskError):
    """Malformed identifier, token or transition; no state was changed."""

    pass


class InvalidTokenError(ValidationError):
    """Link token is unknown, expired or already used."""

    pass


class MessageTooLongError(ValidationError):
    """Chat message exceeds the maximum length."""

    pass


class InvalidTransitionError(ValidationError):
    """Ticket status transition is not allowed."""

    def __init__(self, old_status: str, new_status: str):
        self.old_status = old_status
        self.new_status = new_status
        super().__init__(f"Cannot change ticket status from {old_status} to {new_status}")


class NotFoundError(SupportDeskError):
    """Ticket, thread or token lookup missed."""

    pass


class ConflictError(SupportDeskError):
    """Identity or thread is already bound to another ticket."""

    pass


class UpstreamUnavailableError(SupportDeskError):
    """Platform, store or queue failed transiently."""

    pass


class PlatformAPIError(UpstreamUnavailableError):
    """Messaging platform rejected a call."""

    def __init__(
        self,
        method: str,
        error_code: int | None,
        description: str,
        retry_after: int | None = None,
    ):
        self.method = method
        self.error_code = error_code
        self.description = description
        self.retry_after = retry_after
        super().__init__(f"{method} failed ({error_code}): {description}")

    @property
    def is_rate_limited(self) -> bool:
        return self.error_code == 429

    @property
    def is_bot_blocked(self) -> bool:
        return self.error_code == 403 and "blocked by the user" in self.description


class RaceConditionNoop(SupportDeskError):
    """A timer fired after its effect stopped applying."""

    pass
