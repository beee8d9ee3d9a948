"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.03.00"

    # Database
    DATABASE_URL: str

    # Messaging platform (Bot API)
    PLATFORM_API_BASE: str = "https://api.telegram.org"
    PLATFORM_BOT_TOKEN: str = ""
    PLATFORM_BOT_USERNAME: str = ""
    PLATFORM_WEBHOOK_SECRET: str = ""  # Checked against X-Telegram-Bot-Api-Secret-Token when set
    PLATFORM_TIMEOUT_SECONDS: float = 10.0

    # Forum group where every ticket gets its own thread
    SUPPORT_GROUP_ID: int = 0

    # Messages starting with one of these are operator-only notes (comma-separated)
    INTERNAL_NOTE_PREFIXES: str = "//,#internal"

    # SLA reminders and auto-close (seconds)
    SLA_FIRST_SECONDS: int = 10 * 60
    SLA_SECOND_SECONDS: int = 30 * 60
    SLA_ESCALATION_SECONDS: int = 2 * 60 * 60
    AUTOCLOSE_SECONDS: int = 7 * 24 * 60 * 60

    # Rate Limiting (requests per window)
    RATE_LIMIT_USER: int = 10
    RATE_LIMIT_USER_WINDOW: int = 60
    RATE_LIMIT_IP: int = 10
    RATE_LIMIT_IP_WINDOW: int = 60
    RATE_LIMIT_WS: int = 20
    RATE_LIMIT_WS_WINDOW: int = 60

    # Web chat
    WS_HEARTBEAT_SECONDS: int = 30
    WS_DEAD_AFTER_HEARTBEATS: int = 10  # Silent for this many intervals = dead
    WS_MAX_MESSAGE_LENGTH: int = 4000
    LINK_TOKEN_TTL_MINUTES: int = 60
    PUBLIC_BASE_URL: str = ""  # Prefix for media links handed to the widget; empty = same origin

    # Background worker (runs inside the API process unless disabled)
    WORKER_ENABLED: bool = True
    WORKER_POLL_INTERVAL: float = 5.0
    WORKER_BATCH_SIZE: int = 10

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def internal_note_prefixes(self) -> tuple[str, ...]:
        """Parse INTERNAL_NOTE_PREFIXES into a tuple usable with str.startswith."""
        return tuple(p.strip() for p in self.INTERNAL_NOTE_PREFIXES.split(",") if p.strip())

    @property
    def sla_delays(self) -> dict[str, int]:
        """SLA timer purpose -> delay in seconds."""
        return {
            "sla-first": self.SLA_FIRST_SECONDS,
            "sla-second": self.SLA_SECOND_SECONDS,
            "sla-escalation": self.SLA_ESCALATION_SECONDS,
        }

    @property
    def ws_dead_after_seconds(self) -> int:
        return self.WS_HEARTBEAT_SECONDS * self.WS_DEAD_AFTER_HEARTBEATS


settings = Settings()
