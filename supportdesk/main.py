"""FastAPI application entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from supportdesk.core.config import settings
from supportdesk.core.deps import build_relay
from supportdesk.core.exceptions import UpstreamUnavailableError
from supportdesk.core.redis_client import close_async_redis_client
from supportdesk.core.websocket import ConnectionManager
from supportdesk.jobs.context import JobContext
from supportdesk.worker import worker_loop

logger = logging.getLogger(__name__)

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,  # 10% of requests for performance monitoring
        send_default_pii=False,  # Don't send PII to Sentry
    )
    logging.info("Sentry initialized for error tracking")


async def heartbeat_loop(connections: ConnectionManager) -> None:
    """Ping every web chat socket and drop the ones that stopped answering."""
    while True:
        await asyncio.sleep(settings.WS_HEARTBEAT_SECONDS)
        await connections.sweep_inactive(settings.ws_dead_after_seconds)
        await connections.ping_all()


@asynccontextmanager
async def lifespan(app: FastAPI):
    relay = build_relay()
    app.state.relay = relay

    try:
        me = await relay.platform.get_me()
        relay.bot_id = me["id"]
        logger.info("Platform bot identity loaded (id=%s)", relay.bot_id)
    except UpstreamUnavailableError as e:
        # Echo suppression still drops every bot-authored message
        logger.warning("Could not load bot identity: %s", e)

    tasks = [asyncio.create_task(heartbeat_loop(relay.connections))]
    if settings.WORKER_ENABLED:
        tasks.append(asyncio.create_task(worker_loop(JobContext(relay=relay))))

    try:
        yield
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await relay.platform.aclose()
        await close_async_redis_client()


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Support Desk API",
    description="Relay between a bot messaging platform, a web chat widget and operator forum threads",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
    lifespan=lifespan,
)

# CORS middleware - must be added before routers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,  # Required for the session cookie
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-Requested-With"],
)

# ============================================================================
# Routers
# ============================================================================

from supportdesk.routers import ask_support, chat, platform, websocket  # noqa: E402

app.include_router(platform.router)
app.include_router(ask_support.router)
app.include_router(chat.router)
app.include_router(websocket.router)
