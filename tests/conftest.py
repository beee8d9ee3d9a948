"""
Test configuration and fixtures.

Provides:
- In-memory SQLite store shared across worker threads (StaticPool)
- Fake redis, platform client and websocket doubles
- A relay wired to the fakes
"""
import json
import math
import os
import uuid
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SUPPORT_GROUP_ID"] = "-1001"
os.environ.pop("REDIS_URL", None)

from fastapi import WebSocketDisconnect  # noqa: E402

from supportdesk.core.exceptions import UpstreamUnavailableError  # noqa: E402
from supportdesk.core.rate_limit import FixedWindowRateLimiter  # noqa: E402
from supportdesk.core.websocket import ConnectionManager  # noqa: E402
from supportdesk.db.base import Base  # noqa: E402
import supportdesk.db.models  # noqa: E402,F401
from supportdesk.services.relay_service import RelayService  # noqa: E402
from supportdesk.services.timer_service import TimerRegistry  # noqa: E402

GROUP_ID = -1001
BOT_ID = 999
OPERATOR_ID = 77


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def fetch(session_factory):
    """Run a store function in a fresh session (sees every committed write)."""

    def _fetch(func, *args, **kwargs):
        with session_factory() as session:
            return func(session, *args, **kwargs)

    return _fetch


# =============================================================================
# Fakes
# =============================================================================

class FakeRedis:
    """Subset of redis.asyncio used by the app; keys expire against a manual clock."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.expires_at: dict[str, float] = {}
        self.now = 0.0
        self.fail = False

    def advance(self, seconds: float) -> None:
        self.now += seconds

    @property
    def ttls(self) -> dict[str, int]:
        """Remaining seconds per live key that has an expiry."""
        return {
            key: math.ceil(deadline - self.now)
            for key, deadline in self.expires_at.items()
            if deadline > self.now
        }

    def _check(self):
        if self.fail:
            raise ConnectionError("redis down")

    def _purge(self, key):
        deadline = self.expires_at.get(key)
        if deadline is not None and deadline <= self.now:
            self.store.pop(key, None)
            self.expires_at.pop(key, None)

    async def incr(self, key):
        self._check()
        self._purge(key)
        value = int(self.store.get(key, 0)) + 1
        self.store[key] = str(value)
        return value

    async def expire(self, key, seconds):
        self._check()
        self._purge(key)
        if key not in self.store:
            return False
        self.expires_at[key] = self.now + seconds
        return True

    async def ttl(self, key):
        self._check()
        self._purge(key)
        if key not in self.store:
            return -2
        if key not in self.expires_at:
            return -1
        return math.ceil(self.expires_at[key] - self.now)

    async def get(self, key):
        self._check()
        self._purge(key)
        return self.store.get(key)

    async def setex(self, key, seconds, value):
        self._check()
        self.store[key] = value
        self.expires_at[key] = self.now + seconds
        return True

    async def getdel(self, key):
        self._check()
        self._purge(key)
        self.expires_at.pop(key, None)
        return self.store.pop(key, None)

    async def delete(self, key):
        self._check()
        self._purge(key)
        self.expires_at.pop(key, None)
        return 1 if self.store.pop(key, None) is not None else 0


class FakePlatformClient:
    """Records Bot API calls and hands out increasing message and thread ids."""

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []
        self._failures: list[tuple[str, int | None, Exception]] = []
        self._next_message_id = 1000
        self._next_thread_id = 500
        self.closed = False
        self.files: dict[str, tuple[str, bytes]] = {}

    def fail(self, method: str, exc: Exception, chat_id: int | None = None) -> None:
        self._failures.append((method, chat_id, exc))

    def calls_for(self, method: str) -> list[dict]:
        return [kwargs for name, kwargs in self.calls if name == method]

    def sent_texts(self, chat_id: int | None = None) -> list[str]:
        return [
            kwargs["text"]
            for kwargs in self.calls_for("send_message")
            if chat_id is None or kwargs["chat_id"] == chat_id
        ]

    def _record(self, method: str, **kwargs) -> None:
        self.calls.append((method, kwargs))
        for name, chat_id, exc in self._failures:
            if name == method and (chat_id is None or kwargs.get("chat_id") == chat_id):
                raise exc

    def _message(self) -> dict:
        self._next_message_id += 1
        return {"message_id": self._next_message_id}

    async def aclose(self):
        self.closed = True

    async def get_me(self):
        self._record("get_me")
        return {"id": BOT_ID, "is_bot": True, "first_name": "Support"}

    async def send_message(self, chat_id, text, *, message_thread_id=None, reply_markup=None, parse_mode=None):
        self._record(
            "send_message",
            chat_id=chat_id,
            text=text,
            message_thread_id=message_thread_id,
            reply_markup=reply_markup,
        )
        return self._message()

    async def copy_message(self, chat_id, from_chat_id, message_id, *, message_thread_id=None, caption=None):
        self._record(
            "copy_message",
            chat_id=chat_id,
            from_chat_id=from_chat_id,
            message_id=message_id,
            message_thread_id=message_thread_id,
            caption=caption,
        )
        return self._message()

    async def edit_message_text(self, chat_id, message_id, text, *, reply_markup=None):
        self._record("edit_message_text", chat_id=chat_id, message_id=message_id, text=text, reply_markup=reply_markup)
        return {"message_id": message_id}

    async def edit_message_caption(self, chat_id, message_id, caption):
        self._record("edit_message_caption", chat_id=chat_id, message_id=message_id, caption=caption)
        return {"message_id": message_id}

    async def create_forum_topic(self, chat_id, name):
        self._record("create_forum_topic", chat_id=chat_id, name=name)
        self._next_thread_id += 1
        return {"message_thread_id": self._next_thread_id, "name": name}

    async def pin_chat_message(self, chat_id, message_id):
        self._record("pin_chat_message", chat_id=chat_id, message_id=message_id)
        return True

    async def answer_callback_query(self, callback_query_id, text=None):
        self._record("answer_callback_query", callback_query_id=callback_query_id, text=text)
        return True

    async def get_file(self, file_id):
        self._record("get_file", file_id=file_id)
        if file_id not in self.files:
            raise failing("Bad Request: invalid file_id", method="getFile")
        return {"file_id": file_id, "file_path": self.files[file_id][0]}

    async def download_file(self, file_path):
        self._record("download_file", file_path=file_path)
        for path, content in self.files.values():
            if path == file_path:
                return content
        raise unavailable("file gone")


class FakeWebSocket:
    """Collects decoded frames; scripted inbound frames end with a disconnect."""

    def __init__(self, incoming: list[str] | None = None, app=None, cookies: dict | None = None):
        self.sent: list[dict] = []
        self.incoming = list(incoming or [])
        self.accepted = False
        self.closed_code: int | None = None
        self.broken = False
        self.app = app
        self.cookies = cookies or {}

    async def accept(self):
        self.accepted = True

    async def send_text(self, payload: str):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(payload))

    async def receive_text(self) -> str:
        if not self.incoming:
            raise WebSocketDisconnect(code=1000)
        return self.incoming.pop(0)

    async def close(self, code: int = 1000, reason: str | None = None):
        self.closed_code = code

    def frames(self, type: str) -> list[dict]:
        return [frame["data"] for frame in self.sent if frame["type"] == type]


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def platform() -> FakePlatformClient:
    return FakePlatformClient()


@pytest.fixture
def connections() -> ConnectionManager:
    return ConnectionManager()


@pytest.fixture
def relay_factory(session_factory, platform, connections):
    def _build(**kwargs) -> RelayService:
        timers = kwargs.pop(
            "timers",
            TimerRegistry(
                session_factory,
                sla_delays={"sla-first": 600, "sla-second": 1800, "sla-escalation": 7200},
                autoclose_seconds=3600,
            ),
        )
        kwargs.setdefault("limiter", FixedWindowRateLimiter("rate:test:", 100, 60, client_factory=lambda: None))
        return RelayService(
            session_factory=session_factory,
            platform=platform,
            timers=timers,
            connections=connections,
            support_group_id=GROUP_ID,
            bot_id=BOT_ID,
            **kwargs,
        )

    return _build


@pytest.fixture
def relay(relay_factory) -> RelayService:
    return relay_factory()


# =============================================================================
# Update builders
# =============================================================================

def private_message(user_id: int, message_id: int, text: str | None = "hello", **extra) -> dict:
    payload = {
        "message_id": message_id,
        "chat": {"id": user_id, "type": "private"},
        "from": {"id": user_id, "is_bot": False, "first_name": "Anna", "username": "anna"},
        "date": 0,
    }
    if text is not None:
        payload["text"] = text
    payload.update(extra)
    return payload


def thread_message(thread_id: int, message_id: int, text: str | None = "How can we help?", sender_id: int = OPERATOR_ID, is_bot: bool = False, **extra) -> dict:
    payload = {
        "message_id": message_id,
        "chat": {"id": GROUP_ID, "type": "supergroup", "is_forum": True},
        "from": {"id": sender_id, "is_bot": is_bot, "first_name": "Operator"},
        "date": 0,
        "message_thread_id": thread_id,
        "is_topic_message": True,
    }
    if text is not None:
        payload["text"] = text
    payload.update(extra)
    return payload


def new_session_id() -> str:
    return str(uuid.uuid4())


def failing(description: str = "Bad Request", code: int = 400, method: str = "sendMessage"):
    from supportdesk.core.exceptions import PlatformAPIError

    return PlatformAPIError(method, code, description)


def unavailable(message: str = "ConnectError") -> UpstreamUnavailableError:
    return UpstreamUnavailableError(message)
