"""
WebSocket connection manager for the web chat widget.

Tracks open sockets per web session, which ticket a session is bound to,
and when each socket was last heard from so dead ones can be swept.
"""

from typing import Dict, Set
from uuid import UUID
import asyncio
import json
import logging
import time

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class SessionState:
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    LINKED = "linked"


class ConnectionManager:
    """Manages WebSocket connections per web session and ticket."""

    def __init__(self, clock=time.monotonic):
        # session_id -> set of active WebSocket connections
        self._connections: Dict[str, Set[WebSocket]] = {}
        # session_id -> ticket_id (set once the session owns or joins a ticket)
        self._session_tickets: Dict[str, UUID] = {}
        # websocket -> last activity timestamp
        self._last_seen: Dict[WebSocket, float] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def connect(self, websocket: WebSocket, session_id: str):
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self._connections.setdefault(session_id, set()).add(websocket)
            self._last_seen[websocket] = self._clock()

    async def bind(self, session_id: str, ticket_id: UUID):
        """Route ticket-addressed pushes to this session."""
        async with self._lock:
            self._session_tickets[session_id] = ticket_id

    async def disconnect(self, websocket: WebSocket, session_id: str):
        """Remove a WebSocket connection."""
        async with self._lock:
            self._remove(websocket, session_id)

    def _remove(self, websocket: WebSocket, session_id: str):
        self._last_seen.pop(websocket, None)
        if session_id in self._connections:
            self._connections[session_id].discard(websocket)
            if not self._connections[session_id]:
                del self._connections[session_id]
                self._session_tickets.pop(session_id, None)

    def session_state(self, session_id: str) -> str:
        if not self._connections.get(session_id):
            return SessionState.DISCONNECTED
        if session_id in self._session_tickets:
            return SessionState.LINKED
        return SessionState.CONNECTED

    def get_ticket_id(self, session_id: str) -> UUID | None:
        return self._session_tickets.get(session_id)

    def touch(self, websocket: WebSocket):
        """Record client activity (any inbound frame, including pong)."""
        if websocket in self._last_seen:
            self._last_seen[websocket] = self._clock()

    async def send_to_session(self, session_id: str, type: str, data: dict) -> int:
        """Send a frame to every socket of a session. Returns delivered count."""
        async with self._lock:
            connections = self._connections.get(session_id, set()).copy()

        if not connections:
            return 0

        payload = json.dumps({"type": type, "data": data}, default=str)
        delivered = 0
        closed = []

        for ws in connections:
            try:
                await ws.send_text(payload)
                delivered += 1
            except Exception:
                # Connection closed or errored
                closed.append(ws)

        if closed:
            async with self._lock:
                for ws in closed:
                    self._remove(ws, session_id)

        return delivered

    async def send_to_ticket(self, ticket_id: UUID, type: str, data: dict) -> int:
        """Send a frame to every session bound to a ticket."""
        async with self._lock:
            session_ids = [sid for sid, tid in self._session_tickets.items() if tid == ticket_id]

        delivered = 0
        for session_id in session_ids:
            delivered += await self.send_to_session(session_id, type, data)
        return delivered

    async def ping_all(self) -> int:
        """Send a ping frame to every session."""
        async with self._lock:
            session_ids = list(self._connections)

        delivered = 0
        for session_id in session_ids:
            delivered += await self.send_to_session(session_id, "ping", {})
        return delivered

    async def sweep_inactive(self, max_idle_seconds: float) -> int:
        """Close and drop sockets silent for longer than max_idle_seconds."""
        now = self._clock()
        async with self._lock:
            stale = [
                (ws, sid)
                for sid, sockets in self._connections.items()
                for ws in sockets
                if now - self._last_seen.get(ws, now) > max_idle_seconds
            ]
            for ws, sid in stale:
                self._remove(ws, sid)

        for ws, sid in stale:
            try:
                await ws.close(code=1001)
            except Exception:
                logger.debug("Socket for session %s already closed", sid)

        if stale:
            logger.info("Swept %s inactive web chat connections", len(stale))
        return len(stale)

    def get_connected_count(self, session_id: str) -> int:
        return len(self._connections.get(session_id, set()))

    def get_total_connections(self) -> int:
        return sum(len(conns) for conns in self._connections.values())


# Singleton instance
manager = ConnectionManager()
