"""Pydantic schemas for the web chat widget HTTP API and socket frames."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ChatSessionRead(BaseModel):
    session_id: str
    ticket_id: UUID | None = None
    status: str | None = None


class ChatMessageRead(BaseModel):
    """One message in the web chat history."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    direction: str
    channel: str
    text: str | None = None
    created_at: datetime


class ChatHistoryResponse(BaseModel):
    ticket_id: UUID | None = None
    status: str | None = None
    messages: list[ChatMessageRead] = []


class LinkTokenRead(BaseModel):
    token: str
    expires_at: datetime
    deep_link: str | None = None


class ClientFrame(BaseModel):
    """Client -> server socket frame."""

    model_config = ConfigDict(extra="ignore")

    type: str
    data: dict = Field(default_factory=dict)


class ErrorFrame(BaseModel):
    code: str
    message: str
