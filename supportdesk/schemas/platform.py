"""Pydantic schemas for inbound platform (Bot API) updates."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

MEDIA_FIELDS = (
    "photo",
    "document",
    "video",
    "voice",
    "audio",
    "sticker",
    "animation",
    "video_note",
    "contact",
    "location",
)


class PlatformUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    is_bot: bool = False
    first_name: str = ""
    last_name: str | None = None
    username: str | None = None

    @property
    def display_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or (self.username or str(self.id))


class PlatformChat(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    type: str
    is_forum: bool = False


class PlatformMessage(BaseModel):
    """Incoming or edited message."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    message_id: int
    chat: PlatformChat
    from_user: PlatformUser | None = Field(default=None, alias="from")
    date: int = 0
    edit_date: int | None = None
    message_thread_id: int | None = None
    is_topic_message: bool = False
    text: str | None = None
    caption: str | None = None

    @property
    def is_private(self) -> bool:
        return self.chat.type == "private"

    @property
    def body(self) -> str:
        return self.text or self.caption or ""

    @property
    def has_media(self) -> bool:
        extra = self.model_extra or {}
        return any(extra.get(name) for name in MEDIA_FIELDS)

    @property
    def photo_file_id(self) -> str | None:
        """Largest size of an attached photo."""
        sizes = (self.model_extra or {}).get("photo") or []
        return sizes[-1].get("file_id") if sizes else None

    @property
    def voice(self) -> dict | None:
        return (self.model_extra or {}).get("voice")

    @property
    def thread_id(self) -> int | None:
        """Forum thread id, ignoring replies outside a topic."""
        if self.is_topic_message and self.message_thread_id:
            return self.message_thread_id
        return None


class CallbackQuery(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    from_user: PlatformUser = Field(alias="from")
    data: str | None = None
    message: PlatformMessage | None = None


class PlatformUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    update_id: int
    message: PlatformMessage | None = None
    edited_message: PlatformMessage | None = None
    callback_query: CallbackQuery | None = None
