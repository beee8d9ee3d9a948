"""Messaging platform Bot API client (Telegram-style HTTP API over httpx)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from supportdesk.core.config import settings
from supportdesk.core.exceptions import PlatformAPIError, UpstreamUnavailableError
from supportdesk.services.http_service import request_with_retries

logger = logging.getLogger(__name__)

PLATFORM_MAX_ATTEMPTS = 2
PLATFORM_RETRY_STATUSES = {502, 503, 504}


class PlatformClient:
    """
    Thin async wrapper around the Bot API.

    Every method returns the decoded ``result`` field. A response with
    ``ok: false`` raises PlatformAPIError; transport failures raise
    UpstreamUnavailableError.
    """

    def __init__(
        self,
        token: str | None = None,
        api_base: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._token = token if token is not None else settings.PLATFORM_BOT_TOKEN
        self._api_base = (api_base or settings.PLATFORM_API_BASE).rstrip("/")
        self._client = client or httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.PLATFORM_TIMEOUT_SECONDS
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _url(self, method: str) -> str:
        return f"{self._api_base}/bot{self._token}/{method}"

    async def _call(self, method: str, payload: dict[str, Any] | None = None) -> Any:
        body = {k: v for k, v in (payload or {}).items() if v is not None}
        try:
            response = await request_with_retries(
                lambda: self._client.post(self._url(method), json=body),
                max_attempts=PLATFORM_MAX_ATTEMPTS,
                retry_statuses=PLATFORM_RETRY_STATUSES,
            )
        except httpx.HTTPError as e:
            logger.warning("Platform call %s failed: %s", method, type(e).__name__)
            raise UpstreamUnavailableError(f"{method} failed: {type(e).__name__}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamUnavailableError(
                f"{method} returned non-JSON response ({response.status_code})"
            ) from e

        if not data.get("ok"):
            parameters = data.get("parameters") or {}
            raise PlatformAPIError(
                method,
                data.get("error_code", response.status_code),
                data.get("description", ""),
                retry_after=parameters.get("retry_after"),
            )
        return data.get("result")

    # -------------------------------------------------------------------------
    # Bot API methods
    # -------------------------------------------------------------------------

    async def get_me(self) -> dict:
        return await self._call("getMe")

    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        message_thread_id: int | None = None,
        reply_markup: dict | None = None,
        parse_mode: str | None = None,
    ) -> dict:
        return await self._call(
            "sendMessage",
            {
                "chat_id": chat_id,
                "text": text,
                "message_thread_id": message_thread_id,
                "reply_markup": reply_markup,
                "parse_mode": parse_mode,
            },
        )

    async def copy_message(
        self,
        chat_id: int,
        from_chat_id: int,
        message_id: int,
        *,
        message_thread_id: int | None = None,
        caption: str | None = None,
    ) -> dict:
        """Copy a message (media included). Result holds the new message_id."""
        return await self._call(
            "copyMessage",
            {
                "chat_id": chat_id,
                "from_chat_id": from_chat_id,
                "message_id": message_id,
                "message_thread_id": message_thread_id,
                "caption": caption,
            },
        )

    async def edit_message_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        *,
        reply_markup: dict | None = None,
    ) -> dict:
        return await self._call(
            "editMessageText",
            {
                "chat_id": chat_id,
                "message_id": message_id,
                "text": text,
                "reply_markup": reply_markup,
            },
        )

    async def edit_message_caption(self, chat_id: int, message_id: int, caption: str) -> dict:
        return await self._call(
            "editMessageCaption",
            {"chat_id": chat_id, "message_id": message_id, "caption": caption},
        )

    async def create_forum_topic(self, chat_id: int, name: str) -> dict:
        """Result holds message_thread_id."""
        return await self._call("createForumTopic", {"chat_id": chat_id, "name": name[:128]})

    async def pin_chat_message(self, chat_id: int, message_id: int) -> bool:
        return await self._call(
            "pinChatMessage",
            {"chat_id": chat_id, "message_id": message_id, "disable_notification": True},
        )

    async def answer_callback_query(self, callback_query_id: str, text: str | None = None) -> bool:
        return await self._call(
            "answerCallbackQuery",
            {"callback_query_id": callback_query_id, "text": text},
        )

    async def get_file(self, file_id: str) -> dict:
        """Result holds file_path, valid for download for at least an hour."""
        return await self._call("getFile", {"file_id": file_id})

    async def download_file(self, file_path: str) -> bytes:
        """
        Fetch file contents from the platform's file endpoint.

        The URL embeds the bot token, so it is never logged or handed out.
        """
        url = f"{self._api_base}/file/bot{self._token}/{file_path}"
        try:
            response = await request_with_retries(
                lambda: self._client.get(url),
                max_attempts=PLATFORM_MAX_ATTEMPTS,
                retry_statuses=PLATFORM_RETRY_STATUSES,
            )
        except httpx.HTTPError as e:
            logger.warning("Platform file download failed: %s", type(e).__name__)
            raise UpstreamUnavailableError(f"File download failed: {type(e).__name__}") from e
        if response.status_code != 200:
            raise UpstreamUnavailableError(f"File download returned {response.status_code}")
        return response.content
