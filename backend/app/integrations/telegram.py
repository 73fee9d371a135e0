"""
Telegram Bot API integration

Implements the messenger and alerter capabilities on top of the Bot API
methods sendMessage, banChatMember and unbanChatMember.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from app.core.config import settings
from app.core.result import ErrorCode, Result, fail, ok

logger = logging.getLogger(__name__)

_USER_BLOCKED_MARKERS = (
    "bot was blocked by the user",
    "user is deactivated",
    "bot can't initiate conversation",
    "chat not found",
)
_USER_NOT_IN_GROUP_MARKERS = (
    "user not found",
    "participant_id_invalid",
    "user_not_participant",
    "member not found",
)
_NO_PERMISSION_MARKERS = (
    "not enough rights",
    "chat_admin_required",
    "have no rights",
    "bot is not a member",
    "can't remove chat owner",
)


def classify_error(description: str, *, private: bool) -> ErrorCode:
    """
    Map a Bot API error description to an ErrorCode

    Args:
        description: `description` from the failed response
        private: whether the call targeted a private chat (sendMessage)
    """
    text = description.lower()
    if private and any(marker in text for marker in _USER_BLOCKED_MARKERS):
        return ErrorCode.USER_BLOCKED_BOT
    if any(marker in text for marker in _NO_PERMISSION_MARKERS):
        return ErrorCode.BOT_NO_PERMISSION
    if not private and any(marker in text for marker in _USER_NOT_IN_GROUP_MARKERS):
        return ErrorCode.USER_NOT_IN_GROUP
    if not private and "chat not found" in text:
        return ErrorCode.CONFIG_MISSING
    return ErrorCode.TELEGRAM_ERROR


class TelegramBotClient:
    """
    Telegram Bot API client

    Every call uses a fixed timeout (EXTERNAL_HTTP_TIMEOUT_SECONDS) and
    returns a Result; transport failures become TELEGRAM_ERROR.
    """

    def __init__(
        self,
        *,
        token: str | None = None,
        api_url: str | None = None,
        admin_chat_id: int | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token or settings.TELEGRAM_BOT_TOKEN
        self._api_url = (api_url or settings.TELEGRAM_API_URL).rstrip("/")
        self._admin_chat_id = admin_chat_id or settings.TELEGRAM_ADMIN_GROUP_ID
        self._timeout = timeout or settings.EXTERNAL_HTTP_TIMEOUT_SECONDS
        self._transport = transport

    async def _call(self, method: str, payload: dict[str, Any], *, private: bool) -> Result[Any]:
        if not self._token:
            return fail(ErrorCode.CONFIG_MISSING, "TELEGRAM_BOT_TOKEN not configured")

        url = f"{self._api_url}/bot{self._token}/{method}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                r = await client.post(url, json=payload)
                data = r.json()
        except httpx.TimeoutException:
            return fail(ErrorCode.TELEGRAM_ERROR, f"Telegram {method} timed out")
        except (httpx.HTTPError, ValueError) as e:
            return fail(ErrorCode.TELEGRAM_ERROR, f"Telegram {method} error: {e}")

        if isinstance(data, dict) and data.get("ok"):
            return ok(data.get("result"))

        description = str(data.get("description") if isinstance(data, dict) else r.text)
        code = classify_error(description, private=private)
        if code == ErrorCode.TELEGRAM_ERROR and private and r.status_code == 403:
            code = ErrorCode.USER_BLOCKED_BOT
        logger.warning("Telegram %s failed (%s): %s", method, code.value, description)
        return fail(code, description)

    async def send_private_message(self, telegram_id: int, text: str) -> Result[None]:
        result = await self._call(
            "sendMessage",
            {"chat_id": telegram_id, "text": text, "parse_mode": "HTML"},
            private=True,
        )
        return ok(None) if result.success else result

    async def send_group_message(self, chat_id: int, text: str) -> Result[None]:
        result = await self._call(
            "sendMessage",
            {"chat_id": chat_id, "text": text, "parse_mode": "HTML"},
            private=False,
        )
        return ok(None) if result.success else result

    async def kick_member(self, telegram_id: int, chat_id: int) -> Result[None]:
        """Ban the user from the chat; they can come back only after an unban."""
        if not chat_id:
            return fail(ErrorCode.CONFIG_MISSING, "Group chat id not configured")
        result = await self._call(
            "banChatMember", {"chat_id": chat_id, "user_id": telegram_id}, private=False
        )
        return ok(None) if result.success else result

    async def unban_member(self, telegram_id: int, chat_id: int) -> Result[None]:
        """Lift a ban so the user can rejoin. No-op when the user is not banned."""
        if not chat_id:
            return fail(ErrorCode.CONFIG_MISSING, "Group chat id not configured")
        result = await self._call(
            "unbanChatMember",
            {"chat_id": chat_id, "user_id": telegram_id, "only_if_banned": True},
            private=False,
        )
        return ok(None) if result.success else result

    async def alert(self, text: str, *, chat_id: int | None = None) -> None:
        """
        Send an operator alert. Never raises.

        Args:
            text: alert body
            chat_id: tenant admin chat; the global admin chat when omitted
        """
        target = chat_id or self._admin_chat_id
        if not target:
            logger.warning("Admin alert dropped, TELEGRAM_ADMIN_GROUP_ID not configured: %s", text)
            return
        try:
            result = await self.send_group_message(target, text)
        except Exception:
            logger.exception("Admin alert delivery raised")
            return
        if not result.success:
            logger.error("Admin alert delivery failed: %s", result.message)
