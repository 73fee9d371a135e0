"""
Capabilities consumed by handlers and jobs

Handlers and jobs only depend on these protocols. The HTTP clients in
mercadopago.py and telegram.py implement them; tests pass fakes.
"""
from __future__ import annotations

from typing import Any, Protocol

from app.core.result import Result


class PaymentProvider(Protocol):
    """Read access to payment provider resources. NOT_FOUND is distinct from transient errors."""

    async def get_subscription(self, subscription_id: str) -> Result[dict[str, Any]]: ...

    async def get_payment(self, payment_id: str) -> Result[dict[str, Any]]: ...


class GroupMessenger(Protocol):
    """Private messages and chat membership management."""

    async def send_private_message(self, telegram_id: int, text: str) -> Result[None]: ...

    async def kick_member(self, telegram_id: int, chat_id: int) -> Result[None]: ...

    async def unban_member(self, telegram_id: int, chat_id: int) -> Result[None]: ...


class AdminAlerter(Protocol):
    """
    Operator alerts. Best effort: implementations never raise.

    chat_id selects a tenant admin chat; None means the global admin chat.
    """

    async def alert(self, text: str, *, chat_id: int | None = None) -> None: ...
