from __future__ import annotations

import hashlib
import hmac
import json

import httpx
import pytest

from app.core.result import ErrorCode
from app.integrations.mercadopago import (
    MercadoPagoClient,
    parse_signature_header,
    verify_webhook_signature,
)
from app.integrations.telegram import TelegramBotClient, classify_error


def _sign(secret: str, data_id: str, request_id: str, ts: str) -> str:
    manifest = f"id:{data_id};request-id:{request_id};ts:{ts};"
    digest = hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    return f"ts={ts},v1={digest}"


# ---------------------------------------------------------------------------
# Webhook signature
# ---------------------------------------------------------------------------


def test_parse_signature_header():
    assert parse_signature_header("ts=1704908010, v1=abc") == {"ts": "1704908010", "v1": "abc"}
    assert parse_signature_header(None) == {}
    assert parse_signature_header("garbage") == {}


def test_verify_webhook_signature():
    header = _sign("s3cret", "123", "req-1", "1704908010")
    assert verify_webhook_signature(secret="s3cret", signature_header=header, request_id="req-1", data_id="123")
    assert not verify_webhook_signature(secret="other", signature_header=header, request_id="req-1", data_id="123")
    assert not verify_webhook_signature(secret="s3cret", signature_header=header, request_id="req-2", data_id="123")
    assert not verify_webhook_signature(secret="s3cret", signature_header=header, request_id="req-1", data_id="124")
    assert not verify_webhook_signature(secret="s3cret", signature_header="ts=1", request_id="req-1", data_id="123")


def test_signature_without_request_id_leaves_it_out_of_the_manifest():
    digest = hmac.new(b"s3cret", b"id:123;ts:1700;", hashlib.sha256).hexdigest()
    header = f"ts=1700,v1={digest}"

    assert verify_webhook_signature(secret="s3cret", signature_header=header, request_id=None, data_id="123")
    assert verify_webhook_signature(secret="s3cret", signature_header=header, request_id="", data_id="123")
    assert not verify_webhook_signature(secret="s3cret", signature_header=header, request_id="req-1", data_id="123")


# ---------------------------------------------------------------------------
# Mercado Pago client
# ---------------------------------------------------------------------------


def _mp_client(handler) -> MercadoPagoClient:
    return MercadoPagoClient(
        access_token="token-123",
        base_url="https://mp.test",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_mp_get_subscription_sends_bearer_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"id": "sub-1", "status": "authorized"})

    result = await _mp_client(handler).get_subscription("sub-1")

    assert result.success
    assert result.data["status"] == "authorized"
    assert seen == {"url": "https://mp.test/preapproval/sub-1", "auth": "Bearer token-123"}


@pytest.mark.asyncio
async def test_mp_get_payment_path():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/payments/55"
        return httpx.Response(200, json={"id": 55, "status": "approved"})

    result = await _mp_client(handler).get_payment("55")
    assert result.data["id"] == 55


@pytest.mark.asyncio
async def test_mp_not_found_and_server_errors():
    statuses = iter([404, 500])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(next(statuses), json={"message": "nope"})

    client = _mp_client(handler)
    missing = await client.get_payment("1")
    broken = await client.get_payment("1")

    assert missing.code == ErrorCode.NOT_FOUND
    assert broken.code == ErrorCode.PROVIDER_ERROR
    assert "HTTP 500" in broken.message


@pytest.mark.asyncio
async def test_mp_timeout_is_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    result = await _mp_client(handler).get_subscription("sub-1")
    assert result.code == ErrorCode.PROVIDER_ERROR
    assert "timed out" in result.message


@pytest.mark.asyncio
async def test_mp_non_object_body_is_invalid_payload():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=["not", "a", "dict"])

    result = await _mp_client(handler).get_subscription("sub-1")
    assert result.code == ErrorCode.INVALID_PAYLOAD


@pytest.mark.asyncio
async def test_mp_missing_token_is_config_error(monkeypatch):
    from app.core.config import settings

    monkeypatch.setattr(settings, "MP_ACCESS_TOKEN", None)
    client = MercadoPagoClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))
    result = await client.get_payment("1")
    assert result.code == ErrorCode.CONFIG_MISSING


# ---------------------------------------------------------------------------
# Telegram client
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "description,private,expected",
    [
        ("Forbidden: bot was blocked by the user", True, ErrorCode.USER_BLOCKED_BOT),
        ("Bad Request: user not found", False, ErrorCode.USER_NOT_IN_GROUP),
        ("Bad Request: not enough rights to restrict/unrestrict chat member", False, ErrorCode.BOT_NO_PERMISSION),
        ("Bad Request: chat not found", False, ErrorCode.CONFIG_MISSING),
        ("Too Many Requests: retry after 5", False, ErrorCode.TELEGRAM_ERROR),
    ],
)
def test_classify_error(description, private, expected):
    assert classify_error(description, private=private) == expected


def _tg_client(handler, admin_chat_id: int | None = None) -> TelegramBotClient:
    return TelegramBotClient(
        token="bot-token",
        api_url="https://tg.test",
        admin_chat_id=admin_chat_id,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_tg_kick_and_unban_requests():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"ok": True, "result": True})

    client = _tg_client(handler)
    assert (await client.kick_member(42, -100123)).success
    assert (await client.unban_member(42, -100123)).success

    assert calls[0] == ("/botbot-token/banChatMember", {"chat_id": -100123, "user_id": 42})
    assert calls[1] == (
        "/botbot-token/unbanChatMember",
        {"chat_id": -100123, "user_id": 42, "only_if_banned": True},
    )


@pytest.mark.asyncio
async def test_tg_errors_are_classified():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("sendMessage"):
            return httpx.Response(403, json={"ok": False, "description": "Forbidden: bot was blocked by the user"})
        return httpx.Response(400, json={"ok": False, "description": "Bad Request: user not found"})

    client = _tg_client(handler)
    sent = await client.send_private_message(42, "hi")
    kicked = await client.kick_member(42, -100123)

    assert sent.code == ErrorCode.USER_BLOCKED_BOT
    assert kicked.code == ErrorCode.USER_NOT_IN_GROUP


@pytest.mark.asyncio
async def test_tg_kick_without_chat_is_config_error():
    client = _tg_client(lambda request: httpx.Response(200, json={"ok": True}))
    result = await client.kick_member(42, 0)
    assert result.code == ErrorCode.CONFIG_MISSING


@pytest.mark.asyncio
async def test_tg_alert_goes_to_admin_chat():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True, "result": {}})

    await _tg_client(handler, admin_chat_id=-100999).alert("something broke")
    assert calls[0]["chat_id"] == -100999
    assert calls[0]["text"] == "something broke"


@pytest.mark.asyncio
async def test_tg_alert_prefers_tenant_admin_chat():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True, "result": {}})

    client = _tg_client(handler, admin_chat_id=-100999)
    await client.alert("tenant news", chat_id=-100555)
    await client.alert("global news", chat_id=None)

    assert [c["chat_id"] for c in calls] == [-100555, -100999]


@pytest.mark.asyncio
async def test_tg_alert_without_admin_chat_is_dropped():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"ok": True})

    await _tg_client(handler).alert("nobody listening")
    assert calls == []


@pytest.mark.asyncio
async def test_tg_alert_swallows_transport_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    await _tg_client(handler, admin_chat_id=-100999).alert("still fine")
