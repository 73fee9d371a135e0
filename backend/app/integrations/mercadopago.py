"""
Mercado Pago API integration

Wraps the read endpoints the membership flow needs:
- GET /preapproval/{id}: subscription (preapproval) details
- GET /v1/payments/{id}: payment details

plus verification of the `x-signature` header sent with webhooks.

Docs: https://www.mercadopago.com.br/developers/en/docs/your-integrations/notifications/webhooks
"""
from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any

import httpx

from app.core.config import settings
from app.core.result import ErrorCode, Result, fail, ok

logger = logging.getLogger(__name__)

_SUBSCRIPTION_PATH = "/preapproval/{id}"
_PAYMENT_PATH = "/v1/payments/{id}"


def parse_signature_header(header: str | None) -> dict[str, str]:
    """
    Parse `x-signature: ts=1704908010,v1=618c8534...` into its parts

    Returns:
        dict with `ts` and `v1` when present
    """
    parts: dict[str, str] = {}
    if not header:
        return parts
    for chunk in header.split(","):
        key, sep, value = chunk.strip().partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def verify_webhook_signature(
    *,
    secret: str,
    signature_header: str | None,
    request_id: str | None,
    data_id: str,
) -> bool:
    """
    Verify a Mercado Pago webhook signature

    The signed manifest is `id:{data.id};request-id:{x-request-id};ts:{ts};`
    where the id and request-id parts are left out when absent, and `v1`
    is its HMAC-SHA256 hex digest keyed with the webhook secret.

    Args:
        secret: MP_WEBHOOK_SECRET
        signature_header: raw x-signature header
        request_id: raw x-request-id header
        data_id: `data.id` from the notification body

    Returns:
        whether the signature matches
    """
    parts = parse_signature_header(signature_header)
    ts = parts.get("ts")
    received = parts.get("v1")
    if not ts or not received:
        return False

    manifest = ""
    if data_id:
        manifest += f"id:{data_id};"
    if request_id:
        manifest += f"request-id:{request_id};"
    manifest += f"ts:{ts};"
    expected = hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, received)


class MercadoPagoClient:
    """
    Mercado Pago REST client

    Every call uses a fixed timeout (EXTERNAL_HTTP_TIMEOUT_SECONDS).
    Errors come back as Result values:
    - 404: NOT_FOUND, the resource does not exist
    - anything else: PROVIDER_ERROR, retryable
    """

    def __init__(
        self,
        *,
        access_token: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._access_token = access_token or settings.MP_ACCESS_TOKEN
        self._base_url = (base_url or settings.MP_API_URL).rstrip("/")
        self._timeout = timeout or settings.EXTERNAL_HTTP_TIMEOUT_SECONDS
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }

    async def _get(self, path: str, resource: str, resource_id: str) -> Result[dict[str, Any]]:
        if not self._access_token:
            return fail(ErrorCode.CONFIG_MISSING, "MP_ACCESS_TOKEN not configured")

        url = f"{self._base_url}{path.format(id=resource_id)}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                r = await client.get(url, headers=self._headers())
        except httpx.TimeoutException:
            logger.warning("Mercado Pago %s %s timed out", resource, resource_id)
            return fail(ErrorCode.PROVIDER_ERROR, f"Mercado Pago {resource} request timed out")
        except httpx.HTTPError as e:
            logger.warning("Mercado Pago %s %s request error: %s", resource, resource_id, e)
            return fail(ErrorCode.PROVIDER_ERROR, f"Mercado Pago {resource} request error: {e}")

        if r.status_code == 404:
            return fail(ErrorCode.NOT_FOUND, f"Mercado Pago {resource} {resource_id} not found")
        if r.status_code >= 400:
            logger.warning(
                "Mercado Pago %s %s returned HTTP %d", resource, resource_id, r.status_code
            )
            return fail(
                ErrorCode.PROVIDER_ERROR,
                f"Mercado Pago {resource} error: HTTP {r.status_code}",
            )

        try:
            data = r.json()
        except ValueError:
            return fail(ErrorCode.INVALID_PAYLOAD, f"Mercado Pago {resource} invalid response")
        if not isinstance(data, dict):
            return fail(ErrorCode.INVALID_PAYLOAD, f"Mercado Pago {resource} invalid response")
        return ok(data)

    async def get_subscription(self, subscription_id: str) -> Result[dict[str, Any]]:
        """
        Fetch a subscription (preapproval)

        Relevant fields: status (authorized/paused/cancelled/pending),
        payer_email, payer_id, preapproval_plan_id.
        """
        return await self._get(_SUBSCRIPTION_PATH, "subscription", subscription_id)

    async def get_payment(self, payment_id: str) -> Result[dict[str, Any]]:
        """
        Fetch a payment

        Relevant fields: status (approved/rejected/...), payer.email,
        payment_method_id, and the subscription id under
        point_of_interaction.transaction_data, metadata or preapproval_id.
        """
        return await self._get(_PAYMENT_PATH, "payment", payment_id)
