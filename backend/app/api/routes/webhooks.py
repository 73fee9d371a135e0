"""
Payment provider webhooks

Notifications are validated, stored as pending webhook_events and
acknowledged right away. The dispatcher processes them asynchronously.
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Header, Query

from app import crud
from app.api.deps import SessionDep
from app.api.errors import AppError, invalid_signature, webhook_secret_missing
from app.api.schemas import ApiEnvelope, WebhookReceipt
from app.core.config import settings
from app.integrations.mercadopago import verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def idempotency_key(event_type: str, action: str | None, data_id: str) -> str:
    return f"mp_{event_type}_{action or 'unknown'}_{data_id}"


@router.post("/mercadopago", response_model=ApiEnvelope)
def mercadopago_webhook(
    session: SessionDep,
    payload: dict[str, Any],
    x_signature: str | None = Header(default=None),
    x_request_id: str | None = Header(default=None),
    query_data_id: str | None = Query(default=None, alias="data.id"),
) -> ApiEnvelope:
    data = payload.get("data")
    data_id = str(data.get("id")) if isinstance(data, dict) and data.get("id") else query_data_id
    event_type = payload.get("type")
    if not event_type or not data_id:
        raise AppError(code=400001, message="Missing event type or data.id", status_code=400)

    if settings.webhook_validation_disabled:
        logger.warning("Webhook signature validation skipped (local environment)")
    else:
        secret = settings.MP_WEBHOOK_SECRET
        if not secret:
            raise webhook_secret_missing()
        if not verify_webhook_signature(
            secret=secret,
            signature_header=x_signature,
            request_id=x_request_id,
            data_id=data_id,
        ):
            logger.warning("Rejected webhook with invalid signature: type=%s id=%s", event_type, data_id)
            raise invalid_signature()

    key = idempotency_key(str(event_type), payload.get("action"), data_id)
    stored = crud.ingest_webhook_event(
        session=session, idempotency_key=key, event_type=str(event_type), payload=payload
    )
    if not stored.success:
        raise AppError(code=500002, message="Could not store webhook event", status_code=500)

    event, created = stored.data
    if not created:
        logger.info("Duplicate webhook ignored: %s", key)
        return ApiEnvelope(data=WebhookReceipt(duplicate=True))
    logger.info("Webhook stored: %s (event %s)", key, event.id)
    return ApiEnvelope(data=WebhookReceipt(event_id=event.id))
