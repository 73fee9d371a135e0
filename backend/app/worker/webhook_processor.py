"""
Webhook dispatcher

Drains the webhook_events queue every WEBHOOK_POLL_INTERVAL_SECONDS:

1. release events stuck in processing (crashed workers)
2. fetch up to WEBHOOK_BATCH_SIZE pending events, oldest first
3. per event: claim, run the handler, then complete or retry/fail
4. alert the admin chat for every event that reaches failed
"""
import logging
import time
from dataclasses import dataclass
from typing import Any

from sqlmodel import Session

from app import crud
from app.core.config import settings
from app.core.result import Result
from app.enums import WebhookEventStatus
from app.integrations.protocols import AdminAlerter, GroupMessenger, PaymentProvider
from app.models import WebhookEvent
from app.services import alert_service
from app.services.webhook_handlers import HandlerContext, HandlerOutcome, dispatch_event
from app.worker.single_flight import SingleFlight

logger = logging.getLogger(__name__)

guard = SingleFlight("process-webhooks")


@dataclass
class WebhookRunStats:
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    recovered: int = 0
    duration_ms: int = 0


async def _alert_failed(alerter: AdminAlerter, event: WebhookEvent) -> None:
    await alert_service.webhook_failure_alert(
        alerter,
        idempotency_key=event.idempotency_key,
        event_type=event.event_type,
        error_message=event.last_error or "unknown error",
        attempts=event.attempts,
    )


async def process_event(
    *,
    session: Session,
    provider: PaymentProvider,
    messenger: GroupMessenger,
    alerter: AdminAlerter,
    event: WebhookEvent,
) -> str:
    """
    Process one pending event

    Returns:
        "processed", "skipped", "retry", "failed", or "lost" when another
        worker claimed it first
    """
    event_id = event.id
    event_type = event.event_type
    payload: Any = event.payload

    if not crud.claim_webhook_event(session=session, event_id=event_id):
        logger.info("Webhook event %s claimed by another worker", event_id)
        return "lost"

    ctx = HandlerContext(
        session=session,
        provider=provider,
        messenger=messenger,
        alerter=alerter,
        event_id=event_id,
    )
    error_message: str | None = None
    result: Result[HandlerOutcome] | None = None
    try:
        result = await dispatch_event(ctx, event_type, payload)
    except Exception as exc:
        session.rollback()
        logger.exception("Webhook event %s handler raised", event_id)
        error_message = f"{type(exc).__name__}: {exc}"

    if result is not None and result.success:
        outcome = result.data
        completed = crud.complete_webhook_event(
            session=session, event_id=event_id, group_id=outcome.group_id
        )
        if not completed.success:
            logger.error("Could not complete webhook event %s: %s", event_id, completed.message)
        return "skipped" if outcome.skipped else "processed"

    if error_message is None:
        error_message = f"{result.code.value}: {result.message}" if result and result.error else "unknown error"
    retried = crud.retry_or_fail_webhook_event(
        session=session,
        event_id=event_id,
        error_message=error_message,
        max_attempts=settings.WEBHOOK_MAX_ATTEMPTS,
    )
    if not retried.success:
        logger.error("Could not record failure of webhook event %s: %s", event_id, retried.message)
        return "retry"
    if retried.data.status == WebhookEventStatus.failed:
        await _alert_failed(alerter, retried.data)
        return "failed"
    return "retry"


async def _process_batch(
    *,
    session: Session,
    provider: PaymentProvider,
    messenger: GroupMessenger,
    alerter: AdminAlerter,
) -> WebhookRunStats:
    started = time.monotonic()
    stats = WebhookRunStats()

    recovered = crud.recover_stuck_webhook_events(
        session=session,
        timeout_minutes=settings.WEBHOOK_STUCK_TIMEOUT_MINUTES,
        max_attempts=settings.WEBHOOK_MAX_ATTEMPTS,
    )
    if recovered.success:
        for event in recovered.data:
            stats.recovered += 1
            if event.status == WebhookEventStatus.failed:
                await _alert_failed(alerter, event)
    else:
        logger.error("Stuck event recovery failed: %s", recovered.message)

    pending = crud.fetch_pending_webhook_events(session=session, limit=settings.WEBHOOK_BATCH_SIZE)
    if not pending.success:
        logger.error("Could not fetch pending webhook events: %s", pending.message)
        return stats

    for event in pending.data:
        outcome = await process_event(
            session=session,
            provider=provider,
            messenger=messenger,
            alerter=alerter,
            event=event,
        )
        if outcome == "processed":
            stats.processed += 1
        elif outcome == "skipped":
            stats.skipped += 1
        elif outcome in ("retry", "failed"):
            stats.failed += 1

    stats.duration_ms = int((time.monotonic() - started) * 1000)
    if pending.data or stats.recovered:
        logger.info(
            "Webhook batch done: processed=%d skipped=%d failed=%d recovered=%d duration_ms=%d",
            stats.processed, stats.skipped, stats.failed, stats.recovered, stats.duration_ms,
        )
    return stats


async def process_webhooks(
    *,
    session: Session,
    provider: PaymentProvider,
    messenger: GroupMessenger,
    alerter: AdminAlerter,
) -> WebhookRunStats | None:
    """One dispatcher tick. Returns None when the previous tick is still running."""
    return await guard.run(
        _process_batch,
        session=session,
        provider=provider,
        messenger=messenger,
        alerter=alerter,
    )
