from __future__ import annotations

from datetime import timedelta

import pytest

from app import crud
from app.core.config import settings
from app.enums import MemberStatus, WebhookEventStatus
from app.models import Member, WebhookEvent, utc_now
from app.services import webhook_handlers
from app.worker import webhook_processor
from app.worker.single_flight import SingleFlight


def _enqueue(db, key: str, event_type: str, resource_id: str | None = "1") -> int:
    payload = {"data": {"id": resource_id}} if resource_id else {}
    result = crud.ingest_webhook_event(session=db, idempotency_key=key, event_type=event_type, payload=payload)
    return result.data[0].id


def _stored(db, event_id: int) -> WebhookEvent:
    event = db.get(WebhookEvent, event_id)
    db.refresh(event)
    return event


async def _tick(db, provider, messenger, alerter):
    return await webhook_processor.process_webhooks(
        session=db, provider=provider, messenger=messenger, alerter=alerter
    )


@pytest.mark.asyncio
async def test_event_completed_with_resolved_group(db, provider, messenger, alerter, make_group):
    make_group("g1", provider_plan_id="plan-1")
    provider.subscriptions["sub-1"] = {
        "id": "sub-1",
        "status": "authorized",
        "payer_email": "ana@example.com",
        "preapproval_plan_id": "plan-1",
    }
    event_id = _enqueue(db, "mp_subscription_preapproval_created_sub-1", "subscription_preapproval", "sub-1")

    stats = await _tick(db, provider, messenger, alerter)

    assert stats.processed == 1
    assert stats.failed == 0
    event = _stored(db, event_id)
    assert event.status == WebhookEventStatus.completed
    assert event.group_id == "g1"
    assert event.processed_at is not None
    member = crud.get_member_by_subscription_id(session=db, subscription_id="sub-1").data
    assert member.status == MemberStatus.trial


@pytest.mark.asyncio
async def test_unknown_event_type_is_completed_as_skipped(db, provider, messenger, alerter):
    event_id = _enqueue(db, "mp_merchant_order_unknown_9", "merchant_order")

    stats = await _tick(db, provider, messenger, alerter)

    assert stats.skipped == 1
    assert _stored(db, event_id).status == WebhookEventStatus.completed


@pytest.mark.asyncio
async def test_provider_error_retries_then_fails_with_alert(db, provider, messenger, alerter, monkeypatch):
    from app.core.result import ErrorCode, fail

    monkeypatch.setattr(settings, "WEBHOOK_MAX_ATTEMPTS", 2)
    provider.failures["pay-err"] = fail(ErrorCode.PROVIDER_ERROR, "HTTP 500")
    event_id = _enqueue(db, "mp_payment_created_pay-err", "payment", "pay-err")

    first = await _tick(db, provider, messenger, alerter)
    assert first.failed == 1
    event = _stored(db, event_id)
    assert event.status == WebhookEventStatus.pending
    assert event.attempts == 1
    assert event.last_error == "PROVIDER_ERROR: HTTP 500"
    assert alerter.alerts == []

    await _tick(db, provider, messenger, alerter)
    event = _stored(db, event_id)
    assert event.status == WebhookEventStatus.failed
    assert event.attempts == 2
    assert len(alerter.alerts) == 1
    assert "mp_payment_created_pay-err" in alerter.alerts[0]

    # failed events are never picked up again
    third = await _tick(db, provider, messenger, alerter)
    assert third.processed == third.failed == 0


@pytest.mark.asyncio
async def test_handler_exception_is_recorded_for_retry(db, provider, messenger, alerter, monkeypatch):
    async def boom(ctx, resource_id, resource=None):
        raise RuntimeError("database went away")

    monkeypatch.setitem(webhook_handlers.HANDLERS, "payment", boom)
    event_id = _enqueue(db, "mp_payment_created_boom", "payment", "boom")

    stats = await _tick(db, provider, messenger, alerter)

    assert stats.failed == 1
    event = _stored(db, event_id)
    assert event.status == WebhookEventStatus.pending
    assert event.last_error == "RuntimeError: database went away"


@pytest.mark.asyncio
async def test_missing_resource_id_is_skipped(db, provider, messenger, alerter):
    event_id = _enqueue(db, "mp_payment_created_none", "payment", None)

    stats = await _tick(db, provider, messenger, alerter)
    assert stats.skipped == 1
    assert _stored(db, event_id).status == WebhookEventStatus.completed


@pytest.mark.asyncio
async def test_batch_is_limited_and_oldest_first(db, provider, messenger, alerter, monkeypatch):
    monkeypatch.setattr(settings, "WEBHOOK_BATCH_SIZE", 2)
    ids = [_enqueue(db, f"mp_merchant_order_x_{i}", "merchant_order") for i in range(3)]

    stats = await _tick(db, provider, messenger, alerter)

    assert stats.skipped == 2
    statuses = [_stored(db, event_id).status for event_id in ids]
    assert statuses == [WebhookEventStatus.completed, WebhookEventStatus.completed, WebhookEventStatus.pending]


@pytest.mark.asyncio
async def test_stuck_event_reaching_max_attempts_alerts(db, provider, messenger, alerter, monkeypatch):
    monkeypatch.setattr(settings, "WEBHOOK_MAX_ATTEMPTS", 1)
    stamp = utc_now() - timedelta(minutes=settings.WEBHOOK_STUCK_TIMEOUT_MINUTES + 5)
    event = WebhookEvent(
        idempotency_key="mp_payment_created_stuck",
        event_type="payment",
        payload={"data": {"id": "stuck"}},
        status=WebhookEventStatus.processing,
        attempts=0,
        created_at=stamp,
        updated_at=stamp,
    )
    db.add(event)
    db.commit()
    db.refresh(event)

    stats = await _tick(db, provider, messenger, alerter)

    assert stats.recovered == 1
    assert _stored(db, event.id).status == WebhookEventStatus.failed
    assert len(alerter.alerts) == 1
    assert "max attempts reached" in alerter.alerts[0]


@pytest.mark.asyncio
async def test_processed_payment_updates_member(db, provider, messenger, alerter, make_member):
    member = make_member(telegram_id=501, provider_subscription_id="sub-5")
    provider.payments["pay-5"] = {
        "id": "pay-5",
        "status": "approved",
        "payer": {"email": "p@example.com"},
        "point_of_interaction": {"transaction_data": {"subscription_id": "sub-5"}},
    }
    _enqueue(db, "mp_payment_created_pay-5", "payment", "pay-5")

    stats = await _tick(db, provider, messenger, alerter)

    assert stats.processed == 1
    db.refresh(member)
    assert member.status == MemberStatus.ativo
    assert db.get(Member, member.id).last_payment_id == "pay-5"


@pytest.mark.asyncio
async def test_single_flight_skips_overlapping_run():
    guard = SingleFlight("test-job")
    calls = []

    async def job():
        calls.append("outer")
        assert guard.running
        nested = await guard.run(inner)
        assert nested is None
        return "done"

    async def inner():
        calls.append("inner")
        return "never"

    assert await guard.run(job) == "done"
    assert calls == ["outer"]
    assert not guard.running
    assert await guard.run(inner) == "never"
