from __future__ import annotations

from datetime import timedelta

from sqlmodel import Session

from app import crud
from app.enums import WebhookEventStatus
from app.models import WebhookEvent, utc_now


def _ingest(db, key: str, event_type: str = "payment") -> WebhookEvent:
    result = crud.ingest_webhook_event(
        session=db, idempotency_key=key, event_type=event_type, payload={"data": {"id": key}}
    )
    assert result.success
    return result.data[0]


def _stuck_event(db, key: str, attempts: int, minutes_ago: int) -> WebhookEvent:
    stamp = utc_now() - timedelta(minutes=minutes_ago)
    event = WebhookEvent(
        idempotency_key=key,
        event_type="payment",
        payload={},
        status=WebhookEventStatus.processing,
        attempts=attempts,
        created_at=stamp,
        updated_at=stamp,
    )
    db.add(event)
    db.commit()
    db.refresh(event)
    return event


def test_ingest_is_idempotent(db):
    first = crud.ingest_webhook_event(
        session=db, idempotency_key="mp_payment_created_1", event_type="payment", payload={"a": 1}
    )
    second = crud.ingest_webhook_event(
        session=db, idempotency_key="mp_payment_created_1", event_type="payment", payload={"a": 2}
    )
    event, created = first.data
    duplicate, created_again = second.data
    assert created is True
    assert created_again is False
    assert duplicate.id == event.id
    assert duplicate.payload == {"a": 1}
    assert event.status == WebhookEventStatus.pending
    assert event.attempts == 0


def test_fetch_pending_oldest_first_and_limited(db):
    for key in ("k1", "k2", "k3"):
        _ingest(db, key)
    _stuck_event(db, "k-processing", attempts=0, minutes_ago=0)

    result = crud.fetch_pending_webhook_events(session=db, limit=2)
    assert [e.idempotency_key for e in result.data] == ["k1", "k2"]


def test_claim_has_a_single_winner(db, engine):
    event = _ingest(db, "claim-me")
    event_id = event.id

    with Session(engine) as other:
        first = crud.claim_webhook_event(session=db, event_id=event_id)
        second = crud.claim_webhook_event(session=other, event_id=event_id)

    assert (first, second) == (True, False)


def test_retry_then_fail_at_max_attempts(db):
    event = _ingest(db, "retry-me")
    event_id = event.id

    assert crud.claim_webhook_event(session=db, event_id=event_id)
    retried = crud.retry_or_fail_webhook_event(
        session=db, event_id=event_id, error_message="PROVIDER_ERROR: timeout", max_attempts=2
    )
    assert retried.data.status == WebhookEventStatus.pending
    assert retried.data.attempts == 1
    assert retried.data.last_error == "PROVIDER_ERROR: timeout"

    assert crud.claim_webhook_event(session=db, event_id=event_id)
    failed = crud.retry_or_fail_webhook_event(
        session=db, event_id=event_id, error_message="PROVIDER_ERROR: 500", max_attempts=2
    )
    assert failed.data.status == WebhookEventStatus.failed
    assert failed.data.attempts == 2

    # terminal: cannot be claimed again
    assert crud.claim_webhook_event(session=db, event_id=event_id) is False


def test_complete_records_group(db):
    event = _ingest(db, "complete-me")
    event_id = event.id
    crud.claim_webhook_event(session=db, event_id=event_id)

    assert crud.complete_webhook_event(session=db, event_id=event_id, group_id="g1").success
    stored = db.get(WebhookEvent, event_id)
    db.refresh(stored)
    assert stored.status == WebhookEventStatus.completed
    assert stored.group_id == "g1"
    assert stored.processed_at is not None


def test_recover_stuck_resets_then_fails(db):
    event = _stuck_event(db, "stuck", attempts=0, minutes_ago=10)
    event_id = event.id
    _stuck_event(db, "fresh", attempts=0, minutes_ago=1)

    recovered = crud.recover_stuck_webhook_events(session=db, timeout_minutes=5, max_attempts=2)
    assert [e.idempotency_key for e in recovered.data] == ["stuck"]
    first = recovered.data[0]
    assert first.status == WebhookEventStatus.pending
    assert first.attempts == 1
    assert first.last_error == "Reset from stuck processing state after 5 minutes"

    # claimed again and abandoned again
    stored = db.get(WebhookEvent, event_id)
    stored.status = WebhookEventStatus.processing
    stored.updated_at = utc_now() - timedelta(minutes=10)
    db.add(stored)
    db.commit()

    recovered = crud.recover_stuck_webhook_events(session=db, timeout_minutes=5, max_attempts=2)
    final = recovered.data[0]
    assert final.status == WebhookEventStatus.failed
    assert final.attempts == 2
    assert final.last_error == "Stuck in processing for > 5 minutes, max attempts reached"


def test_count_by_status(db):
    _ingest(db, "c1")
    _ingest(db, "c2")
    _stuck_event(db, "c3", attempts=0, minutes_ago=0)

    counts = crud.count_webhook_events_by_status(session=db)
    assert counts["pending"] == 2
    assert counts["processing"] == 1
    assert counts["failed"] == 0
