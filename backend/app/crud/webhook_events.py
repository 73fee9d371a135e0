"""Webhook event queue operations

State changes are conditional UPDATEs so several dispatchers can share the
table: only one claims an event, and a retry never double-counts attempts.
"""
import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from app.core.result import ErrorCode, Result, fail, ok
from app.enums import WebhookEventStatus
from app.models import WebhookEvent, utc_now

logger = logging.getLogger(__name__)


def get_event(*, session: Session, event_id: int) -> Result[WebhookEvent]:
    """Fresh copy of one event; the identity map is refreshed from the row."""
    try:
        event = session.get(WebhookEvent, event_id, populate_existing=True)
    except SQLAlchemyError as exc:
        return fail(ErrorCode.STORAGE_ERROR, str(exc))
    if not event:
        return fail(ErrorCode.NOT_FOUND, f"Webhook event {event_id} not found")
    return ok(event)


def get_event_by_key(*, session: Session, idempotency_key: str) -> WebhookEvent | None:
    statement = select(WebhookEvent).where(WebhookEvent.idempotency_key == idempotency_key)
    return session.exec(statement).first()


def ingest_event(
    *,
    session: Session,
    idempotency_key: str,
    event_type: str,
    payload: dict[str, Any] | None,
) -> Result[tuple[WebhookEvent, bool]]:
    """
    Store a provider notification as a pending event

    Returns:
        (event, created); created is False when the idempotency key was
        already stored, in which case the existing row is returned
    """
    event = WebhookEvent(
        idempotency_key=idempotency_key,
        event_type=event_type,
        payload=payload,
        status=WebhookEventStatus.pending,
        attempts=0,
    )
    try:
        session.add(event)
        session.commit()
    except IntegrityError:
        session.rollback()
        existing = get_event_by_key(session=session, idempotency_key=idempotency_key)
        if existing is None:
            return fail(ErrorCode.STORAGE_ERROR, f"Could not store event {idempotency_key}")
        return ok((existing, False))
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Failed to store webhook event %s: %s", idempotency_key, exc)
        return fail(ErrorCode.STORAGE_ERROR, str(exc))
    session.refresh(event)
    return ok((event, True))


def fetch_pending(*, session: Session, limit: int) -> Result[list[WebhookEvent]]:
    """
    Oldest pending events first

    Args:
        limit: batch size (WEBHOOK_BATCH_SIZE for the dispatcher)

    Returns:
        up to limit events ordered by created_at, then id
    """
    statement = (
        select(WebhookEvent)
        .where(WebhookEvent.status == WebhookEventStatus.pending.value)
        .order_by(WebhookEvent.created_at, WebhookEvent.id)
        .limit(limit)
    )
    try:
        events = session.exec(statement).all()
    except SQLAlchemyError as exc:
        return fail(ErrorCode.STORAGE_ERROR, str(exc))
    return ok(list(events))


def _conditional_update(session: Session, statement) -> int:
    result = session.exec(statement.execution_options(synchronize_session=False))  # type: ignore[call-overload]
    session.commit()
    return result.rowcount


def claim(*, session: Session, event_id: int) -> bool:
    """Move a pending event to processing. True only for the single winner."""
    statement = (
        update(WebhookEvent)
        .where(
            WebhookEvent.id == event_id,
            WebhookEvent.status == WebhookEventStatus.pending.value,
        )
        .values(status=WebhookEventStatus.processing.value, updated_at=utc_now())
    )
    try:
        return _conditional_update(session, statement) == 1
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Failed to claim webhook event %s: %s", event_id, exc)
        return False


def complete(*, session: Session, event_id: int, group_id: str | None = None) -> Result[None]:
    """
    Mark a processing event completed

    Args:
        event_id: event claimed by this worker
        group_id: tenant the handler resolved, stored when known

    Returns:
        RACE_CONDITION when the event is no longer in processing
    """
    now = utc_now()
    values: dict[str, Any] = {
        "status": WebhookEventStatus.completed.value,
        "processed_at": now,
        "updated_at": now,
    }
    if group_id is not None:
        values["group_id"] = group_id
    statement = (
        update(WebhookEvent)
        .where(
            WebhookEvent.id == event_id,
            WebhookEvent.status == WebhookEventStatus.processing.value,
        )
        .values(**values)
    )
    try:
        if _conditional_update(session, statement) == 0:
            return fail(ErrorCode.RACE_CONDITION, f"Webhook event {event_id} is no longer processing")
    except SQLAlchemyError as exc:
        session.rollback()
        return fail(ErrorCode.STORAGE_ERROR, str(exc))
    return ok(None)


def retry_or_fail(
    *,
    session: Session,
    event_id: int,
    error_message: str,
    max_attempts: int,
) -> Result[WebhookEvent]:
    """
    Record a failed processing attempt

    Increments attempts; the event goes back to pending, or to failed once
    attempts reach max_attempts. The caller alerts on failed.

    Returns:
        the event after the update
    """
    found = get_event(session=session, event_id=event_id)
    if not found.success:
        return found
    event = found.data
    attempts = event.attempts
    new_attempts = attempts + 1
    new_status = (
        WebhookEventStatus.failed if new_attempts >= max_attempts else WebhookEventStatus.pending
    )
    statement = (
        update(WebhookEvent)
        .where(
            WebhookEvent.id == event_id,
            WebhookEvent.status == WebhookEventStatus.processing.value,
            WebhookEvent.attempts == attempts,
        )
        .values(
            status=new_status.value,
            attempts=new_attempts,
            last_error=error_message,
            updated_at=utc_now(),
        )
    )
    try:
        if _conditional_update(session, statement) == 0:
            return fail(ErrorCode.RACE_CONDITION, f"Webhook event {event_id} changed concurrently")
    except SQLAlchemyError as exc:
        session.rollback()
        return fail(ErrorCode.STORAGE_ERROR, str(exc))

    if new_status == WebhookEventStatus.failed:
        logger.error(
            "Webhook event %s failed permanently after %d attempts: %s",
            event_id, new_attempts, error_message,
        )
    else:
        logger.warning(
            "Webhook event %s will be retried (attempt %d/%d): %s",
            event_id, new_attempts, max_attempts, error_message,
        )
    return get_event(session=session, event_id=event_id)


def recover_stuck(
    *,
    session: Session,
    timeout_minutes: int,
    max_attempts: int,
    now: datetime | None = None,
) -> Result[list[WebhookEvent]]:
    """
    Release events left in processing by a crashed worker

    Every processing row untouched for longer than timeout_minutes gets one
    more attempt counted and goes back to pending, or to failed when the
    attempt limit is reached.

    Returns:
        the recovered events in their new state
    """
    cutoff = (now or utc_now()) - timedelta(minutes=timeout_minutes)
    statement = select(WebhookEvent).where(
        WebhookEvent.status == WebhookEventStatus.processing.value,
        WebhookEvent.updated_at < cutoff,
    )
    try:
        stuck = session.exec(statement).all()
    except SQLAlchemyError as exc:
        return fail(ErrorCode.STORAGE_ERROR, str(exc))

    recovered: list[WebhookEvent] = []
    for event in stuck:
        event_id = event.id
        attempts = event.attempts
        new_attempts = attempts + 1
        if new_attempts >= max_attempts:
            new_status = WebhookEventStatus.failed
            message = f"Stuck in processing for > {timeout_minutes} minutes, max attempts reached"
        else:
            new_status = WebhookEventStatus.pending
            message = f"Reset from stuck processing state after {timeout_minutes} minutes"
        update_statement = (
            update(WebhookEvent)
            .where(
                WebhookEvent.id == event_id,
                WebhookEvent.status == WebhookEventStatus.processing.value,
                WebhookEvent.attempts == attempts,
            )
            .values(
                status=new_status.value,
                attempts=new_attempts,
                last_error=message,
                updated_at=utc_now(),
            )
        )
        try:
            changed = _conditional_update(session, update_statement)
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("Failed to recover stuck webhook event %s: %s", event_id, exc)
            continue
        if changed:
            logger.warning("Recovered stuck webhook event %s -> %s", event_id, new_status.value)
            recovered.append(get_event(session=session, event_id=event_id).data)
    return ok(recovered)


def count_by_status(*, session: Session) -> dict[str, int]:
    """Queue depth per status, every status present even when zero."""
    statement = select(WebhookEvent.status, func.count()).group_by(WebhookEvent.status)
    counts = {status.value: 0 for status in WebhookEventStatus}
    for status, total in session.exec(statement).all():
        counts[str(status)] = total
    return counts
