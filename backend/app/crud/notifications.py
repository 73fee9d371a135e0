"""Reminder delivery log"""
import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.core.result import ErrorCode, Result, fail, ok
from app.models import MemberNotification, utc_now

logger = logging.getLogger(__name__)


def has_notification_since(
    *, session: Session, member_id: int, kind: str, since: datetime
) -> Result[bool]:
    """
    Whether a reminder of this kind reached the member since the given time

    Args:
        member_id: recipient
        kind: reminder kind, e.g. trial_reminder
        since: start of the window, usually the start of the local day

    Returns:
        True when one was logged, STORAGE_ERROR on a database failure
    """
    statement = select(MemberNotification.id).where(
        MemberNotification.member_id == member_id,
        MemberNotification.kind == kind,
        MemberNotification.sent_at >= since,
    )
    try:
        found = session.exec(statement.limit(1)).first()
    except SQLAlchemyError as exc:
        return fail(ErrorCode.STORAGE_ERROR, str(exc))
    return ok(found is not None)


def register_notification(
    *,
    session: Session,
    member_id: int,
    kind: str,
    channel: str = "telegram",
    sent_at: datetime | None = None,
) -> Result[MemberNotification]:
    """
    Log a delivered reminder

    Args:
        kind: reminder kind, e.g. trial_reminder
        sent_at: delivery time, now when None

    Returns:
        the stored row, or STORAGE_ERROR
    """
    entry = MemberNotification(
        member_id=member_id, kind=kind, channel=channel, sent_at=sent_at or utc_now()
    )
    try:
        session.add(entry)
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Could not log %s for member %s: %s", kind, member_id, exc)
        return fail(ErrorCode.STORAGE_ERROR, str(exc))
    session.refresh(entry)
    return ok(entry)
