"""
Reminder delivery shared by the trial and renewal reminder jobs

A member gets at most one reminder of each kind per local day
(SCHEDULER_TIMEZONE). Members without a Telegram id and members who blocked
the bot count as skipped, not failed.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from sqlmodel import Session

from app import crud
from app.core.config import settings
from app.core.result import ErrorCode
from app.integrations.protocols import GroupMessenger
from app.models import Member, ensure_utc

logger = logging.getLogger(__name__)

SENT = "sent"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class ReminderStats:
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    duration_ms: int = 0

    def count(self, outcome: str) -> None:
        if outcome == SENT:
            self.sent += 1
        elif outcome == SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1


def start_of_local_day(now: datetime) -> datetime:
    """Midnight of `now`'s day in SCHEDULER_TIMEZONE, as a UTC datetime."""
    local = ensure_utc(now).astimezone(ZoneInfo(settings.SCHEDULER_TIMEZONE))
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc)


def days_until(ends_at: datetime, now: datetime) -> int:
    """Whole days from the start of today until `ends_at`, rounded up."""
    remaining = (ensure_utc(ends_at) - start_of_local_day(now)).total_seconds()
    return math.ceil(remaining / 86400)


async def send_reminder(
    *,
    session: Session,
    messenger: GroupMessenger,
    member: Member,
    kind: str,
    text: str,
    now: datetime,
) -> str:
    """
    Deliver one reminder unless the member already got one today

    Args:
        member: recipient
        kind: reminder kind logged in member_notifications
        text: message body
        now: run time; the daily window is the local day containing it

    Returns:
        "sent", "skipped" or "failed"
    """
    if member.telegram_id is None:
        logger.info("Skipping %s for member %s: no telegram_id", kind, member.id)
        return SKIPPED

    already = crud.has_notification_since(
        session=session, member_id=member.id, kind=kind, since=start_of_local_day(now)
    )
    if not already.success:
        logger.error("Could not check %s history for member %s: %s", kind, member.id, already.message)
        return FAILED
    if already.data:
        logger.debug("%s already sent today to member %s", kind, member.id)
        return SKIPPED

    try:
        delivered = await messenger.send_private_message(member.telegram_id, text)
    except Exception:
        logger.exception("%s to member %s raised", kind, member.id)
        return FAILED
    if not delivered.success:
        if delivered.code == ErrorCode.USER_BLOCKED_BOT:
            logger.info("%s not delivered to member %s: bot blocked", kind, member.id)
            return SKIPPED
        logger.warning("%s to member %s failed: %s", kind, member.id, delivered.message)
        return FAILED

    # a message that went out counts as sent even if the log write fails
    crud.register_notification(session=session, member_id=member.id, kind=kind, sent_at=now)
    return SENT
