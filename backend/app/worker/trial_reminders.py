"""
Trial reminders

Runs daily. Every `trial` member whose trial ends in 1 to 3 days gets a
private message with the checkout link of their group.
"""
import logging
import time
from datetime import datetime, timedelta

from sqlmodel import Session

from app import crud
from app.core.config import settings
from app.enums import MemberStatus
from app.integrations.protocols import GroupMessenger
from app.models import Member, ensure_utc, utc_now
from app.services import notification_service
from app.services.tenant_resolver import TenantResolution, resolve_group_for_member
from app.worker.reminders import FAILED, ReminderStats, days_until, send_reminder
from app.worker.single_flight import SingleFlight

logger = logging.getLogger(__name__)

JOB_NAME = "trial-reminders"
NOTIFICATION_KIND = "trial_reminder"
TARGET_DAYS = (1, 2, 3)

guard = SingleFlight(JOB_NAME)


def trial_end(member: Member) -> datetime | None:
    if member.trial_ends_at is not None:
        return ensure_utc(member.trial_ends_at)
    if member.trial_started_at is not None:
        return ensure_utc(member.trial_started_at) + timedelta(days=settings.MEMBERSHIP_TRIAL_DAYS)
    return None


async def _run(
    *, session: Session, messenger: GroupMessenger, now: datetime | None = None
) -> ReminderStats:
    started = time.monotonic()
    stats = ReminderStats()
    now = now or utc_now()

    members = crud.list_members_by_status(session=session, status=MemberStatus.trial)
    if not members.success:
        logger.error("Could not list trial members: %s", members.message)
        return stats

    due = []
    for member in members.data:
        ends_at = trial_end(member)
        if ends_at is None:
            continue
        remaining = days_until(ends_at, now)
        if remaining in TARGET_DAYS:
            due.append((member, remaining))
    logger.info("Trial reminders: %d of %d trial members due", len(due), len(members.data))

    tenants: dict[str | None, TenantResolution] = {}
    for member, remaining in due:
        if member.group_id not in tenants:
            tenants[member.group_id] = resolve_group_for_member(session=session, member=member)
        checkout_url = tenants[member.group_id].checkout_url
        if not checkout_url:
            logger.warning("No checkout URL for member %s, trial reminder not sent", member.id)
            stats.count(FAILED)
            continue

        outcome = await send_reminder(
            session=session,
            messenger=messenger,
            member=member,
            kind=NOTIFICATION_KIND,
            text=notification_service.trial_reminder_message(
                days_remaining=remaining, checkout_url=checkout_url
            ),
            now=now,
        )
        stats.count(outcome)

    stats.duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "Trial reminders done: sent=%d skipped=%d failed=%d duration_ms=%d",
        stats.sent, stats.skipped, stats.failed, stats.duration_ms,
    )
    return stats


async def run_trial_reminders(
    *, session: Session, messenger: GroupMessenger, now: datetime | None = None
) -> ReminderStats | None:
    return await guard.run(_run, session=session, messenger=messenger, now=now)
