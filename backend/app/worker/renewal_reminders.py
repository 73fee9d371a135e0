"""
Renewal reminders

Runs daily. Active members who pay by PIX or boleto have to pay every
period by hand; they get a private message 5, 3 and 1 days before
subscription_ends_at. Card subscriptions renew on their own and are left
out.
"""
import logging
import time
from datetime import datetime

from sqlmodel import Session

from app import crud
from app.integrations.protocols import GroupMessenger
from app.models import utc_now
from app.services import notification_service
from app.services.tenant_resolver import TenantResolution, resolve_group_for_member
from app.worker.reminders import FAILED, ReminderStats, days_until, send_reminder
from app.worker.single_flight import SingleFlight

logger = logging.getLogger(__name__)

JOB_NAME = "renewal-reminders"
NOTIFICATION_KIND = "renewal_reminder"
TARGET_DAYS = (5, 3, 1)
# Mercado Pago payment_method_id values for PIX and boleto
MANUAL_PAYMENT_METHODS = ("pix", "boleto", "bolbradesco", "pec")

guard = SingleFlight(JOB_NAME)


async def _run(
    *, session: Session, messenger: GroupMessenger, now: datetime | None = None
) -> ReminderStats:
    started = time.monotonic()
    stats = ReminderStats()
    now = now or utc_now()

    members = crud.list_members_for_renewal_reminder(
        session=session, payment_methods=MANUAL_PAYMENT_METHODS
    )
    if not members.success:
        logger.error("Could not list members for renewal reminders: %s", members.message)
        return stats

    due = []
    for member in members.data:
        remaining = days_until(member.subscription_ends_at, now)
        if remaining in TARGET_DAYS:
            due.append((member, remaining))
    logger.info("Renewal reminders: %d of %d manual-payment members due", len(due), len(members.data))

    tenants: dict[str | None, TenantResolution] = {}
    for member, remaining in due:
        if member.group_id not in tenants:
            tenants[member.group_id] = resolve_group_for_member(session=session, member=member)
        checkout_url = tenants[member.group_id].checkout_url
        if not checkout_url:
            logger.warning("No checkout URL for member %s, renewal reminder not sent", member.id)
            stats.count(FAILED)
            continue

        outcome = await send_reminder(
            session=session,
            messenger=messenger,
            member=member,
            kind=NOTIFICATION_KIND,
            text=notification_service.renewal_reminder_message(
                days_until=remaining, checkout_url=checkout_url
            ),
            now=now,
        )
        stats.count(outcome)

    stats.duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "Renewal reminders done: sent=%d skipped=%d failed=%d duration_ms=%d",
        stats.sent, stats.skipped, stats.failed, stats.duration_ms,
    )
    return stats


async def run_renewal_reminders(
    *, session: Session, messenger: GroupMessenger, now: datetime | None = None
) -> ReminderStats | None:
    return await guard.run(_run, session=session, messenger=messenger, now=now)
