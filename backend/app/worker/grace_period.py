"""
Grace period processor

Runs daily. For every `inadimplente` member:
- days_remaining > 0: private warning with the checkout link
- otherwise: farewell message, kick from the chat, then mark `removido`
  with reason `payment_failed`

Kick failures:
- USER_NOT_IN_GROUP: member already left, removed anyway
- BOT_NO_PERMISSION / CONFIG_MISSING: admin alerted right away
- anything else: left for the next run
"""
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime

from sqlmodel import Session

from app import crud
from app.core.config import settings
from app.core.result import ErrorCode, Result, fail
from app.enums import MemberStatus
from app.integrations.protocols import AdminAlerter, GroupMessenger
from app.models import Member, ensure_utc, utc_now
from app.services import alert_service, notification_service
from app.services.tenant_resolver import TenantResolution, fallback_resolution, resolve_group_for_member
from app.worker.single_flight import SingleFlight

logger = logging.getLogger(__name__)

JOB_NAME = "grace-period"
REMOVAL_REASON = "payment_failed"
PERSISTENT_ERROR_CODES = (ErrorCode.BOT_NO_PERMISSION, ErrorCode.CONFIG_MISSING)

guard = SingleFlight(JOB_NAME)


@dataclass
class GracePeriodStats:
    warned: int = 0
    kicked: int = 0
    already_removed: int = 0
    failed: int = 0
    duration_ms: int = 0


def days_remaining(inadimplente_at: datetime, now: datetime, grace_days: int) -> int:
    """Grace days left: grace_days minus whole days elapsed since the default."""
    elapsed = (now - inadimplente_at).total_seconds() / 86400
    return grace_days - math.floor(elapsed)


async def _remove_member(
    *,
    session: Session,
    messenger: GroupMessenger,
    alerter: AdminAlerter,
    member: Member,
    tenant: TenantResolution,
) -> str:
    """Kick and mark removed. Returns "kicked", "already_removed" or "failed"."""
    member_id = member.id
    telegram_id = member.telegram_id

    if telegram_id is None:
        removed = crud.transition_status(
            session=session,
            member_id=member_id,
            new_status=MemberStatus.removido,
            actor=JOB_NAME,
            reason=REMOVAL_REASON,
        )
        return "kicked" if removed.success else "failed"

    await notification_service.notify_member(
        messenger,
        telegram_id,
        notification_service.farewell_message(reason=REMOVAL_REASON, checkout_url=tenant.checkout_url),
        kind="farewell",
    )

    chat_id = tenant.chat_id
    kick: Result[None] = (
        await messenger.kick_member(telegram_id, chat_id)
        if chat_id
        else fail(ErrorCode.CONFIG_MISSING, "Group chat id not configured")
    )
    if not kick.success and kick.code != ErrorCode.USER_NOT_IN_GROUP:
        if kick.code in PERSISTENT_ERROR_CODES:
            await alert_service.kick_error_alert(
                alerter,
                member=member,
                error_code=kick.code.value,
                error_message=kick.message,
                chat_id=tenant.admin_chat_id,
            )
        else:
            logger.warning("Kick of member %s failed, retrying next run: %s", member_id, kick.message)
        return "failed"

    removed = crud.transition_status(
        session=session,
        member_id=member_id,
        new_status=MemberStatus.removido,
        actor=JOB_NAME,
        reason=REMOVAL_REASON,
    )
    if not removed.success:
        logger.warning("Member %s kicked but not marked removed: %s", member_id, removed.message)
        if removed.code == ErrorCode.RACE_CONDITION and chat_id:
            # paid while being kicked: undo the ban
            await messenger.unban_member(telegram_id, chat_id)
        return "failed"
    return "kicked" if kick.success else "already_removed"


async def _run(
    *,
    session: Session,
    messenger: GroupMessenger,
    alerter: AdminAlerter,
    now: datetime | None = None,
) -> GracePeriodStats:
    started = time.monotonic()
    stats = GracePeriodStats()
    now = now or utc_now()
    grace_days = settings.MEMBERSHIP_GRACE_PERIOD_DAYS

    configured = fallback_resolution(session=session)
    if configured.group_id is not None and configured.group is None:
        await alert_service.config_error_alert(
            alerter,
            job=JOB_NAME,
            message=f"Configured group {configured.group_id} not found",
        )
        return stats

    members = crud.list_members_by_status(
        session=session, status=MemberStatus.inadimplente, group_id=configured.group_id
    )
    if not members.success:
        logger.error("Could not list defaulted members: %s", members.message)
        return stats
    logger.info("Grace period run: %d defaulted members", len(members.data))

    tenants: dict[str | None, TenantResolution] = {}
    for member in members.data:
        if member.group_id not in tenants:
            tenants[member.group_id] = resolve_group_for_member(session=session, member=member)
        tenant = tenants[member.group_id]

        defaulted_at = ensure_utc(member.inadimplente_at or member.updated_at)
        remaining = days_remaining(defaulted_at, now, grace_days)
        if remaining > 0:
            await notification_service.notify_member(
                messenger,
                member.telegram_id,
                notification_service.grace_period_warning_message(
                    days_remaining=remaining, checkout_url=tenant.checkout_url
                ),
                kind="grace_warning",
            )
            stats.warned += 1
            continue

        outcome = await _remove_member(
            session=session, messenger=messenger, alerter=alerter, member=member, tenant=tenant
        )
        if outcome == "kicked":
            stats.kicked += 1
        elif outcome == "already_removed":
            stats.already_removed += 1
        else:
            stats.failed += 1

    stats.duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "Grace period done: warned=%d kicked=%d already_removed=%d failed=%d duration_ms=%d",
        stats.warned, stats.kicked, stats.already_removed, stats.failed, stats.duration_ms,
    )
    return stats


async def run_grace_period(
    *,
    session: Session,
    messenger: GroupMessenger,
    alerter: AdminAlerter,
    now: datetime | None = None,
) -> GracePeriodStats | None:
    return await guard.run(_run, session=session, messenger=messenger, alerter=alerter, now=now)
