"""
Reconciliation sweep

Runs daily and compares every `ativo` member that has a Mercado Pago
subscription against the provider. Read-only: differences are reported to
the admin chat, never corrected here.
"""
import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass

from sqlmodel import Session

from app import crud
from app.core.config import settings
from app.core.result import ErrorCode
from app.integrations.protocols import AdminAlerter, PaymentProvider
from app.models import Member
from app.services import alert_service
from app.worker.single_flight import SingleFlight

logger = logging.getLogger(__name__)

DESYNC_STATUSES = frozenset({"cancelled", "paused", "pending"})
PROGRESS_LOG_EVERY = 100
CRITICAL_FAILURE_RATE = 0.5

guard = SingleFlight("reconciliation")


@dataclass
class ReconciliationStats:
    total: int = 0
    synced: int = 0
    desynced: int = 0
    failed: int = 0
    duration_ms: int = 0


async def _run(
    *,
    session: Session,
    provider: PaymentProvider,
    alerter: AdminAlerter,
    delay_seconds: float | None = None,
) -> ReconciliationStats:
    started = time.monotonic()
    stats = ReconciliationStats()
    delay = settings.RECONCILIATION_RATE_LIMIT_MS / 1000 if delay_seconds is None else delay_seconds

    members = crud.list_members_for_reconciliation(session=session)
    if not members.success:
        logger.error("Could not list members for reconciliation: %s", members.message)
        return stats
    stats.total = len(members.data)
    logger.info("Reconciliation started: %d active members", stats.total)

    desynced: list[tuple[Member, str]] = []
    error_codes: Counter[str] = Counter()
    for index, member in enumerate(members.data):
        if index and delay:
            await asyncio.sleep(delay)

        fetched = await provider.get_subscription(member.provider_subscription_id)
        if fetched.success:
            provider_status = str(fetched.data.get("status") or "")
            if provider_status in DESYNC_STATUSES:
                desynced.append((member, provider_status))
            else:
                stats.synced += 1
        elif fetched.code == ErrorCode.NOT_FOUND:
            desynced.append((member, "not_found"))
        else:
            stats.failed += 1
            error_codes[fetched.code.value if fetched.code else "UNKNOWN"] += 1
            logger.warning(
                "Reconciliation lookup failed for member %s: %s", member.id, fetched.message
            )

        if (index + 1) % PROGRESS_LOG_EVERY == 0:
            logger.info("Reconciliation progress: %d/%d", index + 1, stats.total)

    stats.desynced = len(desynced)
    for member, provider_status in desynced:
        logger.warning(
            "Member %s out of sync: local=ativo provider=%s", member.id, provider_status
        )
    await alert_service.desync_alert(alerter, desynced)

    if stats.total and stats.failed / stats.total > CRITICAL_FAILURE_RATE:
        await alert_service.reconciliation_critical_alert(
            alerter,
            total=stats.total,
            failed=stats.failed,
            top_errors=error_codes.most_common(3),
        )

    stats.duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "Reconciliation done: total=%d synced=%d desynced=%d failed=%d duration_ms=%d",
        stats.total, stats.synced, stats.desynced, stats.failed, stats.duration_ms,
    )
    return stats


async def run_reconciliation(
    *,
    session: Session,
    provider: PaymentProvider,
    alerter: AdminAlerter,
    delay_seconds: float | None = None,
) -> ReconciliationStats | None:
    return await guard.run(
        _run, session=session, provider=provider, alerter=alerter, delay_seconds=delay_seconds
    )
