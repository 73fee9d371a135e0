"""
Job scheduler

Runs the membership jobs in one process (times in SCHEDULER_TIMEZONE):
- process-webhooks: every WEBHOOK_POLL_INTERVAL_SECONDS
- grace-period: daily at 00:01
- reconciliation: daily at 03:00
- trial-reminders: daily at 09:00
- renewal-reminders: daily at 10:00

Usage:
    python -m app.worker.scheduler
"""
import asyncio
import logging

import sentry_sdk
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import settings
from app.core.db import get_session
from app.integrations.mercadopago import MercadoPagoClient
from app.integrations.telegram import TelegramBotClient
from app.worker.grace_period import run_grace_period
from app.worker.reconciliation import run_reconciliation
from app.worker.renewal_reminders import run_renewal_reminders
from app.worker.trial_reminders import run_trial_reminders
from app.worker.webhook_processor import process_webhooks

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def process_webhooks_job() -> None:
    bot = TelegramBotClient()
    with get_session() as session:
        await process_webhooks(
            session=session, provider=MercadoPagoClient(), messenger=bot, alerter=bot
        )


async def grace_period_job() -> None:
    bot = TelegramBotClient()
    with get_session() as session:
        await run_grace_period(session=session, messenger=bot, alerter=bot)


async def reconciliation_job() -> None:
    bot = TelegramBotClient()
    with get_session() as session:
        await run_reconciliation(session=session, provider=MercadoPagoClient(), alerter=bot)


async def trial_reminders_job() -> None:
    with get_session() as session:
        await run_trial_reminders(session=session, messenger=TelegramBotClient())


async def renewal_reminders_job() -> None:
    with get_session() as session:
        await run_renewal_reminders(session=session, messenger=TelegramBotClient())


def build_scheduler() -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone=settings.SCHEDULER_TIMEZONE)
    scheduler.add_job(
        process_webhooks_job,
        IntervalTrigger(seconds=settings.WEBHOOK_POLL_INTERVAL_SECONDS),
        id="process_webhooks",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        grace_period_job,
        CronTrigger(
            hour=settings.GRACE_PERIOD_CRON_HOUR,
            minute=settings.GRACE_PERIOD_CRON_MINUTE,
            timezone=settings.SCHEDULER_TIMEZONE,
        ),
        id="grace_period",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        reconciliation_job,
        CronTrigger(
            hour=settings.RECONCILIATION_CRON_HOUR,
            minute=settings.RECONCILIATION_CRON_MINUTE,
            timezone=settings.SCHEDULER_TIMEZONE,
        ),
        id="reconciliation",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        trial_reminders_job,
        CronTrigger(
            hour=settings.TRIAL_REMINDERS_CRON_HOUR,
            minute=settings.TRIAL_REMINDERS_CRON_MINUTE,
            timezone=settings.SCHEDULER_TIMEZONE,
        ),
        id="trial_reminders",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        renewal_reminders_job,
        CronTrigger(
            hour=settings.RENEWAL_REMINDERS_CRON_HOUR,
            minute=settings.RENEWAL_REMINDERS_CRON_MINUTE,
            timezone=settings.SCHEDULER_TIMEZONE,
        ),
        id="renewal_reminders",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return scheduler


async def _serve() -> None:
    scheduler = build_scheduler()
    scheduler.start()
    logger.info(
        "Scheduler started: webhooks every %ss, grace period %02d:%02d, reconciliation %02d:%02d, "
        "trial reminders %02d:%02d, renewal reminders %02d:%02d (%s)",
        settings.WEBHOOK_POLL_INTERVAL_SECONDS,
        settings.GRACE_PERIOD_CRON_HOUR,
        settings.GRACE_PERIOD_CRON_MINUTE,
        settings.RECONCILIATION_CRON_HOUR,
        settings.RECONCILIATION_CRON_MINUTE,
        settings.TRIAL_REMINDERS_CRON_HOUR,
        settings.TRIAL_REMINDERS_CRON_MINUTE,
        settings.RENEWAL_REMINDERS_CRON_HOUR,
        settings.RENEWAL_REMINDERS_CRON_MINUTE,
        settings.SCHEDULER_TIMEZONE,
    )
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)


def main() -> None:
    if settings.SENTRY_DSN and settings.ENVIRONMENT != "local":  # pragma: no cover
        sentry_sdk.init(dsn=str(settings.SENTRY_DSN))
    asyncio.run(_serve())


if __name__ == "__main__":
    main()
