from __future__ import annotations

from datetime import timedelta

import pytest

from app.core.config import settings
from app.core.result import ErrorCode, fail
from app.enums import MemberStatus
from app.models import utc_now
from app.worker.grace_period import days_remaining, run_grace_period

PUBLIC_CHAT_ID = settings.TELEGRAM_PUBLIC_GROUP_ID


def _defaulted(make_member, days_ago: float, **fields):
    fields.setdefault("telegram_id", 900)
    return make_member(
        status=MemberStatus.inadimplente,
        inadimplente_at=utc_now() - timedelta(days=days_ago),
        **fields,
    )


def test_days_remaining_counts_whole_days():
    start = utc_now()
    assert days_remaining(start, start, 2) == 2
    assert days_remaining(start, start + timedelta(hours=23), 2) == 2
    assert days_remaining(start, start + timedelta(days=1, hours=1), 2) == 1
    assert days_remaining(start, start + timedelta(days=2), 2) == 0
    assert days_remaining(start, start + timedelta(days=5), 2) == -3


@pytest.mark.asyncio
async def test_member_inside_grace_period_is_warned(db, messenger, alerter, make_member):
    member = _defaulted(make_member, days_ago=1.1)

    stats = await run_grace_period(session=db, messenger=messenger, alerter=alerter)

    assert stats.warned == 1
    assert stats.kicked == 0
    assert messenger.kicks == []
    assert messenger.messages[0][0] == member.telegram_id
    db.refresh(member)
    assert member.status == MemberStatus.inadimplente


@pytest.mark.asyncio
async def test_member_past_grace_period_is_kicked(db, messenger, alerter, make_member):
    member = _defaulted(make_member, days_ago=3)

    stats = await run_grace_period(session=db, messenger=messenger, alerter=alerter)

    assert stats.kicked == 1
    assert messenger.kicks == [(member.telegram_id, PUBLIC_CHAT_ID)]
    # farewell goes out before the kick
    assert messenger.messages[0][0] == member.telegram_id
    db.refresh(member)
    assert member.status == MemberStatus.removido
    assert member.kicked_at is not None
    assert member.notes.endswith("grace-period: inadimplente -> removido: payment_failed")


@pytest.mark.asyncio
async def test_member_who_already_left_is_marked_removed(db, messenger, alerter, make_member):
    member = _defaulted(make_member, days_ago=4, telegram_id=901)
    messenger.kick_results[901] = fail(ErrorCode.USER_NOT_IN_GROUP, "user not found")

    stats = await run_grace_period(session=db, messenger=messenger, alerter=alerter)

    assert stats.already_removed == 1
    db.refresh(member)
    assert member.status == MemberStatus.removido
    assert alerter.alerts == []


@pytest.mark.asyncio
async def test_missing_permission_alerts_and_keeps_member(db, messenger, alerter, make_member):
    member = _defaulted(make_member, days_ago=4, telegram_id=902)
    messenger.kick_results[902] = fail(ErrorCode.BOT_NO_PERMISSION, "not enough rights")

    stats = await run_grace_period(session=db, messenger=messenger, alerter=alerter)

    assert stats.failed == 1
    assert len(alerter.alerts) == 1
    assert "BOT_NO_PERMISSION" in alerter.alerts[0]
    db.refresh(member)
    assert member.status == MemberStatus.inadimplente


@pytest.mark.asyncio
async def test_transient_kick_error_is_left_for_next_run(db, messenger, alerter, make_member):
    member = _defaulted(make_member, days_ago=4, telegram_id=903)
    messenger.kick_results[903] = fail(ErrorCode.TELEGRAM_ERROR, "Too Many Requests")

    stats = await run_grace_period(session=db, messenger=messenger, alerter=alerter)

    assert stats.failed == 1
    assert alerter.alerts == []
    db.refresh(member)
    assert member.status == MemberStatus.inadimplente


@pytest.mark.asyncio
async def test_member_without_telegram_account_is_removed_without_kick(db, messenger, alerter, make_member):
    member = _defaulted(make_member, days_ago=4, telegram_id=None, email="noid@example.com")

    stats = await run_grace_period(session=db, messenger=messenger, alerter=alerter)

    assert stats.kicked == 1
    assert messenger.kicks == []
    db.refresh(member)
    assert member.status == MemberStatus.removido


@pytest.mark.asyncio
async def test_group_chat_is_used_for_group_members(db, messenger, alerter, make_group, make_member):
    make_group("g1", telegram_group_id=-1009)
    member = _defaulted(make_member, days_ago=4, telegram_id=904, group_id="g1")

    await run_grace_period(session=db, messenger=messenger, alerter=alerter)

    assert messenger.kicks == [(904, -1009)]
    db.refresh(member)
    assert member.status == MemberStatus.removido


@pytest.mark.asyncio
async def test_missing_configured_group_aborts_run(db, messenger, alerter, make_member, monkeypatch):
    monkeypatch.setattr(settings, "MEMBERSHIP_GROUP_ID", "does-not-exist")
    _defaulted(make_member, days_ago=4, telegram_id=905)

    stats = await run_grace_period(session=db, messenger=messenger, alerter=alerter)

    assert stats.kicked == stats.warned == 0
    assert messenger.kicks == []
    assert len(alerter.alerts) == 1
    assert "grace-period aborted" in alerter.alerts[0]


@pytest.mark.asyncio
async def test_kick_alert_goes_to_group_admin_chat(db, messenger, alerter, make_group, make_member):
    make_group("g2", telegram_group_id=-1010, telegram_admin_group_id=-1011)
    _defaulted(make_member, days_ago=4, telegram_id=906, group_id="g2")
    messenger.kick_results[906] = fail(ErrorCode.BOT_NO_PERMISSION, "not enough rights")

    await run_grace_period(session=db, messenger=messenger, alerter=alerter)

    assert alerter.chats == [-1011]
