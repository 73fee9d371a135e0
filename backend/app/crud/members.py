"""Member CRUD operations

Every status change is a conditional single-row UPDATE keyed on the status
the caller read. Zero affected rows means another writer got there first
and is reported as RACE_CONDITION.
"""
import logging
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import case, func, literal, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from app.core.config import settings
from app.core.result import ErrorCode, Result, fail, ok
from app.enums import MemberStatus
from app.models import Member, utc_now
from app.services.member_state import can_transition

logger = logging.getLogger(__name__)


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


# Omitted group_id: scope to settings.MEMBERSHIP_GROUP_ID. Explicit None: no tenant filter.
UNSET: Any = _Unset()


def _scope_group(group_id: Any) -> str | None:
    if group_id is UNSET:
        return settings.MEMBERSHIP_GROUP_ID
    return group_id


def _format_note(actor: str, reason: str, at: datetime | None = None) -> str:
    return f"[{(at or utc_now()).isoformat()}] {actor}: {reason}"


def _append_note_expr(entry: str):
    """SQL expression appending `entry` to notes, keeping prior text verbatim."""
    return func.coalesce(Member.notes + literal("\n"), literal("")) + literal(entry)


def _live_first(statement):
    removed_last = case((Member.status == MemberStatus.removido.value, 1), else_=0)
    return statement.order_by(removed_last, Member.created_at.desc(), Member.id.desc())


def get_member_by_id(*, session: Session, member_id: int) -> Result[Member]:
    """
    Member by primary key

    Returns:
        the member, NOT_FOUND, or STORAGE_ERROR on a database failure
    """
    try:
        member = session.get(Member, member_id)
    except SQLAlchemyError as exc:
        logger.error("Member %s lookup failed: %s", member_id, exc)
        return fail(ErrorCode.STORAGE_ERROR, str(exc))
    if not member:
        return fail(ErrorCode.NOT_FOUND, f"Member {member_id} not found")
    return ok(member)


def get_member_by_telegram_id(
    *, session: Session, telegram_id: int, group_id: Any = UNSET
) -> Result[Member]:
    """
    Find a member by Telegram user id

    Args:
        telegram_id: Telegram user id
        group_id: tenant filter; omitted uses the configured tenant, None searches all

    Returns:
        the live row when one exists, otherwise the most recent removed one
    """
    statement = select(Member).where(Member.telegram_id == telegram_id)
    scope = _scope_group(group_id)
    if scope is not None:
        statement = statement.where(Member.group_id == scope)
    try:
        member = session.exec(_live_first(statement)).first()
    except SQLAlchemyError as exc:
        return fail(ErrorCode.STORAGE_ERROR, str(exc))
    if not member:
        return fail(ErrorCode.NOT_FOUND, f"Member with telegram_id {telegram_id} not found")
    return ok(member)


def get_member_by_email(
    *, session: Session, email: str, group_id: Any = UNSET
) -> Result[Member]:
    """Case-insensitive email lookup, tenant-scoped like get_member_by_telegram_id."""
    statement = select(Member).where(func.lower(Member.email) == email.strip().lower())
    scope = _scope_group(group_id)
    if scope is not None:
        statement = statement.where(Member.group_id == scope)
    try:
        member = session.exec(_live_first(statement)).first()
    except SQLAlchemyError as exc:
        return fail(ErrorCode.STORAGE_ERROR, str(exc))
    if not member:
        return fail(ErrorCode.NOT_FOUND, f"Member with email {email} not found")
    return ok(member)


def get_member_by_subscription_id(*, session: Session, subscription_id: str) -> Result[Member]:
    """
    Find the member linked to a Mercado Pago subscription

    Subscription ids are globally unique at the provider, so no tenant filter
    applies.

    Returns:
        the member, NOT_FOUND when none is linked, STORAGE_ERROR on a
        database failure
    """
    statement = select(Member).where(Member.provider_subscription_id == subscription_id)
    try:
        member = session.exec(_live_first(statement)).first()
    except SQLAlchemyError as exc:
        logger.error("Member lookup by subscription %s failed: %s", subscription_id, exc)
        return fail(ErrorCode.STORAGE_ERROR, str(exc))
    if not member:
        return fail(ErrorCode.NOT_FOUND, f"Member with subscription {subscription_id} not found")
    return ok(member)


def create_trial(
    *,
    session: Session,
    group_id: str | None,
    telegram_id: int | None = None,
    email: str | None = None,
    telegram_username: str | None = None,
    subscription_id: str | None = None,
    payer_id: str | None = None,
    payment_method: str | None = None,
    actor: str = "system",
    reason: str = "trial started",
) -> Result[Member]:
    """
    Insert a new member in trial

    Returns ALREADY_EXISTS when a live member in the same group already has
    the Telegram id or the email.
    """
    if telegram_id is None and not email:
        return fail(ErrorCode.INVALID_PAYLOAD, "telegram_id or email is required")
    normalized_email = email.strip().lower() if email else None

    if telegram_id is not None:
        existing = get_member_by_telegram_id(session=session, telegram_id=telegram_id, group_id=group_id)
        if existing.success and existing.data.status != MemberStatus.removido:
            return fail(ErrorCode.ALREADY_EXISTS, f"Member with telegram_id {telegram_id} already exists")
    if normalized_email:
        existing = get_member_by_email(session=session, email=normalized_email, group_id=group_id)
        if existing.success and existing.data.status != MemberStatus.removido:
            return fail(ErrorCode.ALREADY_EXISTS, f"Member with email {normalized_email} already exists")

    now = utc_now()
    member = Member(
        telegram_id=telegram_id,
        telegram_username=telegram_username,
        email=normalized_email,
        group_id=group_id,
        provider_subscription_id=subscription_id,
        payer_id=payer_id,
        payment_method=payment_method,
        status=MemberStatus.trial,
        trial_started_at=now,
        trial_ends_at=now + timedelta(days=settings.MEMBERSHIP_TRIAL_DAYS),
        notes=_format_note(actor, reason, now),
        created_at=now,
        updated_at=now,
    )
    try:
        session.add(member)
        session.commit()
    except IntegrityError:
        session.rollback()
        return fail(ErrorCode.ALREADY_EXISTS, "Member already exists in this group")
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Failed to create member: %s", exc)
        return fail(ErrorCode.STORAGE_ERROR, str(exc))
    session.refresh(member)
    logger.info("Member %s created in trial (group=%s)", member.id, group_id)
    return ok(member)


def _conditional_update(
    *,
    session: Session,
    member_id: int,
    expected_status: MemberStatus,
    values: dict[str, Any],
) -> Result[Member]:
    statement = (
        update(Member)
        .where(Member.id == member_id, Member.status == expected_status.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    try:
        result = session.exec(statement)  # type: ignore[call-overload]
        if result.rowcount == 0:
            session.rollback()
            return fail(
                ErrorCode.RACE_CONDITION,
                f"Member {member_id} is no longer {expected_status.value}",
            )
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        return fail(ErrorCode.ALREADY_EXISTS, str(exc.orig))
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Failed to update member %s: %s", member_id, exc)
        return fail(ErrorCode.STORAGE_ERROR, str(exc))

    member = session.get(Member, member_id)
    session.refresh(member)
    return ok(member)


def transition_status(
    *,
    session: Session,
    member_id: int,
    new_status: MemberStatus,
    actor: str,
    reason: str,
    extra_fields: dict[str, Any] | None = None,
) -> Result[Member]:
    """
    Move a member to a new lifecycle status

    Args:
        member_id: member primary key
        new_status: target status
        actor: who triggered the change (webhook, job name, admin)
        reason: short reason recorded in notes
        extra_fields: additional column values written in the same UPDATE

    Returns:
        the updated member, or NOT_FOUND / INVALID_TRANSITION /
        RACE_CONDITION / STORAGE_ERROR
    """
    found = get_member_by_id(session=session, member_id=member_id)
    if not found.success:
        return found
    member = found.data
    previous = MemberStatus(member.status)
    new_status = MemberStatus(new_status)

    if not can_transition(previous, new_status):
        return fail(
            ErrorCode.INVALID_TRANSITION,
            f"Cannot transition member {member_id} from {previous.value} to {new_status.value}",
        )

    now = utc_now()
    values: dict[str, Any] = {"status": new_status.value, "updated_at": now}
    if new_status == MemberStatus.inadimplente:
        values["inadimplente_at"] = now
    elif new_status == MemberStatus.removido:
        values["kicked_at"] = now
    elif new_status == MemberStatus.ativo:
        values["inadimplente_at"] = None
    values.update(extra_fields or {})
    values["notes"] = _append_note_expr(
        _format_note(actor, f"{previous.value} -> {new_status.value}: {reason}", now)
    )

    result = _conditional_update(
        session=session, member_id=member_id, expected_status=previous, values=values
    )
    if result.success:
        logger.info(
            "Member %s: %s -> %s by %s (%s)",
            member_id, previous.value, new_status.value, actor, reason,
        )
    else:
        logger.warning(
            "Member %s transition %s -> %s failed: %s",
            member_id, previous.value, new_status.value, result.message,
        )
    return result


def update_subscription_data(
    *,
    session: Session,
    member_id: int,
    subscription_id: str | None = None,
    payer_id: str | None = None,
    payment_method: str | None = None,
) -> Result[Member]:
    """Update Mercado Pago linkage fields without touching the status."""
    values: dict[str, Any] = {"updated_at": utc_now()}
    if subscription_id is not None:
        values["provider_subscription_id"] = subscription_id
    if payer_id is not None:
        values["payer_id"] = payer_id
    if payment_method is not None:
        values["payment_method"] = payment_method

    try:
        result = session.exec(  # type: ignore[call-overload]
            update(Member).where(Member.id == member_id).values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.rollback()
            return fail(ErrorCode.NOT_FOUND, f"Member {member_id} not found")
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Failed to update subscription data of member %s: %s", member_id, exc)
        return fail(ErrorCode.STORAGE_ERROR, str(exc))

    member = session.get(Member, member_id)
    session.refresh(member)
    return ok(member)


def record_renewal(
    *,
    session: Session,
    member_id: int,
    payment_id: str,
    subscription_ends_at: datetime,
    actor: str,
    reason: str,
) -> Result[Member]:
    """Extend the subscription of an `ativo` member after an approved payment."""
    now = utc_now()
    return _conditional_update(
        session=session,
        member_id=member_id,
        expected_status=MemberStatus.ativo,
        values={
            "last_payment_id": payment_id,
            "last_payment_at": now,
            "subscription_ends_at": subscription_ends_at,
            "updated_at": now,
            "notes": _append_note_expr(_format_note(actor, reason, now)),
        },
    )


def reactivate_removed_member(
    *,
    session: Session,
    member_id: int,
    actor: str,
    reason: str,
    payment_id: str | None = None,
    subscription_id: str | None = None,
    payer_id: str | None = None,
    payment_method: str | None = None,
) -> Result[Member]:
    """
    Payment-driven re-entry: removido -> ativo

    Only allowed from `removido`; clears the removal and grace markers and
    opens a fresh subscription window.
    """
    now = utc_now()
    values: dict[str, Any] = {
        "status": MemberStatus.ativo.value,
        "kicked_at": None,
        "inadimplente_at": None,
        "subscription_started_at": now,
        "subscription_ends_at": now + timedelta(days=settings.MEMBERSHIP_SUBSCRIPTION_DAYS),
        "updated_at": now,
        "notes": _append_note_expr(_format_note(actor, f"removido -> ativo: {reason}", now)),
    }
    if payment_id is not None:
        values["last_payment_id"] = payment_id
        values["last_payment_at"] = now
    if subscription_id is not None:
        values["provider_subscription_id"] = subscription_id
    if payer_id is not None:
        values["payer_id"] = payer_id
    if payment_method is not None:
        values["payment_method"] = payment_method

    result = _conditional_update(
        session=session,
        member_id=member_id,
        expected_status=MemberStatus.removido,
        values=values,
    )
    if result.success:
        logger.info("Member %s reactivated by %s (%s)", member_id, actor, reason)
    return result


def reactivate_member(*, session: Session, member_id: int, actor: str, reason: str) -> Result[Member]:
    """
    Admin re-entry: removido -> trial

    Restarts the trial window. Fails with ALREADY_EXISTS when the person
    already has another live membership in the same group.
    """
    now = utc_now()
    return _conditional_update(
        session=session,
        member_id=member_id,
        expected_status=MemberStatus.removido,
        values={
            "status": MemberStatus.trial.value,
            "trial_started_at": now,
            "trial_ends_at": now + timedelta(days=settings.MEMBERSHIP_TRIAL_DAYS),
            "kicked_at": None,
            "inadimplente_at": None,
            "updated_at": now,
            "notes": _append_note_expr(_format_note(actor, f"removido -> trial: {reason}", now)),
        },
    )


def append_note(*, session: Session, member_id: int, actor: str, reason: str) -> Result[Member]:
    """
    Add a `[ts] actor: reason` line to the notes without touching the status

    Args:
        actor: who writes the note (job name, webhook, admin)
        reason: free text

    Returns:
        the member after the update, NOT_FOUND for an unknown id
    """
    now = utc_now()
    try:
        result = session.exec(  # type: ignore[call-overload]
            update(Member)
            .where(Member.id == member_id)
            .values(notes=_append_note_expr(_format_note(actor, reason, now)), updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.rollback()
            return fail(ErrorCode.NOT_FOUND, f"Member {member_id} not found")
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        return fail(ErrorCode.STORAGE_ERROR, str(exc))
    member = session.get(Member, member_id)
    session.refresh(member)
    return ok(member)


def list_members_by_status(
    *, session: Session, status: MemberStatus, group_id: Any = UNSET
) -> Result[list[Member]]:
    """Members in one status ordered by id, tenant-scoped like the lookups."""
    statement = select(Member).where(Member.status == MemberStatus(status).value)
    scope = _scope_group(group_id)
    if scope is not None:
        statement = statement.where(Member.group_id == scope)
    try:
        members = session.exec(statement.order_by(Member.id)).all()
    except SQLAlchemyError as exc:
        return fail(ErrorCode.STORAGE_ERROR, str(exc))
    return ok(list(members))


def list_members_for_reconciliation(*, session: Session, group_id: Any = UNSET) -> Result[list[Member]]:
    """Active members that have a Mercado Pago subscription to compare against."""
    statement = select(Member).where(
        Member.status == MemberStatus.ativo.value,
        Member.provider_subscription_id.is_not(None),  # type: ignore[union-attr]
    )
    scope = _scope_group(group_id)
    if scope is not None:
        statement = statement.where(Member.group_id == scope)
    try:
        members = session.exec(statement.order_by(Member.id)).all()
    except SQLAlchemyError as exc:
        return fail(ErrorCode.STORAGE_ERROR, str(exc))
    return ok(list(members))


def list_members_for_renewal_reminder(
    *, session: Session, payment_methods: Sequence[str], group_id: Any = UNSET
) -> Result[list[Member]]:
    """
    Active members who pay each period by hand

    Args:
        payment_methods: Mercado Pago payment_method_id values that do not
            renew automatically
        group_id: tenant filter, same convention as the lookups

    Returns:
        members with a known subscription_ends_at, ordered by id
    """
    statement = select(Member).where(
        Member.status == MemberStatus.ativo.value,
        Member.payment_method.in_(list(payment_methods)),  # type: ignore[union-attr]
        Member.subscription_ends_at.is_not(None),  # type: ignore[union-attr]
    )
    scope = _scope_group(group_id)
    if scope is not None:
        statement = statement.where(Member.group_id == scope)
    try:
        members = session.exec(statement.order_by(Member.id)).all()
    except SQLAlchemyError as exc:
        return fail(ErrorCode.STORAGE_ERROR, str(exc))
    return ok(list(members))
