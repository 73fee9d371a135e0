"""
Member model
"""
from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Index, String, Text, func, text
from sqlmodel import Field, SQLModel

from app.enums import MemberStatus

from .base import utc_now

_LIVE = text("status <> 'removido'")


class Member(SQLModel, table=True):
    """
    Group member

    Tracks one person's membership lifecycle inside one group. Rows are
    never deleted; removal is the `removido` status.

    Fields:
    - telegram_id / telegram_username / email: identity, any may be missing
    - group_id: tenant the member belongs to
    - provider_subscription_id, payer_id, payment_method: Mercado Pago linkage
    - last_payment_id / last_payment_at: most recent approved payment
    - status: trial / ativo / inadimplente / removido
    - trial_*, subscription_*: lifecycle windows
    - inadimplente_at: when the member entered the grace period
    - kicked_at: when the member was removed
    - notes: append-only audit trail, one `[ts] actor: reason` per line

    Uniqueness of (telegram_id, group_id) and (email, group_id) is
    enforced only among rows that are not `removido`. A NULL group_id
    (single-tenant mode) counts as one tenant, so the indexes key on
    coalesce(group_id, '').
    """
    __tablename__ = "members"

    id: int | None = Field(default=None, primary_key=True)
    telegram_id: int | None = Field(
        default=None, sa_column=Column(BigInteger, index=True, nullable=True)
    )
    telegram_username: str | None = Field(default=None, max_length=64)
    email: str | None = Field(
        default=None, sa_column=Column(String(255), index=True, nullable=True)
    )
    group_id: str | None = Field(
        default=None,
        sa_column=Column(String(36), ForeignKey("groups.id"), index=True, nullable=True),
    )

    provider_subscription_id: str | None = Field(
        default=None, sa_column=Column(String(64), index=True, nullable=True)
    )
    payer_id: str | None = Field(default=None, max_length=64)
    payment_method: str | None = Field(default=None, max_length=32)
    last_payment_id: str | None = Field(default=None, max_length=64)
    last_payment_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )

    status: MemberStatus = Field(
        default=MemberStatus.trial,
        sa_column=Column(String(16), index=True, nullable=False),
    )
    trial_started_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    trial_ends_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    subscription_started_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    subscription_ends_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    inadimplente_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    kicked_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    notes: str | None = Field(default=None, sa_column=Column(Text, nullable=True))

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


_members = Member.__table__.c

Index(
    "uq_members_telegram_group_live",
    _members.telegram_id,
    func.coalesce(_members.group_id, ""),
    unique=True,
    postgresql_where=_LIVE,
    sqlite_where=_LIVE,
)
Index(
    "uq_members_email_group_live",
    _members.email,
    func.coalesce(_members.group_id, ""),
    unique=True,
    postgresql_where=_LIVE,
    sqlite_where=_LIVE,
)
