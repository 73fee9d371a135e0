"""
Group (tenant) model
"""
from datetime import datetime
from uuid import uuid4

from sqlalchemy import BigInteger, Column, DateTime, String
from sqlmodel import Field, SQLModel

from app.enums import GroupStatus

from .base import utc_now


def _new_group_id() -> str:
    return str(uuid4())


class Group(SQLModel, table=True):
    """
    Community group served by the bot

    One row per tenant. Webhooks are routed to a group through the
    Mercado Pago plan the subscription was bought from.

    Fields:
    - id: UUID string
    - name: display name
    - telegram_group_id: chat the members belong to
    - telegram_admin_group_id: chat that receives operator alerts
    - checkout_url: link sent to members to (re)subscribe
    - provider_plan_id: Mercado Pago preapproval plan id (unique)
    - status: active / paused / inactive
    """
    __tablename__ = "groups"

    id: str = Field(
        default_factory=_new_group_id,
        sa_column=Column(String(36), primary_key=True),
    )
    name: str = Field(max_length=128)
    telegram_group_id: int | None = Field(
        default=None, sa_column=Column(BigInteger, nullable=True)
    )
    telegram_admin_group_id: int | None = Field(
        default=None, sa_column=Column(BigInteger, nullable=True)
    )
    checkout_url: str | None = Field(default=None, max_length=512)
    provider_plan_id: str | None = Field(
        default=None,
        sa_column=Column(String(64), unique=True, index=True, nullable=True),
    )
    status: GroupStatus = Field(
        default=GroupStatus.active, sa_column=Column(String(16), nullable=False)
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
