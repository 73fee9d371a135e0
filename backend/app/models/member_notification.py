"""
Member notification log
"""
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String
from sqlmodel import Field, SQLModel

from .base import utc_now


class MemberNotification(SQLModel, table=True):
    """
    One scheduled reminder delivered to a member

    Reminder jobs look here before sending so a member gets at most one
    reminder of each kind per day.

    Fields:
    - member_id: recipient
    - kind: trial_reminder / renewal_reminder
    - channel: delivery channel, always telegram for now
    - sent_at: delivery time
    """
    __tablename__ = "member_notifications"
    __table_args__ = (
        Index("ix_member_notifications_member_kind_sent", "member_id", "kind", "sent_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    member_id: int = Field(
        sa_column=Column(Integer, ForeignKey("members.id"), nullable=False)
    )
    kind: str = Field(sa_column=Column(String(32), nullable=False))
    channel: str = Field(default="telegram", max_length=16)
    sent_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
