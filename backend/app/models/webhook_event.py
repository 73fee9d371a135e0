"""
Webhook event model
"""
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text
from sqlmodel import Field, SQLModel

from app.enums import WebhookEventStatus

from .base import utc_now


class WebhookEvent(SQLModel, table=True):
    """
    Durable webhook queue entry

    Every accepted provider notification is stored here before any
    processing. The unique idempotency_key drops provider retries.

    Fields:
    - idempotency_key: `mp_{type}_{action}_{resource id}` (unique)
    - event_type: provider or logical event type
    - payload: raw notification body
    - status: pending / processing / completed / failed
    - attempts: processing attempts so far, only increases
    - last_error: message of the most recent failure
    - group_id: tenant resolved while processing
    - processed_at: when the event reached completed
    """
    __tablename__ = "webhook_events"

    id: int | None = Field(default=None, primary_key=True)
    idempotency_key: str = Field(
        sa_column=Column(String(255), unique=True, index=True, nullable=False)
    )
    event_type: str = Field(max_length=64)
    payload: dict | None = Field(default=None, sa_column=Column(JSON))
    status: WebhookEventStatus = Field(
        default=WebhookEventStatus.pending,
        sa_column=Column(String(16), index=True, nullable=False),
    )
    attempts: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    last_error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    group_id: str | None = Field(default=None, max_length=36)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), index=True, nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    processed_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
