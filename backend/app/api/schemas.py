"""
API request/response schemas

Pydantic models for data exchanged over HTTP. These are not tables.
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class ApiEnvelope(BaseModel):
    """
    Common response envelope

    - code: 0 on success, business error code otherwise
    - message: "success" or the error description
    - data: payload, None on errors

    Examples:
        {"code": 0, "message": "success", "data": {...}}
        {"code": 401001, "message": "Invalid webhook signature", "data": None}
    """
    code: int = 0
    message: str = "success"
    data: Any | None = None


class WebhookReceipt(BaseModel):
    """Acknowledgement returned to the payment provider."""
    received: bool = True
    duplicate: bool = False
    event_id: int | None = None


class HealthData(BaseModel):
    status: str = "ok"
    webhook_queue: dict[str, int] = {}
