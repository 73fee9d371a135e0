"""
Database models

One module per table:
- group.py: tenants
- member.py: group members and their lifecycle
- webhook_event.py: durable webhook queue
- member_notification.py: reminders already delivered
"""
from sqlmodel import SQLModel

from .base import ensure_utc, utc_now
from .group import Group
from .member import Member
from .member_notification import MemberNotification
from .webhook_event import WebhookEvent

__all__ = [
    "SQLModel",
    "utc_now",
    "ensure_utc",
    "Group",
    "Member",
    "MemberNotification",
    "WebhookEvent",
]
