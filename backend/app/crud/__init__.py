"""CRUD operations"""
from .groups import create_group, get_active_group_by_plan_id, get_group
from .members import (
    UNSET,
    append_note,
    create_trial,
    get_member_by_email,
    get_member_by_id,
    get_member_by_subscription_id,
    get_member_by_telegram_id,
    list_members_by_status,
    list_members_for_reconciliation,
    list_members_for_renewal_reminder,
    reactivate_member,
    reactivate_removed_member,
    record_renewal,
    transition_status,
    update_subscription_data,
)
from .notifications import has_notification_since, register_notification
from .webhook_events import (
    claim as claim_webhook_event,
)
from .webhook_events import (
    complete as complete_webhook_event,
)
from .webhook_events import (
    count_by_status as count_webhook_events_by_status,
)
from .webhook_events import (
    fetch_pending as fetch_pending_webhook_events,
)
from .webhook_events import (
    ingest_event as ingest_webhook_event,
)
from .webhook_events import (
    recover_stuck as recover_stuck_webhook_events,
)
from .webhook_events import (
    retry_or_fail as retry_or_fail_webhook_event,
)

__all__ = [
    "UNSET",
    "create_group",
    "get_group",
    "get_active_group_by_plan_id",
    "append_note",
    "create_trial",
    "get_member_by_id",
    "get_member_by_email",
    "get_member_by_subscription_id",
    "get_member_by_telegram_id",
    "list_members_by_status",
    "list_members_for_reconciliation",
    "list_members_for_renewal_reminder",
    "reactivate_member",
    "reactivate_removed_member",
    "record_renewal",
    "transition_status",
    "update_subscription_data",
    "has_notification_since",
    "register_notification",
    "claim_webhook_event",
    "complete_webhook_event",
    "count_webhook_events_by_status",
    "fetch_pending_webhook_events",
    "ingest_webhook_event",
    "recover_stuck_webhook_events",
    "retry_or_fail_webhook_event",
]
