"""
Operator alerts

Formats the alerts sent to the admin chat. Every send is best effort and
never propagates failures to the job or handler that triggered it.

Alerts about one member (payments, kick errors) go to the admin chat of the
member's group when the group has one; everything else goes to the global
admin chat (TELEGRAM_ADMIN_GROUP_ID).
"""
import logging
from collections.abc import Sequence

from app.integrations.protocols import AdminAlerter
from app.models import Member

logger = logging.getLogger(__name__)


async def send_alert(alerter: AdminAlerter, text: str, *, chat_id: int | None = None) -> None:
    """
    Deliver one alert, logging instead of raising

    Args:
        alerter: admin alert capability
        text: alert body, first line is the title
        chat_id: tenant admin chat, None for the global one
    """
    try:
        await alerter.alert(text, chat_id=chat_id)
    except Exception:
        logger.exception("Admin alert failed: %s", text.splitlines()[0] if text else "")


def _member_label(member: Member) -> str:
    if member.telegram_username:
        return f"@{member.telegram_username}"
    if member.email:
        return member.email
    return f"#{member.id}"


async def webhook_failure_alert(
    alerter: AdminAlerter,
    *,
    idempotency_key: str,
    event_type: str,
    error_message: str,
    attempts: int,
) -> None:
    """Event moved to `failed` after its last attempt."""
    await send_alert(
        alerter,
        "🚨 Webhook processing failed\n"
        f"Event: {event_type}\n"
        f"Key: {idempotency_key}\n"
        f"Attempts: {attempts}\n"
        f"Error: {error_message}",
    )


PAYMENT_LABELS = {
    "activated": "💰 New subscriber (trial converted)",
    "created_active": "💰 New subscriber",
    "renewed": "🔄 Subscription renewed",
    "recovered": "✅ Payment recovered",
    "reactivated": "♻️ Member reactivated",
    "refunded": "↩️ Payment refunded, member removed",
}


async def payment_notification(
    alerter: AdminAlerter, *, action: str, member: Member, chat_id: int | None = None
) -> None:
    """
    Tell the operators about a payment outcome

    Args:
        action: handler action; actions without a label are not reported
        member: member after the change
        chat_id: admin chat of the member's group
    """
    title = PAYMENT_LABELS.get(action)
    if title is None:
        return
    await send_alert(alerter, f"{title}\nMember: {_member_label(member)}", chat_id=chat_id)


async def kick_error_alert(
    alerter: AdminAlerter,
    *,
    member: Member,
    error_code: str,
    error_message: str,
    chat_id: int | None = None,
) -> None:
    """A removal that needs an operator: missing bot rights or no chat configured."""
    await send_alert(
        alerter,
        "🚨 Could not remove member from the group\n"
        f"Member: {_member_label(member)} (telegram {member.telegram_id})\n"
        f"Error: {error_code} {error_message}\n"
        "Check the bot admin permissions and the group configuration.",
        chat_id=chat_id,
    )


async def config_error_alert(alerter: AdminAlerter, *, job: str, message: str) -> None:
    await send_alert(alerter, f"🚨 {job} aborted\n{message}")


SUGGESTED_ACTIONS = {
    "cancelled": "Subscription cancelled at Mercado Pago; confirm and remove the member",
    "paused": "Subscription paused; contact the member",
    "pending": "Subscription pending payment; follow up with the member",
    "not_found": "Subscription not found at Mercado Pago; verify the linkage",
}


async def desync_alert(alerter: AdminAlerter, desynced: Sequence[tuple[Member, str]]) -> None:
    """One batched alert listing every member whose subscription disagrees with the local status."""
    if not desynced:
        return
    lines = ["⚠️ Reconciliation found out-of-sync members", ""]
    for member, provider_status in desynced:
        lines.append(
            f"• {_member_label(member)} (sub {member.provider_subscription_id}): "
            f"local=ativo, provider={provider_status}"
        )
        lines.append(f"  → {SUGGESTED_ACTIONS.get(provider_status, 'Review manually')}")
    await send_alert(alerter, "\n".join(lines))


async def reconciliation_critical_alert(
    alerter: AdminAlerter, *, total: int, failed: int, top_errors: Sequence[tuple[str, int]]
) -> None:
    """
    More than half of the provider lookups failed

    Args:
        total: members checked
        failed: lookups that failed with a non NOT_FOUND error
        top_errors: (error code, count) pairs, most frequent first
    """
    errors = ", ".join(f"{code} ({count})" for code, count in top_errors) or "unknown"
    await send_alert(
        alerter,
        "🚨 Reconciliation failure rate above 50%\n"
        f"Failed lookups: {failed}/{total}\n"
        f"Top errors: {errors}",
    )
