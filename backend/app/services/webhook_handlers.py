"""
Webhook event handlers

One decision function per logical event type:
- subscription.created: link or create the member (trial)
- payment.approved: activate / renew / recover / reactivate
- payment.rejected: ativo -> inadimplente
- subscription.cancelled: remove the member and kick them from the chat
- payment.refunded: refunded or charged back payment, same removal with
  reason `refund`

Mercado Pago delivers only `payment` and `subscription_preapproval`
notifications; `route_payment` and `route_subscription` fetch the resource
once, then pass it to the matching handler so it is not fetched twice.

Handlers never raise for business conditions. A returned failure means
"retry later" to the dispatcher; a skipped outcome is final.
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlmodel import Session

from app import crud
from app.core.config import settings
from app.core.result import ErrorCode, Result, fail, ok
from app.enums import MemberStatus, WebhookEventType
from app.integrations.protocols import AdminAlerter, GroupMessenger, PaymentProvider
from app.models import Member, ensure_utc, utc_now
from app.services import alert_service, notification_service
from app.services.tenant_resolver import (
    TenantResolution,
    extract_subscription_id,
    resolve_group_for_member,
    resolve_group_from_payment,
    resolve_group_from_subscription,
)

logger = logging.getLogger(__name__)

ACTOR = "webhook"
ACTIVE_SUBSCRIPTION_STATUSES = ("authorized", "active")
REFUND_STATUSES = ("refunded", "charged_back")
REFUND_REASON = "refund"
PERSISTENT_KICK_ERRORS = (ErrorCode.BOT_NO_PERMISSION, ErrorCode.CONFIG_MISSING)


@dataclass
class HandlerContext:
    """Dependencies shared by every handler during one event."""
    session: Session
    provider: PaymentProvider
    messenger: GroupMessenger
    alerter: AdminAlerter
    event_id: int | None = None


@dataclass(frozen=True)
class HandlerOutcome:
    """
    What a handler decided

    - action: created / updated / activated / created_active / renewed /
      recovered / reactivated / marked_defaulted / removed
    - skipped: True when nothing was changed on purpose
    - reason: why it was skipped, or extra detail for the action
    """
    action: str | None = None
    skipped: bool = False
    reason: str | None = None
    member_id: int | None = None
    group_id: str | None = None


Handler = Callable[..., Awaitable[Result[HandlerOutcome]]]


def _skipped(reason: str, *, group_id: str | None = None, member_id: int | None = None) -> Result[HandlerOutcome]:
    logger.info("Webhook skipped: %s (member=%s group=%s)", reason, member_id, group_id)
    return ok(HandlerOutcome(skipped=True, reason=reason, member_id=member_id, group_id=group_id))


def _done(action: str, member: Member, *, group_id: str | None, reason: str | None = None) -> Result[HandlerOutcome]:
    logger.info("Webhook handled: %s member=%s group=%s", action, member.id, group_id)
    return ok(HandlerOutcome(action=action, reason=reason, member_id=member.id, group_id=group_id))


def _provider_failure(result: Result, resource: str) -> Result[HandlerOutcome]:
    if result.code == ErrorCode.NOT_FOUND:
        return _skipped(f"{resource}_not_found")
    return result


async def _fetch_subscription(ctx: HandlerContext, subscription_id: str, prefetched: dict[str, Any] | None) -> Result[dict[str, Any]]:
    if prefetched is not None:
        return ok(prefetched)
    return await ctx.provider.get_subscription(subscription_id)


async def _fetch_payment(ctx: HandlerContext, payment_id: str, prefetched: dict[str, Any] | None) -> Result[dict[str, Any]]:
    if prefetched is not None:
        return ok(prefetched)
    return await ctx.provider.get_payment(payment_id)


def _payer_email(payment: dict[str, Any], subscription: dict[str, Any] | None = None) -> str | None:
    payer = payment.get("payer")
    if isinstance(payer, dict) and payer.get("email"):
        return str(payer["email"])
    if subscription and subscription.get("payer_email"):
        return str(subscription["payer_email"])
    return None


def _payer_id(resource: dict[str, Any]) -> str | None:
    payer = resource.get("payer")
    value = resource.get("payer_id") or (payer.get("id") if isinstance(payer, dict) else None)
    return str(value) if value else None


def find_member_by_email(*, session: Session, email: str, group_id: str | None) -> Member | None:
    """
    Tenant-scoped email lookup with a validated global fallback

    The scoped lookup runs first. A global hit is used only when it belongs
    to the resolved tenant; a member of another tenant is never touched.
    """
    scoped = crud.get_member_by_email(
        session=session, email=email, group_id=group_id if group_id is not None else crud.UNSET
    )
    found = scoped if scoped.success else crud.get_member_by_email(session=session, email=email, group_id=None)
    if not found.success:
        return None
    member = found.data
    if group_id is not None and member.group_id != group_id:
        logger.warning(
            "Ignoring member %s for %s: belongs to group %s, event resolved to %s",
            member.id, email, member.group_id, group_id,
        )
        return None
    return member


def _find_member(
    *, session: Session, subscription_id: str | None, email: str | None, group_id: str | None
) -> Member | None:
    if subscription_id:
        by_subscription = crud.get_member_by_subscription_id(session=session, subscription_id=subscription_id)
        if by_subscription.success:
            return by_subscription.data
    if email:
        return find_member_by_email(session=session, email=email, group_id=group_id)
    return None


async def _kick_from_group(ctx: HandlerContext, member: Member, tenant: TenantResolution) -> None:
    if member.telegram_id is None:
        return
    chat_id = tenant.chat_id
    if not chat_id:
        await alert_service.kick_error_alert(
            ctx.alerter,
            member=member,
            error_code=ErrorCode.CONFIG_MISSING.value,
            error_message="Group chat id not configured",
            chat_id=tenant.admin_chat_id,
        )
        return
    result = await ctx.messenger.kick_member(member.telegram_id, chat_id)
    if result.success or result.code == ErrorCode.USER_NOT_IN_GROUP:
        return
    if result.code in PERSISTENT_KICK_ERRORS:
        await alert_service.kick_error_alert(
            ctx.alerter,
            member=member,
            error_code=result.code.value,
            error_message=result.message,
            chat_id=tenant.admin_chat_id,
        )
    else:
        logger.warning("Kick of member %s failed: %s", member.id, result.message)


# ---------------------------------------------------------------------------
# subscription.created
# ---------------------------------------------------------------------------


async def handle_subscription_created(
    ctx: HandlerContext, subscription_id: str, subscription: dict[str, Any] | None = None
) -> Result[HandlerOutcome]:
    """
    Link a subscription to a member, creating a trial member when needed

    Args:
        subscription_id: Mercado Pago preapproval id
        subscription: already fetched preapproval, fetched when None

    Returns:
        created, updated, or skipped (not_authorized, missing_payer_email)
    """
    fetched = await _fetch_subscription(ctx, subscription_id, subscription)
    if not fetched.success:
        return _provider_failure(fetched, "subscription")
    subscription = fetched.data

    if subscription.get("status") not in ACTIVE_SUBSCRIPTION_STATUSES:
        return _skipped("not_authorized")

    tenant = resolve_group_from_subscription(session=ctx.session, subscription=subscription)
    email = subscription.get("payer_email")
    if not email:
        return _skipped("missing_payer_email", group_id=tenant.group_id)

    payer_id = _payer_id(subscription)
    member = find_member_by_email(session=ctx.session, email=email, group_id=tenant.group_id)
    if member:
        updated = crud.update_subscription_data(
            session=ctx.session,
            member_id=member.id,
            subscription_id=subscription_id,
            payer_id=payer_id,
        )
        if not updated.success:
            return updated
        return _done("updated", updated.data, group_id=tenant.group_id)

    created = crud.create_trial(
        session=ctx.session,
        group_id=tenant.group_id,
        email=email,
        subscription_id=subscription_id,
        payer_id=payer_id,
        actor=ACTOR,
        reason=f"subscription {subscription_id} created",
    )
    if not created.success:
        return created
    return _done("created", created.data, group_id=tenant.group_id)


# ---------------------------------------------------------------------------
# payment.approved
# ---------------------------------------------------------------------------


def _next_period_end(member: Member, now: datetime) -> datetime:
    current_end = ensure_utc(member.subscription_ends_at)
    start = current_end if current_end and current_end > now else now
    return start + timedelta(days=settings.MEMBERSHIP_SUBSCRIPTION_DAYS)


def _payment_fields(
    payment_id: str, payment: dict[str, Any], subscription_id: str | None, now: datetime
) -> dict[str, Any]:
    fields: dict[str, Any] = {"last_payment_id": payment_id, "last_payment_at": now}
    if subscription_id:
        fields["provider_subscription_id"] = subscription_id
    payer_id = _payer_id(payment)
    if payer_id:
        fields["payer_id"] = payer_id
    if payment.get("payment_method_id"):
        fields["payment_method"] = str(payment["payment_method_id"])
    return fields


async def _activate(
    ctx: HandlerContext,
    member: Member,
    *,
    payment_id: str,
    payment: dict[str, Any],
    subscription_id: str | None,
    reason: str,
) -> Result[Member]:
    now = utc_now()
    extra = _payment_fields(payment_id, payment, subscription_id, now)
    extra["subscription_started_at"] = now
    extra["subscription_ends_at"] = now + timedelta(days=settings.MEMBERSHIP_SUBSCRIPTION_DAYS)
    return crud.transition_status(
        session=ctx.session,
        member_id=member.id,
        new_status=MemberStatus.ativo,
        actor=ACTOR,
        reason=reason,
        extra_fields=extra,
    )


async def _reactivate(
    ctx: HandlerContext,
    member: Member,
    tenant: TenantResolution,
    *,
    payment_id: str,
    payment: dict[str, Any],
    subscription_id: str | None,
) -> Result[Member]:
    result = crud.reactivate_removed_member(
        session=ctx.session,
        member_id=member.id,
        actor=ACTOR,
        reason=f"payment {payment_id} approved",
        payment_id=payment_id,
        subscription_id=subscription_id,
        payer_id=_payer_id(payment),
        payment_method=payment.get("payment_method_id"),
    )
    if not result.success or member.telegram_id is None:
        return result

    chat_id = tenant.chat_id
    unbanned = False
    if chat_id:
        unban = await ctx.messenger.unban_member(member.telegram_id, chat_id)
        unbanned = unban.success
        if not unban.success:
            logger.warning("Unban of member %s failed: %s", member.id, unban.message)
    await notification_service.notify_member(
        ctx.messenger,
        member.telegram_id,
        notification_service.reactivation_message(invite_hint=unbanned),
        kind="reactivation",
    )
    return result


async def handle_payment_approved(
    ctx: HandlerContext, payment_id: str, payment: dict[str, Any] | None = None
) -> Result[HandlerOutcome]:
    """
    Activate or renew the member who paid

    Args:
        payment_id: Mercado Pago payment id
        payment: already fetched payment, fetched when None

    Returns:
        activated, renewed, recovered or reactivated; skipped when the payment is not
        approved or no member matches. Fails when the tenant cannot be
        resolved so the event is retried.
    """
    fetched = await _fetch_payment(ctx, payment_id, payment)
    if not fetched.success:
        return _provider_failure(fetched, "payment")
    payment = fetched.data

    if payment.get("status") != "approved":
        return _skipped("not_approved")

    payment_id = str(payment.get("id") or payment_id)
    subscription_id = extract_subscription_id(payment)
    resolved = await resolve_group_from_payment(
        session=ctx.session, provider=ctx.provider, payment=payment
    )
    if not resolved.success:
        return resolved
    tenant, subscription = resolved.data
    group_id = tenant.group_id
    email = _payer_email(payment, subscription)
    member = _find_member(
        session=ctx.session, subscription_id=subscription_id, email=email, group_id=group_id
    )

    if member is None:
        if not email:
            return _skipped("member_not_found", group_id=group_id)
        created = crud.create_trial(
            session=ctx.session,
            group_id=group_id,
            email=email,
            subscription_id=subscription_id,
            payer_id=_payer_id(payment),
            actor=ACTOR,
            reason=f"payment {payment_id} approved without prior subscription event",
        )
        if not created.success:
            return created
        activated = await _activate(
            ctx, created.data, payment_id=payment_id, payment=payment,
            subscription_id=subscription_id, reason=f"payment {payment_id} approved",
        )
        if not activated.success:
            return activated
        return await _after_payment(ctx, "created_active", activated.data, tenant)

    status = MemberStatus(member.status)
    if status == MemberStatus.trial:
        result = await _activate(
            ctx, member, payment_id=payment_id, payment=payment,
            subscription_id=subscription_id, reason=f"payment {payment_id} approved",
        )
        action = "activated"
    elif status == MemberStatus.ativo:
        if member.last_payment_id == payment_id:
            return _done("renewed", member, group_id=group_id, reason="duplicate_payment")
        result = crud.record_renewal(
            session=ctx.session,
            member_id=member.id,
            payment_id=payment_id,
            subscription_ends_at=_next_period_end(member, utc_now()),
            actor=ACTOR,
            reason=f"renewal payment {payment_id} approved",
        )
        action = "renewed"
    elif status == MemberStatus.inadimplente:
        result = await _activate(
            ctx, member, payment_id=payment_id, payment=payment,
            subscription_id=subscription_id, reason=f"payment {payment_id} approved after default",
        )
        action = "recovered"
    else:
        member_tenant = resolve_group_for_member(session=ctx.session, member=member)
        result = await _reactivate(
            ctx, member, member_tenant, payment_id=payment_id, payment=payment,
            subscription_id=subscription_id,
        )
        if not result.success:
            return result
        await alert_service.payment_notification(
            ctx.alerter, action="reactivated", member=result.data, chat_id=member_tenant.admin_chat_id
        )
        return _done("reactivated", result.data, group_id=group_id)

    if not result.success:
        return result
    return await _after_payment(ctx, action, result.data, tenant)


async def _after_payment(
    ctx: HandlerContext, action: str, member: Member, tenant: TenantResolution
) -> Result[HandlerOutcome]:
    await notification_service.notify_member(
        ctx.messenger,
        member.telegram_id,
        notification_service.payment_confirmation_message(renewed=action == "renewed"),
        kind="payment_confirmation",
    )
    await alert_service.payment_notification(
        ctx.alerter, action=action, member=member, chat_id=tenant.admin_chat_id
    )
    return _done(action, member, group_id=tenant.group_id)


# ---------------------------------------------------------------------------
# payment.rejected
# ---------------------------------------------------------------------------


async def handle_payment_rejected(
    ctx: HandlerContext, payment_id: str, payment: dict[str, Any] | None = None
) -> Result[HandlerOutcome]:
    """
    Move an active member into the grace period

    Returns:
        marked_defaulted, or skipped (not_rejected, member_not_found,
        member_not_active)
    """
    fetched = await _fetch_payment(ctx, payment_id, payment)
    if not fetched.success:
        return _provider_failure(fetched, "payment")
    payment = fetched.data

    if payment.get("status") != "rejected":
        return _skipped("not_rejected")

    subscription_id = extract_subscription_id(payment)
    resolved = await resolve_group_from_payment(
        session=ctx.session, provider=ctx.provider, payment=payment
    )
    if not resolved.success:
        return resolved
    tenant, subscription = resolved.data
    member = _find_member(
        session=ctx.session,
        subscription_id=subscription_id,
        email=_payer_email(payment, subscription),
        group_id=tenant.group_id,
    )
    if member is None:
        return _skipped("member_not_found", group_id=tenant.group_id)
    if member.status != MemberStatus.ativo:
        return _skipped("member_not_active", group_id=tenant.group_id, member_id=member.id)

    result = crud.transition_status(
        session=ctx.session,
        member_id=member.id,
        new_status=MemberStatus.inadimplente,
        actor=ACTOR,
        reason=f"payment {payment.get('id') or payment_id} rejected",
    )
    if not result.success:
        return result

    member_tenant = resolve_group_for_member(session=ctx.session, member=result.data)
    await notification_service.notify_member(
        ctx.messenger,
        member.telegram_id,
        notification_service.payment_rejected_message(
            checkout_url=member_tenant.checkout_url,
            grace_days=settings.MEMBERSHIP_GRACE_PERIOD_DAYS,
        ),
        kind="payment_rejected",
    )
    return _done("marked_defaulted", result.data, group_id=tenant.group_id)


# ---------------------------------------------------------------------------
# subscription.cancelled
# ---------------------------------------------------------------------------


async def handle_subscription_cancelled(
    ctx: HandlerContext, subscription_id: str, subscription: dict[str, Any] | None = None
) -> Result[HandlerOutcome]:
    """Remove the member of a cancelled subscription, kick included."""
    fetched = await _fetch_subscription(ctx, subscription_id, subscription)
    if not fetched.success and fetched.code != ErrorCode.NOT_FOUND:
        return fetched
    subscription = fetched.data if fetched.success else None

    if subscription and subscription.get("status") == "authorized":
        return _skipped("subscription_still_active")

    resolved_group_id = (
        resolve_group_from_subscription(session=ctx.session, subscription=subscription).group_id
        if subscription
        else None
    )
    member = _find_member(
        session=ctx.session,
        subscription_id=subscription_id,
        email=subscription.get("payer_email") if subscription else None,
        group_id=resolved_group_id,
    )
    if member is None:
        return _skipped("member_not_found", group_id=resolved_group_id)
    if member.status == MemberStatus.removido:
        return _skipped("already_removed", group_id=member.group_id, member_id=member.id)

    reason = "trial_not_converted" if member.status == MemberStatus.trial else "subscription_cancelled"
    result = crud.transition_status(
        session=ctx.session,
        member_id=member.id,
        new_status=MemberStatus.removido,
        actor=ACTOR,
        reason=reason,
    )
    if not result.success:
        return result
    member = result.data

    tenant = resolve_group_for_member(session=ctx.session, member=member)
    await notification_service.notify_member(
        ctx.messenger,
        member.telegram_id,
        notification_service.farewell_message(reason=reason, checkout_url=tenant.checkout_url),
        kind="farewell",
    )
    await _kick_from_group(ctx, member, tenant)
    return _done("removed", member, group_id=tenant.group_id, reason=reason)


# ---------------------------------------------------------------------------
# payment.refunded
# ---------------------------------------------------------------------------


async def handle_payment_refunded(
    ctx: HandlerContext, payment_id: str, payment: dict[str, Any] | None = None
) -> Result[HandlerOutcome]:
    """
    Remove the member whose payment was refunded or charged back

    Args:
        payment_id: Mercado Pago payment id
        payment: already fetched payment, fetched when None

    Returns:
        removed with reason refund, or skipped (not_refunded,
        member_not_found, already_removed)
    """
    fetched = await _fetch_payment(ctx, payment_id, payment)
    if not fetched.success:
        return _provider_failure(fetched, "payment")
    payment = fetched.data

    if payment.get("status") not in REFUND_STATUSES:
        return _skipped("not_refunded")

    subscription_id = extract_subscription_id(payment)
    resolved = await resolve_group_from_payment(
        session=ctx.session, provider=ctx.provider, payment=payment
    )
    if not resolved.success:
        return resolved
    tenant, subscription = resolved.data
    member = _find_member(
        session=ctx.session,
        subscription_id=subscription_id,
        email=_payer_email(payment, subscription),
        group_id=tenant.group_id,
    )
    if member is None:
        return _skipped("member_not_found", group_id=tenant.group_id)
    if member.status == MemberStatus.removido:
        return _skipped("already_removed", group_id=member.group_id, member_id=member.id)

    result = crud.transition_status(
        session=ctx.session,
        member_id=member.id,
        new_status=MemberStatus.removido,
        actor=ACTOR,
        reason=f"{REFUND_REASON} (payment {payment.get('id') or payment_id} {payment.get('status')})",
    )
    if not result.success:
        return result
    member = result.data

    member_tenant = resolve_group_for_member(session=ctx.session, member=member)
    await notification_service.notify_member(
        ctx.messenger,
        member.telegram_id,
        notification_service.farewell_message(reason=REFUND_REASON, checkout_url=member_tenant.checkout_url),
        kind="farewell",
    )
    await _kick_from_group(ctx, member, member_tenant)
    await alert_service.payment_notification(
        ctx.alerter, action="refunded", member=member, chat_id=member_tenant.admin_chat_id
    )
    return _done("removed", member, group_id=member_tenant.group_id, reason=REFUND_REASON)


# ---------------------------------------------------------------------------
# Provider-native classification
# ---------------------------------------------------------------------------


async def route_payment(ctx: HandlerContext, payment_id: str, payment: dict[str, Any] | None = None) -> Result[HandlerOutcome]:
    """`payment` notification: routed on the payment status (rejected, refunded, otherwise approval)."""
    fetched = await _fetch_payment(ctx, payment_id, payment)
    if not fetched.success:
        return _provider_failure(fetched, "payment")
    status = fetched.data.get("status")
    if status == "rejected":
        return await handle_payment_rejected(ctx, payment_id, fetched.data)
    if status in REFUND_STATUSES:
        return await handle_payment_refunded(ctx, payment_id, fetched.data)
    return await handle_payment_approved(ctx, payment_id, fetched.data)


async def route_subscription(
    ctx: HandlerContext, subscription_id: str, subscription: dict[str, Any] | None = None
) -> Result[HandlerOutcome]:
    """`subscription_preapproval` notification: cancellation or creation/update."""
    fetched = await _fetch_subscription(ctx, subscription_id, subscription)
    if not fetched.success:
        return _provider_failure(fetched, "subscription")
    if fetched.data.get("status") == "cancelled":
        return await handle_subscription_cancelled(ctx, subscription_id, fetched.data)
    return await handle_subscription_created(ctx, subscription_id, fetched.data)


HANDLERS: dict[str, Handler] = {
    WebhookEventType.subscription_created.value: handle_subscription_created,
    WebhookEventType.payment_approved.value: handle_payment_approved,
    WebhookEventType.payment_rejected.value: handle_payment_rejected,
    WebhookEventType.subscription_cancelled.value: handle_subscription_cancelled,
    WebhookEventType.payment_refunded.value: handle_payment_refunded,
    WebhookEventType.payment.value: route_payment,
    WebhookEventType.subscription_preapproval.value: route_subscription,
}


def extract_resource_id(payload: dict[str, Any] | None) -> str | None:
    """data.id of a provider notification, or None when the payload has none."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if isinstance(data, dict) and data.get("id"):
        return str(data["id"])
    return None


async def dispatch_event(
    ctx: HandlerContext, event_type: str, payload: dict[str, Any] | None
) -> Result[HandlerOutcome]:
    """Route one stored event to its handler."""
    handler = HANDLERS.get(event_type)
    if handler is None:
        return _skipped("unhandled_event_type")
    resource_id = extract_resource_id(payload)
    if not resource_id:
        return _skipped("missing_resource_id")
    return await handler(ctx, resource_id)
