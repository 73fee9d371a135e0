"""
Tenant (group) resolution

Maps a Mercado Pago subscription or payment to the group it was sold for:

    payment ─► subscription id ─► subscription.preapproval_plan_id ─► groups.provider_plan_id

When a link is missing (no subscription id, unknown subscription, no plan
or an inactive group) the resolution falls back to the configured tenant
(MEMBERSHIP_GROUP_ID). A transient provider failure is not a missing link:
it fails the resolution so the event is retried. Without a
configured tenant the deployment runs in single-tenant mode.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlmodel import Session

from app import crud
from app.core.config import settings
from app.core.result import ErrorCode, Result, fail, ok
from app.integrations.protocols import PaymentProvider
from app.models import Group, Member

logger = logging.getLogger(__name__)

SINGLE_TENANT = "single-tenant"


@dataclass(frozen=True)
class TenantResolution:
    """
    Resolved tenant

    - group: the group row, when one exists
    - group_id: tenant id to scope member lookups and inserts with
    - source: "plan", "member", "config" or "single-tenant"
    """
    group: Group | None
    group_id: str | None
    source: str

    @property
    def chat_id(self) -> int | None:
        """Chat members of this tenant belong to."""
        if self.group is not None:
            return self.group.telegram_group_id
        if self.group_id is None:
            return settings.TELEGRAM_PUBLIC_GROUP_ID
        return None

    @property
    def admin_chat_id(self) -> int | None:
        """Group admin chat for alerts about this tenant; None routes to the global admin chat."""
        if self.group is not None:
            return self.group.telegram_admin_group_id
        return None

    @property
    def checkout_url(self) -> str | None:
        if self.group is not None and self.group.checkout_url:
            return self.group.checkout_url
        return settings.MEMBERSHIP_CHECKOUT_URL


def fallback_resolution(*, session: Session) -> TenantResolution:
    """
    Configured tenant, or single-tenant mode when none is configured

    The group row is None when MEMBERSHIP_GROUP_ID names a missing group;
    jobs check for that and abort.
    """
    configured = settings.MEMBERSHIP_GROUP_ID
    if not configured:
        return TenantResolution(group=None, group_id=None, source=SINGLE_TENANT)
    found = crud.get_group(session=session, group_id=configured)
    return TenantResolution(
        group=found.data if found.success else None,
        group_id=configured,
        source="config",
    )


def resolve_group_from_subscription(
    *, session: Session, subscription: dict[str, Any]
) -> TenantResolution:
    """
    Tenant of a subscription through its preapproval plan

    Args:
        subscription: Mercado Pago preapproval resource

    Returns:
        the plan's group when it is active, otherwise the fallback tenant
    """
    plan_id = subscription.get("preapproval_plan_id")
    if not plan_id:
        return fallback_resolution(session=session)

    found = crud.get_active_group_by_plan_id(session=session, plan_id=str(plan_id))
    if not found.success:
        logger.info("No active group for plan %s, using fallback tenant", plan_id)
        return fallback_resolution(session=session)
    return TenantResolution(group=found.data, group_id=found.data.id, source="plan")


def extract_subscription_id(payment: dict[str, Any]) -> str | None:
    """
    Subscription id a payment belongs to

    Mercado Pago places it in different fields depending on how the payment
    was created; the first non-empty one wins.
    """
    poi = payment.get("point_of_interaction")
    transaction_data = (poi.get("transaction_data") if isinstance(poi, dict) else None) or {}
    metadata = payment.get("metadata") or {}
    candidates = (
        transaction_data.get("subscription_id") if isinstance(transaction_data, dict) else None,
        metadata.get("preapproval_id") if isinstance(metadata, dict) else None,
        payment.get("preapproval_id"),
    )
    for candidate in candidates:
        if candidate:
            return str(candidate)
    return None


async def resolve_group_from_payment(
    *, session: Session, provider: PaymentProvider, payment: dict[str, Any]
) -> Result[tuple[TenantResolution, dict[str, Any] | None]]:
    """
    Resolve the tenant of a payment through its subscription

    Args:
        provider: used to fetch the subscription the payment belongs to
        payment: Mercado Pago payment resource

    Returns:
        (resolution, subscription); subscription is None when the payment
        has no subscription id or the provider does not know it. Any other
        lookup failure is returned as is.
    """
    subscription_id = extract_subscription_id(payment)
    if not subscription_id:
        return ok((fallback_resolution(session=session), None))

    fetched = await provider.get_subscription(subscription_id)
    if fetched.code == ErrorCode.NOT_FOUND:
        logger.info("Subscription %s not found, using fallback tenant", subscription_id)
        return ok((fallback_resolution(session=session), None))
    if not fetched.success:
        logger.warning(
            "Subscription %s lookup failed while resolving tenant: %s",
            subscription_id, fetched.message,
        )
        return fail(fetched.code, fetched.message)
    return ok((resolve_group_from_subscription(session=session, subscription=fetched.data), fetched.data))


def resolve_group_for_member(*, session: Session, member: Member) -> TenantResolution:
    """Tenant a member row already belongs to."""
    if not member.group_id:
        return fallback_resolution(session=session)
    found = crud.get_group(session=session, group_id=member.group_id)
    return TenantResolution(
        group=found.data if found.success else None,
        group_id=member.group_id,
        source="member",
    )
