"""
Enumerations

Every enum subclasses both str and Enum so values persist as plain strings
and compare equal to them.
"""
from enum import Enum


class MemberStatus(str, Enum):
    """
    Member lifecycle status

    - trial: free trial period
    - ativo: paid and active
    - inadimplente: last payment rejected, inside the grace period
    - removido: removed from the group (terminal)
    """
    trial = "trial"
    ativo = "ativo"
    inadimplente = "inadimplente"
    removido = "removido"


class WebhookEventStatus(str, Enum):
    """
    Webhook queue status

    - pending: waiting for the dispatcher
    - processing: claimed by a worker
    - completed: handled (terminal)
    - failed: attempts exhausted (terminal, kept for inspection)
    """
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class GroupStatus(str, Enum):
    active = "active"
    paused = "paused"
    inactive = "inactive"


class WebhookEventType(str, Enum):
    """
    Logical event types routed to handlers

    Mercado Pago delivers `payment` and `subscription_preapproval`; the
    dispatcher classifies those into the logical types below.
    """
    subscription_created = "subscription.created"
    payment_approved = "payment.approved"
    payment_rejected = "payment.rejected"
    subscription_cancelled = "subscription.cancelled"
    payment_refunded = "payment.refunded"
    payment = "payment"
    subscription_preapproval = "subscription_preapproval"
