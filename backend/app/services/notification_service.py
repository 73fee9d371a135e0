"""
Member notifications

Private messages sent to members at lifecycle changes. Delivery is best
effort: a member who blocked the bot is expected and never fails the
caller.
"""
import logging

from app.core.result import ErrorCode, Result
from app.integrations.protocols import GroupMessenger

logger = logging.getLogger(__name__)


def _checkout_line(checkout_url: str | None) -> str:
    return f"\n\nAssine aqui: {checkout_url}" if checkout_url else ""


def payment_confirmation_message(*, renewed: bool) -> str:
    if renewed:
        return "✅ Pagamento confirmado! Sua assinatura foi renovada por mais 30 dias."
    return "✅ Pagamento confirmado! Sua assinatura está ativa. Bem-vindo!"


def payment_rejected_message(*, checkout_url: str | None, grace_days: int) -> str:
    return (
        "⚠️ Não conseguimos processar seu pagamento.\n"
        f"Você tem {grace_days} dia(s) para regularizar antes de ser removido do grupo."
        + _checkout_line(checkout_url)
    )


def grace_period_warning_message(*, days_remaining: int, checkout_url: str | None) -> str:
    return (
        f"⏳ Seu pagamento está pendente. Faltam {days_remaining} dia(s) "
        "para a remoção do grupo." + _checkout_line(checkout_url)
    )


def trial_reminder_message(*, days_remaining: int, checkout_url: str) -> str:
    if days_remaining <= 1:
        text = "⏰ <b>Último dia</b> do seu período de teste! Amanhã você perde o acesso ao grupo."
    else:
        text = f"⏰ Faltam <b>{days_remaining} dias</b> para o fim do seu período de teste."
    return f"{text}\n\nPara continuar no grupo, assine: {checkout_url}"


def renewal_reminder_message(*, days_until: int, checkout_url: str) -> str:
    if days_until <= 1:
        text = "📅 <b>Amanhã</b> sua assinatura expira!"
    else:
        text = f"📅 Sua assinatura vence em <b>{days_until} dias</b>."
    return (
        f"{text}\nPagamentos via PIX ou boleto precisam ser feitos manualmente.\n\n"
        f"Pague aqui para não perder o acesso: {checkout_url}"
    )


def farewell_message(*, reason: str, checkout_url: str | None) -> str:
    """
    Message sent right before a removal

    Args:
        reason: trial_not_converted, subscription_cancelled, refund, or a
            payment failure for anything else
        checkout_url: link to subscribe again, omitted when None
    """
    if reason == "trial_not_converted":
        text = "Seu período de teste terminou e você foi removido do grupo."
    elif reason == "subscription_cancelled":
        text = "Sua assinatura foi cancelada e você foi removido do grupo."
    elif reason == "refund":
        text = "Seu pagamento foi estornado e você foi removido do grupo."
    else:
        text = "Seu pagamento não foi regularizado e você foi removido do grupo."
    return f"👋 {text} Volte quando quiser!" + _checkout_line(checkout_url)


def reactivation_message(*, invite_hint: bool) -> str:
    text = "🎉 Pagamento confirmado! Sua assinatura foi reativada."
    if invite_hint:
        text += " Você já pode voltar a entrar no grupo."
    return text


async def notify_member(
    messenger: GroupMessenger, telegram_id: int | None, text: str, *, kind: str
) -> Result[None] | None:
    """
    Send a private message, logging instead of raising

    Returns:
        the delivery result, or None when the member has no Telegram id
    """
    if telegram_id is None:
        logger.info("Skipping %s notification, member has no telegram_id", kind)
        return None
    try:
        result = await messenger.send_private_message(telegram_id, text)
    except Exception:
        logger.exception("%s notification to %s raised", kind, telegram_id)
        return None
    if not result.success:
        if result.code == ErrorCode.USER_BLOCKED_BOT:
            logger.info("%s notification not delivered to %s: bot blocked", kind, telegram_id)
        else:
            logger.warning(
                "%s notification to %s failed: %s", kind, telegram_id, result.message
            )
    return result
