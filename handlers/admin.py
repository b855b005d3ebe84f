"""Operator handlers: provider approval, top-ups, payment confirmation, withdrawals"""

import logging

from telegram import Update
from telegram.ext import ContextTypes

from config import Config
from models import Account
from services.core_services import CoreServices
from services.order_service import PaymentSource
from utils.callback_dispatcher import BotCommand, CommandKind
from utils.callback_utils import reply
from utils.decimal_precision import format_cents
from utils.exception_handler import NotOwner
from utils.input_validation import InputValidator

logger = logging.getLogger(__name__)


def _require_operator(account: Account) -> None:
    if not account.is_operator:
        logger.warning(f"🚫 ADMIN_DENIED: account {account.id} is not an operator")
        raise NotOwner("This command is for operators only.")


async def set_approval(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                       account: Account, services: CoreServices) -> None:
    approved = command.kind == CommandKind.APPROVE_PROVIDER
    provider = await services.accounts.set_approval(account.id, command.int_arg(0, "account id"), approved)
    verdict = "approved" if approved else "rejected"
    await reply(update, f"🛡️ {provider.label} {verdict}.")


async def admin_topup(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                      account: Account, services: CoreServices) -> None:
    """/admin_topup <telegram_id|@username> <amount>"""
    _require_operator(account)
    target = command.str_arg(0, "telegram id or @username")
    amount_cents = InputValidator.validate_amount_cents(command.str_arg(1, "amount"))
    credited = await services.wallet.operator_top_up(account.id, target, amount_cents)
    await reply(
        update,
        f"💳 Topped up {credited.label} by {format_cents(amount_cents, Config.ORDER_CURRENCY)}. "
        f"Balance: {format_cents(credited.balance_cents, Config.ORDER_CURRENCY)}.",
    )


async def confirm_payment(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                          account: Account, services: CoreServices) -> None:
    """/confirm_payment <order_id> <amount> <currency>"""
    _require_operator(account)
    order_id = command.int_arg(0, "order id")
    amount_cents = InputValidator.validate_amount_cents(command.str_arg(1, "amount"), min_cents=1)
    currency = command.str_arg(2, "currency")
    order = await services.orders.confirm_payment(
        order_id, amount_cents, currency, source=PaymentSource.EXTERNAL, actor_id=account.id,
    )
    await reply(update, f"💳 Payment recorded for order #{order.id}.")


async def withdrawal_processed(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                               account: Account, services: CoreServices) -> None:
    withdrawal = await services.wallet.mark_processed(command.int_arg(0, "withdrawal id"), account.id)
    await reply(update, f"✅ Withdrawal #{withdrawal.id} marked as processed.")


COMMANDS = {
    CommandKind.APPROVE_PROVIDER: set_approval,
    CommandKind.REJECT_PROVIDER: set_approval,
    CommandKind.ADMIN_TOPUP: admin_topup,
    CommandKind.CONFIRM_PAYMENT: confirm_payment,
    CommandKind.WITHDRAWAL_PROCESSED: withdrawal_processed,
}
