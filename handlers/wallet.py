"""Balance and withdrawal handlers"""

import logging

from telegram import Update
from telegram.ext import ContextTypes

from config import Config
from models import Account, LedgerEntryKind
from services.core_services import CoreServices
from services.telegram_notification_service import NotificationAction
from utils.callback_dispatcher import BotCommand, CommandKind, encode_callback
from utils.callback_utils import reply
from utils.decimal_precision import format_cents
from utils.input_validation import InputValidator

logger = logging.getLogger(__name__)

ENTRY_LABELS = {
    LedgerEntryKind.TOPUP.value: "➕ top-up",
    LedgerEntryKind.HOLD.value: "🔒 escrow hold",
    LedgerEntryKind.RELEASE.value: "🔓 release",
    LedgerEntryKind.WITHDRAW.value: "🏧 withdrawal",
}


async def show_balance(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                       account: Account, services: CoreServices) -> None:
    balance = await services.ledger.get_balance(account.id)
    entries = await services.ledger.list_entries(account.id, limit=5)
    lines = [f"💰 Balance: {format_cents(balance, Config.ORDER_CURRENCY)}"]
    for entry in entries:
        sign = "+" if entry.signed_amount > 0 else "-"
        order_ref = f" (order #{entry.related_order_id})" if entry.related_order_id else ""
        lines.append(
            f"{ENTRY_LABELS.get(entry.kind, entry.kind)} {sign}{format_cents(entry.amount_cents, Config.ORDER_CURRENCY)}"
            f"{order_ref}"
        )

    actions = []
    if account.is_provider and balance > 0:
        actions.append(NotificationAction("🏧 Withdraw all", encode_callback(CommandKind.WITHDRAW)))
    await reply(update, "\n".join(lines), actions)


async def withdraw(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                   account: Account, services: CoreServices) -> None:
    """/withdraw [amount] - whole balance when no amount is given"""
    amount_cents = InputValidator.validate_amount_cents(command.args[0]) if command.args else None
    await services.wallet.request_withdrawal(account.id, amount_cents)


COMMANDS = {
    CommandKind.BALANCE: show_balance,
    CommandKind.WITHDRAW: withdraw,
}
