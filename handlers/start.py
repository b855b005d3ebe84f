"""Start, main menu and onboarding (role, terms, availability)"""

import logging

from telegram import Update
from telegram.ext import ContextTypes

from config import Config
from models import Account, AccountRole, ApprovalStatus
from services.core_services import CoreServices
from services.telegram_notification_service import NotificationAction
from utils.callback_dispatcher import BotCommand, CommandKind, encode_callback
from utils.callback_utils import reply
from utils.decimal_precision import format_cents

logger = logging.getLogger(__name__)

TERMS_TEXT = (
    "📜 Terms of use\n\n"
    "Payments are held in escrow when a provider accepts your order and are "
    "released to the provider once the order is completed. The service fee is not refundable "
    "after completion."
)


def _action(label: str, kind: CommandKind, *args) -> NotificationAction:
    return NotificationAction(label, encode_callback(kind, *args))


async def show_onboarding(update: Update, account: Account) -> None:
    if account.role is None:
        await reply(
            update,
            "👋 Welcome! How do you want to use the bot?",
            [
                _action("🛒 I want to book services", CommandKind.CHOOSE_REQUESTER),
                _action("🎙 I offer services", CommandKind.CHOOSE_PROVIDER),
            ],
        )
        return
    await reply(update, TERMS_TEXT, [_action("✅ I accept", CommandKind.ACCEPT_TERMS)])


def menu_actions(account: Account):
    if account.is_operator:
        return [_action("📊 Orders", CommandKind.MY_ORDERS), _action("💰 Balance", CommandKind.BALANCE)]
    if account.is_provider:
        availability = "🔴 Go unavailable" if account.is_available else "🟢 Go available"
        return [
            _action("📊 My orders", CommandKind.MY_ORDERS),
            _action("🧾 My services", CommandKind.MY_SERVICES),
            _action("➕ New service", CommandKind.NEW_SERVICE),
            _action(availability, CommandKind.TOGGLE_AVAILABILITY),
            _action("💰 Balance", CommandKind.BALANCE),
            _action("🪪 Edit profile", CommandKind.EDIT_PROFILE),
        ]
    return [
        _action("🛒 New order", CommandKind.NEW_ORDER),
        _action("📊 My orders", CommandKind.MY_ORDERS),
        _action("💰 Balance", CommandKind.BALANCE),
    ]


async def show_menu(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                    account: Account, services: CoreServices) -> None:
    """Main menu; opening it resets any open flow"""
    services.conversations.cancel_flow(account.id)
    if account.role is None or (account.terms_accepted_at is None and not account.is_operator):
        await show_onboarding(update, account)
        return

    lines = [f"🏠 Main menu - {account.label}"]
    if account.is_provider:
        if account.approval_status == ApprovalStatus.PENDING.value:
            lines.append("⏳ Your provider account is awaiting approval.")
        elif account.approval_status == ApprovalStatus.REJECTED.value:
            lines.append("❌ Your provider application was not approved.")
    lines.append(f"Balance: {format_cents(account.balance_cents, Config.ORDER_CURRENCY)}")
    await reply(update, "\n".join(lines), menu_actions(account))


async def choose_role(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                      account: Account, services: CoreServices) -> None:
    role = AccountRole.PROVIDER if command.kind == CommandKind.CHOOSE_PROVIDER else AccountRole.REQUESTER
    account = await services.accounts.choose_role(account.id, role)
    if role == AccountRole.PROVIDER:
        await reply(update, "🎙 Thanks! An operator will review your provider account shortly.")
    if account.terms_accepted_at is None:
        await show_onboarding(update, account)
    else:
        await show_menu(update, context, command, account, services)


async def accept_terms(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                       account: Account, services: CoreServices) -> None:
    account = await services.accounts.accept_terms(account.id)
    await reply(update, "✅ Terms accepted.")
    await show_menu(update, context, command, account, services)


async def toggle_availability(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                              account: Account, services: CoreServices) -> None:
    account = await services.accounts.set_availability(account.id, not account.is_available)
    state = "🟢 You are now available for new orders." if account.is_available else "🔴 You are now unavailable."
    await reply(update, state, menu_actions(account))


COMMANDS = {
    CommandKind.MENU: show_menu,
    CommandKind.CHOOSE_REQUESTER: choose_role,
    CommandKind.CHOOSE_PROVIDER: choose_role,
    CommandKind.ACCEPT_TERMS: accept_terms,
    CommandKind.TOGGLE_AVAILABILITY: toggle_availability,
}
