"""
Command Router

Single entry point for button presses, slash commands and free-text
input. Raw callback data and command text are decoded once into a
BotCommand and dispatched through COMMAND_HANDLERS; ordinary messages go
to the caller's open conversation flow, or else to its open order chat.
"""

import logging
from typing import Awaitable, Callable, Dict

from telegram import Update
from telegram.ext import Application, CallbackQueryHandler, ContextTypes, MessageHandler, filters

from models import Account
from services.core_services import CoreServices, get_services
from utils.callback_dispatcher import BotCommand, CommandKind, decode_callback, decode_command_text
from utils.callback_utils import reply, safe_answer_callback_query
from utils.exception_handler import safe_telegram_handler

from handlers import admin, catalog, chat, flows, orders, start, wallet

logger = logging.getLogger(__name__)

CommandHandlerFn = Callable[[Update, ContextTypes.DEFAULT_TYPE, BotCommand, Account, CoreServices], Awaitable[None]]

COMMAND_HANDLERS: Dict[CommandKind, CommandHandlerFn] = {}
for _module in (start, flows, orders, chat, catalog, wallet, admin):
    COMMAND_HANDLERS.update(_module.COMMANDS)

# Reachable before a role is chosen and terms are accepted
ONBOARDING_COMMANDS = {
    CommandKind.MENU,
    CommandKind.CHOOSE_REQUESTER,
    CommandKind.CHOOSE_PROVIDER,
    CommandKind.ACCEPT_TERMS,
}


async def _resolve_account(update: Update, services: CoreServices) -> Account:
    user = update.effective_user
    return await services.accounts.get_or_create_account(user.id, user.username)


async def dispatch(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand) -> None:
    services = get_services(context)
    account = await _resolve_account(update, services)

    if command.kind not in ONBOARDING_COMMANDS and not account.is_operator:
        if account.role is None or account.terms_accepted_at is None:
            await start.show_onboarding(update, account)
            return

    handler = COMMAND_HANDLERS.get(command.kind)
    if handler is None:
        logger.warning(f"⚠️ NO_HANDLER: {command.kind.value}")
        await reply(update, "This action is not available.")
        return

    logger.debug(f"🎯 DISPATCH: {command.kind.value} args={command.args} account={account.id}")
    await handler(update, context, command, account, services)


@safe_telegram_handler
async def callback_router(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await safe_answer_callback_query(query)
    command = decode_callback(query.data)
    if command is None:
        await reply(update, "This button is no longer valid. Use /menu.")
        return
    await dispatch(update, context, command)


@safe_telegram_handler
async def slash_command_router(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    command = decode_command_text(update.effective_message.text)
    if command is None:
        await reply(update, "Unknown command. Use /menu to see what you can do.")
        return
    await dispatch(update, context, command)


@safe_telegram_handler
async def input_router(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Ordinary messages: feed the open flow, else relay to the open order chat, else point at the menu"""
    services = get_services(context)
    account = await _resolve_account(update, services)
    message = update.effective_message
    photo_file_id = message.photo[-1].file_id if message.photo else None
    text = message.text if message.text is not None else message.caption

    handled = await flows.submit_input(update, services, account, text, photo_file_id)
    if not handled:
        handled = await chat.relay_message(update, context, account, services)
    if not handled:
        await reply(update, "Use /menu to see what you can do.")


def register_handlers(application: Application) -> None:
    application.add_handler(CallbackQueryHandler(callback_router))
    application.add_handler(MessageHandler(filters.COMMAND, slash_command_router))
    relayable = filters.TEXT | filters.PHOTO | filters.VIDEO | filters.AUDIO | filters.VOICE | filters.Document.ALL
    application.add_handler(MessageHandler(relayable & ~filters.COMMAND, input_router))
    logger.info(f"✅ Command router registered ({len(COMMAND_HANDLERS)} commands)")
