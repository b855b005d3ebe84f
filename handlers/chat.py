"""Anonymous per-order chat: /chat_<order_id>, /stop_chat and relaying of ordinary messages"""

import logging

from telegram import Update
from telegram.error import TelegramError
from telegram.ext import ContextTypes

from models import Account
from services.core_services import CoreServices
from services.telegram_notification_service import NotificationAction, build_keyboard
from utils.callback_dispatcher import BotCommand, CommandKind, encode_callback
from utils.callback_utils import reply

logger = logging.getLogger(__name__)


async def open_chat(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                    account: Account, services: CoreServices) -> None:
    order_id = command.int_arg(0, "order id")
    await services.chats.open_chat(account.id, order_id)
    await reply(
        update,
        f"💬 Chat open for order #{order_id}.\n"
        "Everything you send (text, photos, videos, voice notes, documents) is forwarded anonymously.\n"
        "Use /stop_chat to stop chatting.",
    )


async def stop_chat(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                    account: Account, services: CoreServices) -> None:
    if services.chats.stop_chat(account.id):
        await reply(update, "💬 Chat closed.")
    else:
        await reply(update, "No chat is open.")


async def relay_message(update: Update, context: ContextTypes.DEFAULT_TYPE,
                        account: Account, services: CoreServices) -> bool:
    """Copy the message to the other party of the open chat; False when no chat is open"""
    found = await services.chats.counterpart(account.id)
    if found is None:
        return False
    relay, other = found

    keyboard = build_keyboard([NotificationAction(f"💬 Order #{relay.order_id}", encode_callback(CommandKind.MY_ORDERS))])
    try:
        await context.bot.copy_message(
            chat_id=other.telegram_id,
            from_chat_id=update.effective_chat.id,
            message_id=update.effective_message.message_id,
            reply_markup=keyboard,
        )
    except TelegramError as e:
        logger.warning(f"⚠️ CHAT_RELAY_FAILED: order={relay.order_id} to account={other.id}: {e}")
        await reply(update, "❌ The message could not be forwarded.")
    return True


COMMANDS = {
    CommandKind.OPEN_CHAT: open_chat,
    CommandKind.STOP_CHAT: stop_chat,
}
