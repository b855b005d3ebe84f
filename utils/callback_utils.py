"""
Utility functions for answering callback queries and replying safely
"""

import logging
from typing import Optional, Sequence

from telegram import Update
from telegram.error import TelegramError

from services.telegram_notification_service import NotificationAction, build_keyboard

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096


async def safe_answer_callback_query(query, text: Optional[str] = None, show_alert: bool = False):
    """Answer a callback query first thing so the button spinner stops; failures are only logged"""
    if not query:
        return
    try:
        if text:
            await query.answer(text, show_alert=show_alert)
        else:
            await query.answer()
    except TelegramError as e:
        logger.warning(f"⚠️ Callback answer failed: {e}")


def truncate_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


async def reply(update: Update, text: str, actions: Optional[Sequence[NotificationAction]] = None) -> None:
    """Reply in the chat the update came from, with optional inline buttons"""
    message = update.effective_message
    if message is None:
        return
    await message.reply_text(truncate_message(text), reply_markup=build_keyboard(actions))
