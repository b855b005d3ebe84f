"""
Bot Commands Setup - Telegram Bot Menu Configuration
Creates the command menu users see in the Telegram interface
"""

import logging
from typing import List

from telegram import BotCommand
from telegram.error import TelegramError
from telegram.ext import Application

logger = logging.getLogger(__name__)


class BotCommandsManager:
    """Manages Telegram bot commands and menu setup"""

    COMMANDS: List[BotCommand] = [
        BotCommand("start", "🚀 Start / main menu"),
        BotCommand("menu", "📋 Show main menu"),
        BotCommand("neworder", "🛒 Order a service"),
        BotCommand("newservice", "🧾 Add a service (providers)"),
        BotCommand("orders", "📊 Your orders"),
        BotCommand("balance", "💰 Your balance"),
        BotCommand("profile", "👤 Edit your profile"),
        BotCommand("cancel", "🛑 Cancel the current step-by-step flow"),
        BotCommand("stop_chat", "💬 Stop the anonymous order chat"),
    ]

    @classmethod
    async def setup_bot_commands(cls, application: Application) -> bool:
        try:
            await application.bot.set_my_commands(cls.COMMANDS)
            logger.info(f"✅ Bot commands menu configured with {len(cls.COMMANDS)} commands")
            return True
        except TelegramError as e:
            logger.error(f"❌ Failed to set bot commands: {e}")
            return False
