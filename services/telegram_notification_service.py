"""
Telegram Notification Service

Fire-and-forget messaging to participants. Delivery is best-effort: every
failure is logged and reported as False, never raised into the order,
ledger or scheduler code that triggered it.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy import select
from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.error import TelegramError

from config import Config
from database import async_managed_session
from models import Account

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationAction:
    """An inline button attached to a notification"""
    label: str
    callback_data: str


class Notifier:
    """Notification interface consumed by the services"""

    async def notify(self, account_id: int, message: str,
                     actions: Optional[Sequence[NotificationAction]] = None) -> bool:
        raise NotImplementedError

    async def notify_operators(self, message: str,
                               actions: Optional[Sequence[NotificationAction]] = None) -> int:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Notifier used when no bot is configured (scripts, local runs)"""

    async def notify(self, account_id, message, actions=None) -> bool:
        logger.info(f"📨 NOTIFY (log only): account={account_id}: {message}")
        return True

    async def notify_operators(self, message, actions=None) -> int:
        logger.info(f"📨 NOTIFY_OPERATORS (log only): {message}")
        return len(Config.ADMIN_IDS)


def build_keyboard(actions: Optional[Sequence[NotificationAction]]) -> Optional[InlineKeyboardMarkup]:
    if not actions:
        return None
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(action.label, callback_data=action.callback_data)] for action in actions]
    )


class TelegramNotifier(Notifier):
    """Delivers notifications through the bot"""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def _telegram_id_for(self, account_id: int) -> Optional[int]:
        async with async_managed_session() as session:
            result = await session.execute(select(Account.telegram_id).where(Account.id == account_id))
            return result.scalar_one_or_none()

    async def send_to_chat(self, chat_id: int, message: str,
                           actions: Optional[Sequence[NotificationAction]] = None) -> bool:
        try:
            await self.bot.send_message(chat_id=chat_id, text=message, reply_markup=build_keyboard(actions))
            logger.info(f"✅ TELEGRAM_SENT: chat={chat_id}")
            return True
        except TelegramError as e:
            logger.error(f"❌ TELEGRAM_ERROR: chat={chat_id}, error={e}")
            return False
        except Exception as e:
            logger.error(f"❌ TELEGRAM_UNEXPECTED: chat={chat_id}, error={e}")
            return False

    async def notify(self, account_id: int, message: str,
                     actions: Optional[Sequence[NotificationAction]] = None) -> bool:
        try:
            telegram_id = await self._telegram_id_for(account_id)
        except Exception as e:
            logger.error(f"❌ NOTIFY_LOOKUP_FAILED: account={account_id}, error={e}")
            return False
        if telegram_id is None:
            logger.warning(f"⚠️ NOTIFY_SKIPPED: account {account_id} not found")
            return False
        return await self.send_to_chat(telegram_id, message, actions)

    async def notify_operators(self, message: str,
                               actions: Optional[Sequence[NotificationAction]] = None) -> int:
        delivered = 0
        for admin_id in Config.ADMIN_IDS:
            if await self.send_to_chat(admin_id, message, actions):
                delivered += 1
        return delivered
