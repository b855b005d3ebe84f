"""
Shared fixtures for the SafeCall test suite.

1. A temporary SQLite database (aiosqlite), recreated for every test
2. A FixedClock injected into every service
3. A recording notifier in place of the Telegram bot
4. A data factory for accounts, services and balances
5. Telegram update/context factories for handler tests
"""

import os
import tempfile

# Must be set before config/database are imported anywhere
os.environ["DATABASE_URL"] = os.getenv(
    "TEST_DATABASE_URL",
    f"sqlite:///{os.path.join(tempfile.gettempdir(), f'safecall_test_{os.getpid()}.db')}",
)
os.environ.setdefault("ADMIN_IDS", "")

import logging
from datetime import datetime
from typing import List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from telegram import Update

from config import Config
from database import drop_tables_async, create_tables_async, async_engine
from models import Account, AccountRole, Service, ServiceCategory
from services.core_services import BOT_DATA_KEY, CoreServices, build_services
from services.telegram_notification_service import Notifier, NotificationAction
from utils.datetime_helpers import FixedClock

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

OPERATOR_TELEGRAM_ID = 900001


class RecordingNotifier(Notifier):
    """Collects notifications instead of sending them"""

    def __init__(self):
        self.sent: List[Tuple[int, str, List[NotificationAction]]] = []
        self.operator_messages: List[Tuple[str, List[NotificationAction]]] = []

    async def notify(self, account_id, message, actions=None) -> bool:
        self.sent.append((account_id, message, list(actions or [])))
        return True

    async def notify_operators(self, message, actions=None) -> int:
        self.operator_messages.append((message, list(actions or [])))
        return 1

    def messages_for(self, account_id: int) -> List[str]:
        return [message for recipient, message, _ in self.sent if recipient == account_id]

    def actions_for(self, account_id: int) -> List[NotificationAction]:
        return [action for recipient, _, actions in self.sent if recipient == account_id for action in actions]


@pytest_asyncio.fixture(autouse=True)
async def fresh_database():
    """Empty schema for every test"""
    await drop_tables_async()
    await create_tables_async()
    yield
    await async_engine.dispose()


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 3, 2, 12, 0, 0))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def services(notifier, clock) -> CoreServices:
    return build_services(notifier=notifier, clock=clock)


@pytest.fixture(autouse=True)
def operator_ids(monkeypatch):
    monkeypatch.setattr(Config, "ADMIN_IDS", [OPERATOR_TELEGRAM_ID])
    return [OPERATOR_TELEGRAM_ID]


class TestDataFactory:
    """Creates onboarded accounts and catalog entries through the services"""

    __test__ = False

    def __init__(self, services: CoreServices):
        self.services = services
        self._next_telegram_id = 1000

    def _telegram_id(self) -> int:
        self._next_telegram_id += 1
        return self._next_telegram_id

    async def create_requester(self, balance_cents: int = 0) -> Account:
        account = await self.services.accounts.get_or_create_account(self._telegram_id(), "requester")
        await self.services.accounts.choose_role(account.id, AccountRole.REQUESTER)
        account = await self.services.accounts.accept_terms(account.id)
        if balance_cents:
            await self.services.ledger.top_up(account.id, balance_cents)
        return await self.services.accounts.get_account(account.id)

    async def create_operator(self) -> Account:
        return await self.services.accounts.get_or_create_account(OPERATOR_TELEGRAM_ID, "operator")

    async def create_provider(self, approved: bool = True, available: bool = True) -> Account:
        account = await self.services.accounts.get_or_create_account(self._telegram_id(), "provider")
        await self.services.accounts.choose_role(account.id, AccountRole.PROVIDER)
        await self.services.accounts.accept_terms(account.id)
        if approved:
            operator = await self.create_operator()
            await self.services.accounts.set_approval(operator.id, account.id, True)
        if not available:
            await self.services.accounts.set_availability(account.id, False)
        return await self.services.accounts.get_account(account.id)

    async def create_service(self, provider: Account, price_cents: int = 3000,
                             category: ServiceCategory = ServiceCategory.SESSION,
                             duration_min: Optional[int] = 30, name: str = "Coaching call") -> Service:
        return await self.services.catalog.create_service(
            provider_id=provider.id,
            name=name,
            category=category,
            price_cents=price_cents,
            duration_min=duration_min,
        )


@pytest.fixture
def factory(services) -> TestDataFactory:
    return TestDataFactory(services)


class TelegramObjectFactory:
    """Minimal Update/context doubles for handler tests"""

    __test__ = False

    def create_update(self, telegram_id: int, text: Optional[str] = None,
                      callback_data: Optional[str] = None, photo_file_id: Optional[str] = None,
                      username: str = "someone"):
        update = MagicMock(spec=Update)
        update.effective_user.id = telegram_id
        update.effective_user.username = username

        message = MagicMock()
        message.text = text
        message.caption = None
        message.reply_text = AsyncMock()
        if photo_file_id:
            photo = MagicMock()
            photo.file_id = photo_file_id
            message.photo = [photo]
        else:
            message.photo = []
        update.effective_message = message

        if callback_data is not None:
            update.callback_query.data = callback_data
            update.callback_query.answer = AsyncMock()
        else:
            update.callback_query = None
        return update

    def create_context(self, services: CoreServices):
        context = MagicMock()
        context.application.bot_data = {BOT_DATA_KEY: services}
        return context

    @staticmethod
    def replies(update) -> List[str]:
        return [call.args[0] for call in update.effective_message.reply_text.call_args_list]

    @staticmethod
    def reply_callbacks(update) -> List[str]:
        """callback_data of every inline button sent in replies"""
        data = []
        for call in update.effective_message.reply_text.call_args_list:
            markup = call.kwargs.get("reply_markup")
            if markup is None:
                continue
            for row in markup.inline_keyboard:
                data.extend(button.callback_data for button in row)
        return data


@pytest.fixture
def telegram_factory() -> TelegramObjectFactory:
    return TelegramObjectFactory()
