"""
Core service wiring

One CoreServices bundle per process, built at startup and stored in
application.bot_data["services"] so handlers and jobs share the same
notifier, clock and conversation state.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from services.account_service import AccountService
from services.catalog_service import CatalogService
from services.chat_relay_service import ChatRelayManager
from services.conversation_engine import ConversationEngine, FlowServices
from services.ledger_service import LedgerService
from services.order_expiry_service import OrderExpiryService
from services.order_service import OrderService
from services.telegram_notification_service import LoggingNotifier, Notifier
from services.wallet_service import WalletService
from utils.datetime_helpers import Clock

logger = logging.getLogger(__name__)

BOT_DATA_KEY = "services"


@dataclass
class CoreServices:
    notifier: Notifier
    clock: Clock
    ledger: LedgerService
    accounts: AccountService
    catalog: CatalogService
    orders: OrderService
    wallet: WalletService
    expiry: OrderExpiryService
    conversations: ConversationEngine
    chats: ChatRelayManager


def build_services(notifier: Optional[Notifier] = None, clock: Optional[Clock] = None) -> CoreServices:
    notifier = notifier or LoggingNotifier()
    clock = clock or Clock()

    ledger = LedgerService(clock=clock)
    accounts = AccountService(notifier=notifier, clock=clock)
    catalog = CatalogService(clock=clock)
    orders = OrderService(ledger=ledger, notifier=notifier, clock=clock)
    wallet = WalletService(ledger, notifier=notifier, clock=clock)
    expiry = OrderExpiryService(orders, notifier=notifier, clock=clock)
    conversations = ConversationEngine(
        FlowServices(accounts=accounts, catalog=catalog, orders=orders),
        clock=clock,
    )
    chats = ChatRelayManager(orders, accounts, clock=clock)

    logger.info(f"⚙️ Core services built (notifier={type(notifier).__name__})")
    return CoreServices(
        notifier=notifier,
        clock=clock,
        ledger=ledger,
        accounts=accounts,
        catalog=catalog,
        orders=orders,
        wallet=wallet,
        expiry=expiry,
        conversations=conversations,
        chats=chats,
    )


def get_services(context) -> CoreServices:
    """Services bundle from a python-telegram-bot callback context"""
    return context.application.bot_data[BOT_DATA_KEY]
