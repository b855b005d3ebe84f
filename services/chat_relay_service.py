"""
Chat Relay Service
Anonymous per-order chat between a requester and the bound provider.

While a relay is open, ordinary messages from one party are copied to the
other by the transport layer. Relays live in memory (account id -> order id)
and lapse after CHAT_RELAY_TIMEOUT_MINUTES without traffic. Ownership is
checked again on every relayed message.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from config import Config
from models import Account, Order
from services.account_service import AccountService
from services.order_service import OrderService
from utils.datetime_helpers import Clock
from utils.exception_handler import NotFound, NotOwner, ValidationFailed

logger = logging.getLogger(__name__)


@dataclass
class ChatRelay:
    account_id: int
    order_id: int
    opened_at: datetime
    timeout_at: datetime


class ChatRelayManager:
    """Explicit keyed store: account id -> open chat relay, with timeout"""

    def __init__(self, orders: OrderService, accounts: AccountService, clock: Optional[Clock] = None,
                 timeout_minutes: Optional[int] = None):
        self.orders = orders
        self.accounts = accounts
        self.clock = clock or orders.clock
        self.timeout_minutes = timeout_minutes or Config.CHAT_RELAY_TIMEOUT_MINUTES
        self._relays: Dict[int, ChatRelay] = {}

    async def open_chat(self, account_id: int, order_id: int) -> ChatRelay:
        """Open (or move) the account's relay to an order it takes part in"""
        account = await self.accounts.get_account(account_id)
        order = await self.orders.get_order(order_id)
        self._check_participant(account, order)

        now = self.clock.now()
        relay = ChatRelay(
            account_id=account_id,
            order_id=order_id,
            opened_at=now,
            timeout_at=now + timedelta(minutes=self.timeout_minutes),
        )
        self._relays[account_id] = relay
        logger.info(f"💬 CHAT_OPENED: order={order_id} account={account_id}")
        return relay

    def stop_chat(self, account_id: int) -> bool:
        relay = self._relays.pop(account_id, None)
        if relay is None:
            return False
        logger.info(f"💬 CHAT_CLOSED: order={relay.order_id} account={account_id}")
        return True

    def get_active(self, account_id: int) -> Optional[ChatRelay]:
        relay = self._relays.get(account_id)
        if relay and self.clock.now() > relay.timeout_at:
            logger.info(f"⌛ CHAT_TIMEOUT: order={relay.order_id} account={account_id}")
            del self._relays[account_id]
            return None
        return relay

    async def counterpart(self, account_id: int) -> Optional[Tuple[ChatRelay, Account]]:
        """
        The other party of the account's open relay, or None when no relay is open.

        Raises:
            NotFound: the order is gone (the relay is closed)
            NotOwner / ValidationFailed: the account no longer takes part in the order
        """
        relay = self.get_active(account_id)
        if relay is None:
            return None

        account = await self.accounts.get_account(account_id)
        try:
            order = await self.orders.get_order(relay.order_id)
        except NotFound:
            self.stop_chat(account_id)
            raise NotFound(f"Order #{relay.order_id} not found. Chat closed.")
        self._check_participant(account, order)

        other_id = order.provider_id if order.requester_id == account_id else order.requester_id
        other = await self.accounts.get_account(other_id)

        now = self.clock.now()
        relay.timeout_at = now + timedelta(minutes=self.timeout_minutes)
        return relay, other

    def cleanup_expired(self) -> int:
        now = self.clock.now()
        expired = [aid for aid, relay in self._relays.items() if now > relay.timeout_at]
        for account_id in expired:
            del self._relays[account_id]
        return len(expired)

    def __len__(self) -> int:
        return len(self._relays)

    @staticmethod
    def _check_participant(account: Account, order: Order) -> None:
        if account.is_requester:
            if order.requester_id != account.id:
                raise NotOwner("This is not your order.")
            if order.provider_id is None:
                raise ValidationFailed("No provider has taken this order yet.")
        elif account.is_provider:
            if order.provider_id != account.id:
                raise NotOwner("This order is not assigned to you.")
        else:
            raise NotOwner("Chat is only for the order's requester and provider.")
