"""
Wallet Service
Operator top-ups, provider withdrawals and their processing by operators.
The ledger withdraw entry and the withdrawal row commit together.
"""

import logging
import re
from typing import List, Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config import Config
from models import Account, Withdrawal, WithdrawalStatus
from services.ledger_service import LedgerService
from services.telegram_notification_service import Notifier, NotificationAction, LoggingNotifier
from utils.atomic_transactions import with_session
from utils.callback_dispatcher import CommandKind, encode_callback
from utils.datetime_helpers import Clock
from utils.decimal_precision import format_cents
from utils.exception_handler import InsufficientFunds, InvalidTransition, NotFound, NotOwner, ValidationFailed

logger = logging.getLogger(__name__)

_TELEGRAM_ID = re.compile(r"\d+", re.ASCII)


class WalletService:
    def __init__(self, ledger: LedgerService, notifier: Optional[Notifier] = None, clock: Optional[Clock] = None):
        self.ledger = ledger
        self.notifier = notifier or LoggingNotifier()
        self.clock = clock or ledger.clock

    async def request_withdrawal(self, account_id: int, amount_cents: Optional[int] = None,
                                 session: Optional[AsyncSession] = None) -> Withdrawal:
        """Withdraw `amount_cents`, or the whole balance when no amount is given"""
        async def _request(s: AsyncSession) -> Withdrawal:
            account = await s.get(Account, account_id, populate_existing=True)
            if account is None:
                raise NotFound(f"Account {account_id} not found.")
            if not account.is_provider:
                raise NotOwner("Only providers can withdraw funds.")

            amount = account.balance_cents if amount_cents is None else amount_cents
            if amount <= 0:
                raise InsufficientFunds("There is nothing to withdraw.", required_cents=0, available_cents=0)

            await self.ledger.withdraw(account_id, amount, session=s)
            withdrawal = Withdrawal(
                account_id=account_id,
                amount_cents=amount,
                status=WithdrawalStatus.REQUESTED.value,
                requested_at=self.clock.now(),
            )
            s.add(withdrawal)
            await s.flush()
            return withdrawal

        withdrawal = await with_session(session, _request)
        amount_text = format_cents(withdrawal.amount_cents, Config.ORDER_CURRENCY)
        logger.info(f"🏧 WITHDRAWAL_REQUESTED: id={withdrawal.id} account={account_id} amount={withdrawal.amount_cents}")
        await self.notifier.notify(account_id, f"🏧 Withdrawal of {amount_text} requested. An operator will process it.")
        await self.notifier.notify_operators(
            f"🏧 Withdrawal #{withdrawal.id}: {amount_text} for account #{account_id}",
            [NotificationAction("✅ Mark processed", encode_callback(CommandKind.WITHDRAWAL_PROCESSED, withdrawal.id))],
        )
        return withdrawal

    async def mark_processed(self, withdrawal_id: int, operator_id: int,
                             session: Optional[AsyncSession] = None) -> Withdrawal:
        async def _mark(s: AsyncSession) -> Withdrawal:
            operator = await s.get(Account, operator_id, populate_existing=True)
            if operator is None or not operator.is_operator:
                raise NotOwner("Only operators can process withdrawals.")

            now = self.clock.now()
            result = await s.execute(
                update(Withdrawal)
                .where(Withdrawal.id == withdrawal_id, Withdrawal.status == WithdrawalStatus.REQUESTED.value)
                .values(status=WithdrawalStatus.PROCESSED.value, processed_at=now, processed_by=operator_id)
                .execution_options(synchronize_session=False)
            )
            withdrawal = await s.get(Withdrawal, withdrawal_id, populate_existing=True)
            if withdrawal is None:
                raise NotFound(f"Withdrawal #{withdrawal_id} not found.")
            if result.rowcount == 0:
                raise InvalidTransition(f"Withdrawal #{withdrawal_id} was already processed.",
                                        current_status=withdrawal.status, event="process")
            return withdrawal

        withdrawal = await with_session(session, _mark)
        logger.info(f"✅ WITHDRAWAL_PROCESSED: id={withdrawal_id} by operator={operator_id}")
        await self.notifier.notify(
            withdrawal.account_id,
            f"✅ Your withdrawal of {format_cents(withdrawal.amount_cents, Config.ORDER_CURRENCY)} has been sent.",
        )
        return withdrawal

    async def list_pending(self, session: Optional[AsyncSession] = None) -> List[Withdrawal]:
        async def _list(s: AsyncSession) -> List[Withdrawal]:
            result = await s.execute(
                select(Withdrawal)
                .where(Withdrawal.status == WithdrawalStatus.REQUESTED.value)
                .order_by(Withdrawal.id)
            )
            return list(result.scalars().all())
        return await with_session(session, _list)

    async def operator_top_up(self, operator_id: int, target: Union[int, str], amount_cents: int,
                              session: Optional[AsyncSession] = None) -> Account:
        """Credit an account identified by telegram id or @username (manual deposit recorded by an operator)"""
        async def _top_up(s: AsyncSession) -> Account:
            operator = await s.get(Account, operator_id, populate_existing=True)
            if operator is None or not operator.is_operator:
                raise NotOwner("Only operators can top up balances.")
            account = await self._find_account(s, target)
            await self.ledger.top_up(account.id, amount_cents, session=s)
            return await s.get(Account, account.id, populate_existing=True)

        account = await with_session(session, _top_up)
        logger.info(f"💳 OPERATOR_TOPUP: account={account.id} amount={amount_cents} by operator={operator_id}")
        await self.notifier.notify(
            account.id,
            f"💳 {format_cents(amount_cents, Config.ORDER_CURRENCY)} added to your balance. "
            f"New balance: {format_cents(account.balance_cents, Config.ORDER_CURRENCY)}.",
        )
        return account

    @staticmethod
    async def _find_account(session: AsyncSession, target: Union[int, str]) -> Account:
        """Resolve a numeric telegram id or a (case-insensitive) @username"""
        text = str(target).strip()
        if _TELEGRAM_ID.fullmatch(text):
            stmt = select(Account).where(Account.telegram_id == int(text))
        else:
            username = text.lstrip("@")
            if not username:
                raise ValidationFailed("Missing or invalid telegram id or @username.")
            stmt = select(Account).where(func.lower(Account.username) == username.lower())
        result = await session.execute(stmt.limit(2))
        accounts = list(result.scalars().all())
        if not accounts:
            raise NotFound(f"No account for {text}.")
        if len(accounts) > 1:
            raise ValidationFailed(f"Several accounts use {text}. Use the telegram id instead.")
        return accounts[0]
