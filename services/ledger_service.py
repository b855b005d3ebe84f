"""
Ledger Service
Append-only entry log plus a materialized balance per account.

Every balance change is a single conditional UPDATE on the account row
(the check and the decrement cannot interleave with another writer)
followed by an appended LedgerEntry in the same transaction.
"""

import logging
from typing import List, Optional

from sqlalchemy import select, update, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from models import Account, LedgerEntry, LedgerEntryKind, LEDGER_ENTRY_SIGNS
from utils.atomic_transactions import with_session
from utils.datetime_helpers import Clock
from utils.decimal_precision import format_cents
from utils.exception_handler import InsufficientFunds, NotFound, ValidationFailed
from config import Config

logger = logging.getLogger(__name__)


class LedgerService:
    """Balance-changing operations; all of them accept the caller's session to join its transaction"""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or Clock()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def hold(self, account_id: int, amount_cents: int, order_id: Optional[int] = None,
                   session: Optional[AsyncSession] = None) -> LedgerEntry:
        """Debit funds pending an order outcome. Raises InsufficientFunds if the balance would go negative."""
        return await with_session(
            session, lambda s: self._debit(s, account_id, amount_cents, LedgerEntryKind.HOLD, order_id)
        )

    async def release(self, account_id: int, amount_cents: int, order_id: Optional[int] = None,
                      session: Optional[AsyncSession] = None) -> LedgerEntry:
        """Credit funds (provider payout or a hold returned to its requester)"""
        return await with_session(
            session, lambda s: self._credit(s, account_id, amount_cents, LedgerEntryKind.RELEASE, order_id)
        )

    async def top_up(self, account_id: int, amount_cents: int,
                     session: Optional[AsyncSession] = None) -> LedgerEntry:
        return await with_session(
            session, lambda s: self._credit(s, account_id, amount_cents, LedgerEntryKind.TOPUP, None)
        )

    async def withdraw(self, account_id: int, amount_cents: int,
                       session: Optional[AsyncSession] = None) -> LedgerEntry:
        return await with_session(
            session, lambda s: self._debit(s, account_id, amount_cents, LedgerEntryKind.WITHDRAW, None)
        )

    async def _debit(self, session: AsyncSession, account_id: int, amount_cents: int,
                     kind: LedgerEntryKind, order_id: Optional[int]) -> LedgerEntry:
        self._check_amount(amount_cents)
        now = self.clock.now()

        # Check-and-decrement in one statement
        result = await session.execute(
            update(Account)
            .where(Account.id == account_id, Account.balance_cents >= amount_cents)
            .values(balance_cents=Account.balance_cents - amount_cents, updated_at=now)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            available = await self._read_balance(session, account_id)
            if available is None:
                raise NotFound(f"Account {account_id} not found.")
            logger.info(
                f"💸 LEDGER_{kind.name}: insufficient funds account={account_id} "
                f"required={amount_cents} available={available}"
            )
            raise InsufficientFunds(
                f"Insufficient balance: {format_cents(amount_cents, Config.ORDER_CURRENCY)} needed, "
                f"{format_cents(available, Config.ORDER_CURRENCY)} available.",
                required_cents=amount_cents,
                available_cents=available,
            )

        entry = await self._append(session, account_id, amount_cents, kind, order_id, now)
        logger.info(f"🔒 LEDGER_{kind.name}: account={account_id} amount={amount_cents} order={order_id}")
        return entry

    async def _credit(self, session: AsyncSession, account_id: int, amount_cents: int,
                      kind: LedgerEntryKind, order_id: Optional[int]) -> LedgerEntry:
        self._check_amount(amount_cents)
        now = self.clock.now()

        result = await session.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(balance_cents=Account.balance_cents + amount_cents, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFound(f"Account {account_id} not found.")

        entry = await self._append(session, account_id, amount_cents, kind, order_id, now)
        logger.info(f"💰 LEDGER_{kind.name}: account={account_id} amount={amount_cents} order={order_id}")
        return entry

    @staticmethod
    async def _append(session: AsyncSession, account_id: int, amount_cents: int,
                      kind: LedgerEntryKind, order_id: Optional[int], now) -> LedgerEntry:
        entry = LedgerEntry(
            account_id=account_id,
            kind=kind.value,
            amount_cents=amount_cents,
            related_order_id=order_id,
            created_at=now,
        )
        session.add(entry)
        await session.flush()
        return entry

    @staticmethod
    def _check_amount(amount_cents: int) -> None:
        if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
            raise ValidationFailed(f"Ledger amounts must be positive whole cents, got {amount_cents!r}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    async def _read_balance(session: AsyncSession, account_id: int) -> Optional[int]:
        result = await session.execute(select(Account.balance_cents).where(Account.id == account_id))
        return result.scalar_one_or_none()

    async def get_balance(self, account_id: int, session: Optional[AsyncSession] = None) -> int:
        async def _read(s: AsyncSession) -> int:
            balance = await self._read_balance(s, account_id)
            if balance is None:
                raise NotFound(f"Account {account_id} not found.")
            return balance
        return await with_session(session, _read)

    async def balance_from_entries(self, account_id: int, session: Optional[AsyncSession] = None) -> int:
        """Recompute a balance as the running sum of signed entries"""
        signed = case(
            *[(LedgerEntry.kind == kind, sign * LedgerEntry.amount_cents) for kind, sign in LEDGER_ENTRY_SIGNS.items()],
            else_=0,
        )

        async def _sum(s: AsyncSession) -> int:
            result = await s.execute(
                select(func.coalesce(func.sum(signed), 0)).where(LedgerEntry.account_id == account_id)
            )
            return int(result.scalar_one())
        return await with_session(session, _sum)

    async def verify_balance(self, account_id: int, session: Optional[AsyncSession] = None) -> bool:
        """True when the materialized balance matches the entry log"""
        async def _verify(s: AsyncSession) -> bool:
            materialized = await self.get_balance(account_id, session=s)
            derived = await self.balance_from_entries(account_id, session=s)
            if materialized != derived:
                logger.error(
                    f"🚨 LEDGER_DRIFT: account={account_id} materialized={materialized} derived={derived}"
                )
            return materialized == derived
        return await with_session(session, _verify)

    async def list_entries(self, account_id: int, limit: int = 20,
                           session: Optional[AsyncSession] = None) -> List[LedgerEntry]:
        async def _list(s: AsyncSession) -> List[LedgerEntry]:
            result = await s.execute(
                select(LedgerEntry)
                .where(LedgerEntry.account_id == account_id)
                .order_by(LedgerEntry.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
        return await with_session(session, _list)
