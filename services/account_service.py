"""
Account Service
Onboarding (role choice, terms), provider availability and approval,
profile updates.
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import Config
from models import Account, AccountRole, ApprovalStatus
from services.telegram_notification_service import Notifier, NotificationAction, LoggingNotifier
from utils.atomic_transactions import with_session
from utils.callback_dispatcher import CommandKind, encode_callback
from utils.datetime_helpers import Clock
from utils.exception_handler import NotFound, NotOwner, ValidationFailed

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(self, notifier: Optional[Notifier] = None, clock: Optional[Clock] = None):
        self.notifier = notifier or LoggingNotifier()
        self.clock = clock or Clock()

    async def get_account(self, account_id: int, session: Optional[AsyncSession] = None) -> Account:
        async def _get(s: AsyncSession) -> Account:
            account = await s.get(Account, account_id, populate_existing=True)
            if account is None:
                raise NotFound(f"Account {account_id} not found.")
            return account
        return await with_session(session, _get)

    async def get_by_telegram_id(self, telegram_id: int,
                                 session: Optional[AsyncSession] = None) -> Optional[Account]:
        async def _get(s: AsyncSession) -> Optional[Account]:
            result = await s.execute(select(Account).where(Account.telegram_id == telegram_id))
            return result.scalar_one_or_none()
        return await with_session(session, _get)

    async def get_or_create_account(self, telegram_id: int, username: Optional[str] = None,
                                    session: Optional[AsyncSession] = None) -> Account:
        """Create on first contact. Configured operators always get the operator role."""
        async def _get_or_create(s: AsyncSession) -> Account:
            result = await s.execute(select(Account).where(Account.telegram_id == telegram_id))
            account = result.scalar_one_or_none()
            now = self.clock.now()

            if account is None:
                account = Account(
                    telegram_id=telegram_id,
                    username=username,
                    balance_cents=0,
                    is_available=True,
                    created_at=now,
                    updated_at=now,
                )
                s.add(account)
                logger.info(f"👤 ACCOUNT_CREATED: telegram_id={telegram_id}")
            elif username and account.username != username:
                account.username = username
                account.updated_at = now

            if Config.is_operator(telegram_id) and account.role != AccountRole.OPERATOR.value:
                account.role = AccountRole.OPERATOR.value
                account.updated_at = now
                logger.info(f"🛡️ OPERATOR_ROLE: telegram_id={telegram_id}")

            await s.flush()
            return account
        return await with_session(session, _get_or_create)

    async def choose_role(self, account_id: int, role: AccountRole,
                          session: Optional[AsyncSession] = None) -> Account:
        """Pick requester or provider. Providers start in approval status 'pending'."""
        if role == AccountRole.OPERATOR:
            raise NotOwner("The operator role cannot be chosen.")

        async def _choose(s: AsyncSession) -> Account:
            account = await self.get_account(account_id, session=s)
            if account.is_operator:
                raise NotOwner("Operators cannot change their role.")
            if account.role is not None and account.role != role.value:
                raise ValidationFailed("Your role has already been chosen.")

            account.role = role.value
            if role == AccountRole.PROVIDER and account.approval_status is None:
                account.approval_status = ApprovalStatus.PENDING.value
            account.updated_at = self.clock.now()
            await s.flush()
            return account

        account = await with_session(session, _choose)
        logger.info(f"🎭 ROLE_CHOSEN: account={account_id} role={role.value}")

        if role == AccountRole.PROVIDER and account.approval_status == ApprovalStatus.PENDING.value:
            await self.notifier.notify_operators(
                f"🆕 New provider awaiting approval: {account.label} (account #{account.id})",
                actions=[
                    NotificationAction("✅ Approve", encode_callback(CommandKind.APPROVE_PROVIDER, account.id)),
                    NotificationAction("❌ Reject", encode_callback(CommandKind.REJECT_PROVIDER, account.id)),
                ],
            )
        return account

    async def accept_terms(self, account_id: int, session: Optional[AsyncSession] = None) -> Account:
        async def _accept(s: AsyncSession) -> Account:
            account = await self.get_account(account_id, session=s)
            if account.terms_accepted_at is None:
                account.terms_accepted_at = self.clock.now()
                account.updated_at = account.terms_accepted_at
                await s.flush()
            return account
        return await with_session(session, _accept)

    async def set_availability(self, account_id: int, available: bool,
                               session: Optional[AsyncSession] = None) -> Account:
        async def _set(s: AsyncSession) -> Account:
            account = await self.get_account(account_id, session=s)
            if not account.is_provider:
                raise NotOwner("Only providers have an availability setting.")
            account.is_available = available
            account.updated_at = self.clock.now()
            await s.flush()
            return account
        account = await with_session(session, _set)
        logger.info(f"🟢 AVAILABILITY: account={account_id} available={available}")
        return account

    async def set_approval(self, operator_id: int, account_id: int, approved: bool,
                           session: Optional[AsyncSession] = None) -> Account:
        """Operator decision on a provider"""
        async def _set(s: AsyncSession) -> Account:
            operator = await self.get_account(operator_id, session=s)
            if not operator.is_operator:
                raise NotOwner("Only operators can approve providers.")
            account = await self.get_account(account_id, session=s)
            if not account.is_provider:
                raise ValidationFailed(f"Account {account_id} is not a provider.")
            account.approval_status = (ApprovalStatus.APPROVED if approved else ApprovalStatus.REJECTED).value
            account.updated_at = self.clock.now()
            await s.flush()
            return account

        account = await with_session(session, _set)
        logger.info(f"🛡️ PROVIDER_APPROVAL: account={account_id} status={account.approval_status} by={operator_id}")
        if approved:
            await self.notifier.notify(account.id, "✅ Your provider account has been approved. Use /newservice to add services.")
        else:
            await self.notifier.notify(account.id, "❌ Your provider application was not approved.")
        return account

    async def update_profile(self, account_id: int, display_name: str, photo_file_id: Optional[str] = None,
                             session: Optional[AsyncSession] = None) -> Account:
        """Set display name; photo is kept unchanged when none is given"""
        async def _update(s: AsyncSession) -> Account:
            account = await self.get_account(account_id, session=s)
            account.display_name = display_name
            if photo_file_id:
                account.photo_file_id = photo_file_id
            account.updated_at = self.clock.now()
            await s.flush()
            return account
        account = await with_session(session, _update)
        logger.info(f"🪪 PROFILE_UPDATED: account={account_id}")
        return account

    async def list_available_providers(self, session: Optional[AsyncSession] = None) -> List[Account]:
        """Approved, available providers (discovery)"""
        async def _list(s: AsyncSession) -> List[Account]:
            result = await s.execute(
                select(Account)
                .where(
                    Account.role == AccountRole.PROVIDER.value,
                    Account.approval_status == ApprovalStatus.APPROVED.value,
                    Account.is_available.is_(True),
                )
                .order_by(Account.id)
            )
            return list(result.scalars().all())
        return await with_session(session, _list)
