"""
Catalog Service
Ownership-checked CRUD over provider services.
"""

import logging
from typing import List, Optional

from sqlalchemy import select, delete, exists
from sqlalchemy.ext.asyncio import AsyncSession

from models import Account, Service, ServiceCategory, AccountRole, ApprovalStatus
from utils.atomic_transactions import with_session
from utils.datetime_helpers import Clock
from utils.exception_handler import NotApproved, NotFound, NotOwner, ValidationFailed

logger = logging.getLogger(__name__)


class CatalogService:
    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or Clock()

    @staticmethod
    async def _require_approved_provider(session: AsyncSession, provider_id: int) -> Account:
        provider = await session.get(Account, provider_id, populate_existing=True)
        if provider is None:
            raise NotFound(f"Account {provider_id} not found.")
        if not provider.is_provider:
            raise NotOwner("Only providers can offer services.")
        if not provider.is_approved:
            raise NotApproved()
        return provider

    @staticmethod
    async def _owned_service(session: AsyncSession, service_id: int, provider_id: int) -> Service:
        service = await session.get(Service, service_id, populate_existing=True)
        if service is None:
            raise NotFound(f"Service {service_id} not found.")
        if service.provider_id != provider_id:
            logger.warning(f"🚫 CATALOG: account {provider_id} tried to modify service {service_id}")
            raise NotOwner("This service belongs to another provider.")
        return service

    async def create_service(self, provider_id: int, name: str, category: ServiceCategory, price_cents: int,
                             duration_min: Optional[int] = None, description: Optional[str] = None,
                             session: Optional[AsyncSession] = None) -> Service:
        if price_cents <= 0:
            raise ValidationFailed("Price must be greater than zero.")
        if category == ServiceCategory.SESSION:
            if duration_min is None or duration_min <= 0:
                raise ValidationFailed("Session services need a positive duration.")
        else:
            duration_min = None

        async def _create(s: AsyncSession) -> Service:
            await self._require_approved_provider(s, provider_id)
            service = Service(
                provider_id=provider_id,
                name=name,
                category=category.value,
                price_cents=price_cents,
                duration_min=duration_min,
                description=description,
                is_active=True,
                created_at=self.clock.now(),
            )
            s.add(service)
            await s.flush()
            return service

        service = await with_session(session, _create)
        logger.info(f"🧾 SERVICE_CREATED: id={service.id} provider={provider_id} price={price_cents}")
        return service

    async def get_service(self, service_id: int, session: Optional[AsyncSession] = None) -> Service:
        async def _get(s: AsyncSession) -> Service:
            service = await s.get(Service, service_id, populate_existing=True)
            if service is None:
                raise NotFound(f"Service {service_id} not found.")
            return service
        return await with_session(session, _get)

    async def list_services(self, provider_id: int, active_only: bool = True,
                            session: Optional[AsyncSession] = None) -> List[Service]:
        async def _list(s: AsyncSession) -> List[Service]:
            stmt = select(Service).where(Service.provider_id == provider_id)
            if active_only:
                stmt = stmt.where(Service.is_active.is_(True))
            result = await s.execute(stmt.order_by(Service.id))
            return list(result.scalars().all())
        return await with_session(session, _list)

    async def list_bookable_providers(self, session: Optional[AsyncSession] = None) -> List[Account]:
        """Approved, available providers with at least one active service"""
        async def _list(s: AsyncSession) -> List[Account]:
            has_active_service = exists().where(
                Service.provider_id == Account.id, Service.is_active.is_(True)
            )
            result = await s.execute(
                select(Account)
                .where(
                    Account.role == AccountRole.PROVIDER.value,
                    Account.approval_status == ApprovalStatus.APPROVED.value,
                    Account.is_available.is_(True),
                    has_active_service,
                )
                .order_by(Account.id)
            )
            return list(result.scalars().all())
        return await with_session(session, _list)

    async def toggle_active(self, service_id: int, provider_id: int,
                            session: Optional[AsyncSession] = None) -> Service:
        async def _toggle(s: AsyncSession) -> Service:
            service = await self._owned_service(s, service_id, provider_id)
            service.is_active = not service.is_active
            await s.flush()
            return service
        service = await with_session(session, _toggle)
        logger.info(f"🔁 SERVICE_TOGGLED: id={service_id} active={service.is_active}")
        return service

    async def delete_service(self, service_id: int, provider_id: int,
                             session: Optional[AsyncSession] = None) -> None:
        """Orders keep their own snapshot of name, category and amounts"""
        async def _delete(s: AsyncSession) -> None:
            await self._owned_service(s, service_id, provider_id)
            await s.execute(delete(Service).where(Service.id == service_id))
        await with_session(session, _delete)
        logger.info(f"🗑️ SERVICE_DELETED: id={service_id} provider={provider_id}")
