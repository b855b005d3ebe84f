"""
Catalog tests - ownership checks, approval gate, bookable provider discovery
"""

import pytest

from models import ServiceCategory
from utils.exception_handler import NotApproved, NotFound, NotOwner, ValidationFailed


class TestServiceCreation:

    @pytest.mark.asyncio
    async def test_session_service_round_trip(self, services, factory):
        provider = await factory.create_provider()
        created = await services.catalog.create_service(
            provider_id=provider.id, name="Quick call", category=ServiceCategory.SESSION,
            price_cents=2500, duration_min=15,
        )

        listed = await services.catalog.list_services(provider.id)
        assert [s.id for s in listed] == [created.id]
        assert listed[0].price_cents == 2500
        assert listed[0].duration_min == 15
        assert listed[0].category == "session"
        assert listed[0].is_active

    @pytest.mark.asyncio
    async def test_duration_dropped_for_non_session(self, services, factory):
        provider = await factory.create_provider()
        service = await factory.create_service(provider, category=ServiceCategory.DELIVERABLE, duration_min=45)
        assert service.duration_min is None

    @pytest.mark.asyncio
    async def test_session_requires_duration(self, services, factory):
        provider = await factory.create_provider()
        with pytest.raises(ValidationFailed):
            await factory.create_service(provider, duration_min=None)

    @pytest.mark.asyncio
    async def test_unapproved_provider_cannot_create(self, services, factory):
        provider = await factory.create_provider(approved=False)
        with pytest.raises(NotApproved):
            await factory.create_service(provider)

    @pytest.mark.asyncio
    async def test_requester_cannot_create(self, services, factory):
        requester = await factory.create_requester()
        with pytest.raises(NotOwner):
            await factory.create_service(requester)

    @pytest.mark.asyncio
    async def test_zero_price_rejected(self, services, factory):
        provider = await factory.create_provider()
        with pytest.raises(ValidationFailed):
            await factory.create_service(provider, price_cents=0)


class TestOwnership:

    @pytest.mark.asyncio
    async def test_other_provider_cannot_toggle_or_delete(self, services, factory):
        owner = await factory.create_provider()
        intruder = await factory.create_provider()
        service = await factory.create_service(owner)

        with pytest.raises(NotOwner):
            await services.catalog.toggle_active(service.id, intruder.id)
        with pytest.raises(NotOwner):
            await services.catalog.delete_service(service.id, intruder.id)

        assert (await services.catalog.get_service(service.id)).is_active

    @pytest.mark.asyncio
    async def test_toggle_and_delete_by_owner(self, services, factory):
        provider = await factory.create_provider()
        service = await factory.create_service(provider)

        toggled = await services.catalog.toggle_active(service.id, provider.id)
        assert not toggled.is_active
        assert await services.catalog.list_services(provider.id) == []
        assert len(await services.catalog.list_services(provider.id, active_only=False)) == 1

        await services.catalog.delete_service(service.id, provider.id)
        with pytest.raises(NotFound):
            await services.catalog.get_service(service.id)

    @pytest.mark.asyncio
    async def test_order_keeps_snapshot_after_service_deleted(self, services, factory):
        requester = await factory.create_requester()
        provider = await factory.create_provider()
        service = await factory.create_service(provider, name="Portfolio review")
        order = await services.orders.create(requester.id, service_id=service.id)

        await services.catalog.delete_service(service.id, provider.id)

        stored = await services.orders.get_order(order.id)
        assert stored.service_name == "Portfolio review"
        assert stored.base_cents == 3000


class TestDiscovery:

    @pytest.mark.asyncio
    async def test_bookable_providers(self, services, factory):
        bookable = await factory.create_provider()
        await factory.create_service(bookable)

        no_services = await factory.create_provider()
        unavailable = await factory.create_provider(available=False)
        await factory.create_service(unavailable)
        inactive = await factory.create_provider()
        hidden = await factory.create_service(inactive)
        await services.catalog.toggle_active(hidden.id, inactive.id)

        providers = await services.catalog.list_bookable_providers()
        assert [p.id for p in providers] == [bookable.id]
        assert no_services.id not in [p.id for p in providers]
