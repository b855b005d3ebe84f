"""
Scheduler sweep tests: reminders once, expiry exactly once
"""

import pytest

from config import Config
from models import OrderStatus
from services.order_expiry_service import run_order_sweep
from utils.exception_handler import InvalidTransition


class TestReminders:

    @pytest.mark.asyncio
    async def test_stale_order_reminded_once(self, services, factory, clock, notifier):
        requester = await factory.create_requester()
        provider = await factory.create_provider()
        service = await factory.create_service(provider)
        order = await services.orders.create(requester.id, service_id=service.id)

        result = await services.expiry.process_reminders()
        assert result["reminded"] == []

        clock.advance(minutes=Config.ORDER_REMINDER_MINUTES + 1)
        first = await services.expiry.process_reminders()
        second = await services.expiry.process_reminders()

        assert first["reminded"] == [order.id]
        assert second["reminded"] == []
        reminders = [m for m in notifier.messages_for(provider.id) if "Reminder" in m]
        assert len(reminders) == 1
        assert (await services.orders.get_order(order.id)).reminded_at == clock.now()

    @pytest.mark.asyncio
    async def test_open_order_reminds_requester(self, services, factory, clock, notifier):
        requester = await factory.create_requester()
        order = await services.orders.create(requester.id, base_cents=2000)

        clock.advance(minutes=Config.ORDER_REMINDER_MINUTES + 1)
        await services.expiry.process_reminders()

        assert any(f"#{order.id} has not been accepted yet" in m for m in notifier.messages_for(requester.id))

    @pytest.mark.asyncio
    async def test_accepted_orders_are_not_reminded(self, services, factory, clock):
        requester = await factory.create_requester(balance_cents=5000)
        provider = await factory.create_provider()
        service = await factory.create_service(provider)
        order = await services.orders.create(requester.id, service_id=service.id)
        await services.orders.accept(order.id, provider.id)

        clock.advance(minutes=Config.ORDER_REMINDER_MINUTES + 1)
        assert (await services.expiry.process_reminders())["reminded"] == []


class TestExpiry:

    @pytest.mark.asyncio
    async def test_expired_exactly_once_across_ticks(self, services, factory, clock, notifier):
        requester = await factory.create_requester()
        provider = await factory.create_provider()
        service = await factory.create_service(provider)
        order = await services.orders.create(requester.id, service_id=service.id)

        early = await services.expiry.process_expired_orders()
        assert early["expired"] == []

        clock.advance(minutes=Config.ORDER_EXPIRY_MINUTES)
        first = await services.expiry.run_tick()
        second = await services.expiry.run_tick()

        assert first["expiry"]["expired"] == [order.id]
        assert second["expiry"]["expired"] == []
        stored = await services.orders.get_order(order.id)
        assert stored.status == OrderStatus.CANCELLED.value
        assert stored.cancel_reason == "expired"

        history = await services.orders.status_history(order.id)
        assert [(row.to_status, row.event) for row in history] == [("pending", "create"), ("cancelled", "expire")]
        assert sum(1 for m in notifier.messages_for(requester.id) if "expired" in m) == 1

    @pytest.mark.asyncio
    async def test_direct_expire_refuses_unexpired_orders(self, services, factory):
        requester = await factory.create_requester()
        order = await services.orders.create(requester.id, base_cents=2000)

        with pytest.raises(InvalidTransition):
            await services.orders.expire(order.id)

    @pytest.mark.asyncio
    async def test_sweep_entry_point_logs_infrastructure_errors(self, services, monkeypatch):
        async def boom():
            raise RuntimeError("database unreachable")

        monkeypatch.setattr(services.expiry, "run_tick", boom)
        result = await run_order_sweep(services.expiry)
        assert result == {"error": "database unreachable"}
