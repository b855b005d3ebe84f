"""
Order lifecycle tests: creation, acceptance modes, fulfilment, cancellation, feedback
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from config import Config
from models import OrderStatus, PaymentStatus, ServiceCategory
from utils.exception_handler import (
    AmountMismatch, Expired, InsufficientFunds, InvalidTransition, NotApproved, NotOwner, ValidationFailed,
)
from utils.order_state_machine import OrderStateMachine


async def _history_path(services, order_id):
    return [row.to_status for row in await services.orders.status_history(order_id)]


class TestOrderCreation:

    @pytest.mark.asyncio
    async def test_fee_and_total_fixed_at_creation(self, services, factory, clock):
        """Base 3000 -> fee 270 (8% + 30) -> total 3270, no funds moved"""
        requester = await factory.create_requester()
        provider = await factory.create_provider()
        service = await factory.create_service(provider, price_cents=3000)

        order = await services.orders.create(requester.id, service_id=service.id, description="Intro call")

        assert order.status == OrderStatus.PENDING.value
        assert (order.base_cents, order.fee_cents, order.total_cents) == (3000, 270, 3270)
        assert order.total_cents == order.base_cents + order.fee_cents
        assert order.currency == "EUR"
        assert order.requested_provider_id == provider.id
        assert order.provider_id is None
        assert order.service_name == "Coaching call"
        assert order.payment_status == PaymentStatus.UNPAID.value
        assert order.expires_at - order.created_at == timedelta(minutes=Config.ORDER_EXPIRY_MINUTES)
        assert await services.ledger.list_entries(requester.id) == []

    @pytest.mark.asyncio
    async def test_requested_provider_is_notified_with_actions(self, services, factory, notifier):
        requester = await factory.create_requester()
        provider = await factory.create_provider()
        service = await factory.create_service(provider)

        order = await services.orders.create(requester.id, service_id=service.id)

        callbacks = [action.callback_data for action in notifier.actions_for(provider.id)]
        assert f"accept:{order.id}" in callbacks
        assert f"decline:{order.id}" in callbacks

    @pytest.mark.asyncio
    async def test_providers_cannot_place_orders(self, services, factory):
        provider = await factory.create_provider()
        with pytest.raises(NotOwner):
            await services.orders.create(provider.id, base_cents=1000)

    @pytest.mark.asyncio
    async def test_unapproved_provider_cannot_be_ordered_from(self, services, factory):
        requester = await factory.create_requester()
        pending_provider = await factory.create_provider(approved=False)
        with pytest.raises(NotApproved):
            await services.orders.create(requester.id, provider_id=pending_provider.id, base_cents=1000)

    @pytest.mark.asyncio
    async def test_open_order_requires_positive_amount(self, services, factory):
        requester = await factory.create_requester()
        with pytest.raises(ValidationFailed):
            await services.orders.create(requester.id, base_cents=0)


class TestBalanceModeLifecycle:

    @pytest.mark.asyncio
    async def test_complete_releases_exactly_the_base_amount(self, services, factory):
        """Provider receives 3000; the 270 fee is retained"""
        requester = await factory.create_requester(balance_cents=5000)
        provider = await factory.create_provider()
        service = await factory.create_service(provider, price_cents=3000)
        order = await services.orders.create(requester.id, service_id=service.id)

        order = await services.orders.accept(order.id, provider.id)
        assert order.status == OrderStatus.ACCEPTED.value
        assert order.payment_status == PaymentStatus.HELD.value
        assert await services.ledger.get_balance(requester.id) == 5000 - 3270

        order = await services.orders.complete(order.id, provider.id)
        assert order.status == OrderStatus.COMPLETED.value
        assert order.payment_status == PaymentStatus.RELEASED.value
        assert await services.ledger.get_balance(provider.id) == 3000
        assert await services.ledger.get_balance(requester.id) == 1730

        path = await _history_path(services, order.id)
        assert path == ["pending", "accepted", "completed"]
        assert OrderStateMachine.is_valid_path(path)

    @pytest.mark.asyncio
    async def test_unfunded_accept_leaves_order_pending(self, services, factory, notifier):
        requester = await factory.create_requester(balance_cents=1000)
        provider = await factory.create_provider()
        service = await factory.create_service(provider, price_cents=3000)
        order = await services.orders.create(requester.id, service_id=service.id)

        with pytest.raises(InsufficientFunds):
            await services.orders.accept(order.id, provider.id)

        order = await services.orders.get_order(order.id)
        assert order.status == OrderStatus.PENDING.value
        assert order.provider_id is None
        assert await services.ledger.get_balance(requester.id) == 1000
        assert await _history_path(services, order.id) == ["pending"]
        assert any("balance is short" in m for m in notifier.messages_for(requester.id))

    @pytest.mark.asyncio
    async def test_only_requested_provider_may_accept(self, services, factory):
        requester = await factory.create_requester(balance_cents=5000)
        provider = await factory.create_provider()
        other = await factory.create_provider()
        service = await factory.create_service(provider)
        order = await services.orders.create(requester.id, service_id=service.id)

        with pytest.raises(NotOwner):
            await services.orders.accept(order.id, other.id)

    @pytest.mark.asyncio
    async def test_expired_order_cannot_be_accepted(self, services, factory, clock):
        requester = await factory.create_requester(balance_cents=5000)
        provider = await factory.create_provider()
        service = await factory.create_service(provider)
        order = await services.orders.create(requester.id, service_id=service.id)

        clock.advance(minutes=Config.ORDER_EXPIRY_MINUTES + 1)
        with pytest.raises(Expired):
            await services.orders.accept(order.id, provider.id)
        assert await services.ledger.get_balance(requester.id) == 5000

    @pytest.mark.asyncio
    async def test_session_start_is_idempotent(self, services, factory, notifier):
        requester = await factory.create_requester(balance_cents=5000)
        provider = await factory.create_provider()
        service = await factory.create_service(provider)
        order = await services.orders.create(requester.id, service_id=service.id)
        await services.orders.accept(order.id, provider.id)

        first = await services.orders.start_session(order.id, provider.id)
        second = await services.orders.start_session(order.id, provider.id)

        assert first == second
        assert first.startswith(f"{Config.SESSION_URL_BASE}SafeCall_{order.id}_")
        assert len(first.rsplit("_", 1)[1]) == 6
        assert (await services.orders.get_order(order.id)).status == OrderStatus.IN_CALL.value
        assert sum(1 for m in notifier.messages_for(requester.id) if first in m) == 1

        await services.orders.complete(order.id, provider.id)
        assert await _history_path(services, order.id) == ["pending", "accepted", "in_call", "completed"]

    @pytest.mark.asyncio
    async def test_only_session_orders_have_a_call(self, services, factory):
        requester = await factory.create_requester(balance_cents=5000)
        provider = await factory.create_provider()
        service = await factory.create_service(provider, category=ServiceCategory.DELIVERABLE, duration_min=None)
        order = await services.orders.create(requester.id, service_id=service.id)
        await services.orders.accept(order.id, provider.id)

        with pytest.raises(InvalidTransition):
            await services.orders.start_session(order.id, provider.id)

    @pytest.mark.asyncio
    async def test_complete_requires_acceptance(self, services, factory):
        requester = await factory.create_requester()
        provider = await factory.create_provider()
        service = await factory.create_service(provider)
        order = await services.orders.create(requester.id, service_id=service.id)

        with pytest.raises(NotOwner):
            await services.orders.complete(order.id, provider.id)


class TestCancellation:

    @pytest.mark.asyncio
    async def test_requester_cancels_pending_order(self, services, factory):
        requester = await factory.create_requester()
        provider = await factory.create_provider()
        service = await factory.create_service(provider)
        order = await services.orders.create(requester.id, service_id=service.id)

        with pytest.raises(NotOwner):
            await services.orders.cancel(order.id, provider.id)

        order = await services.orders.cancel(order.id, requester.id)
        assert order.status == OrderStatus.CANCELLED.value
        assert order.cancel_reason == "cancelled_by_requester"

        with pytest.raises(InvalidTransition):
            await services.orders.cancel(order.id, requester.id)

    @pytest.mark.asyncio
    async def test_accepted_order_cannot_be_cancelled(self, services, factory):
        requester = await factory.create_requester(balance_cents=5000)
        provider = await factory.create_provider()
        service = await factory.create_service(provider)
        order = await services.orders.create(requester.id, service_id=service.id)
        await services.orders.accept(order.id, provider.id)

        with pytest.raises(InvalidTransition):
            await services.orders.cancel(order.id, requester.id)

    @pytest.mark.asyncio
    async def test_decline_by_requested_provider(self, services, factory, notifier):
        requester = await factory.create_requester()
        provider = await factory.create_provider()
        service = await factory.create_service(provider)
        order = await services.orders.create(requester.id, service_id=service.id)

        order = await services.orders.decline(order.id, provider.id)

        assert order.status == OrderStatus.CANCELLED.value
        assert order.cancel_reason == "declined"
        assert any("declined" in m for m in notifier.messages_for(requester.id))


class TestExternalPaymentMode:

    @pytest.fixture(autouse=True)
    def external_mode(self):
        with patch.object(Config, "ORDER_PAYMENT_MODE", "external"):
            yield

    async def _accepted_awaiting_payment(self, services, factory, balance_cents=0):
        requester = await factory.create_requester(balance_cents=balance_cents)
        provider = await factory.create_provider()
        service = await factory.create_service(provider, price_cents=3000)
        order = await services.orders.create(requester.id, service_id=service.id)
        order = await services.orders.accept(order.id, provider.id)
        return requester, provider, order

    @pytest.mark.asyncio
    async def test_accept_parks_order_in_pending_payment(self, services, factory):
        requester, provider, order = await self._accepted_awaiting_payment(services, factory)

        assert order.status == OrderStatus.PENDING_PAYMENT.value
        assert order.provider_id == provider.id
        assert await services.ledger.list_entries(requester.id) == []

    @pytest.mark.asyncio
    async def test_confirm_payment_checks_amount_and_currency(self, services, factory):
        requester, provider, order = await self._accepted_awaiting_payment(services, factory)

        with pytest.raises(AmountMismatch):
            await services.orders.confirm_payment(order.id, 3000, "EUR")
        with pytest.raises(AmountMismatch):
            await services.orders.confirm_payment(order.id, 3270, "USD")
        assert (await services.orders.get_order(order.id)).status == OrderStatus.PENDING_PAYMENT.value

        order = await services.orders.confirm_payment(order.id, 3270, "eur")
        assert order.status == OrderStatus.ACCEPTED.value
        assert order.payment_status == PaymentStatus.PAID.value
        assert await services.ledger.list_entries(requester.id) == []

        await services.orders.complete(order.id, provider.id)
        assert await services.ledger.get_balance(provider.id) == 3000
        assert await _history_path(services, order.id) == ["pending", "pending_payment", "accepted", "completed"]

    @pytest.mark.asyncio
    async def test_pay_from_balance_holds_total(self, services, factory):
        requester, provider, order = await self._accepted_awaiting_payment(services, factory, balance_cents=4000)

        order = await services.orders.pay_from_balance(order.id, requester.id)

        assert order.status == OrderStatus.ACCEPTED.value
        assert order.payment_status == PaymentStatus.HELD.value
        assert await services.ledger.get_balance(requester.id) == 730

    @pytest.mark.asyncio
    async def test_cancel_while_awaiting_payment(self, services, factory):
        requester, provider, order = await self._accepted_awaiting_payment(services, factory)

        order = await services.orders.cancel(order.id, requester.id)
        assert order.status == OrderStatus.CANCELLED.value
        assert OrderStateMachine.is_valid_path(await _history_path(services, order.id))


class TestFeedback:

    async def _completed_order(self, services, factory):
        requester = await factory.create_requester(balance_cents=5000)
        provider = await factory.create_provider()
        service = await factory.create_service(provider)
        order = await services.orders.create(requester.id, service_id=service.id)
        await services.orders.accept(order.id, provider.id)
        await services.orders.complete(order.id, provider.id)
        return requester, provider, order

    @pytest.mark.asyncio
    async def test_rate_once(self, services, factory):
        requester, provider, order = await self._completed_order(services, factory)

        with pytest.raises(ValidationFailed):
            await services.orders.rate(order.id, requester.id, 6)

        order = await services.orders.rate(order.id, requester.id, 5)
        assert order.rating == 5

        with pytest.raises(ValidationFailed):
            await services.orders.rate(order.id, requester.id, 4)

    @pytest.mark.asyncio
    async def test_feedback_requires_completion(self, services, factory):
        requester = await factory.create_requester()
        provider = await factory.create_provider()
        service = await factory.create_service(provider)
        order = await services.orders.create(requester.id, service_id=service.id)

        with pytest.raises(InvalidTransition):
            await services.orders.rate(order.id, requester.id, 5)

    @pytest.mark.asyncio
    async def test_report_problem_notifies_operators(self, services, factory, notifier):
        requester, provider, order = await self._completed_order(services, factory)

        with pytest.raises(NotOwner):
            await services.orders.report_problem(order.id, provider.id, "nope")

        order = await services.orders.report_problem(order.id, requester.id, "Provider never showed up")
        assert order.problem_report == "Provider never showed up"
        assert any("Provider never showed up" in message for message, _ in notifier.operator_messages)

    @pytest.mark.asyncio
    async def test_completion_offers_rating_buttons(self, services, factory, notifier):
        requester, provider, order = await self._completed_order(services, factory)

        callbacks = [action.callback_data for action in notifier.actions_for(requester.id)]
        assert f"rate:{order.id}:5" in callbacks
        assert f"rate:{order.id}:1" in callbacks
        assert f"report:{order.id}" in callbacks
