"""
Order Service
=============

Applies the order transition table (utils.order_state_machine) to stored
orders. Every transition is:

1. read the order and plan the transition from its observed status
   (InvalidTransition if the table has no entry)
2. compare-and-set: UPDATE orders ... WHERE id = :id AND status = :observed
3. apply the plan's side effects (ledger hold/release) on the same session
4. append an order_status_history row

Steps 2-4 commit together, so a failed hold leaves the order untouched.
A zero rowcount at step 2 means another writer got there first; the
order is re-read to report why (AlreadyAccepted, Expired, ...).

Fund commitment point: funds move on acceptance, never on creation.
In "balance" payment mode the accept CAS and the requester hold are one
unit; in "external" mode accept parks the order in pending_payment until
confirm_payment records the payment (or pay_from_balance holds it).
"""

import logging
import secrets
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config import Config
from models import (
    Account, Order, OrderStatus, OrderStatusHistory, PaymentStatus, Service, ServiceCategory,
)
from services.account_service import AccountService
from services.ledger_service import LedgerService
from services.telegram_notification_service import Notifier, NotificationAction, LoggingNotifier
from utils.atomic_transactions import with_session
from utils.callback_dispatcher import CommandKind, encode_callback
from utils.datetime_helpers import Clock
from utils.decimal_precision import format_cents
from utils.exception_handler import (
    AlreadyAccepted, AmountMismatch, Expired, InsufficientFunds, InvalidTransition,
    NotApproved, NotFound, NotOwner, ValidationFailed,
)
from utils.fee_calculator import FeeCalculator
from utils.order_state_machine import OrderEvent, OrderStateMachine, SideEffect, TransitionPlan

logger = logging.getLogger(__name__)


class PaymentSource(Enum):
    EXTERNAL = "external"
    BALANCE = "balance"


class CancelReason:
    BY_REQUESTER = "cancelled_by_requester"
    DECLINED = "declined"
    EXPIRED = "expired"


# Statuses that mean some provider already won the accept race
_ACCEPTED_FAMILY = {
    OrderStatus.PENDING_PAYMENT.value,
    OrderStatus.ACCEPTED.value,
    OrderStatus.IN_CALL.value,
    OrderStatus.COMPLETED.value,
}


class OrderService:
    """Order lifecycle operations"""

    def __init__(self, ledger: Optional[LedgerService] = None, notifier: Optional[Notifier] = None,
                 clock: Optional[Clock] = None):
        self.clock = clock or Clock()
        self.ledger = ledger or LedgerService(clock=self.clock)
        self.notifier = notifier or LoggingNotifier()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    async def _load(session: AsyncSession, order_id: int) -> Order:
        order = await session.get(Order, order_id, populate_existing=True)
        if order is None:
            raise NotFound(f"Order #{order_id} not found.")
        return order

    async def _compare_and_set(self, session: AsyncSession, order_id: int, expected_status: str,
                               plan: TransitionPlan, extra_conditions: Iterable[Any] = (),
                               **values) -> bool:
        """Single conditional UPDATE; True only for the writer whose expected status still held"""
        values.setdefault("updated_at", self.clock.now())
        result = await session.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == expected_status, *extra_conditions)
            .values(status=plan.to_status, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _record_history(self, session: AsyncSession, order_id: int, plan: TransitionPlan,
                              actor_id: Optional[int]) -> None:
        session.add(OrderStatusHistory(
            order_id=order_id,
            from_status=plan.from_status,
            to_status=plan.to_status,
            event=plan.event.value,
            actor_id=actor_id,
            created_at=self.clock.now(),
        ))
        await session.flush()

    async def _apply_side_effects(self, session: AsyncSession, order: Order, plan: TransitionPlan) -> None:
        """Ledger and payment effects of a transition, on the caller's transaction"""
        for effect in plan.side_effects:
            if effect is SideEffect.HOLD_TOTAL:
                await self.ledger.hold(order.requester_id, order.total_cents, order.id, session=session)
                order.payment_status = PaymentStatus.HELD.value
            elif effect is SideEffect.MARK_PAID:
                order.payment_status = PaymentStatus.PAID.value
            elif effect is SideEffect.RELEASE_BASE:
                await self.ledger.release(order.provider_id, order.base_cents, order.id, session=session)
                order.payment_status = PaymentStatus.RELEASED.value
            elif effect is SideEffect.REFUND_HOLD:
                if order.payment_status == PaymentStatus.HELD.value:
                    await self.ledger.release(order.requester_id, order.total_cents, order.id, session=session)
                    order.payment_status = PaymentStatus.REFUNDED.value
        await session.flush()

    async def _transition(self, session: AsyncSession, order: Order, event: OrderEvent,
                          actor_id: Optional[int], extra_conditions: Iterable[Any] = (),
                          **values) -> Order:
        """Plan from the observed status, CAS, apply effects, record history"""
        observed = order.status
        plan = OrderStateMachine.transition(observed, event)
        if not await self._compare_and_set(session, order.id, observed, plan, extra_conditions, **values):
            current = await self._load(session, order.id)
            logger.info(f"⚔️ ORDER_CAS_LOST: order={order.id} event={event.value} now={current.status}")
            raise InvalidTransition(
                f"Order #{order.id} changed to {current.status} before this action completed.",
                current_status=current.status,
                event=event.value,
            )
        order = await self._load(session, order.id)
        await self._apply_side_effects(session, order, plan)
        await self._record_history(session, order.id, plan, actor_id)
        logger.info(f"🔄 ORDER_{event.name}: order={order.id} {plan.from_status} -> {plan.to_status}")
        return order

    def _money(self, cents: int, currency: Optional[str] = None) -> str:
        return format_cents(cents, currency or Config.ORDER_CURRENCY)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create(self, requester_id: int, provider_id: Optional[int] = None,
                     service_id: Optional[int] = None, description: Optional[str] = None,
                     base_cents: Optional[int] = None, category: Optional[ServiceCategory] = None,
                     session: Optional[AsyncSession] = None) -> Order:
        """
        Create a pending order. No funds move here.

        With a service, the base amount, category and requested provider come
        from the service. Without one, `base_cents` is required and the order
        is open to any approved provider unless `provider_id` is given.
        """
        async def _create(s: AsyncSession) -> Order:
            requester = await s.get(Account, requester_id, populate_existing=True)
            if requester is None:
                raise NotFound(f"Account {requester_id} not found.")
            if not requester.is_requester:
                raise NotOwner("Only requesters can place orders.")

            target_provider_id = provider_id
            service_name = None
            if service_id is not None:
                service = await s.get(Service, service_id, populate_existing=True)
                if service is None or not service.is_active:
                    raise NotFound("This service is no longer available.")
                if target_provider_id is not None and service.provider_id != target_provider_id:
                    raise ValidationFailed("This service is not offered by the chosen provider.")
                target_provider_id = service.provider_id
                amount = service.price_cents
                order_category = service.category
                service_name = service.name
            else:
                if base_cents is None or base_cents <= 0:
                    raise ValidationFailed("Order amount must be greater than zero.")
                amount = base_cents
                order_category = (category or ServiceCategory.OTHER).value

            if target_provider_id is not None:
                provider = await s.get(Account, target_provider_id, populate_existing=True)
                if provider is None or not provider.is_provider:
                    raise NotFound("Provider not found.")
                if not provider.is_approved:
                    raise NotApproved("This provider is not approved yet.")
                if not provider.is_available:
                    raise ValidationFailed("This provider is not taking orders right now.")

            plan = OrderStateMachine.transition(None, OrderEvent.CREATE)
            pricing = FeeCalculator.price_order(amount)
            now = self.clock.now()
            order = Order(
                requester_id=requester_id,
                requested_provider_id=target_provider_id,
                provider_id=None,
                service_id=service_id,
                service_name=service_name,
                category=order_category,
                base_cents=pricing.base_cents,
                fee_cents=pricing.fee_cents,
                total_cents=pricing.total_cents,
                currency=pricing.currency,
                status=plan.to_status,
                payment_status=PaymentStatus.UNPAID.value,
                description=description,
                created_at=now,
                updated_at=now,
                expires_at=now + timedelta(minutes=Config.ORDER_EXPIRY_MINUTES),
            )
            s.add(order)
            await s.flush()
            await self._record_history(s, order.id, plan, requester_id)
            return order

        order = await with_session(session, _create)
        logger.info(
            f"🆕 ORDER_CREATED: order={order.id} requester={requester_id} provider={order.requested_provider_id} "
            f"base={order.base_cents} fee={order.fee_cents} total={order.total_cents}"
        )
        await self._announce_new_order(order)
        return order

    async def _announce_new_order(self, order: Order) -> None:
        what = order.service_name or "an order"
        text = (
            f"📥 New order #{order.id}: {what}\n"
            f"Amount: {self._money(order.base_cents, order.currency)}\n"
            f"{order.description or ''}".rstrip()
        )
        actions = [NotificationAction("✅ Accept", encode_callback(CommandKind.ACCEPT_ORDER, order.id))]
        if order.requested_provider_id is not None:
            actions.append(NotificationAction("❌ Decline", encode_callback(CommandKind.DECLINE_ORDER, order.id)))
            await self.notifier.notify(order.requested_provider_id, text, actions)
        else:
            for provider in await AccountService(clock=self.clock).list_available_providers():
                await self.notifier.notify(provider.id, text, actions)

        await self.notifier.notify(
            order.requester_id,
            f"🧾 Order #{order.id} created. Total {self._money(order.total_cents, order.currency)} "
            f"(fee {self._money(order.fee_cents, order.currency)}). Nothing is charged until it is accepted.",
            [NotificationAction("🚫 Cancel order", encode_callback(CommandKind.CANCEL_ORDER, order.id))],
        )

    # ------------------------------------------------------------------
    # Acceptance
    # ------------------------------------------------------------------

    async def accept(self, order_id: int, provider_id: int, session: Optional[AsyncSession] = None) -> Order:
        """
        Bind a provider to a pending order. The status check and write are a
        single compare-and-set on status = pending, so concurrent callers get
        exactly one winner; everybody else gets AlreadyAccepted.
        """
        external = Config.ORDER_PAYMENT_MODE == "external"
        event = OrderEvent.ACCEPT_AWAIT_PAYMENT if external else OrderEvent.ACCEPT_WITH_HOLD

        async def _accept(s: AsyncSession) -> Order:
            provider = await s.get(Account, provider_id, populate_existing=True)
            if provider is None:
                raise NotFound(f"Account {provider_id} not found.")
            if not provider.is_provider:
                raise NotOwner("Only providers can accept orders.")
            if not provider.is_approved:
                raise NotApproved()

            order = await self._load(s, order_id)
            if order.requested_provider_id is not None and order.requested_provider_id != provider_id:
                raise NotOwner("This order was sent to another provider.")

            now = self.clock.now()
            self._raise_for_unacceptable(order, now)

            plan = OrderStateMachine.transition(OrderStatus.PENDING.value, event)
            values: Dict[str, Any] = {"provider_id": provider_id, "updated_at": now}
            if plan.to_status == OrderStatus.ACCEPTED.value:
                values["accepted_at"] = now

            won = await self._compare_and_set(
                s, order_id, OrderStatus.PENDING.value, plan, (Order.expires_at > now,), **values
            )
            if not won:
                self._raise_for_unacceptable(await self._load(s, order_id), now)
                # Still pending and not expired: only possible if expires_at moved under us
                raise InvalidTransition(f"Order #{order_id} could not be accepted.")

            order = await self._load(s, order_id)
            await self._apply_side_effects(s, order, plan)
            await self._record_history(s, order_id, plan, provider_id)
            return order

        try:
            order = await with_session(session, _accept)
        except InsufficientFunds as e:
            logger.info(f"💸 ORDER_ACCEPT_UNFUNDED: order={order_id} provider={provider_id}")
            await self._notify_unfunded_accept(order_id, e)
            raise InsufficientFunds(
                "The requester's balance does not cover this order yet. They have been asked to top up.",
                required_cents=e.required_cents,
                available_cents=e.available_cents,
            ) from e

        logger.info(f"🤝 ORDER_ACCEPTED: order={order.id} provider={provider_id} status={order.status}")
        await self._announce_acceptance(order)
        return order

    @staticmethod
    def _raise_for_unacceptable(order: Order, now) -> None:
        if order.status in _ACCEPTED_FAMILY:
            raise AlreadyAccepted(f"Order #{order.id} has already been accepted.")
        if order.status != OrderStatus.PENDING.value:
            raise InvalidTransition(
                f"Order #{order.id} is {order.status} and can no longer be accepted.",
                current_status=order.status,
                event="accept",
            )
        if order.expires_at <= now:
            raise Expired(f"Order #{order.id} has expired.")

    async def _notify_unfunded_accept(self, order_id: int, error: InsufficientFunds) -> None:
        try:
            order = await self.get_order(order_id)
        except NotFound:
            return
        await self.notifier.notify(
            order.requester_id,
            f"💳 A provider wants to accept order #{order.id}, but your balance is short: "
            f"{self._money(error.required_cents, order.currency)} needed, "
            f"{self._money(error.available_cents, order.currency)} available. Top up and ask them to accept again.",
        )

    async def _announce_acceptance(self, order: Order) -> None:
        if order.status == OrderStatus.PENDING_PAYMENT.value:
            await self.notifier.notify(
                order.requester_id,
                f"✅ Order #{order.id} was accepted. Pay {self._money(order.total_cents, order.currency)} to confirm it.",
                [NotificationAction("💳 Pay from balance", encode_callback(CommandKind.PAY_ORDER, order.id))],
            )
            return

        await self.notifier.notify(
            order.requester_id,
            f"✅ Order #{order.id} was accepted. {self._money(order.total_cents, order.currency)} is held in escrow "
            f"until the provider completes it.",
            [NotificationAction("💬 Chat with the provider", encode_callback(CommandKind.OPEN_CHAT, order.id))],
        )
        await self._notify_provider_ready(order)

    async def _notify_provider_ready(self, order: Order) -> None:
        actions = []
        if order.category == ServiceCategory.SESSION.value:
            actions.append(NotificationAction("📞 Start call", encode_callback(CommandKind.START_SESSION, order.id)))
        actions.append(NotificationAction("🏁 Mark completed", encode_callback(CommandKind.COMPLETE_ORDER, order.id)))
        actions.append(NotificationAction("💬 Chat with the requester", encode_callback(CommandKind.OPEN_CHAT, order.id)))
        await self.notifier.notify(order.provider_id, f"💼 Order #{order.id} is funded and ready.", actions)

    async def decline(self, order_id: int, provider_id: int, session: Optional[AsyncSession] = None) -> Order:
        """The requested provider turns a pending order down"""
        async def _decline(s: AsyncSession) -> Order:
            order = await self._load(s, order_id)
            if order.requested_provider_id != provider_id:
                raise NotOwner("Only the provider this order was sent to can decline it.")
            return await self._transition(s, order, OrderEvent.DECLINE, provider_id,
                                          cancel_reason=CancelReason.DECLINED)

        order = await with_session(session, _decline)
        await self.notifier.notify(order.requester_id, f"😔 Order #{order.id} was declined by the provider.")
        return order

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    async def confirm_payment(self, order_id: int, paid_amount_cents: int, paid_currency: str,
                              source: PaymentSource = PaymentSource.EXTERNAL, actor_id: Optional[int] = None,
                              session: Optional[AsyncSession] = None) -> Order:
        """
        Record payment for an order awaiting it. External payments only mark
        the order paid; a balance payment holds the total from the requester
        in the same transaction.
        """
        event = OrderEvent.PAY_FROM_BALANCE if source is PaymentSource.BALANCE else OrderEvent.CONFIRM_EXTERNAL_PAYMENT

        async def _confirm(s: AsyncSession) -> Order:
            order = await self._load(s, order_id)
            OrderStateMachine.transition(order.status, event)
            if paid_amount_cents != order.total_cents or (paid_currency or "").upper() != order.currency.upper():
                logger.warning(
                    f"🚨 PAYMENT_MISMATCH: order={order_id} expected={order.total_cents} {order.currency} "
                    f"got={paid_amount_cents} {paid_currency}"
                )
                raise AmountMismatch(
                    f"Expected {self._money(order.total_cents, order.currency)}, "
                    f"received {paid_amount_cents} {paid_currency}."
                )
            return await self._transition(s, order, event, actor_id, accepted_at=self.clock.now())

        order = await with_session(session, _confirm)
        logger.info(f"💳 PAYMENT_CONFIRMED: order={order.id} source={source.value}")
        await self.notifier.notify(order.requester_id, f"💳 Payment for order #{order.id} received. It is now in escrow.")
        await self._notify_provider_ready(order)
        return order

    async def pay_from_balance(self, order_id: int, requester_id: int,
                               session: Optional[AsyncSession] = None) -> Order:
        order = await self.get_order(order_id, session=session)
        if order.requester_id != requester_id:
            raise NotOwner("Only the requester can pay for this order.")
        return await self.confirm_payment(
            order_id, order.total_cents, order.currency, source=PaymentSource.BALANCE,
            actor_id=requester_id, session=session,
        )

    # ------------------------------------------------------------------
    # Fulfilment
    # ------------------------------------------------------------------

    async def start_session(self, order_id: int, provider_id: int, session: Optional[AsyncSession] = None) -> str:
        """Move an accepted session order in_call and return its meeting link (same link on repeat calls)"""
        async def _start(s: AsyncSession) -> Tuple[str, Optional[Order]]:
            order = await self._load(s, order_id)
            if order.provider_id != provider_id:
                raise NotOwner("Only the provider of this order can start the call.")
            if order.category != ServiceCategory.SESSION.value:
                raise InvalidTransition("Only session orders have a call.", current_status=order.status,
                                        event=OrderEvent.START_SESSION.value)
            if order.status == OrderStatus.IN_CALL.value:
                return order.session_url, None

            url = order.session_url or self._new_session_url(order.id)
            try:
                order = await self._transition(s, order, OrderEvent.START_SESSION, provider_id, session_url=url)
            except InvalidTransition:
                current = await self._load(s, order_id)
                if current.status == OrderStatus.IN_CALL.value:
                    return current.session_url, None
                raise
            return order.session_url, order

        url, started = await with_session(session, _start)
        if started is not None:
            logger.info(f"📞 SESSION_STARTED: order={order_id} url={url}")
            await self.notifier.notify(started.requester_id, f"📞 Your call for order #{order_id} is ready: {url}")
        return url

    @staticmethod
    def _new_session_url(order_id: int) -> str:
        return f"{Config.SESSION_URL_BASE}SafeCall_{order_id}_{secrets.token_hex(3)}"

    async def complete(self, order_id: int, provider_id: int, session: Optional[AsyncSession] = None) -> Order:
        """Finish an accepted/in_call order and release the base amount to the provider (fee retained)"""
        async def _complete(s: AsyncSession) -> Order:
            order = await self._load(s, order_id)
            if order.provider_id != provider_id:
                raise NotOwner("Only the provider of this order can complete it.")
            return await self._transition(s, order, OrderEvent.COMPLETE, provider_id,
                                          completed_at=self.clock.now())

        order = await with_session(session, _complete)
        logger.info(f"🏁 ORDER_COMPLETED: order={order.id} released={order.base_cents} to provider={provider_id}")
        await self.notifier.notify(
            provider_id,
            f"💰 Order #{order.id} completed. {self._money(order.base_cents, order.currency)} added to your balance.",
        )
        rating_actions = [
            NotificationAction("⭐" * stars, encode_callback(CommandKind.RATE_ORDER, order.id, stars))
            for stars in range(5, 0, -1)
        ]
        rating_actions.append(
            NotificationAction("⚠️ Report a problem", encode_callback(CommandKind.REPORT_PROBLEM, order.id))
        )
        await self.notifier.notify(order.requester_id, f"🏁 Order #{order.id} is complete. How did it go?",
                                   rating_actions)
        return order

    # ------------------------------------------------------------------
    # Cancellation and expiry
    # ------------------------------------------------------------------

    async def cancel(self, order_id: int, requester_id: int, session: Optional[AsyncSession] = None) -> Order:
        async def _cancel(s: AsyncSession) -> Order:
            order = await self._load(s, order_id)
            if order.requester_id != requester_id:
                raise NotOwner("Only the requester can cancel this order.")
            return await self._transition(s, order, OrderEvent.CANCEL, requester_id,
                                          cancel_reason=CancelReason.BY_REQUESTER)

        order = await with_session(session, _cancel)
        logger.info(f"🚫 ORDER_CANCELLED: order={order.id} by requester={requester_id}")
        notify_id = order.provider_id or order.requested_provider_id
        if notify_id is not None:
            await self.notifier.notify(notify_id, f"🚫 Order #{order.id} was cancelled by the requester.")
        return order

    async def expire(self, order_id: int, session: Optional[AsyncSession] = None) -> Order:
        """Scheduler only: cancel a pending order whose deadline has passed"""
        async def _expire(s: AsyncSession) -> Order:
            order = await self._load(s, order_id)
            now = self.clock.now()
            if order.status == OrderStatus.PENDING.value and order.expires_at > now:
                raise InvalidTransition(f"Order #{order_id} has not expired yet.",
                                        current_status=order.status, event=OrderEvent.EXPIRE.value)
            return await self._transition(s, order, OrderEvent.EXPIRE, None, (Order.expires_at <= now,),
                                          cancel_reason=CancelReason.EXPIRED)

        order = await with_session(session, _expire)
        logger.info(f"⏰ ORDER_EXPIRED: order={order.id}")
        return order

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    async def rate(self, order_id: int, requester_id: int, stars: int,
                   session: Optional[AsyncSession] = None) -> Order:
        if not 1 <= int(stars) <= 5:
            raise ValidationFailed("Rating must be between 1 and 5.")

        async def _rate(s: AsyncSession) -> Order:
            order = await self._require_completed_for(s, order_id, requester_id)
            result = await s.execute(
                update(Order)
                .where(Order.id == order_id, Order.rating.is_(None))
                .values(rating=int(stars), updated_at=self.clock.now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ValidationFailed("This order has already been rated.")
            return await self._load(s, order.id)

        order = await with_session(session, _rate)
        logger.info(f"⭐ ORDER_RATED: order={order_id} stars={stars}")
        return order

    async def report_problem(self, order_id: int, requester_id: int, text: str,
                             session: Optional[AsyncSession] = None) -> Order:
        async def _report(s: AsyncSession) -> Order:
            order = await self._require_completed_for(s, order_id, requester_id)
            result = await s.execute(
                update(Order)
                .where(Order.id == order_id, Order.problem_report.is_(None))
                .values(problem_report=text, updated_at=self.clock.now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ValidationFailed("A problem has already been reported for this order.")
            return await self._load(s, order.id)

        order = await with_session(session, _report)
        logger.warning(f"⚠️ PROBLEM_REPORTED: order={order_id} requester={requester_id}")
        await self.notifier.notify_operators(
            f"⚠️ Problem reported on order #{order_id} (provider #{order.provider_id}):\n{text}"
        )
        return order

    async def _require_completed_for(self, session: AsyncSession, order_id: int, requester_id: int) -> Order:
        order = await self._load(session, order_id)
        if order.requester_id != requester_id:
            raise NotOwner("This is not your order.")
        if order.status != OrderStatus.COMPLETED.value:
            raise InvalidTransition("Feedback is only possible on completed orders.",
                                    current_status=order.status, event="feedback")
        return order

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_order(self, order_id: int, session: Optional[AsyncSession] = None) -> Order:
        return await with_session(session, lambda s: self._load(s, order_id))

    async def list_orders_for(self, account_id: int, statuses: Optional[Iterable[OrderStatus]] = None,
                              limit: int = 10, session: Optional[AsyncSession] = None) -> List[Order]:
        """Orders where the account is requester, bound provider or requested provider"""
        async def _list(s: AsyncSession) -> List[Order]:
            stmt = select(Order).where(
                (Order.requester_id == account_id)
                | (Order.provider_id == account_id)
                | (Order.requested_provider_id == account_id)
            )
            if statuses:
                stmt = stmt.where(Order.status.in_([status.value for status in statuses]))
            result = await s.execute(stmt.order_by(Order.id.desc()).limit(limit))
            return list(result.scalars().all())
        return await with_session(session, _list)

    async def list_reportable_orders(self, requester_id: int, limit: int = 10,
                                     session: Optional[AsyncSession] = None) -> List[Order]:
        """The requester's completed orders that carry no problem report yet"""
        async def _list(s: AsyncSession) -> List[Order]:
            result = await s.execute(
                select(Order)
                .where(
                    Order.requester_id == requester_id,
                    Order.status == OrderStatus.COMPLETED.value,
                    Order.problem_report.is_(None),
                )
                .order_by(Order.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
        return await with_session(session, _list)

    async def status_history(self, order_id: int, session: Optional[AsyncSession] = None) -> List[OrderStatusHistory]:
        async def _history(s: AsyncSession) -> List[OrderStatusHistory]:
            result = await s.execute(
                select(OrderStatusHistory)
                .where(OrderStatusHistory.order_id == order_id)
                .order_by(OrderStatusHistory.id)
            )
            return list(result.scalars().all())
        return await with_session(session, _history)
