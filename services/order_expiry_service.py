"""
Order Expiry Service - periodic sweep over pending orders
Sends one stale-order reminder per order and expires pending orders past their deadline.

Both phases only ever act through a compare-and-set on status = pending,
so an order accepted or cancelled concurrently simply drops out.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config import Config
from models import Order, OrderStatus
from services.order_service import OrderService
from services.telegram_notification_service import Notifier, NotificationAction, LoggingNotifier
from utils.atomic_transactions import with_session
from utils.callback_dispatcher import CommandKind, encode_callback
from utils.datetime_helpers import Clock
from utils.exception_handler import InvalidTransition, OrderFlowError

logger = logging.getLogger(__name__)


class OrderExpiryService:
    """Reminder and expiry phases of the scheduler tick"""

    def __init__(self, order_service: OrderService, notifier: Optional[Notifier] = None,
                 clock: Optional[Clock] = None, batch_size: Optional[int] = None):
        self.order_service = order_service
        self.notifier = notifier or order_service.notifier or LoggingNotifier()
        self.clock = clock or order_service.clock
        self.batch_size = batch_size or Config.ORDER_SWEEP_BATCH_SIZE

    async def run_tick(self) -> Dict[str, Any]:
        """One scheduler tick: reminders first, then expiry"""
        reminders = await self.process_reminders()
        expiry = await self.process_expired_orders()
        if reminders["reminded"] or expiry["expired"]:
            logger.info(
                f"🧹 ORDER_SWEEP: reminded={len(reminders['reminded'])} expired={len(expiry['expired'])} "
                f"errors={len(reminders['errors']) + len(expiry['errors'])}"
            )
        return {"reminders": reminders, "expiry": expiry}

    # ------------------------------------------------------------------
    # Phase 1: reminders
    # ------------------------------------------------------------------

    async def _stale_unreminded(self, session: AsyncSession) -> List[int]:
        now = self.clock.now()
        cutoff = now - timedelta(minutes=Config.ORDER_REMINDER_MINUTES)
        result = await session.execute(
            select(Order.id)
            .where(
                Order.status == OrderStatus.PENDING.value,
                Order.reminded_at.is_(None),
                Order.created_at <= cutoff,
                Order.expires_at > now,
            )
            .order_by(Order.id)
            .limit(self.batch_size)
        )
        return list(result.scalars().all())

    async def _claim_reminder(self, session: AsyncSession, order_id: int) -> Optional[Order]:
        """Mark reminded before sending; only one caller can claim an order"""
        result = await session.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.status == OrderStatus.PENDING.value,
                Order.reminded_at.is_(None),
            )
            .values(reminded_at=self.clock.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return await session.get(Order, order_id, populate_existing=True)

    async def process_reminders(self, session: Optional[AsyncSession] = None) -> Dict[str, Any]:
        results: Dict[str, Any] = {"reminded": [], "errors": []}
        order_ids = await with_session(session, self._stale_unreminded)

        for order_id in order_ids:
            order = await with_session(session, lambda s, oid=order_id: self._claim_reminder(s, oid))
            if order is None:
                continue

            await self._send_reminder(order)
            results["reminded"].append(order_id)
            logger.info(f"🔔 ORDER_REMINDER: order={order_id}")

        return results

    async def _send_reminder(self, order: Order) -> None:
        if order.requested_provider_id is not None:
            await self.notifier.notify(
                order.requested_provider_id,
                f"🔔 Reminder: order #{order.id} is still waiting for your answer.",
                [
                    NotificationAction("✅ Accept", encode_callback(CommandKind.ACCEPT_ORDER, order.id)),
                    NotificationAction("❌ Decline", encode_callback(CommandKind.DECLINE_ORDER, order.id)),
                ],
            )
        else:
            await self.notifier.notify(
                order.requester_id,
                f"🔔 Order #{order.id} has not been accepted yet. It stays open until it expires.",
                [NotificationAction("🚫 Cancel order", encode_callback(CommandKind.CANCEL_ORDER, order.id))],
            )

    # ------------------------------------------------------------------
    # Phase 2: expiry
    # ------------------------------------------------------------------

    async def _expired_pending(self, session: AsyncSession) -> List[int]:
        result = await session.execute(
            select(Order.id)
            .where(
                Order.status == OrderStatus.PENDING.value,
                Order.expires_at <= self.clock.now(),
            )
            .order_by(Order.id)
            .limit(self.batch_size)
        )
        return list(result.scalars().all())

    async def process_expired_orders(self, session: Optional[AsyncSession] = None) -> Dict[str, Any]:
        results: Dict[str, Any] = {"expired": [], "skipped": [], "errors": []}
        order_ids = await with_session(session, self._expired_pending)
        if order_ids:
            logger.info(f"🔍 AUTO_EXPIRE: Found {len(order_ids)} orders to expire")

        for order_id in order_ids:
            try:
                order = await self.order_service.expire(order_id, session=session)
            except InvalidTransition:
                # Accepted, cancelled or expired by someone else since the scan
                results["skipped"].append(order_id)
                continue
            except OrderFlowError as e:
                logger.error(f"❌ AUTO_EXPIRE: order={order_id} failed: {e.message}")
                results["errors"].append({"order_id": order_id, "error": e.message})
                continue

            results["expired"].append(order_id)
            logger.info(f"⏰ AUTO_EXPIRE: order={order_id} cancelled after deadline")
            await self.notifier.notify(
                order.requester_id,
                f"⏰ Order #{order.id} expired without being accepted. Nothing was charged.",
            )

        return results


async def run_order_sweep(expiry_service: OrderExpiryService) -> Dict[str, Any]:
    """Scheduler entry point - infrastructure failures are logged and retried on the next tick"""
    try:
        return await expiry_service.run_tick()
    except Exception as e:
        logger.error(f"❌ ORDER_SWEEP_FAILED: {e}", exc_info=True)
        return {"error": str(e)}
