"""Order action handlers: list, accept, decline, pay, start call, complete, cancel, rate"""

import logging
from typing import List

from telegram import Update
from telegram.ext import ContextTypes

from models import Account, Order, OrderStatus, ServiceCategory
from services.core_services import CoreServices
from services.telegram_notification_service import NotificationAction
from utils.callback_dispatcher import BotCommand, CommandKind, encode_callback
from utils.callback_utils import reply
from utils.decimal_precision import format_cents

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    OrderStatus.PENDING.value: "⏳ waiting for a provider",
    OrderStatus.PENDING_PAYMENT.value: "💳 waiting for payment",
    OrderStatus.ACCEPTED.value: "🤝 accepted",
    OrderStatus.IN_CALL.value: "📞 in call",
    OrderStatus.COMPLETED.value: "🏁 completed",
    OrderStatus.CANCELLED.value: "🚫 cancelled",
}


def order_line(order: Order) -> str:
    what = order.service_name or order.category
    return (
        f"#{order.id} {what} - {format_cents(order.total_cents, order.currency)} "
        f"({STATUS_LABELS.get(order.status, order.status)})"
    )


def order_actions(order: Order, account: Account) -> List[NotificationAction]:
    """Buttons that make sense for this viewer in the order's current status"""
    actions = []
    is_requester = order.requester_id == account.id
    is_bound_provider = order.provider_id == account.id

    if order.status == OrderStatus.PENDING.value:
        if is_requester:
            actions.append(NotificationAction(f"🚫 Cancel #{order.id}", encode_callback(CommandKind.CANCEL_ORDER, order.id)))
        elif order.requested_provider_id == account.id:
            actions.append(NotificationAction(f"✅ Accept #{order.id}", encode_callback(CommandKind.ACCEPT_ORDER, order.id)))
            actions.append(NotificationAction(f"❌ Decline #{order.id}", encode_callback(CommandKind.DECLINE_ORDER, order.id)))
    elif order.status == OrderStatus.PENDING_PAYMENT.value and is_requester:
        actions.append(NotificationAction(f"💳 Pay #{order.id}", encode_callback(CommandKind.PAY_ORDER, order.id)))
        actions.append(NotificationAction(f"🚫 Cancel #{order.id}", encode_callback(CommandKind.CANCEL_ORDER, order.id)))
    elif order.status in (OrderStatus.ACCEPTED.value, OrderStatus.IN_CALL.value) and is_bound_provider:
        if order.category == ServiceCategory.SESSION.value:
            actions.append(NotificationAction(f"📞 Call #{order.id}", encode_callback(CommandKind.START_SESSION, order.id)))
        actions.append(NotificationAction(f"🏁 Complete #{order.id}", encode_callback(CommandKind.COMPLETE_ORDER, order.id)))
    if order.status in (OrderStatus.ACCEPTED.value, OrderStatus.IN_CALL.value) and (is_requester or is_bound_provider):
        actions.append(NotificationAction(f"💬 Chat #{order.id}", encode_callback(CommandKind.OPEN_CHAT, order.id)))
    return actions


async def my_orders(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                    account: Account, services: CoreServices) -> None:
    orders = await services.orders.list_orders_for(account.id)
    if not orders:
        await reply(update, "📭 No orders yet.")
        return
    actions = []
    for order in orders:
        actions.extend(order_actions(order, account))
    await reply(update, "📊 Your recent orders:\n" + "\n".join(order_line(o) for o in orders), actions)


async def accept_order(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                       account: Account, services: CoreServices) -> None:
    order = await services.orders.accept(command.int_arg(0, "order id"), account.id)
    await reply(update, f"🤝 You accepted order #{order.id}.")


async def decline_order(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                        account: Account, services: CoreServices) -> None:
    order = await services.orders.decline(command.int_arg(0, "order id"), account.id)
    await reply(update, f"❌ Order #{order.id} declined.")


async def pay_order(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                    account: Account, services: CoreServices) -> None:
    await services.orders.pay_from_balance(command.int_arg(0, "order id"), account.id)


async def start_session(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                        account: Account, services: CoreServices) -> None:
    order_id = command.int_arg(0, "order id")
    url = await services.orders.start_session(order_id, account.id)
    await reply(update, f"📞 Call link for order #{order_id}:\n{url}",
                [NotificationAction("🏁 Mark completed", encode_callback(CommandKind.COMPLETE_ORDER, order_id))])


async def complete_order(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                         account: Account, services: CoreServices) -> None:
    await services.orders.complete(command.int_arg(0, "order id"), account.id)


async def cancel_order(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                       account: Account, services: CoreServices) -> None:
    order = await services.orders.cancel(command.int_arg(0, "order id"), account.id)
    await reply(update, f"🚫 Order #{order.id} cancelled.")


async def rate_order(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                     account: Account, services: CoreServices) -> None:
    stars = command.int_arg(1, "rating")
    order = await services.orders.rate(command.int_arg(0, "order id"), account.id, stars)
    await reply(update, f"{'⭐' * stars} Thanks for rating order #{order.id}!")


COMMANDS = {
    CommandKind.MY_ORDERS: my_orders,
    CommandKind.ACCEPT_ORDER: accept_order,
    CommandKind.DECLINE_ORDER: decline_order,
    CommandKind.PAY_ORDER: pay_order,
    CommandKind.START_SESSION: start_session,
    CommandKind.COMPLETE_ORDER: complete_order,
    CommandKind.CANCEL_ORDER: cancel_order,
    CommandKind.RATE_ORDER: rate_order,
}
