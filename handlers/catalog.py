"""Provider catalog handlers: list, toggle and delete services"""

import logging

from telegram import Update
from telegram.ext import ContextTypes

from models import Account, Service
from services.core_services import CoreServices
from services.telegram_notification_service import NotificationAction
from utils.callback_dispatcher import BotCommand, CommandKind, encode_callback
from utils.callback_utils import reply
from utils.decimal_precision import format_cents

logger = logging.getLogger(__name__)


def service_line(service: Service) -> str:
    state = "🟢" if service.is_active else "⚪️"
    duration = f", {service.duration_min} min" if service.duration_min else ""
    return f"{state} #{service.id} {service.name} - {format_cents(service.price_cents)}{duration}"


async def my_services(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                      account: Account, services: CoreServices) -> None:
    catalog = await services.catalog.list_services(account.id, active_only=False)
    if not catalog:
        await reply(update, "🧾 You have no services yet.",
                    [NotificationAction("➕ New service", encode_callback(CommandKind.NEW_SERVICE))])
        return

    actions = []
    for service in catalog:
        toggle_label = f"⏸ Hide #{service.id}" if service.is_active else f"▶️ Show #{service.id}"
        actions.append(NotificationAction(toggle_label, encode_callback(CommandKind.TOGGLE_SERVICE, service.id)))
        actions.append(NotificationAction(f"🗑 Delete #{service.id}", encode_callback(CommandKind.DELETE_SERVICE, service.id)))
    actions.append(NotificationAction("➕ New service", encode_callback(CommandKind.NEW_SERVICE)))
    await reply(update, "🧾 Your services:\n" + "\n".join(service_line(s) for s in catalog), actions)


async def toggle_service(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                         account: Account, services: CoreServices) -> None:
    service = await services.catalog.toggle_active(command.int_arg(0, "service id"), account.id)
    await reply(update, service_line(service))


async def delete_service(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                         account: Account, services: CoreServices) -> None:
    service_id = command.int_arg(0, "service id")
    await services.catalog.delete_service(service_id, account.id)
    await reply(update, f"🗑 Service #{service_id} deleted.")


COMMANDS = {
    CommandKind.MY_SERVICES: my_services,
    CommandKind.TOGGLE_SERVICE: toggle_service,
    CommandKind.DELETE_SERVICE: delete_service,
}
