"""Conversation flow handlers: start, step input, choices and cancel"""

import logging
from typing import List, Optional, Union

from telegram import Update
from telegram.ext import ContextTypes

from models import Account, FlowKind
from services.conversation_engine import FlowResult, StepPrompt
from services.core_services import CoreServices
from services.telegram_notification_service import NotificationAction
from utils.callback_dispatcher import BotCommand, CommandKind, encode_callback
from utils.callback_utils import reply
from utils.exception_handler import ValidationFailed

logger = logging.getLogger(__name__)

FLOW_FOR_COMMAND = {
    CommandKind.NEW_ORDER: FlowKind.NEW_ORDER,
    CommandKind.NEW_SERVICE: FlowKind.NEW_SERVICE,
    CommandKind.EDIT_PROFILE: FlowKind.EDIT_PROFILE,
    CommandKind.REPORT_PROBLEM: FlowKind.REPORT_PROBLEM,
}


def prompt_actions(prompt: StepPrompt) -> List[NotificationAction]:
    actions = [
        NotificationAction(label, encode_callback(CommandKind.FLOW_CHOICE, value))
        for value, label in prompt.options
    ]
    if prompt.allow_skip:
        actions.append(NotificationAction("⏭ Skip", encode_callback(CommandKind.FLOW_CHOICE, "-")))
    actions.append(NotificationAction("🛑 Cancel", encode_callback(CommandKind.CANCEL_FLOW)))
    return actions


async def send_prompt(update: Update, prompt: StepPrompt, notice: Optional[str] = None) -> None:
    text = f"{notice}\n\n{prompt.text}" if notice else prompt.text
    await reply(update, text, prompt_actions(prompt))


async def _send_outcome(update: Update, outcome: Union[StepPrompt, FlowResult]) -> None:
    if isinstance(outcome, StepPrompt):
        await send_prompt(update, outcome)
    elif outcome.completed:
        await reply(update, outcome.message or "✅ Done.")
    else:
        await send_prompt(update, outcome.prompt)


async def start_flow(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                     account: Account, services: CoreServices) -> None:
    kind = FLOW_FOR_COMMAND[command.kind]
    initial = {}
    if kind == FlowKind.REPORT_PROBLEM and command.args:
        initial["order_id"] = str(command.int_arg(0, "order id"))
    outcome = await services.conversations.start_flow(account.id, kind, **initial)
    await _send_outcome(update, outcome)


async def submit_input(update: Update, services: CoreServices, account: Account,
                       text: Optional[str], photo_file_id: Optional[str] = None) -> bool:
    """Feed one input to the open flow; False when there is none"""
    try:
        result = await services.conversations.submit_step(account.id, text=text, photo_file_id=photo_file_id)
    except ValidationFailed as e:
        if e.prompt is None:
            raise
        await send_prompt(update, e.prompt, notice=e.user_message)
        return True
    if result is None:
        return False
    await _send_outcome(update, result)
    return True


async def flow_choice(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                      account: Account, services: CoreServices) -> None:
    handled = await submit_input(update, services, account, command.str_arg(0, "choice"))
    if not handled:
        await reply(update, "⌛ That question has expired. Use /menu to start again.")


async def cancel_flow(update: Update, context: ContextTypes.DEFAULT_TYPE, command: BotCommand,
                      account: Account, services: CoreServices) -> None:
    if services.conversations.cancel_flow(account.id):
        await reply(update, "🛑 Cancelled.")
    else:
        await reply(update, "Nothing to cancel.")


COMMANDS = {
    CommandKind.NEW_ORDER: start_flow,
    CommandKind.NEW_SERVICE: start_flow,
    CommandKind.EDIT_PROFILE: start_flow,
    CommandKind.REPORT_PROBLEM: start_flow,
    CommandKind.FLOW_CHOICE: flow_choice,
    CommandKind.CANCEL_FLOW: cancel_flow,
}
