"""
Command Decoding - the closed set of bot commands

Callback data ("accept:12") and slash commands ("/complete_12",
"/admin_topup 12345 50") are decoded once, at the transport boundary,
into a BotCommand. Handlers dispatch on BotCommand.kind through a lookup
table and never look at raw strings again.

Usage:
    callback_data = encode_callback(CommandKind.ACCEPT_ORDER, order.id)
    command = decode_callback("accept:12")     # BotCommand(ACCEPT_ORDER, ("12",))
    command = decode_command_text("/complete_12")
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from utils.exception_handler import ValidationFailed

logger = logging.getLogger(__name__)

# Telegram rejects callback_data longer than 64 bytes
CALLBACK_DATA_LIMIT = 64
SEPARATOR = ":"


class CommandKind(Enum):
    """Every action the bot understands"""

    # Navigation and onboarding
    MENU = "menu"
    CHOOSE_REQUESTER = "role_req"
    CHOOSE_PROVIDER = "role_prov"
    ACCEPT_TERMS = "terms"
    TOGGLE_AVAILABILITY = "avail"

    # Conversation flows
    NEW_ORDER = "new_order"
    NEW_SERVICE = "new_service"
    EDIT_PROFILE = "edit_profile"
    REPORT_PROBLEM = "report"
    FLOW_CHOICE = "pick"
    CANCEL_FLOW = "cancel_flow"

    # Orders
    MY_ORDERS = "orders"
    ACCEPT_ORDER = "accept"
    DECLINE_ORDER = "decline"
    PAY_ORDER = "pay"
    START_SESSION = "start_call"
    COMPLETE_ORDER = "complete"
    CANCEL_ORDER = "cancel"
    RATE_ORDER = "rate"
    OPEN_CHAT = "chat"
    STOP_CHAT = "stop_chat"

    # Catalog
    MY_SERVICES = "services"
    TOGGLE_SERVICE = "svc_toggle"
    DELETE_SERVICE = "svc_delete"

    # Wallet
    BALANCE = "balance"
    WITHDRAW = "withdraw"

    # Operator actions
    APPROVE_PROVIDER = "approve"
    REJECT_PROVIDER = "reject"
    ADMIN_TOPUP = "admin_topup"
    CONFIRM_PAYMENT = "confirm_payment"
    WITHDRAWAL_PROCESSED = "wd_done"


_KINDS_BY_VALUE: Dict[str, CommandKind] = {kind.value: kind for kind in CommandKind}

# Slash command names that differ from the callback value
SLASH_ALIASES: Dict[str, CommandKind] = {
    "start": CommandKind.MENU,
    "menu": CommandKind.MENU,
    "neworder": CommandKind.NEW_ORDER,
    "newservice": CommandKind.NEW_SERVICE,
    "profile": CommandKind.EDIT_PROFILE,
    "cancel": CommandKind.CANCEL_FLOW,
    "cancel_order": CommandKind.CANCEL_ORDER,
    "available": CommandKind.TOGGLE_AVAILABILITY,
    "withdrawal_done": CommandKind.WITHDRAWAL_PROCESSED,
}

_SLASH_WITH_ID = re.compile(r"^(?P<name>[a-z_]+?)_(?P<id>\d+)$")


@dataclass(frozen=True)
class BotCommand:
    """A decoded command: its kind plus positional string arguments"""

    kind: CommandKind
    args: Tuple[str, ...] = ()

    def int_arg(self, index: int = 0, name: str = "id") -> int:
        try:
            return int(self.args[index])
        except (IndexError, ValueError):
            raise ValidationFailed(f"Missing or invalid {name}.")

    def str_arg(self, index: int = 0, name: str = "argument") -> str:
        try:
            value = self.args[index]
        except IndexError:
            raise ValidationFailed(f"Missing {name}.")
        return value


def encode_callback(kind: CommandKind, *args: Union[str, int]) -> str:
    """Encode callback data in the 'kind:arg1:arg2' format"""
    parts = [kind.value] + [str(arg) for arg in args]
    result = SEPARATOR.join(parts)
    if len(result.encode("utf-8")) > CALLBACK_DATA_LIMIT:
        raise ValueError(f"callback_data too long ({len(result)} > {CALLBACK_DATA_LIMIT}): {result}")
    return result


def decode_callback(data: Optional[str]) -> Optional[BotCommand]:
    """Decode callback data; unknown data yields None"""
    if not data:
        return None
    head, *args = data.split(SEPARATOR)
    kind = _KINDS_BY_VALUE.get(head)
    if kind is None:
        logger.warning(f"⚠️ UNKNOWN_CALLBACK: {data!r}")
        return None
    return BotCommand(kind=kind, args=tuple(args))


def decode_command_text(text: Optional[str]) -> Optional[BotCommand]:
    """
    Decode a slash command. Accepts "/name", "/name@bot", "/name_12" and
    "/name arg1 arg2". Returns None for ordinary text or unknown commands.
    """
    if not text or not text.startswith("/"):
        return None

    head, *rest = text.strip().split()
    name = head[1:].split("@", 1)[0].lower()
    args = tuple(rest)

    kind = SLASH_ALIASES.get(name) or _KINDS_BY_VALUE.get(name)
    if kind is None:
        match = _SLASH_WITH_ID.match(name)
        if match:
            base = match.group("name")
            # An id suffix names an order or service, so "/cancel_12" is CANCEL_ORDER
            kind = _KINDS_BY_VALUE.get(base) or SLASH_ALIASES.get(base)
            args = (match.group("id"),) + args
    if kind is None:
        return None
    return BotCommand(kind=kind, args=args)
