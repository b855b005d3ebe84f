"""
Exception Handler Module
Provides the domain exceptions raised by the order, ledger, catalog and
conversation services, and the decorator that turns them into replies
at the Telegram boundary.
"""

import logging
import functools
from typing import Any, Callable, Optional

from telegram import Update
from telegram.error import TelegramError

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "⚠️ Something went wrong. Please try again in a moment."


class OrderFlowError(Exception):
    """Base class for recoverable business errors - each carries a user-facing message"""

    default_message = "This action could not be completed."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def user_message(self) -> str:
        return f"❌ {self.message}"


class InvalidTransition(OrderFlowError):
    default_message = "This action is not possible in the order's current state."

    def __init__(self, message: Optional[str] = None, current_status: Optional[str] = None,
                 event: Optional[str] = None):
        self.current_status = current_status
        self.event = event
        super().__init__(message)


class NotOwner(OrderFlowError):
    default_message = "You are not allowed to do that."


class InsufficientFunds(OrderFlowError):
    default_message = "Insufficient balance."

    def __init__(self, message: Optional[str] = None, required_cents: int = 0, available_cents: int = 0):
        self.required_cents = required_cents
        self.available_cents = available_cents
        super().__init__(message)


class AlreadyAccepted(OrderFlowError):
    default_message = "This order has already been accepted."


class ValidationFailed(OrderFlowError):
    """Input did not satisfy a rule; `prompt` is the step to ask again, if any"""

    default_message = "Invalid input."

    def __init__(self, message: Optional[str] = None, prompt: Any = None):
        self.prompt = prompt
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return f"⚠️ {self.message}"


class NotApproved(OrderFlowError):
    default_message = "Your provider account has not been approved yet."


class AmountMismatch(OrderFlowError):
    default_message = "Payment amount or currency does not match the order."


class Expired(OrderFlowError):
    default_message = "This order has expired."


class NotFound(OrderFlowError):
    default_message = "Not found."


def _find_update(args) -> Optional[Update]:
    for arg in args:
        if isinstance(arg, Update):
            return arg
    return None


async def reply_to_update(update: Optional[Update], text: str) -> None:
    """Best-effort reply to whatever the update came from"""
    if update is None:
        return
    try:
        if update.callback_query is not None:
            await update.callback_query.answer()
        if update.effective_message is not None:
            await update.effective_message.reply_text(text)
    except TelegramError as e:
        logger.warning(f"⚠️ REPLY_FAILED: {e}")


def safe_telegram_handler(func: Callable) -> Callable:
    """
    Decorator for telegram handler functions.
    Business errors become a reply with their message; anything else is
    logged with its traceback and answered with a generic failure, so a
    handler never crashes the bot.
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> Any:
        try:
            return await func(*args, **kwargs)
        except OrderFlowError as e:
            logger.info(f"↩️ {func.__name__}: {type(e).__name__}: {e.message}")
            await reply_to_update(_find_update(args), e.user_message)
            return None
        except Exception as e:
            logger.error(f"Error in telegram handler {func.__name__}: {type(e).__name__}: {e}", exc_info=True)
            await reply_to_update(_find_update(args), GENERIC_FAILURE_MESSAGE)
            return None

    return wrapper
