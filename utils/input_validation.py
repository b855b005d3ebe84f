"""
Input Validation Utilities
Primitive validators used by the conversation flows and command parsing.
Each returns the parsed value or raises ValidationFailed.
"""

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Optional, Sequence, Tuple
from config import Config
from utils.decimal_precision import MonetaryDecimal, format_cents
from utils.exception_handler import ValidationFailed

logger = logging.getLogger(__name__)

SKIP_MARKERS = ("-",)
_WHOLE_NUMBER = re.compile(r"\d+", re.ASCII)


class InputValidator:
    """Primitive input validators"""

    MAX_TEXT_LENGTH = 1000

    @classmethod
    def validate_text(cls, text: Optional[str], field_name: str = "Value", max_length: Optional[int] = None) -> str:
        """Non-empty text, trimmed"""
        cleaned = (text or "").strip()
        if not cleaned:
            raise ValidationFailed(f"{field_name} cannot be empty")
        limit = max_length or cls.MAX_TEXT_LENGTH
        if len(cleaned) > limit:
            raise ValidationFailed(f"{field_name} must be at most {limit} characters")
        return cleaned

    @classmethod
    def validate_optional_text(cls, text: Optional[str], field_name: str = "Value") -> Optional[str]:
        """Free text where '-' means "nothing" """
        cleaned = (text or "").strip()
        if cleaned in SKIP_MARKERS:
            return None
        return cls.validate_text(cleaned, field_name)

    @classmethod
    def validate_choice(cls, text: Optional[str], choices: Sequence[Tuple[str, str]]) -> str:
        """
        Enum membership. `choices` is a sequence of (value, label); the input
        may be either the value (from a button) or the label (typed).
        """
        cleaned = (text or "").strip().lower()
        for value, label in choices:
            if cleaned == str(value).lower() or cleaned == label.strip().lower():
                return value
        labels = ", ".join(label for _, label in choices)
        raise ValidationFailed(f"Please choose one of: {labels}" if labels else "Nothing to choose from")

    @classmethod
    def validate_amount_cents(cls, text: Optional[str], min_cents: Optional[int] = None,
                              max_cents: Optional[int] = None) -> int:
        """Positive currency amount ("25,00" or "25.00") converted to cents"""
        if not text or not text.strip():
            raise ValidationFailed("Amount cannot be empty")

        try:
            amount = MonetaryDecimal.parse_amount(text)
        except InvalidOperation:
            raise ValidationFailed("Invalid amount format. Please enter a number like 25,00")

        if amount <= Decimal("0"):
            raise ValidationFailed("Amount must be greater than zero")

        exponent = amount.as_tuple().exponent
        if isinstance(exponent, int) and exponent < -2:
            raise ValidationFailed("Amount cannot have more than 2 decimal places")

        lower = Config.MIN_AMOUNT_CENTS if min_cents is None else min_cents
        upper = Config.MAX_AMOUNT_CENTS if max_cents is None else max_cents
        # Bound before quantizing: very large inputs overflow the context precision
        if amount * MonetaryDecimal.CENTS_PER_UNIT > upper:
            raise ValidationFailed(f"Amount cannot exceed {format_cents(upper, Config.ORDER_CURRENCY)}")
        try:
            cents = MonetaryDecimal.to_cents(amount)
        except InvalidOperation:
            raise ValidationFailed("Invalid amount format. Please enter a number like 25,00")
        if cents < lower:
            raise ValidationFailed(f"Amount must be at least {format_cents(lower, Config.ORDER_CURRENCY)}")
        return cents

    @classmethod
    def validate_positive_int(cls, text: Optional[str], field_name: str = "Value", max_value: int = 100000) -> int:
        cleaned = (text or "").strip()
        if not _WHOLE_NUMBER.fullmatch(cleaned):
            raise ValidationFailed(f"{field_name} must be a whole positive number")
        value = int(cleaned)
        if value <= 0:
            raise ValidationFailed(f"{field_name} must be greater than zero")
        if value > max_value:
            raise ValidationFailed(f"{field_name} cannot exceed {max_value}")
        return value

    @classmethod
    def validate_rating(cls, text: Optional[str]) -> int:
        value = cls.validate_positive_int(text, "Rating", max_value=5)
        return value
