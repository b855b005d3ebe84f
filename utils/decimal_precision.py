"""
Decimal Precision Utilities for Financial Calculations
Amounts are stored as integer cents; Decimal is used only at the edges
(parsing user input, percentage math, display).
"""

import logging
import re
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Union

logger = logging.getLogger(__name__)

_PLAIN_AMOUNT = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)", re.ASCII)

getcontext().prec = 28

CURRENCY_SYMBOLS = {"EUR": "€", "USD": "$", "GBP": "£"}


class MonetaryDecimal:
    """Conversions between user-facing decimal amounts and integer cents"""

    CENT_PRECISION = Decimal("0.01")
    CENTS_PER_UNIT = 100

    @classmethod
    def parse_amount(cls, raw: str) -> Decimal:
        """
        Parse a user-typed amount, accepting either ',' or '.' as the decimal
        separator ("25,00" and "25.00" are the same amount).

        Raises:
            InvalidOperation: the text is not a plain decimal number
        """
        cleaned = raw.strip().replace(" ", "")
        for symbol in CURRENCY_SYMBOLS.values():
            cleaned = cleaned.replace(symbol, "")
        cleaned = cleaned.replace(",", ".")
        if not _PLAIN_AMOUNT.fullmatch(cleaned):
            raise InvalidOperation(f"Unparseable amount: {raw!r}")
        amount = Decimal(cleaned)
        if not amount.is_finite():
            raise InvalidOperation(f"Unparseable amount: {raw!r}")
        return amount

    @classmethod
    def to_cents(cls, amount: Union[str, int, Decimal]) -> int:
        """Convert a unit amount to integer cents, rounding half up"""
        decimal_amount = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        cents = (decimal_amount * cls.CENTS_PER_UNIT).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return int(cents)

    @classmethod
    def from_cents(cls, cents: int) -> Decimal:
        return (Decimal(cents) / cls.CENTS_PER_UNIT).quantize(cls.CENT_PRECISION)

    @classmethod
    def percentage_of(cls, cents: int, percentage: Decimal) -> int:
        """`percentage`% of an amount in cents, rounded half up to a whole cent"""
        share = Decimal(cents) * Decimal(str(percentage)) / Decimal("100")
        return int(share.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_cents(cents: int, currency: str = "EUR") -> str:
    """Format cents for display, e.g. 2500 -> '25,00 €'"""
    amount = MonetaryDecimal.from_cents(cents)
    text = f"{amount:.2f}".replace(".", ",")
    symbol = CURRENCY_SYMBOLS.get(currency.upper(), currency.upper())
    return f"{text} {symbol}"
