"""Fee calculation for orders"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from config import Config
from utils.decimal_precision import MonetaryDecimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderPricing:
    """Amounts fixed on an order at creation time"""
    base_cents: int
    fee_cents: int
    total_cents: int
    currency: str


class FeeCalculator:
    """fee = round(base * rate) + flat fee; total = base + fee"""

    @classmethod
    def get_fee_percentage(cls) -> Decimal:
        return Decimal(str(Config.ORDER_FEE_PERCENTAGE))

    @classmethod
    def calculate_fee_cents(cls, base_cents: int, percentage: Optional[Decimal] = None,
                            flat_fee_cents: Optional[int] = None) -> int:
        if base_cents <= 0:
            raise ValueError(f"Base amount must be positive, got {base_cents}")
        rate = cls.get_fee_percentage() if percentage is None else percentage
        flat = Config.ORDER_FLAT_FEE_CENTS if flat_fee_cents is None else flat_fee_cents
        return MonetaryDecimal.percentage_of(base_cents, rate) + flat

    @classmethod
    def price_order(cls, base_cents: int, currency: Optional[str] = None) -> OrderPricing:
        fee_cents = cls.calculate_fee_cents(base_cents)
        pricing = OrderPricing(
            base_cents=base_cents,
            fee_cents=fee_cents,
            total_cents=base_cents + fee_cents,
            currency=(currency or Config.ORDER_CURRENCY).upper(),
        )
        logger.debug(f"💰 FEE: base={base_cents} fee={fee_cents} total={pricing.total_cents} {pricing.currency}")
        return pricing
