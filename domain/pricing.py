"""Pricing calculator - pure functions over interval, daily rate and fees"""
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP

from domain.value_objects import AdditionalFees, RentalPeriod

CENTS = Decimal("0.01")
RENTAL_UNIT = timedelta(days=1)


@dataclass(frozen=True)
class PriceBreakdown:
    duration_days: int
    subtotal: Decimal
    fees_total: Decimal
    final_amount: Decimal


def rental_days(period: RentalPeriod) -> int:
    """Number of started rental days; a partial day counts as a full one"""
    days, remainder = divmod(period.end - period.start, RENTAL_UNIT)
    return days + (1 if remainder else 0)


def calculate_price(period: RentalPeriod, price_per_day: Decimal, fees: AdditionalFees) -> PriceBreakdown:
    duration = rental_days(period)
    subtotal = (Decimal(duration) * price_per_day).quantize(CENTS, rounding=ROUND_HALF_UP)
    fees_total = fees.total().quantize(CENTS, rounding=ROUND_HALF_UP)
    return PriceBreakdown(
        duration_days=duration,
        subtotal=subtotal,
        fees_total=fees_total,
        final_amount=subtotal + fees_total,
    )


def calculate_refund(final_amount: Decimal, refund_percentage: Decimal) -> Decimal:
    return (final_amount * refund_percentage / Decimal(100)).quantize(CENTS, rounding=ROUND_HALF_UP)
