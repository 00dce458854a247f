"""Ledger - commission and earnings split for booking totals"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from ..config import CURRENCY_MINOR_UNIT, PLATFORM_COMMISSION


def to_money(value, unit: Decimal = CURRENCY_MINOR_UNIT) -> Decimal:
    """Quantize an amount to the smallest currency unit, rounding half up"""
    return Decimal(str(value)).quantize(unit, rounding=ROUND_HALF_UP)


def compute_total(base_amount, charges: Iterable[dict] = ()) -> Decimal:
    """Booking total: base amount plus every additional charge"""
    total = to_money(base_amount)
    for charge in charges:
        total += to_money(charge["amount"])
    return total


def compute_split(
    total_amount, commission_rate: Optional[Decimal] = None, unit: Decimal = CURRENCY_MINOR_UNIT
) -> tuple[Decimal, Decimal]:
    """
    Split a booking total into (platform_commission, provider_earnings).

    The commission is rounded down to the smallest currency unit and the
    remainder goes to the provider, so the two parts always add up to the
    total exactly.
    """
    rate = PLATFORM_COMMISSION if commission_rate is None else Decimal(str(commission_rate))
    if rate < 0 or rate > 1:
        raise ValueError(f"commission rate must be between 0 and 1, got {rate}")

    total = to_money(total_amount, unit)
    if total < 0:
        raise ValueError("total amount cannot be negative")

    commission = (total * rate).quantize(unit, rounding=ROUND_DOWN)
    return commission, total - commission
