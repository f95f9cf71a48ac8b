from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

MONEY_QUANT = Decimal("0.01")
PERCENT_QUANT = Decimal("0.1")


def quantize_money(value: Decimal) -> Decimal:
    """Normalize money values to 2dp, half-up."""
    return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def percent_of(part: Decimal, total: Decimal) -> Decimal:
    if total <= Decimal("0"):
        return Decimal("0.0")
    return ((part * Decimal("100")) / total).quantize(PERCENT_QUANT, rounding=ROUND_HALF_UP)
