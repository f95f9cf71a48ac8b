from __future__ import annotations

from datetime import date
from decimal import Decimal

# Monthly-equivalent multipliers for recurring amounts.
FREQUENCY_MULTIPLIERS: dict[str, Decimal] = {
    "monthly": Decimal("1"),
    "yearly": Decimal("1") / Decimal("12"),
    "weekly": Decimal("4.33"),
    "bi-weekly": Decimal("2.17"),
    "quarterly": Decimal("1") / Decimal("3"),
}


def is_active_in_month(start_date: date | None, end_date: date | None, month_start: date, month_end: date) -> bool:
    if start_date is not None and start_date > month_end:
        return False
    if end_date is not None and end_date < month_start:
        return False
    return True


def monthly_equivalent(
    amount: Decimal,
    frequency: str,
    *,
    year: int,
    month: int,
    start_date: date | None,
    custom_months: list[int] | None,
) -> Decimal | None:
    """
    Convert a recurring amount to what it contributes in one month.

    Returns None when the item does not apply to that month at all: a one-time
    item outside its start month, or a custom schedule that skips the month.
    Unknown frequencies count the stated amount once per month.
    """
    normalized = frequency.strip().lower()

    if normalized == "one-time":
        if start_date is not None and start_date.year == year and start_date.month == month:
            return amount
        return None

    if normalized == "custom":
        if not custom_months or month not in custom_months:
            return None
        return amount

    multiplier = FREQUENCY_MULTIPLIERS.get(normalized, Decimal("1"))
    return amount * multiplier


def cash_flow_in_month(
    amount: Decimal,
    frequency: str,
    *,
    year: int,
    month: int,
    start_date: date | None,
    custom_months: list[int] | None,
) -> Decimal:
    """
    Amount actually paid in one month, for cash-flow projections.

    Unlike `monthly_equivalent`, non-monthly items land in the months they are
    paid: yearly in the start month, quarterly every third month from the start.
    """
    normalized = frequency.strip().lower()

    if normalized == "monthly":
        return amount
    if normalized in ("weekly", "bi-weekly"):
        return amount * FREQUENCY_MULTIPLIERS[normalized]
    if normalized == "yearly":
        start_month = start_date.month if start_date is not None else 1
        return amount if month == start_month else Decimal("0")
    if normalized == "quarterly":
        if start_date is None:
            return Decimal("0")
        months_since_start = (year - start_date.year) * 12 + (month - start_date.month)
        return amount if months_since_start >= 0 and months_since_start % 3 == 0 else Decimal("0")
    if normalized == "custom":
        return amount if custom_months and month in custom_months else Decimal("0")
    if normalized == "one-time":
        if start_date is not None and start_date.year == year and start_date.month == month:
            return amount
        return Decimal("0")
    return Decimal("0")
