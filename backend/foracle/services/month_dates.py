from __future__ import annotations

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


def parse_month(month: str) -> tuple[int, int]:
    """Parse YYYY-MM into (year, month)."""
    parts = month.split("-")
    if len(parts) != 2:
        raise ValueError("Expected YYYY-MM")

    year_text, month_text = parts
    if len(year_text) != 4 or len(month_text) != 2 or not year_text.isdigit() or not month_text.isdigit():
        raise ValueError("Expected YYYY-MM")

    year = int(year_text)
    month_number = int(month_text)

    if month_number < 1 or month_number > 12:
        raise ValueError("Expected YYYY-MM")

    return year, month_number


def month_start_end(year: int, month: int) -> tuple[date, date]:
    """Build inclusive [first_day, last_day] boundaries."""
    month_start = date(year, month, 1)
    month_end = shift_months(month_start, 1) - timedelta(days=1)
    return month_start, month_end


def month_label(month_start: date) -> str:
    """Render a month start date as YYYY-MM."""
    return f"{month_start.year:04d}-{month_start.month:02d}"


def month_display(month: str) -> str:
    """Render YYYY-MM as e.g. 'February 2026'."""
    year, month_number = parse_month(month)
    return f"{MONTH_NAMES[month_number - 1]} {year}"


def shift_months(month_start: date, offset: int) -> date:
    # Normalize any input date to month start for stable month arithmetic.
    absolute_index = (month_start.year * 12 + (month_start.month - 1)) + offset
    next_year, month_zero_based = divmod(absolute_index, 12)
    return date(next_year, month_zero_based + 1, 1)


def add_months(month: str, offset: int) -> str:
    year, month_number = parse_month(month)
    return month_label(shift_months(date(year, month_number, 1), offset))


def months_between(from_month: str, to_month: str) -> int:
    """Inclusive month count; zero or negative when `to_month` precedes `from_month`."""
    from_year, from_number = parse_month(from_month)
    to_year, to_number = parse_month(to_month)
    return (to_year - from_year) * 12 + (to_number - from_number) + 1


def now_in_timezone(timezone_name: str) -> datetime:
    return datetime.now(ZoneInfo(timezone_name))


def today_in_timezone(timezone_name: str) -> date:
    return now_in_timezone(timezone_name).date()
