"""Day-to-day spending over a month or an explicit date range."""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Any

from foracle.services.finance_data import DailyExpenseRecord, FinanceRepository
from foracle.services.money import percent_of, quantize_money
from foracle.services.month_dates import month_start_end, parse_month


def resolve_date_range(
    *,
    month: str | None,
    from_date: date | None,
    to_date: date | None,
    today: date,
) -> tuple[date, date]:
    """A month wins over explicit dates; otherwise default to month-to-date."""
    if month:
        year, month_number = parse_month(month)
        return month_start_end(year, month_number)

    start = from_date or today.replace(day=1)
    end = to_date or today
    if end < start:
        raise ValueError("to_date must be on or after from_date")
    return start, end


def summarize_daily_expenses(
    expenses: list[DailyExpenseRecord],
    *,
    from_date: date,
    to_date: date,
    category_name: str | None = None,
    subcategory_name: str | None = None,
) -> dict[str, Any]:
    selected = [e for e in expenses if from_date <= e.expense_date <= to_date]
    available_categories = sorted({e.category_name for e in selected})

    if category_name:
        needle = category_name.strip().lower()
        selected = [e for e in selected if e.category_name.lower() == needle]
    if subcategory_name:
        needle = subcategory_name.strip().lower()
        selected = [e for e in selected if (e.subcategory_name or "").lower() == needle]

    total = sum((e.amount for e in selected), Decimal("0"))
    categories: dict[str, dict[str, Any]] = defaultdict(
        lambda: {"total": Decimal("0"), "count": 0, "subcategories": defaultdict(lambda: [Decimal("0"), 0])}
    )
    for expense in selected:
        bucket = categories[expense.category_name]
        bucket["total"] += expense.amount
        bucket["count"] += 1
        if expense.subcategory_name:
            sub = bucket["subcategories"][expense.subcategory_name]
            sub[0] += expense.amount
            sub[1] += 1

    breakdown = []
    for name, data in categories.items():
        subcategories = [
            {"subcategory_name": sub_name, "total_amount": quantize_money(sub_total), "expense_count": sub_count}
            for sub_name, (sub_total, sub_count) in data["subcategories"].items()
        ]
        subcategories.sort(key=lambda row: row["total_amount"], reverse=True)
        breakdown.append(
            {
                "category_name": name,
                "total_amount": quantize_money(data["total"]),
                "expense_count": data["count"],
                "percent_of_total": percent_of(data["total"], total),
                "subcategories": subcategories,
            }
        )
    breakdown.sort(key=lambda row: row["total_amount"], reverse=True)

    items = [
        {
            "id": e.id,
            "date": e.expense_date.isoformat(),
            "category_name": e.category_name,
            "subcategory_name": e.subcategory_name,
            "amount": quantize_money(e.amount),
            "note": e.note,
        }
        for e in sorted(selected, key=lambda e: e.expense_date, reverse=True)
    ]

    days_covered = (to_date - from_date).days + 1
    notes: list[str] = []
    if not selected:
        notes.append(f"No expenses found for the period {from_date.isoformat()} to {to_date.isoformat()}.")
        if category_name or subcategory_name:
            notes.append("Try removing filters to see all expenses.")

    return {
        "from_date": from_date.isoformat(),
        "to_date": to_date.isoformat(),
        "days_covered": days_covered,
        "total_spent": quantize_money(total),
        "expense_count": len(items),
        "average_per_day": quantize_money(total / Decimal(days_covered)),
        "category_breakdown": breakdown,
        "category_count": len(breakdown),
        "expenses": items,
        "applied_category_filter": category_name,
        "applied_subcategory_filter": subcategory_name,
        "available_categories": available_categories,
        "notes": notes,
    }


async def get_daily_expense_summary_tool(
    finance: FinanceRepository,
    user_id: str,
    *,
    today: date,
    month: str | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    category_name: str | None = None,
    subcategory_name: str | None = None,
) -> dict[str, Any]:
    start, end = resolve_date_range(month=month, from_date=from_date, to_date=to_date, today=today)
    expenses = await finance.list_daily_expenses(user_id, start, end)
    return summarize_daily_expenses(
        expenses,
        from_date=start,
        to_date=end,
        category_name=category_name,
        subcategory_name=subcategory_name,
    )
