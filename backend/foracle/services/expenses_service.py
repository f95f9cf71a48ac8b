"""Recurring expense summary by category for one month."""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Any

from foracle.services.finance_data import ExpenseRecord, FinanceRepository
from foracle.services.money import percent_of, quantize_money
from foracle.services.month_dates import month_start_end, parse_month
from foracle.services.recurrence import is_active_in_month, monthly_equivalent


def monthly_expense_items(expenses: list[ExpenseRecord], year: int, month: int) -> list[tuple[ExpenseRecord, Decimal]]:
    """Pair each expense that applies to the month with its monthly-equivalent amount."""
    month_start, month_end = month_start_end(year, month)
    items: list[tuple[ExpenseRecord, Decimal]] = []

    for expense in expenses:
        if not is_active_in_month(expense.start_date, expense.end_date, month_start, month_end):
            continue

        monthly_amount = monthly_equivalent(
            expense.amount,
            expense.frequency,
            year=year,
            month=month,
            start_date=expense.start_date,
            custom_months=expense.custom_months,
        )
        if monthly_amount is None or monthly_amount <= Decimal("0"):
            continue

        items.append((expense, monthly_amount))

    return items


def summarize_expenses(expenses: list[ExpenseRecord], month: str) -> dict[str, Any]:
    year, month_number = parse_month(month)
    items = monthly_expense_items(expenses, year, month_number)

    total = sum((amount for _, amount in items), Decimal("0"))
    category_totals: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    category_counts: dict[str, int] = defaultdict(int)

    expense_rows: list[dict[str, Any]] = []
    for expense, monthly_amount in items:
        category_totals[expense.category] += monthly_amount
        category_counts[expense.category] += 1
        expense_rows.append(
            {
                "name": expense.name,
                "category": expense.category,
                "expense_type": expense.expense_category or "current-recurring",
                "amount": quantize_money(expense.amount),
                "monthly_amount": quantize_money(monthly_amount),
                "frequency": expense.frequency,
                "tracked_in_budget": expense.tracked_in_budget,
            }
        )

    breakdown = [
        {
            "category_name": name,
            "monthly_amount": quantize_money(amount),
            "expense_count": category_counts[name],
            "percent_of_total": percent_of(amount, total),
        }
        for name, amount in category_totals.items()
    ]
    breakdown.sort(key=lambda row: row["monthly_amount"], reverse=True)
    expense_rows.sort(key=lambda row: row["monthly_amount"], reverse=True)

    return {
        "month": month,
        "total_monthly_expenses": quantize_money(total),
        "expense_count": len(expense_rows),
        "category_breakdown": breakdown,
        "category_count": len(breakdown),
        "expenses": expense_rows,
    }


async def get_expenses_summary_tool(finance: FinanceRepository, user_id: str, *, month: str) -> dict[str, Any]:
    expenses = await finance.list_expenses(user_id)
    return summarize_expenses(expenses, month)
