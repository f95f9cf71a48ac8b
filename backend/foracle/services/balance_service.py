"""Month-by-month balance projection backing the `get_balance_summary` tool.

The projection starts from the sum of current holdings and walks each month in the
requested range, adding income and subtracting expenses in the months they are
actually paid. Hypothetical one-off items are layered on top so the assistant can
answer "can I afford X in month Y" questions without doing arithmetic itself.

Safety is measured in months of base net income (hypotheticals excluded): nine or
more is green, six to nine is yellow, anything below six is red.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Literal

from pydantic import BaseModel, Field

from foracle.services.cpf_calculator import calculate_cpf
from foracle.services.finance_data import ExpenseRecord, FinanceRepository, IncomeRecord
from foracle.services.income_service import applicable_milestone
from foracle.services.money import quantize_money
from foracle.services.month_dates import add_months, month_display, month_start_end, months_between, parse_month
from foracle.services.recurrence import cash_flow_in_month, is_active_in_month

ZERO = Decimal("0")
GREEN_THRESHOLD_MONTHS = Decimal("9")
YELLOW_THRESHOLD_MONTHS = Decimal("6")
EMERGENCY_QUANT = Decimal("0.1")


class HypotheticalItem(BaseModel):
    type: Literal["income", "expense"]
    amount: Decimal = Field(gt=0)
    month: str
    label: str | None = None


def _income_for_month(incomes: list[IncomeRecord], month: str) -> Decimal:
    year, month_number = parse_month(month)
    month_start, month_end = month_start_end(year, month_number)
    total = ZERO

    for income in incomes:
        end_date = income.end_date
        if income.account_for_future_change and income.future_milestones:
            end_date = None
        if not is_active_in_month(income.start_date, end_date, month_start, month_end):
            continue

        milestone = applicable_milestone(income, month)
        amount = milestone.amount if milestone is not None else income.amount

        effective = amount
        if income.subject_to_cpf:
            if milestone is not None:
                effective = calculate_cpf(amount).net_take_home
            elif income.net_take_home is not None:
                effective = income.net_take_home

        total += cash_flow_in_month(
            effective,
            income.frequency,
            year=year,
            month=month_number,
            start_date=income.start_date,
            custom_months=income.custom_months,
        )

    return total


def _expenses_for_month(expenses: list[ExpenseRecord], month: str) -> Decimal:
    year, month_number = parse_month(month)
    month_start, month_end = month_start_end(year, month_number)
    total = ZERO

    for expense in expenses:
        if not is_active_in_month(expense.start_date, expense.end_date, month_start, month_end):
            continue
        total += cash_flow_in_month(
            expense.amount,
            expense.frequency,
            year=year,
            month=month_number,
            start_date=expense.start_date,
            custom_months=expense.custom_months,
        )

    return total


def _emergency_months(balance: Decimal, monthly_income: Decimal) -> Decimal:
    if monthly_income <= ZERO:
        return Decimal("0.0")
    return (balance / monthly_income).quantize(EMERGENCY_QUANT, rounding=ROUND_HALF_UP)


def _safety_assessment(
    *,
    base_monthly_income: Decimal,
    check_balance: Decimal,
    check_month: str,
    has_expense_hypothetical: bool,
) -> dict[str, Any]:
    green_threshold = base_monthly_income * GREEN_THRESHOLD_MONTHS
    yellow_threshold = base_monthly_income * YELLOW_THRESHOLD_MONTHS
    months = _emergency_months(check_balance, base_monthly_income)
    label = month_display(check_month)

    if base_monthly_income <= ZERO:
        status, status_label = "yellow", "Unknown"
        recommendation = "Unable to calculate emergency fund coverage - no recurring income data found."
    elif check_balance >= green_threshold:
        status, status_label = "green", "Safe"
        if has_expense_hypothetical:
            recommendation = (
                f"After this expense, your emergency fund would be {months} months of income in {label}, "
                "above the recommended 9 months."
            )
        else:
            recommendation = (
                f"Your emergency fund remains healthy at {months} months of income throughout the projection."
            )
    elif check_balance >= yellow_threshold:
        status, status_label = "yellow", "Caution"
        if has_expense_hypothetical:
            recommendation = (
                f"After this expense, your balance would be {months} months of income in {label}. "
                "Consider whether this expense is essential, as it takes your buffer below 9 months."
            )
        else:
            recommendation = (
                f"Your balance dips to {months} months of income in {label}. "
                "Consider building a larger emergency fund buffer."
            )
    else:
        status, status_label = "red", "At Risk"
        recommendation = (
            f"Warning: your balance would drop to {months} months of income in {label}, "
            "below the recommended 6-month emergency fund."
        )
        if has_expense_hypothetical:
            recommendation += " This expense is not recommended unless necessary."

    return {
        "status": status,
        "status_label": status_label,
        "emergency_fund_months": months if base_monthly_income > ZERO else None,
        "monthly_net_income": quantize_money(base_monthly_income),
        "green_threshold": quantize_money(green_threshold),
        "yellow_threshold": quantize_money(yellow_threshold),
        "check_balance": quantize_money(check_balance),
        "check_month": check_month,
        "recommendation": recommendation,
    }


def project_balance(
    *,
    starting_balance: Decimal,
    incomes: list[IncomeRecord],
    expenses: list[ExpenseRecord],
    from_month: str,
    to_month: str,
    hypotheticals: list[HypotheticalItem] | None = None,
    min_end_balance: Decimal | None = None,
    min_monthly_balance: Decimal | None = None,
    compute_max_affordable_expense_month: str | None = None,
) -> dict[str, Any]:
    month_count = months_between(from_month, to_month)
    if month_count <= 0:
        raise ValueError("to_month must be the same as or after from_month")

    hypotheticals = hypotheticals or []
    by_month: dict[str, list[HypotheticalItem]] = defaultdict(list)
    for item in hypotheticals:
        parse_month(item.month)
        by_month[item.month].append(item)

    notes: list[str] = []
    projections: list[dict[str, Any]] = []
    baseline: list[tuple[str, Decimal]] = []

    cumulative = starting_balance
    baseline_cumulative = starting_balance
    total_income = ZERO
    total_expenses = ZERO
    total_base_income = ZERO
    minimum_balance = starting_balance
    minimum_month = from_month

    for offset in range(month_count):
        month = add_months(from_month, offset)
        base_income = _income_for_month(incomes, month)
        base_expense = _expenses_for_month(expenses, month)
        total_base_income += base_income

        baseline_cumulative += base_income - base_expense
        baseline.append((month, baseline_cumulative))

        month_items = by_month.get(month, [])
        income = base_income + sum((i.amount for i in month_items if i.type == "income"), ZERO)
        expense = base_expense + sum((i.amount for i in month_items if i.type == "expense"), ZERO)
        net = income - expense
        cumulative += net
        total_income += income
        total_expenses += expense

        if cumulative < minimum_balance:
            minimum_balance = cumulative
            minimum_month = month

        projection: dict[str, Any] = {
            "month": month,
            "month_label": month_display(month),
            "income": quantize_money(income),
            "expenses": quantize_money(expense),
            "net_balance": quantize_money(net),
            "cumulative_balance": quantize_money(cumulative),
        }
        if month_items:
            projection["hypotheticals_applied"] = [
                {"type": i.type, "amount": quantize_money(i.amount), "label": i.label} for i in month_items
            ]
        projections.append(projection)

    base_monthly_income = total_base_income / Decimal(month_count)

    result: dict[str, Any] = {
        "from_month": from_month,
        "to_month": to_month,
        "month_count": month_count,
        "starting_balance": quantize_money(starting_balance),
        "monthly_projections": projections,
        "total_income": quantize_money(total_income),
        "total_expenses": quantize_money(total_expenses),
        "total_net_savings": quantize_money(total_income - total_expenses),
        "final_balance": quantize_money(cumulative),
        "minimum_balance": quantize_money(minimum_balance),
        "minimum_balance_month": minimum_month,
        "assumptions": [
            "Starting balance taken from current holdings",
            "Future income estimated using current active income sources",
            "Recurring expenses assumed constant unless an end date is set",
            "No investment growth included",
            "CPF-liable income counted at net take-home pay",
        ],
        "notes": notes,
    }

    if hypotheticals:
        hyp_income = sum((i.amount for i in hypotheticals if i.type == "income"), ZERO)
        hyp_expense = sum((i.amount for i in hypotheticals if i.type == "expense"), ZERO)
        result["scenario_summary"] = {
            "hypothetical_count": len(hypotheticals),
            "months_affected": len(by_month),
            "net_impact": quantize_money(hyp_income - hyp_expense),
            "total_hypothetical_income": quantize_money(hyp_income),
            "total_hypothetical_expense": quantize_money(hyp_expense),
        }
        for item in hypotheticals:
            label = f" ({item.label})" if item.label else ""
            notes.append(
                f"Hypothetical {item.type} of ${quantize_money(item.amount):,}{label} in "
                f"{month_display(item.month)} included."
            )

    if min_end_balance is not None or min_monthly_balance is not None:
        end_breached = min_end_balance is not None and cumulative < min_end_balance
        first_breach = None
        if min_monthly_balance is not None:
            for projection in projections:
                if projection["cumulative_balance"] < min_monthly_balance:
                    first_breach = projection["month"]
                    break
        result["constraints_evaluation"] = {
            "min_end_balance_breached": end_breached,
            "min_monthly_balance_breached": first_breach is not None,
            "first_breach_month": first_breach,
            "min_end_balance_required": min_end_balance,
            "min_monthly_balance_required": min_monthly_balance,
        }
        if end_breached:
            notes.append(
                f"Warning: final balance (${quantize_money(cumulative):,}) is below the required "
                f"${quantize_money(min_end_balance):,}."
            )
        if first_breach is not None:
            notes.append(
                f"Warning: balance drops below ${quantize_money(min_monthly_balance):,} starting in "
                f"{month_display(first_breach)}."
            )

    if compute_max_affordable_expense_month:
        result["affordability_analysis"] = _affordability(
            baseline,
            target_month=compute_max_affordable_expense_month,
            floor=min_monthly_balance,
            base_monthly_income=base_monthly_income,
        )

    expense_items = [i for i in hypotheticals if i.type == "expense"]
    if expense_items:
        check_month = expense_items[0].month
        match = next((p for p in projections if p["month"] == check_month), None)
        if match is not None:
            check_balance = match["cumulative_balance"]
        else:
            check_balance, check_month = cumulative, to_month
    else:
        check_balance, check_month = minimum_balance, minimum_month

    safety = _safety_assessment(
        base_monthly_income=base_monthly_income,
        check_balance=check_balance,
        check_month=check_month,
        has_expense_hypothetical=bool(expense_items),
    )
    result["safety_assessment"] = safety
    if safety["status"] != "green" and safety["emergency_fund_months"] is not None:
        notes.append(
            f"Safety alert: balance reaches {safety['emergency_fund_months']} months of income "
            f"({safety['status_label']}) in {month_display(check_month)}."
        )

    return result


def _affordability(
    baseline: list[tuple[str, Decimal]],
    *,
    target_month: str,
    floor: Decimal | None,
    base_monthly_income: Decimal,
) -> dict[str, Any]:
    using_safety_floor = floor is None
    min_allowed = base_monthly_income * YELLOW_THRESHOLD_MONTHS if floor is None else floor

    months = [month for month, _ in baseline]
    if target_month not in months:
        return {
            "target_month": target_month,
            "max_affordable_one_time_expense": quantize_money(ZERO),
            "binding_month": target_month,
            "minimum_projected_balance": quantize_money(min_allowed),
            "assumptions": [f"Target month {target_month} is outside the projection range"],
        }

    start = months.index(target_month)
    binding_month, binding_balance = min(baseline[start:], key=lambda row: row[1])
    max_affordable = max(ZERO, binding_balance - min_allowed)

    floor_note = (
        f"Safety floor: ${quantize_money(min_allowed):,} (6 months of net income as emergency fund)"
        if using_safety_floor
        else f"Minimum balance constraint: ${quantize_money(min_allowed):,}"
    )
    return {
        "target_month": target_month,
        "max_affordable_one_time_expense": quantize_money(max_affordable),
        "binding_month": binding_month,
        "minimum_projected_balance": quantize_money(binding_balance),
        "assumptions": [
            "Calculated from baseline projections without hypotheticals",
            floor_note,
            f"Binding month is {month_display(binding_month)} where balance is tightest",
        ],
    }


async def get_balance_summary_tool(
    finance: FinanceRepository,
    user_id: str,
    *,
    from_month: str,
    to_month: str,
    hypotheticals: list[HypotheticalItem] | None = None,
    min_end_balance: Decimal | None = None,
    min_monthly_balance: Decimal | None = None,
    compute_max_affordable_expense_month: str | None = None,
) -> dict[str, Any]:
    holdings = await finance.list_holdings(user_id)
    incomes = await finance.list_incomes(user_id)
    expenses = await finance.list_expenses(user_id)

    starting_balance = sum((holding.holding_amount for holding in holdings), ZERO)
    result = project_balance(
        starting_balance=starting_balance,
        incomes=incomes,
        expenses=expenses,
        from_month=from_month,
        to_month=to_month,
        hypotheticals=hypotheticals,
        min_end_balance=min_end_balance,
        min_monthly_balance=min_monthly_balance,
        compute_max_affordable_expense_month=compute_max_affordable_expense_month,
    )
    if holdings:
        result["notes"].insert(0, f"Starting balance calculated from {len(holdings)} holding(s).")
    else:
        result["notes"].insert(0, "No current holdings found. Starting balance is $0.")
    return result
