from __future__ import annotations

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from foracle.services.balance_service import HypotheticalItem, get_balance_summary_tool, project_balance
from foracle.services.finance_data import ExpenseRecord, HoldingRecord, IncomeRecord, InMemoryFinanceRepository


def _run(coro):
    return asyncio.run(coro)


def _salary() -> IncomeRecord:
    return IncomeRecord(
        id="inc-1",
        name="Salary",
        category="employment",
        amount=Decimal("5000"),
        frequency="monthly",
        subject_to_cpf=True,
        net_take_home=Decimal("4000"),
    )


def _rent() -> ExpenseRecord:
    return ExpenseRecord(id="exp-1", name="Rent", category="Housing", amount=Decimal("2500"), frequency="monthly")


def _project(**kwargs):
    values = {
        "starting_balance": Decimal("40000"),
        "incomes": [_salary()],
        "expenses": [_rent()],
        "from_month": "2026-01",
        "to_month": "2026-03",
    }
    values.update(kwargs)
    return project_balance(**values)


def test_projection_counts_cpf_income_at_net_take_home() -> None:
    result = _project()

    assert result["month_count"] == 3
    assert [row["cumulative_balance"] for row in result["monthly_projections"]] == [
        Decimal("41500.00"),
        Decimal("43000.00"),
        Decimal("44500.00"),
    ]
    assert result["monthly_projections"][0]["month_label"] == "January 2026"
    assert result["total_income"] == Decimal("12000.00")
    assert result["total_net_savings"] == Decimal("4500.00")
    assert result["final_balance"] == Decimal("44500.00")
    assert "scenario_summary" not in result

    safety = result["safety_assessment"]
    assert safety["status"] == "green"
    assert safety["monthly_net_income"] == Decimal("4000.00")
    assert safety["emergency_fund_months"] == Decimal("10.0")


def test_yearly_expense_lands_in_its_payment_month() -> None:
    insurance = ExpenseRecord(
        id="exp-2",
        name="Insurance",
        category="Insurance",
        amount=Decimal("1200"),
        frequency="yearly",
        start_date=date(2025, 3, 1),
    )

    result = _project(expenses=[_rent(), insurance])

    assert [row["expenses"] for row in result["monthly_projections"]] == [
        Decimal("2500.00"),
        Decimal("2500.00"),
        Decimal("3700.00"),
    ]


def test_hypothetical_expense_drives_red_safety_status() -> None:
    result = _project(
        hypotheticals=[HypotheticalItem(type="expense", amount=Decimal("20000"), month="2026-02", label="Wedding")]
    )

    february = result["monthly_projections"][1]
    assert february["cumulative_balance"] == Decimal("23000.00")
    assert february["hypotheticals_applied"] == [
        {"type": "expense", "amount": Decimal("20000.00"), "label": "Wedding"}
    ]
    assert result["scenario_summary"]["net_impact"] == Decimal("-20000.00")
    assert result["minimum_balance"] == Decimal("23000.00")
    assert result["minimum_balance_month"] == "2026-02"

    safety = result["safety_assessment"]
    assert safety["status"] == "red"
    assert safety["status_label"] == "At Risk"
    assert safety["check_month"] == "2026-02"
    assert safety["emergency_fund_months"] == Decimal("5.8")
    assert "not recommended" in safety["recommendation"]
    assert any("Wedding" in note for note in result["notes"])


def test_hypothetical_expense_in_caution_band() -> None:
    result = _project(hypotheticals=[HypotheticalItem(type="expense", amount=Decimal("10000"), month="2026-02")])

    safety = result["safety_assessment"]
    assert safety["status"] == "yellow"
    assert safety["status_label"] == "Caution"
    assert safety["emergency_fund_months"] == Decimal("8.3")


def test_zero_income_gives_unknown_status() -> None:
    result = _project(incomes=[])

    safety = result["safety_assessment"]
    assert safety["status"] == "yellow"
    assert safety["status_label"] == "Unknown"
    assert safety["emergency_fund_months"] is None


def test_constraints_report_first_breach() -> None:
    result = _project(
        hypotheticals=[HypotheticalItem(type="expense", amount=Decimal("20000"), month="2026-02")],
        min_end_balance=Decimal("30000"),
        min_monthly_balance=Decimal("30000"),
    )

    constraints = result["constraints_evaluation"]
    assert constraints["min_end_balance_breached"] is True
    assert constraints["min_monthly_balance_breached"] is True
    assert constraints["first_breach_month"] == "2026-02"


def test_affordability_uses_baseline_and_safety_floor() -> None:
    result = _project(
        hypotheticals=[HypotheticalItem(type="expense", amount=Decimal("5000"), month="2026-01")],
        compute_max_affordable_expense_month="2026-02",
    )

    analysis = result["affordability_analysis"]
    assert analysis["binding_month"] == "2026-02"
    assert analysis["minimum_projected_balance"] == Decimal("43000.00")
    # Floor is six months of net income: 6 x 4000.
    assert analysis["max_affordable_one_time_expense"] == Decimal("19000.00")


def test_affordability_with_explicit_floor() -> None:
    result = _project(compute_max_affordable_expense_month="2026-03", min_monthly_balance=Decimal("40000"))

    assert result["affordability_analysis"]["max_affordable_one_time_expense"] == Decimal("4500.00")


def test_reversed_range_is_rejected() -> None:
    with pytest.raises(ValueError):
        _project(from_month="2026-05", to_month="2026-01")


def test_balance_tool_starts_from_holdings() -> None:
    finance = InMemoryFinanceRepository()
    finance.add(
        "user-a",
        HoldingRecord(id="h-1", bank_name="DBS", holding_amount=Decimal("30000")),
        HoldingRecord(id="h-2", bank_name="OCBC", holding_amount=Decimal("10000")),
        _salary(),
        _rent(),
    )

    result = _run(get_balance_summary_tool(finance, "user-a", from_month="2026-01", to_month="2026-01"))

    assert result["starting_balance"] == Decimal("40000.00")
    assert result["final_balance"] == Decimal("41500.00")
    assert result["notes"][0] == "Starting balance calculated from 2 holding(s)."

    empty = _run(get_balance_summary_tool(finance, "user-b", from_month="2026-01", to_month="2026-01"))
    assert empty["starting_balance"] == Decimal("0.00")
    assert empty["notes"][0] == "No current holdings found. Starting balance is $0."
