from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from foracle.services.cpf_calculator import (
    allocate_contribution,
    calculate_bonus_cpf,
    calculate_cpf,
    rates_for_age,
)
from foracle.services.money import percent_of, quantize_money
from foracle.services.month_dates import (
    add_months,
    month_display,
    month_start_end,
    months_between,
    parse_month,
)
from foracle.services.recurrence import cash_flow_in_month, monthly_equivalent


def test_calculate_cpf_below_ceiling() -> None:
    result = calculate_cpf(Decimal("5000"))

    assert result.employee_contribution == Decimal("1000.00")
    assert result.employer_contribution == Decimal("850.00")
    assert result.total_contribution == Decimal("1850.00")
    assert result.net_take_home == Decimal("4000.00")


def test_calculate_cpf_caps_at_ordinary_wage_ceiling() -> None:
    result = calculate_cpf(Decimal("10000"))

    assert result.cpf_applicable_amount == Decimal("8000")
    assert result.employee_contribution == Decimal("1600.00")
    assert result.employer_contribution == Decimal("1360.00")
    assert result.net_take_home == Decimal("8400.00")


def test_calculate_cpf_uses_age_band() -> None:
    result = calculate_cpf(Decimal("5000"), age=58)

    assert result.employee_contribution == Decimal("850.00")
    assert result.employer_contribution == Decimal("775.00")
    assert rates_for_age(80).employee == Decimal("0.05")


def test_allocate_contribution_rounds_half_up() -> None:
    allocation = allocate_contribution(Decimal("1850.00"))

    assert allocation.oa == Decimal("1150.15")
    assert allocation.sa == Decimal("300.07")
    assert allocation.ma == Decimal("399.97")


def test_bonus_cpf_limited_by_annual_ceiling() -> None:
    within = calculate_bonus_cpf(Decimal("6000"), Decimal("40000"))
    assert within.remaining_annual_ceiling == Decimal("30000")
    assert within.bonus_cpf_applicable_amount == Decimal("30000")
    assert within.bonus_employee_cpf == Decimal("6000.00")
    assert within.bonus_employer_cpf == Decimal("5100.00")

    high_earner = calculate_bonus_cpf(Decimal("10000"), Decimal("20000"))
    assert high_earner.annual_base_cpf == Decimal("96000")
    assert high_earner.bonus_cpf_applicable_amount == Decimal("6000")
    assert high_earner.bonus_employee_cpf == Decimal("1200.00")


def test_money_helpers() -> None:
    assert quantize_money(Decimal("10.005")) == Decimal("10.01")
    assert percent_of(Decimal("1"), Decimal("3")) == Decimal("33.3")
    assert percent_of(Decimal("5"), Decimal("0")) == Decimal("0.0")


@pytest.mark.parametrize("value", ["2026-13", "2026-2", "26-02", "2026/02", "abcd-ef"])
def test_parse_month_rejects_bad_input(value: str) -> None:
    with pytest.raises(ValueError):
        parse_month(value)


def test_month_helpers() -> None:
    assert parse_month("2026-02") == (2026, 2)
    assert month_start_end(2026, 2) == (date(2026, 2, 1), date(2026, 2, 28))
    assert month_start_end(2028, 2)[1] == date(2028, 2, 29)
    assert add_months("2026-11", 3) == "2027-02"
    assert add_months("2026-01", -1) == "2025-12"
    assert months_between("2026-01", "2026-03") == 3
    assert months_between("2026-03", "2026-01") <= 0
    assert month_display("2026-02") == "February 2026"


def test_monthly_equivalent_frequencies() -> None:
    kwargs = {"year": 2026, "month": 2, "start_date": date(2026, 1, 1), "custom_months": None}

    assert monthly_equivalent(Decimal("100"), "weekly", **kwargs) == Decimal("433.00")
    assert quantize_money(monthly_equivalent(Decimal("1200"), "yearly", **kwargs)) == Decimal("100.00")
    assert monthly_equivalent(Decimal("500"), "one-time", **kwargs) is None
    assert monthly_equivalent(Decimal("500"), "custom", year=2026, month=2, start_date=None, custom_months=[2, 8]) == Decimal("500")


def test_cash_flow_places_payments_in_paid_months() -> None:
    yearly = {"start_date": date(2026, 3, 1), "custom_months": None}
    assert cash_flow_in_month(Decimal("1200"), "yearly", year=2026, month=3, **yearly) == Decimal("1200")
    assert cash_flow_in_month(Decimal("1200"), "yearly", year=2026, month=4, **yearly) == Decimal("0")

    quarterly = {"start_date": date(2026, 1, 15), "custom_months": None}
    assert cash_flow_in_month(Decimal("300"), "quarterly", year=2026, month=4, **quarterly) == Decimal("300")
    assert cash_flow_in_month(Decimal("300"), "quarterly", year=2026, month=2, **quarterly) == Decimal("0")
    assert cash_flow_in_month(Decimal("300"), "quarterly", year=2025, month=10, **quarterly) == Decimal("0")

    assert cash_flow_in_month(Decimal("50"), "mystery", year=2026, month=1, start_date=None, custom_months=None) == Decimal("0")
