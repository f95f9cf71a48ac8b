"""CPF (Central Provident Fund) contribution math for Singapore payroll figures.

Rates and ceilings follow the published age bands. All amounts are Decimal and
rounded half-up to cents, so tool results are reproducible to the cent.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from foracle.services.money import quantize_money

# Ordinary wage ceiling (monthly) and annual wage ceiling.
OW_CEILING = Decimal("8000")
ANNUAL_WAGE_CEILING = Decimal("102000")

DEFAULT_AGE = 30

# (max age inclusive, employer rate, employee rate)
_CONTRIBUTION_BANDS: tuple[tuple[int | None, Decimal, Decimal], ...] = (
    (55, Decimal("0.17"), Decimal("0.20")),
    (60, Decimal("0.155"), Decimal("0.17")),
    (65, Decimal("0.12"), Decimal("0.115")),
    (70, Decimal("0.09"), Decimal("0.075")),
    (None, Decimal("0.075"), Decimal("0.05")),
)

# (max age inclusive, OA, SA, MA)
_ALLOCATION_BANDS: tuple[tuple[int | None, Decimal, Decimal, Decimal], ...] = (
    (35, Decimal("0.6217"), Decimal("0.1622"), Decimal("0.2162")),
    (45, Decimal("0.5676"), Decimal("0.2162"), Decimal("0.2162")),
    (50, Decimal("0.5135"), Decimal("0.2703"), Decimal("0.2162")),
    (55, Decimal("0.4324"), Decimal("0.3514"), Decimal("0.2162")),
    (60, Decimal("0.4308"), Decimal("0.2462"), Decimal("0.3231")),
    (65, Decimal("0.3404"), Decimal("0.1489"), Decimal("0.5106")),
    (None, Decimal("0.3333"), Decimal("0.0909"), Decimal("0.5758")),
)


@dataclass(frozen=True)
class ContributionRates:
    employer: Decimal
    employee: Decimal


@dataclass(frozen=True)
class AllocationRates:
    oa: Decimal
    sa: Decimal
    ma: Decimal


@dataclass(frozen=True)
class CPFAllocation:
    oa: Decimal
    sa: Decimal
    ma: Decimal


@dataclass(frozen=True)
class CPFCalculation:
    gross_amount: Decimal
    cpf_applicable_amount: Decimal
    employee_contribution: Decimal
    employer_contribution: Decimal
    total_contribution: Decimal
    net_take_home: Decimal


@dataclass(frozen=True)
class BonusCPFCalculation:
    bonus_amount: Decimal
    annual_base_cpf: Decimal
    remaining_annual_ceiling: Decimal
    bonus_cpf_applicable_amount: Decimal
    bonus_employee_cpf: Decimal
    bonus_employer_cpf: Decimal
    bonus_total_cpf: Decimal
    bonus_oa_allocation: Decimal
    bonus_sa_allocation: Decimal
    bonus_ma_allocation: Decimal


def rates_for_age(age: int) -> ContributionRates:
    for max_age, employer, employee in _CONTRIBUTION_BANDS:
        if max_age is None or age <= max_age:
            return ContributionRates(employer=employer, employee=employee)
    raise AssertionError("unreachable")


def allocation_for_age(age: int) -> AllocationRates:
    for max_age, oa, sa, ma in _ALLOCATION_BANDS:
        if max_age is None or age <= max_age:
            return AllocationRates(oa=oa, sa=sa, ma=ma)
    raise AssertionError("unreachable")


def calculate_cpf(gross_amount: Decimal, age: int = DEFAULT_AGE) -> CPFCalculation:
    """Monthly CPF split; only wages up to the OW ceiling attract contributions."""
    rates = rates_for_age(age)
    applicable = min(gross_amount, OW_CEILING)

    employee = applicable * rates.employee
    employer = applicable * rates.employer

    return CPFCalculation(
        gross_amount=gross_amount,
        cpf_applicable_amount=applicable,
        employee_contribution=quantize_money(employee),
        employer_contribution=quantize_money(employer),
        total_contribution=quantize_money(employee + employer),
        net_take_home=quantize_money(gross_amount - employee),
    )


def allocate_contribution(total_contribution: Decimal, age: int = DEFAULT_AGE) -> CPFAllocation:
    """Split a total contribution into OA/SA/MA amounts."""
    rates = allocation_for_age(age)
    return CPFAllocation(
        oa=quantize_money(total_contribution * rates.oa),
        sa=quantize_money(total_contribution * rates.sa),
        ma=quantize_money(total_contribution * rates.ma),
    )


def calculate_bonus_cpf(monthly_income: Decimal, bonus_amount: Decimal, age: int = DEFAULT_AGE) -> BonusCPFCalculation:
    # Bonus only attracts CPF up to what the annual ceiling leaves after 12 months of salary.
    annual_base = min(monthly_income, OW_CEILING) * 12
    remaining = max(Decimal("0"), ANNUAL_WAGE_CEILING - annual_base)
    applicable = min(bonus_amount, remaining)

    rates = rates_for_age(age)
    employee = applicable * rates.employee
    employer = applicable * rates.employer
    total = employee + employer
    allocation = allocation_for_age(age)

    return BonusCPFCalculation(
        bonus_amount=bonus_amount,
        annual_base_cpf=annual_base,
        remaining_annual_ceiling=remaining,
        bonus_cpf_applicable_amount=applicable,
        bonus_employee_cpf=quantize_money(employee),
        bonus_employer_cpf=quantize_money(employer),
        bonus_total_cpf=quantize_money(total),
        bonus_oa_allocation=quantize_money(total * allocation.oa),
        bonus_sa_allocation=quantize_money(total * allocation.sa),
        bonus_ma_allocation=quantize_money(total * allocation.ma),
    )
