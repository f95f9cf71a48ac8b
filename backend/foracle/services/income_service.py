"""Monthly income summary with CPF breakdown, used by the `get_income_summary` tool."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from foracle.services.cpf_calculator import allocate_contribution, calculate_bonus_cpf, calculate_cpf
from foracle.services.finance_data import FinanceRepository, IncomeRecord
from foracle.services.money import quantize_money
from foracle.services.month_dates import month_start_end, parse_month
from foracle.services.recurrence import is_active_in_month, monthly_equivalent

ZERO = Decimal("0")


def applicable_milestone(income: IncomeRecord, month: str):
    if not income.account_for_future_change or not income.future_milestones:
        return None

    # YYYY-MM strings sort chronologically.
    applicable = [m for m in income.future_milestones if m.target_month <= month]
    if not applicable:
        return None
    return max(applicable, key=lambda m: m.target_month)


def _stored_cpf(income: IncomeRecord, monthly_gross: Decimal) -> dict[str, Decimal]:
    return {
        "employee": income.employee_cpf_contribution or ZERO,
        "employer": income.employer_cpf_contribution or ZERO,
        "net_take_home": income.net_take_home if income.net_take_home is not None else monthly_gross,
        "oa": income.cpf_ordinary_account or ZERO,
        "sa": income.cpf_special_account or ZERO,
        "ma": income.cpf_medisave_account or ZERO,
    }


def _recalculated_cpf(monthly_gross: Decimal) -> dict[str, Decimal]:
    result = calculate_cpf(monthly_gross)
    allocation = allocate_contribution(result.total_contribution)
    return {
        "employee": result.employee_contribution,
        "employer": result.employer_contribution,
        "net_take_home": result.net_take_home,
        "oa": allocation.oa,
        "sa": allocation.sa,
        "ma": allocation.ma,
    }


def summarize_income(incomes: list[IncomeRecord], member_names: dict[str, str], month: str) -> dict[str, Any]:
    year, month_number = parse_month(month)
    month_start, month_end = month_start_end(year, month_number)

    sources: list[dict[str, Any]] = []
    totals = {
        "gross": ZERO,
        "net": ZERO,
        "employee": ZERO,
        "employer": ZERO,
        "oa": ZERO,
        "sa": ZERO,
        "ma": ZERO,
    }

    for income in incomes:
        milestone = applicable_milestone(income, month)

        end_date = income.end_date
        # A scheduled change means the income carries on past its recorded end date.
        if income.account_for_future_change and income.future_milestones:
            end_date = None
        if not is_active_in_month(income.start_date, end_date, month_start, month_end):
            continue

        base_amount = milestone.amount if milestone is not None else income.amount
        monthly_gross = monthly_equivalent(
            base_amount,
            income.frequency,
            year=year,
            month=month_number,
            start_date=income.start_date,
            custom_months=income.custom_months,
        )
        if monthly_gross is None:
            continue

        if income.subject_to_cpf and milestone is not None:
            cpf = _recalculated_cpf(monthly_gross)
        else:
            cpf = _stored_cpf(income, monthly_gross)

        net_amount = cpf["net_take_home"] if income.subject_to_cpf else monthly_gross

        totals["gross"] += monthly_gross
        totals["net"] += net_amount
        totals["employee"] += cpf["employee"]
        totals["employer"] += cpf["employer"]
        totals["oa"] += cpf["oa"]
        totals["sa"] += cpf["sa"]
        totals["ma"] += cpf["ma"]

        status = income.income_category or "current-recurring"
        if milestone is not None and milestone.reason:
            status = f"{status} ({milestone.reason})"

        cpf_breakdown = None
        if income.subject_to_cpf:
            cpf_breakdown = {
                "employee_contribution": quantize_money(cpf["employee"]),
                "employer_contribution": quantize_money(cpf["employer"]),
                "total_contribution": quantize_money(cpf["employee"] + cpf["employer"]),
                "net_take_home": quantize_money(cpf["net_take_home"]),
                "ordinary_account": quantize_money(cpf["oa"]),
                "special_account": quantize_money(cpf["sa"]),
                "medisave_account": quantize_money(cpf["ma"]),
            }

        source: dict[str, Any] = {
            "name": income.name,
            "category": income.category,
            "gross_amount": quantize_money(monthly_gross),
            "monthly_amount": quantize_money(net_amount),
            "frequency": income.frequency,
            "family_member": member_names.get(income.family_member_id) if income.family_member_id else None,
            "status": status,
            "cpf": cpf_breakdown,
        }

        if income.bonus_amount:
            bonus = {"amount": quantize_money(income.bonus_amount)}
            if income.subject_to_cpf:
                bonus_cpf = calculate_bonus_cpf(monthly_gross, income.bonus_amount)
                bonus["cpf_applicable_amount"] = quantize_money(bonus_cpf.bonus_cpf_applicable_amount)
                bonus["employee_cpf"] = bonus_cpf.bonus_employee_cpf
                bonus["employer_cpf"] = bonus_cpf.bonus_employer_cpf
            source["annual_bonus"] = bonus

        sources.append(source)

    sources.sort(key=lambda item: item["gross_amount"], reverse=True)

    return {
        "month": month,
        "total_gross_income": quantize_money(totals["gross"]),
        "total_net_income": quantize_money(totals["net"]),
        "total_employee_cpf": quantize_money(totals["employee"]),
        "total_employer_cpf": quantize_money(totals["employer"]),
        "total_cpf_contribution": quantize_money(totals["employee"] + totals["employer"]),
        "total_ordinary_account": quantize_money(totals["oa"]),
        "total_special_account": quantize_money(totals["sa"]),
        "total_medisave_account": quantize_money(totals["ma"]),
        "income_sources": sources,
        "income_source_count": len(sources),
    }


async def get_income_summary_tool(finance: FinanceRepository, user_id: str, *, month: str) -> dict[str, Any]:
    incomes = await finance.list_incomes(user_id)
    members = await finance.list_family_members(user_id)
    member_names = {member.id: member.name for member in members}
    return summarize_income(incomes, member_names, month)
