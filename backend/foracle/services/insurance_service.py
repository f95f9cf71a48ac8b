from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Any, Literal

from foracle.services.finance_data import FinanceRepository, PolicyRecord
from foracle.services.money import quantize_money

PolicyStatusFilter = Literal["active", "lapsed", "cancelled", "all"]

_PAYMENTS_PER_YEAR = {
    "monthly": 12,
    "quarterly": 4,
    "yearly": 1,
    "annual": 1,
}


def annual_premium(policy: PolicyRecord) -> Decimal:
    frequency = policy.premium_frequency.strip().lower()
    if frequency == "custom":
        if policy.custom_months:
            return policy.premium_amount * len(policy.custom_months)
        return policy.premium_amount
    return policy.premium_amount * _PAYMENTS_PER_YEAR.get(frequency, 1)


def _group(policies: list[tuple[PolicyRecord, Decimal]], key: str) -> list[dict[str, Any]]:
    totals: dict[str, dict[str, Any]] = defaultdict(lambda: {"count": 0, "annual_premium": Decimal("0")})
    for policy, premium in policies:
        group = totals[getattr(policy, key)]
        group["count"] += 1
        group["annual_premium"] += premium

    label = "type" if key == "policy_type" else "provider"
    rows = [
        {label: name, "count": data["count"], "annual_premium": quantize_money(data["annual_premium"])}
        for name, data in totals.items()
    ]
    rows.sort(key=lambda row: row["annual_premium"], reverse=True)
    return rows


def summarize_insurance(
    policies: list[PolicyRecord],
    member_names: dict[str, str],
    *,
    status: PolicyStatusFilter = "active",
    policy_type: str | None = None,
) -> dict[str, Any]:
    selected = policies
    if status != "all":
        selected = [p for p in selected if (p.status or "").lower() == status]
    if policy_type:
        selected = [p for p in selected if p.policy_type.lower() == policy_type.strip().lower()]

    priced = [(policy, annual_premium(policy)) for policy in selected]
    total_annual = sum((premium for _, premium in priced), Decimal("0"))
    total_coverage = sum((p.coverage_amount or Decimal("0") for p in selected), Decimal("0"))

    rows = [
        {
            "id": policy.id,
            "provider": policy.provider,
            "policy_type": policy.policy_type,
            "status": policy.status,
            "family_member": member_names.get(policy.family_member_id) if policy.family_member_id else None,
            "premium_amount": quantize_money(policy.premium_amount),
            "premium_frequency": policy.premium_frequency,
            "annual_premium": quantize_money(premium),
            "coverage_amount": quantize_money(policy.coverage_amount) if policy.coverage_amount is not None else None,
        }
        for policy, premium in priced
    ]
    rows.sort(key=lambda row: row["annual_premium"], reverse=True)

    notes: list[str] = []
    if not selected:
        if policies:
            notes.append("No policies match the selected filters. Try status 'all' to include every policy.")
        else:
            notes.append("No insurance policies recorded yet.")

    return {
        "policy_count": len(rows),
        "active_policy_count": sum(1 for p in selected if (p.status or "").lower() == "active"),
        "total_annual_premiums": quantize_money(total_annual),
        "total_monthly_premiums": quantize_money(total_annual / Decimal("12")),
        "total_coverage": quantize_money(total_coverage),
        "policies_by_type": _group(priced, "policy_type"),
        "policies_by_provider": _group(priced, "provider"),
        "policies": rows,
        "applied_status_filter": status,
        "applied_type_filter": policy_type,
        "notes": notes,
    }


async def get_insurance_summary_tool(
    finance: FinanceRepository,
    user_id: str,
    *,
    status: PolicyStatusFilter = "active",
    policy_type: str | None = None,
) -> dict[str, Any]:
    policies = await finance.list_policies(user_id)
    members = await finance.list_family_members(user_id)
    return summarize_insurance(
        policies,
        {member.id: member.name for member in members},
        status=status,
        policy_type=policy_type,
    )
