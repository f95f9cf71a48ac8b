from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Any

from foracle.services.finance_data import FinanceRepository, HoldingRecord
from foracle.services.money import quantize_money


def summarize_holdings(holdings: list[HoldingRecord], member_names: dict[str, str]) -> dict[str, Any]:
    total = Decimal("0")
    by_member: dict[str | None, dict[str, Any]] = defaultdict(lambda: {"total": Decimal("0"), "count": 0})
    rows: list[dict[str, Any]] = []

    for holding in holdings:
        member_name = member_names.get(holding.family_member_id) if holding.family_member_id else None
        total += holding.holding_amount
        by_member[member_name]["total"] += holding.holding_amount
        by_member[member_name]["count"] += 1
        rows.append(
            {
                "id": holding.id,
                "bank_name": holding.bank_name,
                "amount": quantize_money(holding.holding_amount),
                "family_member": member_name,
                "updated_at": holding.updated_at.isoformat() if holding.updated_at else None,
            }
        )

    rows.sort(key=lambda row: row["amount"], reverse=True)
    members = [
        {
            "member_name": name,
            "total_amount": quantize_money(data["total"]),
            "account_count": data["count"],
        }
        for name, data in by_member.items()
    ]
    members.sort(key=lambda row: row["total_amount"], reverse=True)

    notes: list[str] = []
    if not holdings:
        notes.append("No bank accounts or cash holdings recorded yet.")
    if any(name is None for name in by_member) and len(by_member) > 1:
        notes.append("Holdings without a family member are listed under the account owner (member_name null).")

    return {
        "total_holdings": quantize_money(total),
        "holdings_count": len(rows),
        "holdings": rows,
        "holdings_by_member": members,
        "notes": notes,
    }


async def get_holdings_summary_tool(finance: FinanceRepository, user_id: str) -> dict[str, Any]:
    holdings = await finance.list_holdings(user_id)
    members = await finance.list_family_members(user_id)
    return summarize_holdings(holdings, {member.id: member.name for member in members})
