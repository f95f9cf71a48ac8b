from __future__ import annotations

from typing import Any, Literal

from foracle.services.finance_data import FamilyMemberRecord, FinanceRepository, IncomeRecord

FamilyScope = Literal["household", "member", "auto"]

_SPOUSE_ALIASES = {"spouse", "wife", "husband"}


def _matches_member(member: FamilyMemberRecord, member_id: str | None, member_name: str | None) -> bool:
    if member_id and member.id == member_id:
        return True
    if not member_name:
        return False

    needle = member_name.strip().lower()
    if needle and needle in member.name.lower():
        return True
    relationship = (member.relationship or "").lower()
    return needle in _SPOUSE_ALIASES and relationship == "spouse"


def summarize_family(
    members: list[FamilyMemberRecord],
    incomes: list[IncomeRecord],
    *,
    scope: FamilyScope = "auto",
    member_id: str | None = None,
    member_name: str | None = None,
    month: str | None = None,
) -> dict[str, Any]:
    effective_scope = scope
    if scope == "auto":
        effective_scope = "member" if (member_id or member_name) else "household"

    household: list[dict[str, Any]] = []
    included: list[dict[str, str]] = []
    excluded: list[dict[str, str]] = []
    signals: list[dict[str, Any]] = []
    notes: list[str] = []
    target: dict[str, Any] | None = None

    for member in members:
        member_incomes = [income for income in incomes if income.family_member_id == member.id]

        summary = {
            "member_id": member.id,
            "display_name": member.name,
            "relationship": member.relationship,
            "include_in_income_totals": member.is_contributing,
            "income_source_count": len(member_incomes),
            "income_identity_hint": member_incomes[0].name if member_incomes else None,
            "date_of_birth": member.date_of_birth,
        }
        household.append(summary)

        if member.is_contributing:
            included.append({"member_id": member.id, "name": member.name})
        else:
            excluded.append({"member_id": member.id, "name": member.name})
            notes.append(f"{member.name} is excluded from household income totals per family settings")

        for income in member_incomes:
            for milestone in income.future_milestones:
                reason = f" ({milestone.reason})" if milestone.reason else ""
                signals.append(
                    {
                        "member_id": member.id,
                        "member_name": member.name,
                        "type": "scheduled",
                        "effective_date": milestone.target_month,
                        "new_amount": milestone.amount,
                        "description": (
                            f"{member.name}'s income ({income.name}) scheduled to change in "
                            f"{milestone.target_month}{reason}"
                        ),
                        "confidence": "high",
                    }
                )

        if effective_scope == "member" and target is None and _matches_member(member, member_id, member_name):
            target = summary

    if not household:
        notes.append("No family members have been added yet. Income totals include all user incomes.")

    if effective_scope == "member" and target is None and (member_id or member_name):
        notes.append(
            f"Could not find family member matching '{member_name or member_id}'. Showing all household members."
        )

    return {
        "scope": effective_scope,
        "month": month,
        "household_members": household,
        "member_count": len(household),
        "included_members": included,
        "excluded_members": excluded,
        "included_member_count": len(included),
        "excluded_member_count": len(excluded),
        "target_member": target,
        "income_change_signals": signals,
        "notes": notes,
    }


async def get_family_summary_tool(
    finance: FinanceRepository,
    user_id: str,
    *,
    scope: FamilyScope = "auto",
    member_id: str | None = None,
    member_name: str | None = None,
    month: str | None = None,
) -> dict[str, Any]:
    members = await finance.list_family_members(user_id)
    incomes = await finance.list_incomes(user_id)
    return summarize_family(
        members,
        incomes,
        scope=scope,
        member_id=member_id,
        member_name=member_name,
        month=month,
    )
