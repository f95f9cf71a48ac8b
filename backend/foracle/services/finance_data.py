"""Typed read access to a user's financial records.

Every query is filtered by `user_id` here, in the data layer. Tool code also only
ever passes the caller's own id, but this layer is the authoritative filter.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from psycopg_pool import AsyncConnectionPool
else:
    AsyncConnectionPool = Any


class FutureMilestone(BaseModel):
    target_month: str
    amount: Decimal
    reason: str | None = None


class IncomeRecord(BaseModel):
    id: str
    name: str
    category: str
    amount: Decimal
    frequency: str
    start_date: date | None = None
    end_date: date | None = None
    custom_months: list[int] | None = None
    family_member_id: str | None = None
    income_category: str | None = None
    subject_to_cpf: bool = False
    bonus_amount: Decimal | None = None
    employee_cpf_contribution: Decimal | None = None
    employer_cpf_contribution: Decimal | None = None
    net_take_home: Decimal | None = None
    cpf_ordinary_account: Decimal | None = None
    cpf_special_account: Decimal | None = None
    cpf_medisave_account: Decimal | None = None
    future_milestones: list[FutureMilestone] = Field(default_factory=list)
    account_for_future_change: bool = False
    is_active: bool = True


class ExpenseRecord(BaseModel):
    id: str
    name: str
    category: str
    amount: Decimal
    frequency: str
    start_date: date | None = None
    end_date: date | None = None
    custom_months: list[int] | None = None
    expense_category: str | None = None
    tracked_in_budget: bool = False
    is_active: bool = True


class FamilyMemberRecord(BaseModel):
    id: str
    name: str
    relationship: str | None = None
    date_of_birth: date | None = None
    is_contributing: bool = False


class HoldingRecord(BaseModel):
    id: str
    bank_name: str
    holding_amount: Decimal
    family_member_id: str | None = None
    updated_at: datetime | None = None


class PolicyRecord(BaseModel):
    id: str
    provider: str
    policy_type: str
    premium_amount: Decimal
    premium_frequency: str
    custom_months: list[int] | None = None
    coverage_amount: Decimal | None = None
    status: str = "active"
    family_member_id: str | None = None


class DailyExpenseRecord(BaseModel):
    id: str
    expense_date: date
    category_name: str
    subcategory_name: str | None = None
    amount: Decimal
    note: str | None = None


class FinanceRepository:
    """Read contract the tool layer depends on."""

    async def list_incomes(self, user_id: str) -> list[IncomeRecord]:
        raise NotImplementedError

    async def list_expenses(self, user_id: str) -> list[ExpenseRecord]:
        raise NotImplementedError

    async def list_family_members(self, user_id: str) -> list[FamilyMemberRecord]:
        raise NotImplementedError

    async def list_holdings(self, user_id: str) -> list[HoldingRecord]:
        raise NotImplementedError

    async def list_policies(self, user_id: str) -> list[PolicyRecord]:
        raise NotImplementedError

    async def list_daily_expenses(self, user_id: str, from_date: date, to_date: date) -> list[DailyExpenseRecord]:
        raise NotImplementedError


class InMemoryFinanceRepository(FinanceRepository):
    """Process-local records keyed by owner; used in development and tests."""

    def __init__(self) -> None:
        self._records: dict[str, dict[type[BaseModel], list[BaseModel]]] = defaultdict(lambda: defaultdict(list))

    def add(self, user_id: str, *records: BaseModel) -> None:
        for record in records:
            self._records[user_id][type(record)].append(record)

    def _list(self, user_id: str, record_type: type[BaseModel]) -> list[Any]:
        if user_id not in self._records:
            return []
        return list(self._records[user_id].get(record_type, []))

    async def list_incomes(self, user_id: str) -> list[IncomeRecord]:
        return [row for row in self._list(user_id, IncomeRecord) if row.is_active]

    async def list_expenses(self, user_id: str) -> list[ExpenseRecord]:
        return [row for row in self._list(user_id, ExpenseRecord) if row.is_active]

    async def list_family_members(self, user_id: str) -> list[FamilyMemberRecord]:
        return self._list(user_id, FamilyMemberRecord)

    async def list_holdings(self, user_id: str) -> list[HoldingRecord]:
        return self._list(user_id, HoldingRecord)

    async def list_policies(self, user_id: str) -> list[PolicyRecord]:
        return self._list(user_id, PolicyRecord)

    async def list_daily_expenses(self, user_id: str, from_date: date, to_date: date) -> list[DailyExpenseRecord]:
        return [
            row
            for row in self._list(user_id, DailyExpenseRecord)
            if from_date <= row.expense_date <= to_date
        ]


class PostgresFinanceRepository(FinanceRepository):
    def __init__(self, pool: AsyncConnectionPool) -> None:
        self._pool = pool

    async def _fetch(self, query: str, params: tuple[Any, ...]) -> list[dict[str, Any]]:
        async with self._pool.connection() as connection:
            async with connection.cursor() as cursor:
                await cursor.execute(query, params)
                return await cursor.fetchall()

    async def list_incomes(self, user_id: str) -> list[IncomeRecord]:
        rows = await self._fetch(
            """
            SELECT id, name, category, amount, frequency, start_date, end_date,
                   custom_months, family_member_id, income_category, subject_to_cpf,
                   bonus_amount, employee_cpf_contribution, employer_cpf_contribution,
                   net_take_home, cpf_ordinary_account, cpf_special_account,
                   cpf_medisave_account, future_milestones, account_for_future_change,
                   is_active
            FROM incomes
            WHERE user_id = %s
              AND is_active = TRUE
            ORDER BY created_at ASC
            """,
            (user_id,),
        )
        return [IncomeRecord.model_validate(_normalize_row(row)) for row in rows]

    async def list_expenses(self, user_id: str) -> list[ExpenseRecord]:
        rows = await self._fetch(
            """
            SELECT id, name, category, amount, frequency, start_date, end_date,
                   custom_months, expense_category, tracked_in_budget, is_active
            FROM expenses
            WHERE user_id = %s
              AND is_active = TRUE
            ORDER BY created_at ASC
            """,
            (user_id,),
        )
        return [ExpenseRecord.model_validate(_normalize_row(row)) for row in rows]

    async def list_family_members(self, user_id: str) -> list[FamilyMemberRecord]:
        rows = await self._fetch(
            """
            SELECT id, name, relationship, date_of_birth, is_contributing
            FROM family_members
            WHERE user_id = %s
            ORDER BY created_at ASC
            """,
            (user_id,),
        )
        return [FamilyMemberRecord.model_validate(_normalize_row(row)) for row in rows]

    async def list_holdings(self, user_id: str) -> list[HoldingRecord]:
        rows = await self._fetch(
            """
            SELECT id, bank_name, holding_amount, family_member_id, updated_at
            FROM current_holdings
            WHERE user_id = %s
            """,
            (user_id,),
        )
        return [HoldingRecord.model_validate(_normalize_row(row)) for row in rows]

    async def list_policies(self, user_id: str) -> list[PolicyRecord]:
        rows = await self._fetch(
            """
            SELECT id, provider, policy_type, premium_amount, premium_frequency,
                   custom_months, coverage_amount, status, family_member_id
            FROM policies
            WHERE user_id = %s
            """,
            (user_id,),
        )
        return [PolicyRecord.model_validate(_normalize_row(row)) for row in rows]

    async def list_daily_expenses(self, user_id: str, from_date: date, to_date: date) -> list[DailyExpenseRecord]:
        rows = await self._fetch(
            """
            SELECT id, expense_date, category_name, subcategory_name, amount, note
            FROM daily_expenses
            WHERE user_id = %s
              AND expense_date >= %s
              AND expense_date <= %s
            ORDER BY expense_date DESC
            """,
            (user_id, from_date, to_date),
        )
        return [DailyExpenseRecord.model_validate(_normalize_row(row)) for row in rows]


def _normalize_row(row: dict[str, Any]) -> dict[str, Any]:
    # ids may be UUID columns; records carry them as strings.
    normalized = dict(row)
    for key in ("id", "family_member_id"):
        if normalized.get(key) is not None:
            normalized[key] = str(normalized[key])
    if normalized.get("future_milestones") is None and "future_milestones" in normalized:
        normalized["future_milestones"] = []
    return normalized
