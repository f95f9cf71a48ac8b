"""Tool registry, argument models, and audited execution for the assistant.

The model can only reach the closed set of tools declared in `ToolName`. Every call
is validated against its pydantic args model, executed with the caller's identity
(never an id supplied by the model), and recorded in the audit log whatever the
outcome.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Literal, get_args
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from foracle.services.balance_service import HypotheticalItem, get_balance_summary_tool
from foracle.services.daily_expenses_service import get_daily_expense_summary_tool
from foracle.services.expenses_service import get_expenses_summary_tool
from foracle.services.family_service import get_family_summary_tool
from foracle.services.finance_data import FinanceRepository
from foracle.services.holdings_service import get_holdings_summary_tool
from foracle.services.income_service import get_income_summary_tool
from foracle.services.insurance_service import get_insurance_summary_tool
from foracle.services.month_dates import parse_month, today_in_timezone

if TYPE_CHECKING:
    from foracle.vectors.retrieval import RetrievalService
else:
    RetrievalService = Any

logger = logging.getLogger(__name__)

ToolName = Literal[
    "get_income_summary",
    "get_expenses_summary",
    "get_family_summary",
    "get_balance_summary",
    "get_holdings_summary",
    "get_insurance_summary",
    "get_daily_expense_summary",
    "search_knowledge",
]
TOOL_NAMES: frozenset[str] = frozenset(get_args(ToolName))

ErrorCategory = Literal["unknown_tool", "unauthorized", "validation", "upstream_data", "timeout"]

INPUT_SUMMARY_MAX_CHARS = 200


class ToolArgumentError(Exception):
    """Raised when tool arguments are well-formed but semantically invalid."""


class ToolRegistrationError(Exception):
    """Raised on duplicate registration or registration after freeze."""


def _validate_month(value: str | None) -> str | None:
    if value is None:
        return None
    parse_month(value)
    return value


class MonthArgs(BaseModel):
    month: str = Field(description="YYYY-MM")

    @field_validator("month")
    @classmethod
    def validate_month(cls, value: str) -> str:
        return _validate_month(value)


class FamilySummaryArgs(BaseModel):
    scope: Literal["household", "member", "auto"] = "auto"
    member_id: str | None = None
    member_name: str | None = Field(default=None, max_length=120)
    month: str | None = None

    @field_validator("month")
    @classmethod
    def validate_month(cls, value: str | None) -> str | None:
        return _validate_month(value)


class BalanceSummaryArgs(BaseModel):
    from_month: str
    to_month: str
    hypotheticals: list[HypotheticalItem] = Field(default_factory=list, max_length=20)
    min_end_balance: Decimal | None = None
    min_monthly_balance: Decimal | None = None
    compute_max_affordable_expense_month: str | None = None

    @field_validator("from_month", "to_month", "compute_max_affordable_expense_month")
    @classmethod
    def validate_months(cls, value: str | None) -> str | None:
        return _validate_month(value)

    @model_validator(mode="after")
    def ensure_valid_range(self) -> "BalanceSummaryArgs":
        if self.to_month < self.from_month:
            raise ValueError("to_month must be the same as or after from_month")
        for item in self.hypotheticals:
            parse_month(item.month)
        return self


class EmptyArgs(BaseModel):
    pass


class InsuranceSummaryArgs(BaseModel):
    status: Literal["active", "lapsed", "cancelled", "all"] = "active"
    policy_type: str | None = Field(default=None, max_length=60)


class DailyExpenseSummaryArgs(BaseModel):
    month: str | None = None
    from_date: date | None = None
    to_date: date | None = None
    category_name: str | None = Field(default=None, max_length=80)
    subcategory_name: str | None = Field(default=None, max_length=80)

    @field_validator("month")
    @classmethod
    def validate_month(cls, value: str | None) -> str | None:
        return _validate_month(value)

    @model_validator(mode="after")
    def ensure_valid_range(self) -> "DailyExpenseSummaryArgs":
        if self.from_date and self.to_date and self.to_date < self.from_date:
            raise ValueError("to_date must be on or after from_date")
        return self


class SearchKnowledgeArgs(BaseModel):
    query: str = Field(min_length=1, max_length=500)
    limit: int = Field(default=5, ge=1, le=10)


ToolHandler = Callable[[str, Any], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    args_model: type[BaseModel]
    description: str
    handler: ToolHandler
    parameters: dict[str, Any]
    requires_owner_scoping: bool = True


@dataclass(frozen=True)
class AuditRecord:
    tool_name: str
    user_id: str | None
    input_summary: str
    success: bool
    latency_ms: float
    timestamp: datetime
    error_category: str | None = None


@dataclass
class ToolExecutionResult:
    tool_name: str
    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None
    error_category: ErrorCategory | None = None
    latency_ms: float = 0.0


def to_jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, BaseModel):
        return to_jsonable(value.model_dump())
    if isinstance(value, dict):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    return value


def summarize_input(args: Any) -> str:
    try:
        text = json.dumps(args, sort_keys=True, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        text = repr(args)
    return text[:INPUT_SUMMARY_MAX_CHARS]


def short_user_id(user_id: str | None) -> str:
    if not user_id:
        return "-"
    return f"{user_id[:8]}..."


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "arguments"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


class ToolRegistry:
    def __init__(self, *, tool_timeout_seconds: float = 15.0) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        self._frozen = False
        self._audit_log: list[AuditRecord] = []
        self.tool_timeout_seconds = tool_timeout_seconds

    def register(self, definition: ToolDefinition) -> None:
        if self._frozen:
            raise ToolRegistrationError(f"Registry is frozen; cannot register {definition.name}")
        if definition.name not in TOOL_NAMES:
            raise ToolRegistrationError(f"Unknown tool name: {definition.name}")
        if definition.name in self._tools:
            raise ToolRegistrationError(f"Tool already registered: {definition.name}")
        self._tools[definition.name] = definition

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def names(self) -> list[str]:
        return list(self._tools)

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def tool_schemas(self) -> list[dict[str, Any]]:
        """Return function declarations for the provider's `tools` field."""
        return [
            {
                "name": definition.name,
                "description": definition.description,
                "parameters": definition.parameters,
            }
            for definition in self._tools.values()
        ]

    async def execute(self, name: str, args: dict[str, Any] | None, caller_identity: str | None) -> ToolExecutionResult:
        started = time.perf_counter()
        raw_args = args or {}
        try:
            result = await self._execute(name, raw_args, caller_identity)
        except asyncio.CancelledError:
            # The enclosing chat turn timed out while this call was in flight.
            cancelled = ToolExecutionResult(
                tool_name=name,
                success=False,
                error=f"{name} was cancelled",
                error_category="timeout",
            )
            self._record(name, raw_args, caller_identity, cancelled, started)
            raise
        self._record(name, raw_args, caller_identity, result, started)
        return result

    def _record(
        self,
        name: str,
        raw_args: dict[str, Any],
        caller_identity: str | None,
        result: ToolExecutionResult,
        started: float,
    ) -> None:
        # No await between building and appending, so concurrent calls cannot interleave here.
        result.latency_ms = round((time.perf_counter() - started) * 1000, 2)
        self._audit_log.append(
            AuditRecord(
                tool_name=name,
                user_id=caller_identity,
                input_summary=summarize_input(raw_args),
                success=result.success,
                latency_ms=result.latency_ms,
                timestamp=datetime.now(timezone.utc),
                error_category=result.error_category,
            )
        )

        logger.info(
            "tool_call tool=%s user=%s success=%s latency_ms=%.1f category=%s",
            name,
            short_user_id(caller_identity),
            result.success,
            result.latency_ms,
            result.error_category or "-",
        )

    async def _execute(self, name: str, args: dict[str, Any], caller_identity: str | None) -> ToolExecutionResult:
        definition = self._tools.get(name)
        if definition is None:
            return ToolExecutionResult(
                tool_name=name,
                success=False,
                error=f"Unknown tool: {name}",
                error_category="unknown_tool",
            )

        if definition.requires_owner_scoping and not caller_identity:
            return ToolExecutionResult(
                tool_name=name,
                success=False,
                error="Unauthorized: no user identity for this request",
                error_category="unauthorized",
            )

        try:
            parsed = definition.args_model.model_validate(args)
        except ValidationError as exc:
            return ToolExecutionResult(
                tool_name=name,
                success=False,
                error=f"Invalid arguments: {_format_validation_error(exc)}",
                error_category="validation",
            )

        try:
            data = await asyncio.wait_for(
                definition.handler(caller_identity or "", parsed),
                timeout=self.tool_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return ToolExecutionResult(
                tool_name=name,
                success=False,
                error=f"{name} timed out after {self.tool_timeout_seconds:g}s",
                error_category="timeout",
            )
        except (ToolArgumentError, ValueError) as exc:
            return ToolExecutionResult(
                tool_name=name,
                success=False,
                error=str(exc),
                error_category="validation",
            )
        except Exception:
            logger.exception("tool_failed tool=%s user=%s", name, short_user_id(caller_identity))
            return ToolExecutionResult(
                tool_name=name,
                success=False,
                error=f"Failed to load data for {name}",
                error_category="upstream_data",
            )

        return ToolExecutionResult(tool_name=name, success=True, data=to_jsonable(data))

    def get_audit_log(self) -> list[AuditRecord]:
        return list(self._audit_log)

    def clear_audit_log(self) -> None:
        self._audit_log.clear()


_MONTH_PROPERTY = {"type": "string", "description": "Month in YYYY-MM format"}

_TOOL_SPECS: dict[str, tuple[type[BaseModel], str, dict[str, Any]]] = {
    "get_income_summary": (
        MonthArgs,
        "Get gross and net income for a month with CPF contributions (employee, employer, OA/SA/MA) "
        "and each income source. Use for any question about salary, take-home pay or CPF.",
        {
            "type": "object",
            "properties": {"month": _MONTH_PROPERTY},
            "required": ["month"],
        },
    ),
    "get_expenses_summary": (
        MonthArgs,
        "Get recurring monthly expenses for a month with a category breakdown and percent of total. "
        "Use for questions like how much is spent on food, rent or transport.",
        {
            "type": "object",
            "properties": {"month": _MONTH_PROPERTY},
            "required": ["month"],
        },
    ),
    "get_family_summary": (
        FamilySummaryArgs,
        "Get household members, who is included in income totals, and scheduled income changes. "
        "Use scope 'member' with member_name for questions about a specific person (e.g. 'my wife').",
        {
            "type": "object",
            "properties": {
                "scope": {"type": "string", "enum": ["household", "member", "auto"]},
                "member_id": {"type": "string"},
                "member_name": {"type": "string", "description": "Name or relationship such as 'wife'"},
                "month": _MONTH_PROPERTY,
            },
        },
    ),
    "get_balance_summary": (
        BalanceSummaryArgs,
        "Project month-by-month balances from current holdings, income and expenses. Supports hypothetical "
        "one-off incomes or expenses, minimum balance constraints, and the largest affordable one-off "
        "expense in a month. Always includes a green/yellow/red safety assessment.",
        {
            "type": "object",
            "properties": {
                "from_month": _MONTH_PROPERTY,
                "to_month": _MONTH_PROPERTY,
                "hypotheticals": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "type": {"type": "string", "enum": ["income", "expense"]},
                            "amount": {"type": "number"},
                            "month": _MONTH_PROPERTY,
                            "label": {"type": "string"},
                        },
                        "required": ["type", "amount", "month"],
                    },
                },
                "min_end_balance": {"type": "number"},
                "min_monthly_balance": {"type": "number"},
                "compute_max_affordable_expense_month": _MONTH_PROPERTY,
            },
            "required": ["from_month", "to_month"],
        },
    ),
    "get_holdings_summary": (
        EmptyArgs,
        "Get current bank and cash holdings, largest first, with totals per family member.",
        {"type": "object", "properties": {}},
    ),
    "get_insurance_summary": (
        InsuranceSummaryArgs,
        "Get insurance policies with annual premiums, grouped by policy type and provider.",
        {
            "type": "object",
            "properties": {
                "status": {"type": "string", "enum": ["active", "lapsed", "cancelled", "all"]},
                "policy_type": {"type": "string"},
            },
        },
    ),
    "get_daily_expense_summary": (
        DailyExpenseSummaryArgs,
        "Get day-to-day spending for a month or date range with category and subcategory breakdown. "
        "Defaults to month-to-date.",
        {
            "type": "object",
            "properties": {
                "month": _MONTH_PROPERTY,
                "from_date": {"type": "string", "description": "YYYY-MM-DD"},
                "to_date": {"type": "string", "description": "YYYY-MM-DD"},
                "category_name": {"type": "string"},
                "subcategory_name": {"type": "string"},
            },
        },
    ),
    "search_knowledge": (
        SearchKnowledgeArgs,
        "Search the financial knowledge base (CPF rules, budgeting and savings guidance).",
        {
            "type": "object",
            "properties": {
                "query": {"type": "string"},
                "limit": {"type": "integer", "minimum": 1, "maximum": 10},
            },
            "required": ["query"],
        },
    ),
}


def build_default_registry(
    finance: FinanceRepository,
    *,
    retrieval: RetrievalService | None = None,
    timezone_name: str = "Asia/Singapore",
    tool_timeout_seconds: float = 15.0,
) -> ToolRegistry:
    """Register every finance tool (and knowledge search when retrieval is configured) and freeze."""

    async def income(user_id: str, args: MonthArgs) -> dict[str, Any]:
        return await get_income_summary_tool(finance, user_id, month=args.month)

    async def expenses(user_id: str, args: MonthArgs) -> dict[str, Any]:
        return await get_expenses_summary_tool(finance, user_id, month=args.month)

    async def family(user_id: str, args: FamilySummaryArgs) -> dict[str, Any]:
        return await get_family_summary_tool(
            finance,
            user_id,
            scope=args.scope,
            member_id=args.member_id,
            member_name=args.member_name,
            month=args.month,
        )

    async def balance(user_id: str, args: BalanceSummaryArgs) -> dict[str, Any]:
        return await get_balance_summary_tool(
            finance,
            user_id,
            from_month=args.from_month,
            to_month=args.to_month,
            hypotheticals=args.hypotheticals,
            min_end_balance=args.min_end_balance,
            min_monthly_balance=args.min_monthly_balance,
            compute_max_affordable_expense_month=args.compute_max_affordable_expense_month,
        )

    async def holdings(user_id: str, args: EmptyArgs) -> dict[str, Any]:
        return await get_holdings_summary_tool(finance, user_id)

    async def insurance(user_id: str, args: InsuranceSummaryArgs) -> dict[str, Any]:
        return await get_insurance_summary_tool(finance, user_id, status=args.status, policy_type=args.policy_type)

    async def daily_expenses(user_id: str, args: DailyExpenseSummaryArgs) -> dict[str, Any]:
        return await get_daily_expense_summary_tool(
            finance,
            user_id,
            today=today_in_timezone(timezone_name),
            month=args.month,
            from_date=args.from_date,
            to_date=args.to_date,
            category_name=args.category_name,
            subcategory_name=args.subcategory_name,
        )

    async def search_knowledge(user_id: str, args: SearchKnowledgeArgs) -> dict[str, Any]:
        results = await retrieval.search(args.query, limit=args.limit)
        return {
            "query": args.query,
            "result_count": len(results),
            "results": [
                {
                    "doc_id": item.doc_id,
                    "chunk_index": item.chunk_index,
                    "content": item.content,
                    "similarity": round(item.similarity, 3),
                }
                for item in results
            ],
        }

    handlers: dict[str, ToolHandler] = {
        "get_income_summary": income,
        "get_expenses_summary": expenses,
        "get_family_summary": family,
        "get_balance_summary": balance,
        "get_holdings_summary": holdings,
        "get_insurance_summary": insurance,
        "get_daily_expense_summary": daily_expenses,
    }
    if retrieval is not None:
        handlers["search_knowledge"] = search_knowledge

    registry = ToolRegistry(tool_timeout_seconds=tool_timeout_seconds)
    for name, handler in handlers.items():
        args_model, description, parameters = _TOOL_SPECS[name]
        registry.register(
            ToolDefinition(
                name=name,
                args_model=args_model,
                description=description,
                handler=handler,
                parameters=parameters,
                requires_owner_scoping=True,
            )
        )
    registry.freeze()
    return registry
