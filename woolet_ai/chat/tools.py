"""Tool catalog and server-side execution for the chat loop.

Each tool declares an OpenAI function schema for the model and a pydantic
argument model for validation.  ``ToolExecutor.execute`` never raises for
bad input or failed execution: the problem is returned as a structured tool
result so the model can relay it and the conversation continues.
"""

import calendar
import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from woolet_ai.chat.intents import NAVIGATION_PATHS
from woolet_ai.data.store import FinanceDataStore
from woolet_ai.data.types import Account, Bank, CurrencyBalance, Transaction, TransactionType

logger = logging.getLogger("woolet.chat.tools")

ISO_DATE = r"^\d{4}-\d{2}-\d{2}$"
ACCESS_DENIED = "Invalid account or access denied"

NavigationPath = Literal[
    "/dashboard",
    "/transactions",
    "/accounts",
    "/investing",
    "/insights",
    "/budget",
    "/subscriptions",
    "/debts",
    "/settings",
]


@dataclass(frozen=True)
class ClientAction:
    type: Literal["navigate"]
    path: str

    def as_dict(self) -> dict[str, str]:
        return {"type": self.type, "path": self.path}


class ToolAccessDenied(Exception):
    """The caller does not own the resource a tool tried to touch."""


# -- argument models --


class _Args(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class NoArgs(_Args):
    pass


class SearchTransactionsArgs(_Args):
    start_date: str | None = Field(default=None, alias="startDate", pattern=ISO_DATE)
    end_date: str | None = Field(default=None, alias="endDate", pattern=ISO_DATE)
    category_id: str | None = Field(default=None, alias="categoryId")
    type: TransactionType | None = None
    min_amount: float | None = Field(default=None, alias="minAmount", gt=0)
    max_amount: float | None = Field(default=None, alias="maxAmount", gt=0)


class GetBankBalanceArgs(_Args):
    bank_name: str = Field(alias="bankName", min_length=1, max_length=100)


class AnalyzeSpendingArgs(_Args):
    start_date: str = Field(alias="startDate", pattern=ISO_DATE)
    end_date: str = Field(alias="endDate", pattern=ISO_DATE)


class CreateTransactionArgs(_Args):
    amount: float = Field(gt=0)
    description: str | None = Field(default=None, min_length=1, max_length=500)
    date: str = Field(pattern=ISO_DATE)
    category_id: str = Field(alias="categoryId", min_length=1)
    currency_balance_id: str = Field(alias="currencyBalanceId", min_length=1)
    type: TransactionType
    dry_run: bool = Field(default=False, alias="dryRun")
    idempotency_key: str | None = Field(
        default=None, alias="idempotencyKey", min_length=1, max_length=200
    )


class UpcomingPaymentsArgs(_Args):
    days: int | None = Field(default=None, ge=1, le=365)


class NavigateArgs(_Args):
    path: NavigationPath


class QueryDocsArgs(_Args):
    query: str = Field(min_length=2, max_length=200)


# -- catalog --

_DATE_PROP = {"type": "string", "description": "YYYY-MM-DD"}
_EMPTY_PARAMS: dict[str, Any] = {"type": "object", "properties": {}, "additionalProperties": False}


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: dict[str, Any]
    args_model: type[_Args] = NoArgs
    read_only: bool = True

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


SEARCH_TRANSACTIONS = ToolSpec(
    name="search_transactions",
    description="Search the user's transactions with optional filters. Newest first, at most 50.",
    parameters={
        "type": "object",
        "properties": {
            "startDate": _DATE_PROP,
            "endDate": _DATE_PROP,
            "categoryId": {"type": "string"},
            "type": {"type": "string", "enum": ["income", "expense", "transfer"]},
            "minAmount": {"type": "number"},
            "maxAmount": {"type": "number"},
        },
        "additionalProperties": False,
    },
    args_model=SearchTransactionsArgs,
)
GET_ACCOUNT_BALANCE = ToolSpec(
    name="get_account_balance",
    description="Get all banks, accounts and currency balances for the current user.",
    parameters=_EMPTY_PARAMS,
)
GET_BANK_BALANCE = ToolSpec(
    name="get_bank_balance",
    description="Get balances for one bank, matched case-insensitively by (part of) its name.",
    parameters={
        "type": "object",
        "properties": {"bankName": {"type": "string", "description": "Bank name, e.g. BCC"}},
        "required": ["bankName"],
        "additionalProperties": False,
    },
    args_model=GetBankBalanceArgs,
)
GET_CATEGORIES = ToolSpec(
    name="get_categories",
    description="List default and user-defined transaction categories.",
    parameters=_EMPTY_PARAMS,
)
GET_SUBSCRIPTIONS = ToolSpec(
    name="get_subscriptions",
    description="List recurring subscriptions.",
    parameters=_EMPTY_PARAMS,
)
GET_PORTFOLIO = ToolSpec(
    name="get_portfolio",
    description="Get stock holdings in the user's portfolio.",
    parameters=_EMPTY_PARAMS,
)
GET_INVESTING_VALUE = ToolSpec(
    name="get_investing_value",
    description="Get the market value, cost basis and gain of portfolio holdings at the latest known prices.",
    parameters=_EMPTY_PARAMS,
)
ANALYZE_SPENDING = ToolSpec(
    name="analyze_spending",
    description="Aggregate expenses by category for a date range.",
    parameters={
        "type": "object",
        "properties": {"startDate": _DATE_PROP, "endDate": _DATE_PROP},
        "required": ["startDate", "endDate"],
        "additionalProperties": False,
    },
    args_model=AnalyzeSpendingArgs,
)
CREATE_TRANSACTION = ToolSpec(
    name="create_transaction",
    description="Create a transaction in one of the user's own currency balances.",
    parameters={
        "type": "object",
        "properties": {
            "amount": {"type": "number"},
            "description": {"type": "string"},
            "date": _DATE_PROP,
            "categoryId": {"type": "string"},
            "currencyBalanceId": {"type": "string"},
            "type": {"type": "string", "enum": ["income", "expense", "transfer"]},
            "dryRun": {
                "type": "boolean",
                "description": "Preview the transaction without creating it.",
            },
            "idempotencyKey": {
                "type": "string",
                "description": "Reuse the same key when retrying so the write happens once.",
            },
        },
        "required": ["amount", "date", "categoryId", "currencyBalanceId", "type"],
        "additionalProperties": False,
    },
    args_model=CreateTransactionArgs,
    read_only=False,
)
GET_DEBTS_AND_CREDITS = ToolSpec(
    name="get_debts_and_credits",
    description="Get debts, credits and mortgages.",
    parameters=_EMPTY_PARAMS,
)
GET_UPCOMING_PAYMENTS = ToolSpec(
    name="get_upcoming_payments",
    description="List recurring payments due within the next N days (default 30).",
    parameters={
        "type": "object",
        "properties": {"days": {"type": "number", "minimum": 1, "maximum": 365}},
        "additionalProperties": False,
    },
    args_model=UpcomingPaymentsArgs,
)
GET_NET_WORTH_BREAKDOWN = ToolSpec(
    name="get_net_worth_breakdown",
    description="Get net worth per bank converted to the user's default currency.",
    parameters=_EMPTY_PARAMS,
)
NAVIGATE_TO = ToolSpec(
    name="navigate_to",
    description="Send the user's app to a page.",
    parameters={
        "type": "object",
        "properties": {"path": {"type": "string", "enum": list(NAVIGATION_PATHS)}},
        "required": ["path"],
        "additionalProperties": False,
    },
    args_model=NavigateArgs,
)
QUERY_DOCS = ToolSpec(
    name="query_docs",
    description="Search built-in product help snippets.",
    parameters={
        "type": "object",
        "properties": {"query": {"type": "string"}},
        "required": ["query"],
        "additionalProperties": False,
    },
    args_model=QueryDocsArgs,
)

GENERAL_TOOLS: tuple[ToolSpec, ...] = (NAVIGATE_TO, QUERY_DOCS)
FINANCE_TOOLS: tuple[ToolSpec, ...] = (
    SEARCH_TRANSACTIONS,
    GET_ACCOUNT_BALANCE,
    GET_BANK_BALANCE,
    GET_CATEGORIES,
    GET_SUBSCRIPTIONS,
    GET_PORTFOLIO,
    GET_INVESTING_VALUE,
    ANALYZE_SPENDING,
    CREATE_TRANSACTION,
    GET_DEBTS_AND_CREDITS,
    GET_UPCOMING_PAYMENTS,
    GET_NET_WORTH_BREAKDOWN,
    NAVIGATE_TO,
    QUERY_DOCS,
)


@dataclass(frozen=True)
class DocEntry:
    topic: str
    keywords: tuple[str, ...]
    content: str


DOCS_INDEX: tuple[DocEntry, ...] = (
    DocEntry(
        "Dashboard",
        ("dashboard", "home", "overview", "summary"),
        "Dashboard shows net worth, recent transactions, and active accounts. Widgets are customizable.",
    ),
    DocEntry(
        "Transactions",
        ("transaction", "add", "edit", "delete", "spending", "expense", "income"),
        "Use Transactions to view history and add records. Filters include date, category, and account.",
    ),
    DocEntry(
        "Accounts",
        ("account", "bank", "card", "manual", "sync"),
        "Accounts lists linked banks and manual accounts. You can add banks and cash wallets there.",
    ),
    DocEntry(
        "Investing",
        ("invest", "stock", "portfolio", "digest", "holding"),
        "Investing tracks stock holdings, their value over time, and a daily AI market digest.",
    ),
    DocEntry(
        "Insights",
        ("insight", "report", "graph", "chart", "analysis", "anomal"),
        "Insights includes spending reports, trends, and income versus expense breakdowns.",
    ),
    DocEntry(
        "Settings",
        ("setting", "preference", "currency", "theme", "profile"),
        "Settings controls profile, default currency, notifications, and app behavior.",
    ),
    DocEntry(
        "Budgets",
        ("budget", "limit", "save", "goal"),
        "Budgets tracks category limits and progress against monthly targets.",
    ),
    DocEntry(
        "AI Chat",
        ("ai", "woo", "chat", "assistant", "help"),
        "Woo can answer finance questions, inspect data, and run approved actions.",
    ),
)
NO_DOCS_FOUND = "No specific help article found. Try a more precise query."


def search_docs(query: str) -> list[str]:
    normalized = query.lower()
    results = [
        f"{doc.topic}: {doc.content}"
        for doc in DOCS_INDEX
        if doc.topic.lower() in normalized
        or normalized in doc.topic.lower()
        or any(keyword in normalized for keyword in doc.keywords)
        or normalized in doc.content.lower()
    ]
    return results or [NO_DOCS_FOUND]


def parse_tool_arguments(raw: Any) -> dict[str, Any]:
    """Decode model-supplied arguments; anything malformed becomes ``{}``."""
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def next_monthly_date(today: date, day: int) -> date:
    """Next date on or after ``today`` falling on ``day``, clamped to month length."""

    def _clamped(year: int, month: int) -> date:
        return date(year, month, min(day, calendar.monthrange(year, month)[1]))

    candidate = _clamped(today.year, today.month)
    if candidate >= today:
        return candidate
    year, month = (today.year + 1, 1) if today.month == 12 else (today.year, today.month + 1)
    return _clamped(year, month)


@dataclass
class ToolOutcome:
    name: str
    result: dict[str, Any]
    client_action: ClientAction | None = None
    ok: bool = True

    def serialized(self) -> str:
        return json.dumps(self.result, default=str)


@dataclass
class _Hierarchy:
    banks: list[Bank]
    accounts: list[Account]
    balances: list[CurrencyBalance]
    accounts_by_bank: dict[str, list[Account]] = field(default_factory=dict)
    balances_by_account: dict[str, list[CurrencyBalance]] = field(default_factory=dict)

    @property
    def account_ids(self) -> list[str]:
        return [account.id for account in self.accounts]

    @property
    def balance_ids(self) -> list[str]:
        return [balance.id for balance in self.balances]


Handler = Callable[[Any], Awaitable[dict[str, Any] | tuple[dict[str, Any], ClientAction]]]


class ToolExecutor:
    """Runs catalog tools on behalf of one user.

    Only the tools offered to the model for the turn are executable; any other
    name comes back as ``UNKNOWN_TOOL``.
    """

    def __init__(
        self,
        store: FinanceDataStore,
        user_id: str,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        tools: Sequence[ToolSpec] = FINANCE_TOOLS,
    ) -> None:
        self._store = store
        self._offered = {spec.name: spec for spec in tools}
        self._user_id = user_id
        self._clock = clock
        self._handlers: dict[str, Handler] = {
            "search_transactions": self._search_transactions,
            "get_account_balance": self._get_account_balance,
            "get_bank_balance": self._get_bank_balance,
            "get_categories": self._get_categories,
            "get_subscriptions": self._get_subscriptions,
            "get_portfolio": self._get_portfolio,
            "get_investing_value": self._get_investing_value,
            "analyze_spending": self._analyze_spending,
            "create_transaction": self._create_transaction,
            "get_debts_and_credits": self._get_debts_and_credits,
            "get_upcoming_payments": self._get_upcoming_payments,
            "get_net_worth_breakdown": self._get_net_worth_breakdown,
            "navigate_to": self._navigate_to,
            "query_docs": self._query_docs,
        }

    async def execute(self, name: str, raw_arguments: Any) -> ToolOutcome:
        spec = self._offered.get(name)
        handler = self._handlers.get(name)
        if spec is None or handler is None:
            return ToolOutcome(
                name=name,
                result={"success": False, "code": "UNKNOWN_TOOL", "error": f"Unknown tool: {name}"},
                ok=False,
            )

        try:
            args = spec.args_model.model_validate(parse_tool_arguments(raw_arguments))
        except ValidationError as exc:
            return ToolOutcome(
                name=name,
                result={
                    "success": False,
                    "code": "INVALID_ARGS",
                    "error": "Arguments do not match tool schema.",
                    "details": exc.errors(include_url=False, include_context=False),
                },
                ok=False,
            )

        try:
            output = await handler(args)
        except ToolAccessDenied as exc:
            logger.warning(
                "tool_access_denied",
                extra={"tool": name, "user_id": self._user_id, "error": str(exc)},
            )
            return ToolOutcome(
                name=name,
                result={"success": False, "code": "ACCESS_DENIED", "error": str(exc)},
                ok=False,
            )
        except Exception as exc:
            logger.error(
                "tool_execution_failed",
                extra={"tool": name, "user_id": self._user_id, "error": str(exc)},
            )
            return ToolOutcome(
                name=name,
                result={
                    "success": False,
                    "code": "EXECUTION_ERROR",
                    "error": str(exc) or "Tool execution failed.",
                },
                ok=False,
            )

        if isinstance(output, tuple):
            result, action = output
            return ToolOutcome(name=name, result=result, client_action=action)
        return ToolOutcome(name=name, result=output)

    # -- helpers --

    def _today(self) -> date:
        return self._clock().date()

    async def _hierarchy(self) -> _Hierarchy:
        banks = await self._store.list_banks(self._user_id)
        accounts = await self._store.list_accounts([bank.id for bank in banks]) if banks else []
        balances = (
            await self._store.list_currency_balances([account.id for account in accounts])
            if accounts
            else []
        )
        hierarchy = _Hierarchy(banks=banks, accounts=accounts, balances=balances)
        for account in accounts:
            hierarchy.accounts_by_bank.setdefault(account.bank_id, []).append(account)
        for balance in balances:
            hierarchy.balances_by_account.setdefault(balance.account_id, []).append(balance)
        return hierarchy

    def _bank_payload(self, bank: Bank, hierarchy: _Hierarchy) -> dict[str, Any]:
        return {
            "name": bank.name,
            "accounts": [
                {
                    "name": account.name,
                    "type": account.type,
                    "balances": [
                        {
                            "id": balance.id,
                            "amount": balance.balance,
                            "currency": balance.currency_code,
                        }
                        for balance in hierarchy.balances_by_account.get(account.id, [])
                    ],
                }
                for account in hierarchy.accounts_by_bank.get(bank.id, [])
            ],
        }

    async def _rate_map(self, currency: str) -> dict[str, float]:
        rates = await self._store.list_fx_rates(currency, limit=100)
        result = {currency: 1.0}
        for rate in rates:
            result.setdefault(rate.from_currency, float(rate.rate))
        return result

    # -- handlers --

    async def _search_transactions(self, args: SearchTransactionsArgs) -> dict[str, Any]:
        hierarchy = await self._hierarchy()
        if not hierarchy.balance_ids:
            return {"transactions": []}
        rows = await self._store.search_transactions(
            hierarchy.balance_ids,
            start_date=args.start_date,
            end_date=args.end_date,
            category_id=args.category_id,
            type=args.type,
            min_amount=args.min_amount,
            max_amount=args.max_amount,
            limit=50,
        )
        categories = {item.id: item.name for item in await self._store.list_categories(self._user_id)}
        return {
            "transactions": [
                {
                    "id": row.id,
                    "date": row.date,
                    "amount": row.amount,
                    "description": row.description,
                    "category": categories.get(row.category_id),
                    "type": row.type,
                }
                for row in rows
            ]
        }

    async def _get_account_balance(self, args: NoArgs) -> dict[str, Any]:
        hierarchy = await self._hierarchy()
        return {"banks": [self._bank_payload(bank, hierarchy) for bank in hierarchy.banks]}

    async def _get_bank_balance(self, args: GetBankBalanceArgs) -> dict[str, Any]:
        hierarchy = await self._hierarchy()
        needle = args.bank_name.strip().lower()
        matches = [bank for bank in hierarchy.banks if needle in bank.name.lower()]
        # An exact name beats a partial one.
        matches.sort(key=lambda bank: bank.name.lower() != needle)

        def _summary(bank: Bank) -> dict[str, Any]:
            totals: dict[str, float] = {}
            for account in hierarchy.accounts_by_bank.get(bank.id, []):
                for balance in hierarchy.balances_by_account.get(account.id, []):
                    totals[balance.currency_code] = (
                        totals.get(balance.currency_code, 0.0) + balance.balance
                    )
            return {
                "bankName": bank.name,
                "totalsByCurrency": totals,
                **self._bank_payload(bank, hierarchy),
            }

        result: dict[str, Any] = {
            "query": args.bank_name,
            "matches": [_summary(bank) for bank in matches],
            "primaryMatch": _summary(matches[0]) if matches else None,
        }
        if not matches:
            result["availableBanks"] = [bank.name for bank in hierarchy.banks]
        return result

    async def _get_categories(self, args: NoArgs) -> dict[str, Any]:
        rows = await self._store.list_categories(self._user_id)
        return {
            "categories": [
                {"id": row.id, "name": row.name, "type": row.type, "icon": row.icon} for row in rows
            ]
        }

    async def _get_subscriptions(self, args: NoArgs) -> dict[str, Any]:
        rows = await self._store.list_subscriptions(self._user_id)
        return {
            "subscriptions": [
                {
                    "id": row.id,
                    "name": row.name,
                    "amount": row.amount,
                    "currency": row.currency,
                    "frequency": row.frequency,
                    "status": row.status,
                }
                for row in rows
            ]
        }

    async def _get_portfolio(self, args: NoArgs) -> dict[str, Any]:
        rows = await self._store.list_portfolio_holdings(self._user_id)
        return {
            "holdings": [
                {
                    "ticker": row.stock.ticker,
                    "name": row.stock.name,
                    "quantity": row.quantity,
                    "avgCost": row.average_cost_basis,
                }
                for row in rows
            ]
        }

    async def _get_investing_value(self, args: NoArgs) -> dict[str, Any]:
        rows = await self._store.list_portfolio_holdings(self._user_id)
        holdings: list[dict[str, Any]] = []
        totals: dict[str, dict[str, float]] = {}
        for row in rows:
            prices = await self._store.list_stock_prices(row.stock.id, "0000-01-01", limit=1)
            last = prices[0] if prices else None
            market_value = row.quantity * last.close if last else None
            cost_basis = row.quantity * row.average_cost_basis
            holdings.append(
                {
                    "ticker": row.stock.ticker,
                    "quantity": row.quantity,
                    "currency": row.stock.currency,
                    "lastPrice": last.close if last else None,
                    "priceDate": last.date if last else None,
                    "marketValue": round(market_value, 2) if market_value is not None else None,
                    "costBasis": round(cost_basis, 2),
                }
            )
            bucket = totals.setdefault(row.stock.currency, {"marketValue": 0.0, "costBasis": 0.0})
            bucket["costBasis"] += cost_basis
            if market_value is not None:
                bucket["marketValue"] += market_value
        for bucket in totals.values():
            bucket["gain"] = bucket["marketValue"] - bucket["costBasis"]
            for key in bucket:
                bucket[key] = round(bucket[key], 2)
        return {"holdings": holdings, "totalsByCurrency": totals}

    async def _analyze_spending(self, args: AnalyzeSpendingArgs) -> dict[str, Any]:
        hierarchy = await self._hierarchy()
        if not hierarchy.balance_ids:
            return {"spendingByCategory": []}
        rows = await self._store.spending_by_category(
            hierarchy.balance_ids, args.start_date, args.end_date
        )
        return {
            "spendingByCategory": [
                {
                    "categoryName": row.category_name,
                    "totalAmount": round(row.total_amount, 2),
                    "count": row.count,
                }
                for row in rows
            ]
        }

    async def _create_transaction(self, args: CreateTransactionArgs) -> dict[str, Any]:
        balance = await self._store.get_currency_balance(args.currency_balance_id)
        account = await self._store.get_account(balance.account_id) if balance else None
        bank = await self._store.get_bank(account.bank_id) if account else None
        if bank is None or bank.user_id != self._user_id:
            raise ToolAccessDenied(ACCESS_DENIED)
        category = await self._store.get_category(args.category_id)
        if category is None or category.user_id not in (None, self._user_id):
            raise ToolAccessDenied("Invalid category or access denied")

        description = args.description or "Added via AI"
        if args.dry_run:
            return {
                "dryRun": True,
                "preview": {
                    "amount": args.amount,
                    "description": description,
                    "date": args.date,
                    "categoryId": args.category_id,
                    "currencyBalanceId": args.currency_balance_id,
                    "type": args.type,
                },
                "message": "Dry run complete. No transaction was created.",
            }

        if args.idempotency_key:
            existing = await self._store.find_transaction_by_idempotency_key(
                args.currency_balance_id, args.idempotency_key
            )
            if existing is not None:
                logger.info(
                    "tool_transaction_replayed",
                    extra={"user_id": self._user_id, "transaction_id": existing.id},
                )
                return {"success": True, "transactionId": existing.id, "duplicate": True}

        created = await self._store.insert_transaction(
            Transaction(
                currency_balance_id=args.currency_balance_id,
                category_id=args.category_id,
                amount=args.amount,
                date=args.date,
                type=args.type,
                description=description,
                idempotency_key=args.idempotency_key,
            )
        )
        logger.info(
            "tool_transaction_created",
            extra={"user_id": self._user_id, "transaction_id": created.id},
        )
        return {"success": True, "transactionId": created.id}

    async def _get_debts_and_credits(self, args: NoArgs) -> dict[str, Any]:
        hierarchy = await self._hierarchy()
        debts = await self._store.list_debts(self._user_id)
        account_ids = hierarchy.account_ids
        credits = await self._store.list_credits(account_ids) if account_ids else []
        mortgages = await self._store.list_mortgages(account_ids) if account_ids else []
        return {
            "debts": [
                {"person": d.person_name, "amount": d.amount, "type": d.type, "status": d.status}
                for d in debts
            ],
            "credits": [
                {
                    "name": c.name,
                    "principal": c.principal_amount,
                    "remaining": c.remaining_balance,
                    "monthly": c.monthly_payment,
                }
                for c in credits
            ],
            "mortgages": [
                {"property": m.property_name, "remaining": m.remaining_balance, "monthly": m.monthly_payment}
                for m in mortgages
            ],
        }

    async def _get_upcoming_payments(self, args: UpcomingPaymentsArgs) -> dict[str, Any]:
        days = args.days or 30
        today = self._today()
        horizon = today + timedelta(days=days)
        hierarchy = await self._hierarchy()
        subscriptions = await self._store.list_subscriptions(self._user_id)
        account_ids = hierarchy.account_ids
        credits = await self._store.list_credits(account_ids) if account_ids else []
        mortgages = await self._store.list_mortgages(account_ids) if account_ids else []

        upcoming_subscriptions = []
        for item in subscriptions:
            if item.status != "active":
                continue
            next_date = next_monthly_date(today, item.billing_day) if item.billing_day else None
            if next_date is not None and next_date > horizon:
                continue
            upcoming_subscriptions.append(
                {
                    "name": item.name,
                    "amount": item.amount,
                    "currency": item.currency,
                    "frequency": item.frequency,
                    "nextDate": next_date.isoformat() if next_date else None,
                }
            )

        upcoming_mortgages = []
        for item in mortgages:
            next_date = next_monthly_date(today, item.payment_day) if item.payment_day else None
            if next_date is not None and next_date > horizon:
                continue
            upcoming_mortgages.append(
                {
                    "name": item.property_name,
                    "amount": item.monthly_payment,
                    "nextDate": next_date.isoformat() if next_date else "Monthly",
                }
            )

        return {
            "daysLookahead": days,
            "subscriptions": upcoming_subscriptions,
            "credits": [
                {"name": c.name, "amount": c.monthly_payment, "nextDate": "Monthly"} for c in credits
            ],
            "mortgages": upcoming_mortgages,
        }

    async def _get_net_worth_breakdown(self, args: NoArgs) -> dict[str, Any]:
        user = await self._store.get_user(self._user_id)
        default_currency = user.default_currency if user else "USD"
        hierarchy = await self._hierarchy()
        rates = await self._rate_map(default_currency)

        total = 0.0
        breakdown = []
        for bank in hierarchy.banks:
            bank_total = 0.0
            for account in hierarchy.accounts_by_bank.get(bank.id, []):
                for balance in hierarchy.balances_by_account.get(account.id, []):
                    bank_total += balance.balance * rates.get(balance.currency_code, 1.0)
            total += bank_total
            breakdown.append(
                {"bankName": bank.name, "totalValue": round(bank_total, 2), "currency": default_currency}
            )
        breakdown.sort(key=lambda item: item["totalValue"], reverse=True)
        return {
            "defaultCurrency": default_currency,
            "totalNetWorth": round(total, 2),
            "breakdown": breakdown,
        }

    async def _navigate_to(self, args: NavigateArgs) -> tuple[dict[str, Any], ClientAction]:
        return {"success": True, "path": args.path}, ClientAction(type="navigate", path=args.path)

    async def _query_docs(self, args: QueryDocsArgs) -> dict[str, Any]:
        return {"results": search_docs(args.query.strip())}
