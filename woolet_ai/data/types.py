from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal
from uuid import uuid4

DigestKind = Literal["daily", "custom"]
TransactionType = Literal["income", "expense", "transfer"]
ChatRole = Literal["user", "assistant", "tool"]


def _new_id() -> str:
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class User:
    id: str
    default_currency: str = "USD"


@dataclass
class Bank:
    id: str
    user_id: str
    name: str


@dataclass
class Account:
    id: str
    bank_id: str
    name: str
    type: str = "card"


@dataclass
class CurrencyBalance:
    id: str
    account_id: str
    currency_code: str
    balance: float


@dataclass
class Category:
    id: str
    name: str
    type: str = "expense"
    icon: str | None = None
    user_id: str | None = None


@dataclass
class Transaction:
    currency_balance_id: str
    category_id: str
    amount: float
    date: str
    type: TransactionType
    description: str | None = None
    idempotency_key: str | None = None
    id: str = field(default_factory=_new_id)


@dataclass
class Subscription:
    id: str
    user_id: str
    name: str
    amount: float
    currency: str
    frequency: str = "monthly"
    status: str = "active"
    billing_day: int | None = None


@dataclass
class Debt:
    id: str
    user_id: str
    person_name: str
    amount: float
    type: str
    status: str = "pending"


@dataclass
class Credit:
    id: str
    account_id: str
    name: str
    principal_amount: float
    remaining_balance: float
    monthly_payment: float


@dataclass
class Mortgage:
    id: str
    account_id: str
    property_name: str
    remaining_balance: float
    monthly_payment: float
    payment_day: int | None = None


@dataclass
class Stock:
    id: str
    ticker: str
    name: str
    currency: str = "USD"


@dataclass
class PortfolioHolding:
    id: str
    user_id: str
    stock: Stock
    quantity: float
    average_cost_basis: float = 0.0


@dataclass
class StockPrice:
    stock_id: str
    date: str
    close: float


@dataclass
class FxRate:
    from_currency: str
    to_currency: str
    rate: float
    date: str


@dataclass
class NewsItem:
    title: str
    pub_date: str | None = None


@dataclass
class Digest:
    user_id: str
    digest_date: str
    kind: DigestKind
    content: str
    specs: str | None = None
    specs_hash: str | None = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


@dataclass
class ChatSession:
    user_id: str
    title: str = "New Chat"
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


@dataclass
class ChatMessage:
    session_id: str
    role: ChatRole
    content: str
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_now)


@dataclass
class AiUsage:
    user_id: str
    last_reset_date: str
    question_count_today: int = 0
    question_count_lifetime: int = 0


@dataclass
class SpendingByCategory:
    category_name: str | None
    total_amount: float
    count: int


@dataclass
class MonthlyCategorySpend:
    category_id: str
    category_name: str
    month: str
    total: float
