"""Data-access contract the AI core consumes.

The relational schema and its transactions belong to the application's data
layer.  The core only needs the narrow set of reads and single-row writes
below; every method is a suspension point.
"""

from typing import Protocol

from woolet_ai.data.types import (
    Account,
    AiUsage,
    Bank,
    Category,
    ChatMessage,
    ChatSession,
    Credit,
    CurrencyBalance,
    Debt,
    Digest,
    DigestKind,
    FxRate,
    MonthlyCategorySpend,
    Mortgage,
    NewsItem,
    PortfolioHolding,
    SpendingByCategory,
    StockPrice,
    Subscription,
    Transaction,
    TransactionType,
    User,
)
from woolet_ai.models.ai_config import AiConfig


class FinanceDataStore(Protocol):
    async def get_user(self, user_id: str) -> User | None: ...

    async def list_banks(self, user_id: str) -> list[Bank]: ...

    async def list_accounts(self, bank_ids: list[str]) -> list[Account]: ...

    async def list_currency_balances(self, account_ids: list[str]) -> list[CurrencyBalance]: ...

    async def get_currency_balance(self, balance_id: str) -> CurrencyBalance | None: ...

    async def get_account(self, account_id: str) -> Account | None: ...

    async def get_bank(self, bank_id: str) -> Bank | None: ...

    async def list_categories(self, user_id: str) -> list[Category]:
        """Default categories plus the user's own."""

    async def get_category(self, category_id: str) -> Category | None: ...

    async def search_transactions(
        self,
        balance_ids: list[str],
        *,
        start_date: str | None = None,
        end_date: str | None = None,
        category_id: str | None = None,
        type: TransactionType | None = None,
        min_amount: float | None = None,
        max_amount: float | None = None,
        limit: int = 50,
    ) -> list[Transaction]:
        """Newest first."""

    async def insert_transaction(self, transaction: Transaction) -> Transaction: ...

    async def find_transaction_by_idempotency_key(
        self, currency_balance_id: str, idempotency_key: str
    ) -> Transaction | None: ...

    async def spending_by_category(
        self, balance_ids: list[str], start_date: str, end_date: str
    ) -> list[SpendingByCategory]: ...

    async def monthly_category_spend(
        self, user_id: str, since: str
    ) -> list[MonthlyCategorySpend]: ...

    async def list_subscriptions(self, user_id: str) -> list[Subscription]: ...

    async def list_debts(self, user_id: str) -> list[Debt]: ...

    async def list_credits(self, account_ids: list[str]) -> list[Credit]: ...

    async def list_mortgages(self, account_ids: list[str]) -> list[Mortgage]: ...

    async def list_portfolio_holdings(self, user_id: str) -> list[PortfolioHolding]: ...

    async def list_stock_prices(
        self, stock_id: str, since: str, limit: int = 7
    ) -> list[StockPrice]:
        """Newest first."""

    async def list_fx_rates(self, to_currency: str, limit: int = 100) -> list[FxRate]:
        """Newest first."""

    async def find_digest(
        self, user_id: str, digest_date: str, kind: DigestKind
    ) -> Digest | None: ...

    async def insert_digest(self, digest: Digest) -> Digest: ...

    async def update_digest_content(self, digest_id: str, content: str) -> None: ...

    async def count_digests(self, user_id: str, digest_date: str, kind: DigestKind) -> int: ...

    async def list_digests(self, user_id: str, limit: int = 30) -> list[Digest]:
        """Newest first."""

    async def insert_chat_session(self, session: ChatSession) -> ChatSession: ...

    async def get_chat_session(self, session_id: str, user_id: str) -> ChatSession | None: ...

    async def touch_chat_session(self, session_id: str) -> None: ...

    async def list_chat_sessions(self, user_id: str, limit: int = 20) -> list[ChatSession]: ...

    async def delete_chat_session(self, session_id: str, user_id: str) -> None: ...

    async def list_recent_chat_messages(
        self, session_id: str, limit: int
    ) -> list[ChatMessage]:
        """The most recent ``limit`` messages, oldest first."""

    async def list_chat_messages(self, session_id: str) -> list[ChatMessage]: ...

    async def insert_chat_message(self, message: ChatMessage) -> ChatMessage: ...

    async def get_ai_usage(self, user_id: str) -> AiUsage | None: ...

    async def save_ai_usage(self, usage: AiUsage) -> AiUsage: ...

    async def get_ai_config(self) -> AiConfig | None: ...

    async def save_ai_config(self, config: AiConfig) -> AiConfig: ...


class NewsSource(Protocol):
    async def get_news_for_ticker(self, ticker: str) -> list[NewsItem]: ...


class NoNewsSource:
    async def get_news_for_ticker(self, ticker: str) -> list[NewsItem]:
        _ = ticker
        return []
