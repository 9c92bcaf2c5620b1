"""In-process implementation of ``FinanceDataStore``.

Backs local development and the test suite.  Every method completes without
yielding to the event loop, so single-row writes are atomic with respect to
other coroutines.
"""

from collections import defaultdict
from dataclasses import replace
from datetime import UTC, datetime

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
    PortfolioHolding,
    SpendingByCategory,
    StockPrice,
    Subscription,
    Transaction,
    TransactionType,
    User,
)
from woolet_ai.models.ai_config import AiConfig


class InMemoryFinanceStore:
    def __init__(self) -> None:
        self.users: dict[str, User] = {}
        self.banks: dict[str, Bank] = {}
        self.accounts: dict[str, Account] = {}
        self.balances: dict[str, CurrencyBalance] = {}
        self.categories: dict[str, Category] = {}
        self.transactions: list[Transaction] = []
        self.subscriptions: list[Subscription] = []
        self.debts: list[Debt] = []
        self.credits: list[Credit] = []
        self.mortgages: list[Mortgage] = []
        self.holdings: list[PortfolioHolding] = []
        self.stock_prices: dict[str, list[StockPrice]] = defaultdict(list)
        self.fx_rates: list[FxRate] = []
        self.digests: list[Digest] = []
        self.chat_sessions: dict[str, ChatSession] = {}
        self.chat_messages: list[ChatMessage] = []
        self.ai_usage: dict[str, AiUsage] = {}
        self.ai_config: AiConfig | None = None

    # -- seeding helpers --

    def add_user(self, user: User) -> User:
        self.users[user.id] = user
        return user

    def add_bank(self, bank: Bank) -> Bank:
        self.banks[bank.id] = bank
        return bank

    def add_account(self, account: Account) -> Account:
        self.accounts[account.id] = account
        return account

    def add_balance(self, balance: CurrencyBalance) -> CurrencyBalance:
        self.balances[balance.id] = balance
        return balance

    def add_category(self, category: Category) -> Category:
        self.categories[category.id] = category
        return category

    # -- users / hierarchy --

    async def get_user(self, user_id: str) -> User | None:
        return self.users.get(user_id)

    async def list_banks(self, user_id: str) -> list[Bank]:
        return [bank for bank in self.banks.values() if bank.user_id == user_id]

    async def list_accounts(self, bank_ids: list[str]) -> list[Account]:
        wanted = set(bank_ids)
        return [account for account in self.accounts.values() if account.bank_id in wanted]

    async def list_currency_balances(self, account_ids: list[str]) -> list[CurrencyBalance]:
        wanted = set(account_ids)
        return [balance for balance in self.balances.values() if balance.account_id in wanted]

    async def get_currency_balance(self, balance_id: str) -> CurrencyBalance | None:
        return self.balances.get(balance_id)

    async def get_account(self, account_id: str) -> Account | None:
        return self.accounts.get(account_id)

    async def get_bank(self, bank_id: str) -> Bank | None:
        return self.banks.get(bank_id)

    async def list_categories(self, user_id: str) -> list[Category]:
        return [
            category
            for category in self.categories.values()
            if category.user_id is None or category.user_id == user_id
        ]

    async def get_category(self, category_id: str) -> Category | None:
        return self.categories.get(category_id)

    # -- transactions --

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
        wanted = set(balance_ids)
        rows = [
            row
            for row in self.transactions
            if row.currency_balance_id in wanted
            and (start_date is None or row.date >= start_date)
            and (end_date is None or row.date <= end_date)
            and (category_id is None or row.category_id == category_id)
            and (type is None or row.type == type)
            and (min_amount is None or row.amount >= min_amount)
            and (max_amount is None or row.amount <= max_amount)
        ]
        rows.sort(key=lambda row: row.date, reverse=True)
        return rows[:limit]

    async def insert_transaction(self, transaction: Transaction) -> Transaction:
        self.transactions.append(transaction)
        return transaction

    async def find_transaction_by_idempotency_key(
        self, currency_balance_id: str, idempotency_key: str
    ) -> Transaction | None:
        for row in self.transactions:
            if (
                row.currency_balance_id == currency_balance_id
                and row.idempotency_key == idempotency_key
            ):
                return row
        return None

    async def spending_by_category(
        self, balance_ids: list[str], start_date: str, end_date: str
    ) -> list[SpendingByCategory]:
        rows = await self.search_transactions(
            balance_ids,
            start_date=start_date,
            end_date=end_date,
            type="expense",
            limit=len(self.transactions) or 1,
        )
        totals: dict[str | None, list[float]] = defaultdict(list)
        for row in rows:
            category = self.categories.get(row.category_id)
            totals[category.name if category else None].append(row.amount)
        return [
            SpendingByCategory(category_name=name, total_amount=sum(amounts), count=len(amounts))
            for name, amounts in totals.items()
        ]

    async def monthly_category_spend(
        self, user_id: str, since: str
    ) -> list[MonthlyCategorySpend]:
        totals: dict[tuple[str, str], float] = defaultdict(float)
        for row in self.transactions:
            category = self.categories.get(row.category_id)
            if category is None or category.user_id != user_id:
                continue
            if row.type != "expense" or row.date < since:
                continue
            totals[(category.id, row.date[:7])] += row.amount
        result = [
            MonthlyCategorySpend(
                category_id=category_id,
                category_name=self.categories[category_id].name,
                month=month,
                total=total,
            )
            for (category_id, month), total in totals.items()
        ]
        result.sort(key=lambda item: item.month, reverse=True)
        return result

    # -- recurring / liabilities --

    async def list_subscriptions(self, user_id: str) -> list[Subscription]:
        return [row for row in self.subscriptions if row.user_id == user_id]

    async def list_debts(self, user_id: str) -> list[Debt]:
        return [row for row in self.debts if row.user_id == user_id]

    async def list_credits(self, account_ids: list[str]) -> list[Credit]:
        wanted = set(account_ids)
        return [row for row in self.credits if row.account_id in wanted]

    async def list_mortgages(self, account_ids: list[str]) -> list[Mortgage]:
        wanted = set(account_ids)
        return [row for row in self.mortgages if row.account_id in wanted]

    # -- investing --

    async def list_portfolio_holdings(self, user_id: str) -> list[PortfolioHolding]:
        return [row for row in self.holdings if row.user_id == user_id]

    async def list_stock_prices(
        self, stock_id: str, since: str, limit: int = 7
    ) -> list[StockPrice]:
        rows = [row for row in self.stock_prices.get(stock_id, []) if row.date >= since]
        rows.sort(key=lambda row: row.date, reverse=True)
        return rows[:limit]

    async def list_fx_rates(self, to_currency: str, limit: int = 100) -> list[FxRate]:
        rows = [row for row in self.fx_rates if row.to_currency == to_currency]
        rows.sort(key=lambda row: row.date, reverse=True)
        return rows[:limit]

    # -- digests --

    async def find_digest(
        self, user_id: str, digest_date: str, kind: DigestKind
    ) -> Digest | None:
        return next(
            (
                row
                for row in self.digests
                if row.user_id == user_id and row.digest_date == digest_date and row.kind == kind
            ),
            None,
        )

    async def insert_digest(self, digest: Digest) -> Digest:
        self.digests.append(digest)
        return digest

    async def update_digest_content(self, digest_id: str, content: str) -> None:
        for index, row in enumerate(self.digests):
            if row.id == digest_id:
                self.digests[index] = replace(row, content=content, updated_at=datetime.now(UTC))
                return

    async def count_digests(self, user_id: str, digest_date: str, kind: DigestKind) -> int:
        return sum(
            1
            for row in self.digests
            if row.user_id == user_id and row.digest_date == digest_date and row.kind == kind
        )

    async def list_digests(self, user_id: str, limit: int = 30) -> list[Digest]:
        rows = [row for row in self.digests if row.user_id == user_id]
        rows.sort(key=lambda row: (row.digest_date, row.created_at), reverse=True)
        return rows[:limit]

    # -- chat --

    async def insert_chat_session(self, session: ChatSession) -> ChatSession:
        self.chat_sessions[session.id] = session
        return session

    async def get_chat_session(self, session_id: str, user_id: str) -> ChatSession | None:
        session = self.chat_sessions.get(session_id)
        if session is None or session.user_id != user_id:
            return None
        return session

    async def touch_chat_session(self, session_id: str) -> None:
        session = self.chat_sessions.get(session_id)
        if session is not None:
            session.updated_at = datetime.now(UTC)

    async def list_chat_sessions(self, user_id: str, limit: int = 20) -> list[ChatSession]:
        rows = [row for row in self.chat_sessions.values() if row.user_id == user_id]
        rows.sort(key=lambda row: row.updated_at, reverse=True)
        return rows[:limit]

    async def delete_chat_session(self, session_id: str, user_id: str) -> None:
        session = self.chat_sessions.get(session_id)
        if session is None or session.user_id != user_id:
            return
        del self.chat_sessions[session_id]
        self.chat_messages = [row for row in self.chat_messages if row.session_id != session_id]

    async def list_recent_chat_messages(
        self, session_id: str, limit: int
    ) -> list[ChatMessage]:
        rows = await self.list_chat_messages(session_id)
        return rows[-limit:] if limit > 0 else []

    async def list_chat_messages(self, session_id: str) -> list[ChatMessage]:
        # Insertion order breaks ties between messages created in the same instant.
        return [row for row in self.chat_messages if row.session_id == session_id]

    async def insert_chat_message(self, message: ChatMessage) -> ChatMessage:
        self.chat_messages.append(message)
        return message

    # -- usage / config --

    async def get_ai_usage(self, user_id: str) -> AiUsage | None:
        usage = self.ai_usage.get(user_id)
        return replace(usage) if usage else None

    async def save_ai_usage(self, usage: AiUsage) -> AiUsage:
        self.ai_usage[usage.user_id] = replace(usage)
        return usage

    async def get_ai_config(self) -> AiConfig | None:
        return self.ai_config.model_copy(deep=True) if self.ai_config else None

    async def save_ai_config(self, config: AiConfig) -> AiConfig:
        self.ai_config = config.model_copy(deep=True)
        return config
