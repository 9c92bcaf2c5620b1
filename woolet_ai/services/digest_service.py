"""Daily and custom market digests.

The daily digest is single-flight per (user, date): the first caller takes
the generation lock, marks the cell pending and starts the model call on a
background task, and every caller returns ``PENDING_DIGEST`` until the cell
is filled.  Custom digests are content-addressed by the sha256 of the
user's question and capped per day; they run inline and take no lock.
"""

import asyncio
import hashlib
import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from time import perf_counter
from typing import Any, Literal

from woolet_ai.alerts.reporter import ErrorReporter
from woolet_ai.cache.single_flight import PENDING_DIGEST, GenerationLease, SingleFlightCell
from woolet_ai.cache.store import CacheStore
from woolet_ai.core.errors import AppError, DigestGenerationTimeoutError, QuotaExceededError
from woolet_ai.data.store import FinanceDataStore, NewsSource, NoNewsSource
from woolet_ai.data.types import Digest
from woolet_ai.metrics import record_digest
from woolet_ai.providers.gateway import CompletionGateway
from woolet_ai.services.prompt_guard import PromptGuard

logger = logging.getLogger("woolet.digest")

DigestLength = Literal["short", "complete"]

DAILY_KIND = "daily"
CUSTOM_KIND = "custom"
MIN_DIGEST_LENGTH = 50
MIN_SPECS_LENGTH = 5
PRICE_LOOKBACK_DAYS = 7

NO_HOLDINGS_MESSAGE = (
    "You don't have any stocks in your portfolio yet. "
    "Add some positions to get a personalized news digest!"
)
EMPTY_PORTFOLIO_MESSAGE = "Your portfolio is currently empty (all positions sold)."


class DigestGenerationError(Exception):
    """The model call for a digest failed or returned unusable text."""


def seconds_until_end_of_day(now: datetime) -> int:
    """Seconds until the next UTC midnight, never less than 60."""
    tomorrow = (now.astimezone(UTC) + timedelta(days=1)).date()
    end = datetime(tomorrow.year, tomorrow.month, tomorrow.day, tzinfo=UTC)
    return max(60, int((end - now).total_seconds()))


def specs_hash(specs: str) -> str:
    return hashlib.sha256(specs.encode("utf-8")).hexdigest()


def daily_cache_key(user_id: str, digest_date: str) -> str:
    return f"digest:daily:{user_id}:{digest_date}"


def custom_cache_key(user_id: str, digest_date: str, hashed_specs: str) -> str:
    return f"digest:custom:{user_id}:{digest_date}:{hashed_specs}"


def build_digest_prompt(
    stocks_context: list[dict[str, Any]], length: DigestLength, specs: str | None
) -> str:
    length_instruction = (
        "Keep it concise: 200-300 words."
        if length == "short"
        else "Provide a complete digest: 900-1200 words."
    )
    specs_instruction = (
        f"User focus/questions:\n{specs}\n" if specs else "User focus/questions: None provided."
    )
    return f"""
You are a smart financial assistant for the app "Woolet".
Analyze the following portfolio stocks and their recent news/price action.
Generate a "Market Insight Digest" for the user.

Rules:
1. Focus on stocks with significant price changes or important news (contracts, earnings, mergers).
2. Look for ongoing trends and long-term implications, not just daily fluctuations.
3. If a stock is stable and has no major news, skip it or mention it briefly in a "Steady" section.
4. Use a friendly but professional tone.
5. Format the output in Markdown. Use emojis.
6. Start each stock section with the Ticker symbol in bold, e.g., **AAPL**.
7. Group by "🚀 Movers & Shakers" and "📰 Strategic Updates".
8. Do NOT give buy/sell recommendations. Base insights only on news and recent price action.
9. Start with a title line: "## Market Insight Digest 📊".
10. End with a line starting with "*" that says it's not investment advice and is based on current news.
11. {length_instruction}

{specs_instruction}

Data:
{json.dumps(stocks_context, indent=2)}
"""


class DigestService:
    def __init__(
        self,
        store: FinanceDataStore,
        cache: CacheStore,
        gateway: CompletionGateway,
        reporter: ErrorReporter,
        news: NewsSource | None = None,
        *,
        guard: PromptGuard | None = None,
        lock_ttl_seconds: int = 180,
        custom_daily_limit: int = 5,
        max_stocks: int = 10,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._store = store
        self._cache = cache
        self._gateway = gateway
        self._reporter = reporter
        self._news = news or NoNewsSource()
        self._guard = guard
        self._lock_ttl_seconds = lock_ttl_seconds
        self._custom_daily_limit = custom_daily_limit
        self._max_stocks = max_stocks
        self._clock = clock
        self._tasks: set[asyncio.Task[None]] = set()

    def today(self) -> str:
        return self._clock().date().isoformat()

    def _cache_ttl(self) -> int:
        return seconds_until_end_of_day(self._clock())

    def daily_cell(self, user_id: str, digest_date: str) -> SingleFlightCell:
        return SingleFlightCell(
            self._cache, daily_cache_key(user_id, digest_date), self._lock_ttl_seconds
        )

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # -- daily --

    async def get_daily_digest(
        self,
        user_id: str,
        length: DigestLength = "short",
        digest_date: str | None = None,
    ) -> str:
        """Return the day's digest or ``PENDING_DIGEST`` while it is generated."""
        digest_date = digest_date or self.today()
        try:
            return await self._get_daily_digest(user_id, length, digest_date)
        except AppError:
            raise
        except Exception as exc:
            logger.error(
                "digest_daily_unexpected_error",
                extra={"user_id": user_id, "digest_date": digest_date, "error": str(exc)},
            )
            self._reporter.capture_exception(
                exc,
                tags={"service": "digest-service", "method": "get_daily_digest"},
                extra={"user_id": user_id, "digest_length": length},
            )
            record_digest(DAILY_KIND, "error")
            raise AppError(
                500,
                "digest_unavailable",
                "digest",
                "Failed to fetch or generate digest. Our team has been notified.",
            ) from exc

    async def _get_daily_digest(
        self, user_id: str, length: DigestLength, digest_date: str
    ) -> str:
        cell = self.daily_cell(user_id, digest_date)

        current = await cell.read()
        if current.is_ready and current.value is not None:
            logger.info("digest_cache_hit", extra={"user_id": user_id, "kind": DAILY_KIND})
            record_digest(DAILY_KIND, "cache_hit")
            return current.value

        existing = await self._store.find_digest(user_id, digest_date, DAILY_KIND)
        if existing is not None and existing.content:
            logger.info("digest_store_hit", extra={"user_id": user_id, "kind": DAILY_KIND})
            await cell.fill(existing.content, self._cache_ttl())
            record_digest(DAILY_KIND, "store_hit")
            return existing.content

        lease = await cell.try_acquire()
        if lease is None:
            lock_ttl = await cell.lock_ttl()
            if lock_ttl > 0:
                logger.info(
                    "digest_generation_in_progress",
                    extra={"user_id": user_id, "lock_ttl": lock_ttl},
                )
                record_digest(DAILY_KIND, "pending")
                return PENDING_DIGEST
            # The lock vanished between the failed acquire and the TTL read.
            lease = await cell.try_acquire()
            if lease is None:
                lock_ttl = await cell.lock_ttl()
                if lock_ttl > 0:
                    record_digest(DAILY_KIND, "pending")
                    return PENDING_DIGEST
                logger.error(
                    "digest_lock_expired_without_result",
                    extra={"user_id": user_id, "digest_date": digest_date, "lock_ttl": lock_ttl},
                )
                self._reporter.capture_message(
                    "Digest generation lock expired without result",
                    level="warning",
                    tags={"service": "digest-generation"},
                    extra={"user_id": user_id, "digest_date": digest_date},
                )
                record_digest(DAILY_KIND, "lock_anomaly")
                raise DigestGenerationTimeoutError()

        await self._start_daily_generation(lease, user_id, length, digest_date)
        record_digest(DAILY_KIND, "started")
        return PENDING_DIGEST

    async def _start_daily_generation(
        self,
        lease: GenerationLease,
        user_id: str,
        length: DigestLength,
        digest_date: str,
    ) -> None:
        try:
            await lease.cell.mark_pending()
        except BaseException:
            await lease.release()
            raise
        logger.info(
            "digest_generation_started",
            extra={"user_id": user_id, "digest_date": digest_date, "digest_length": length},
        )
        task = asyncio.get_running_loop().create_task(
            self._run_daily_generation(lease, user_id, length, digest_date)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_daily_generation(
        self,
        lease: GenerationLease,
        user_id: str,
        length: DigestLength,
        digest_date: str,
    ) -> None:
        started = perf_counter()
        try:
            async with lease:
                content = await self._generate_digest_text(
                    user_id, length, purpose="daily-digest"
                )
                existing = await self._store.find_digest(user_id, digest_date, DAILY_KIND)
                if existing is not None:
                    await self._store.update_digest_content(existing.id, content)
                else:
                    await self._store.insert_digest(
                        Digest(
                            user_id=user_id,
                            digest_date=digest_date,
                            kind=DAILY_KIND,
                            content=content,
                        )
                    )
                await lease.cell.fill(content, self._cache_ttl())
        except Exception as exc:
            logger.error(
                "digest_generation_failed",
                extra={
                    "user_id": user_id,
                    "digest_date": digest_date,
                    "duration_ms": int((perf_counter() - started) * 1000),
                    "error": str(exc),
                },
            )
            self._reporter.capture_exception(
                exc,
                tags={"service": "digest-generation", "digest_type": DAILY_KIND},
                extra={"user_id": user_id, "digest_length": length, "digest_date": digest_date},
            )
            record_digest(DAILY_KIND, "failed")
            return

        logger.info(
            "digest_generation_stored",
            extra={
                "user_id": user_id,
                "digest_date": digest_date,
                "duration_ms": int((perf_counter() - started) * 1000),
                "content_length": len(content),
            },
        )
        record_digest(DAILY_KIND, "generated")

    async def drain(self) -> None:
        """Wait for in-flight background generations."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- custom --

    async def regenerate_digest(
        self,
        user_id: str,
        specs: str,
        length: DigestLength = "short",
        digest_date: str | None = None,
    ) -> str:
        digest_date = digest_date or self.today()
        trimmed = specs.strip()
        if len(trimmed) < MIN_SPECS_LENGTH:
            raise AppError(
                400,
                "invalid_specs",
                "invalid_request",
                "Please add a bit more detail for your custom digest.",
            )

        hashed = specs_hash(trimmed)
        cache_key = custom_cache_key(user_id, digest_date, hashed)
        cached = await self._cache.get(cache_key)
        if isinstance(cached, str) and cached:
            logger.info("digest_cache_hit", extra={"user_id": user_id, "kind": CUSTOM_KIND})
            record_digest(CUSTOM_KIND, "cache_hit")
            return cached

        if self._guard is not None:
            verdict = await self._guard.check(trimmed)
            if not verdict.is_safe:
                logger.warning(
                    "custom_digest_specs_blocked",
                    extra={"user_id": user_id, "score": verdict.score},
                )
                record_digest(CUSTOM_KIND, "blocked")
                raise AppError(
                    400,
                    "unsafe_specs",
                    "invalid_request",
                    "Your request could not be processed. Please rephrase it.",
                )

        existing_count = await self._store.count_digests(user_id, digest_date, CUSTOM_KIND)
        if existing_count >= self._custom_daily_limit:
            record_digest(CUSTOM_KIND, "quota_exceeded")
            raise QuotaExceededError(
                f"Daily digest regeneration limit reached ({self._custom_daily_limit}). "
                "Try again tomorrow.",
                code="digest_quota_exceeded",
            )

        started = perf_counter()
        try:
            content = await self._generate_digest_text(
                user_id, length, specs=trimmed, purpose="custom-digest"
            )
            await self._store.insert_digest(
                Digest(
                    user_id=user_id,
                    digest_date=digest_date,
                    kind=CUSTOM_KIND,
                    content=content,
                    specs=trimmed,
                    specs_hash=hashed,
                )
            )
            await self._cache.set(cache_key, content, self._cache_ttl())
        except Exception as exc:
            logger.error(
                "custom_digest_failed",
                extra={"user_id": user_id, "digest_date": digest_date, "error": str(exc)},
            )
            self._reporter.capture_exception(
                exc,
                tags={"service": "digest-generation", "digest_type": CUSTOM_KIND},
                extra={"user_id": user_id, "specs": trimmed},
            )
            record_digest(CUSTOM_KIND, "failed")
            raise AppError(
                500,
                "custom_digest_failed",
                "digest",
                "Failed to generate custom digest. Our team has been notified.",
            ) from exc

        logger.info(
            "custom_digest_generated",
            extra={
                "user_id": user_id,
                "duration_ms": int((perf_counter() - started) * 1000),
                "content_length": len(content),
            },
        )
        record_digest(CUSTOM_KIND, "generated")
        return content

    async def get_remaining_custom_digest_count(
        self, user_id: str, digest_date: str | None = None
    ) -> int:
        digest_date = digest_date or self.today()
        used = await self._store.count_digests(user_id, digest_date, CUSTOM_KIND)
        return max(0, self._custom_daily_limit - used)

    async def cache_digest_for_date(self, user_id: str, digest_date: str, content: str) -> None:
        """Warm the daily cell, e.g. after a digest was produced out of band."""
        await self.daily_cell(user_id, digest_date).fill(content, self._cache_ttl())

    async def list_digest_history(self, user_id: str, limit: int = 30) -> list[Digest]:
        return await self._store.list_digests(user_id, limit=max(1, min(limit, 100)))

    # -- generation --

    async def _generate_digest_text(
        self,
        user_id: str,
        length: DigestLength,
        *,
        purpose: str,
        specs: str | None = None,
    ) -> str:
        holdings = await self._store.list_portfolio_holdings(user_id)
        if not holdings:
            return NO_HOLDINGS_MESSAGE

        by_stock: dict[str, dict[str, Any]] = {}
        for holding in holdings:
            entry = by_stock.setdefault(
                holding.stock.id,
                {
                    "stock_id": holding.stock.id,
                    "ticker": holding.stock.ticker,
                    "name": holding.stock.name,
                    "quantity": 0.0,
                },
            )
            entry["quantity"] += float(holding.quantity)

        active = [entry for entry in by_stock.values() if entry["quantity"] > 0][
            : self._max_stocks
        ]
        if not active:
            return EMPTY_PORTFOLIO_MESSAGE

        since = (self._clock() - timedelta(days=PRICE_LOOKBACK_DAYS)).date().isoformat()

        async def _stock_context(entry: dict[str, Any]) -> dict[str, Any]:
            prices = await self._store.list_stock_prices(
                entry["stock_id"], since, limit=PRICE_LOOKBACK_DAYS
            )
            news = await self._news.get_news_for_ticker(entry["ticker"])
            return {
                "ticker": entry["ticker"],
                "name": entry["name"],
                "prices": [{"date": price.date, "close": price.close} for price in prices],
                "news": [{"title": item.title, "date": item.pub_date} for item in news],
            }

        stocks_context = await asyncio.gather(*(_stock_context(entry) for entry in active))
        prompt = build_digest_prompt(list(stocks_context), length, specs)

        try:
            generated = await self._gateway.generate_text(prompt, purpose=purpose)
            if len(generated.text) < MIN_DIGEST_LENGTH:
                raise DigestGenerationError("AI returned empty or too short response")
        except Exception as exc:
            self._reporter.capture_exception(
                exc,
                tags={"service": "ai-generation", "purpose": purpose},
                extra={"user_id": user_id, "stock_count": len(active), "has_specs": bool(specs)},
            )
            raise DigestGenerationError(f"AI generation failed: {exc}") from exc
        return generated.text
