import asyncio

import pytest

from woolet_ai.core.errors import QuotaExceededError
from woolet_ai.data.memory import InMemoryFinanceStore
from woolet_ai.data.types import AiUsage
from woolet_ai.services.usage_service import UsageService


class _Day:
    def __init__(self, value: str) -> None:
        self.value = value

    def __call__(self) -> str:
        return self.value


def _service(store: InMemoryFinanceStore, day: _Day) -> UsageService:
    return UsageService(
        store,
        daily_limits={"pro": 30, "premium": 200},
        lifetime_limits={"free": 3},
        today=day,
    )


def test_increment_counts_both_windows() -> None:
    store = InMemoryFinanceStore()
    service = _service(store, _Day("2024-01-01"))

    async def _run() -> AiUsage:
        await service.increment_usage("u1")
        return await service.increment_usage("u1")

    usage = asyncio.run(_run())
    assert usage.question_count_today == 2
    assert usage.question_count_lifetime == 2


def test_daily_counter_resets_on_new_day() -> None:
    store = InMemoryFinanceStore()
    day = _Day("2024-01-01")
    service = _service(store, day)

    async def _run() -> AiUsage:
        await service.increment_usage("u1")
        day.value = "2024-01-02"
        return await service.get_usage("u1")

    usage = asyncio.run(_run())
    assert usage.question_count_today == 0
    assert usage.question_count_lifetime == 1
    assert usage.last_reset_date == "2024-01-02"


def test_free_tier_has_lifetime_cap() -> None:
    service = _service(InMemoryFinanceStore(), _Day("2024-01-01"))
    usage = AiUsage(user_id="u1", last_reset_date="2024-01-01", question_count_lifetime=3)

    with pytest.raises(QuotaExceededError, match="3 free AI questions") as exc_info:
        service.enforce_chat_limit(usage, "free")
    assert exc_info.value.status_code == 403


def test_pro_tier_daily_cap_suggests_premium() -> None:
    service = _service(InMemoryFinanceStore(), _Day("2024-01-01"))
    usage = AiUsage(
        user_id="u1",
        last_reset_date="2024-01-01",
        question_count_today=30,
        question_count_lifetime=500,
    )

    with pytest.raises(QuotaExceededError, match="Upgrade to Premium"):
        service.enforce_chat_limit(usage, "PRO")
    service.enforce_chat_limit(usage, "premium")


def test_unknown_tier_is_unlimited() -> None:
    service = _service(InMemoryFinanceStore(), _Day("2024-01-01"))
    usage = AiUsage(
        user_id="u1",
        last_reset_date="2024-01-01",
        question_count_today=10_000,
        question_count_lifetime=10_000,
    )
    service.enforce_chat_limit(usage, "enterprise")


def test_usage_stats_report_remaining() -> None:
    store = InMemoryFinanceStore()
    service = _service(store, _Day("2024-01-01"))

    async def _run():  # type: ignore[no-untyped-def]
        await service.increment_usage("u1")
        return await service.get_usage_stats("u1", "free")

    stats = asyncio.run(_run())
    assert stats.daily_limit is None
    assert stats.remaining_today is None
    assert stats.lifetime_limit == 3
    assert stats.remaining_lifetime == 2
