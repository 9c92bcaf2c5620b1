import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from woolet_ai.core.errors import QuotaExceededError
from woolet_ai.data.store import FinanceDataStore
from woolet_ai.data.types import AiUsage

logger = logging.getLogger("woolet.usage")


def utc_today() -> str:
    return datetime.now(UTC).date().isoformat()


@dataclass
class UsageStats:
    tier: str
    daily: int
    lifetime: int
    daily_limit: int | None
    lifetime_limit: int | None

    @property
    def remaining_today(self) -> int | None:
        if self.daily_limit is None:
            return None
        return max(0, self.daily_limit - self.daily)

    @property
    def remaining_lifetime(self) -> int | None:
        if self.lifetime_limit is None:
            return None
        return max(0, self.lifetime_limit - self.lifetime)


class UsageService:
    """Per-user AI question counters with tier quotas.

    ``daily_limits`` and ``lifetime_limits`` map a tier name to its cap; a
    tier absent from both maps is unlimited.
    """

    def __init__(
        self,
        store: FinanceDataStore,
        daily_limits: dict[str, int] | None = None,
        lifetime_limits: dict[str, int] | None = None,
        today: Callable[[], str] = utc_today,
    ) -> None:
        self._store = store
        self._daily_limits = dict(daily_limits or {})
        self._lifetime_limits = dict(lifetime_limits or {})
        self._today = today

    async def get_usage(self, user_id: str) -> AiUsage:
        today = self._today()
        usage = await self._store.get_ai_usage(user_id)
        if usage is None:
            usage = await self._store.save_ai_usage(AiUsage(user_id=user_id, last_reset_date=today))
        elif usage.last_reset_date != today:
            usage.question_count_today = 0
            usage.last_reset_date = today
            usage = await self._store.save_ai_usage(usage)
        return usage

    def enforce_chat_limit(self, usage: AiUsage, tier: str) -> None:
        tier = (tier or "free").lower()
        lifetime_limit = self._lifetime_limits.get(tier)
        if lifetime_limit is not None and usage.question_count_lifetime >= lifetime_limit:
            logger.info(
                "chat_quota_exceeded",
                extra={"user_id": usage.user_id, "tier": tier, "window": "lifetime"},
            )
            raise QuotaExceededError(
                f"You've used all {lifetime_limit} free AI questions. "
                "Upgrade to Pro for daily AI questions."
            )
        daily_limit = self._daily_limits.get(tier)
        if daily_limit is not None and usage.question_count_today >= daily_limit:
            logger.info(
                "chat_quota_exceeded",
                extra={"user_id": usage.user_id, "tier": tier, "window": "daily"},
            )
            hint = "Upgrade to Premium for more questions per day." if tier == "pro" else (
                "Try again tomorrow."
            )
            raise QuotaExceededError(f"Daily AI question limit reached ({daily_limit}). {hint}")

    async def increment_usage(self, user_id: str) -> AiUsage:
        usage = await self.get_usage(user_id)
        usage.question_count_today += 1
        usage.question_count_lifetime += 1
        return await self._store.save_ai_usage(usage)

    async def get_usage_stats(self, user_id: str, tier: str) -> UsageStats:
        tier = (tier or "free").lower()
        usage = await self.get_usage(user_id)
        return UsageStats(
            tier=tier,
            daily=usage.question_count_today,
            lifetime=usage.question_count_lifetime,
            daily_limit=self._daily_limits.get(tier),
            lifetime_limit=self._lifetime_limits.get(tier),
        )
