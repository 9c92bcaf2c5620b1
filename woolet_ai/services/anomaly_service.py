import json
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, date, datetime

from woolet_ai.data.store import FinanceDataStore
from woolet_ai.providers.gateway import CompletionGateway

logger = logging.getLogger("woolet.anomalies")

COMPARISON_MONTHS = 3
RATIO_THRESHOLD = 1.5
MIN_ABSOLUTE_INCREASE = 100.0


@dataclass
class SpendingAnomaly:
    category: str
    current: float
    average: float
    percentage: float


@dataclass
class _CategoryStats:
    name: str
    current: float = 0.0
    history: list[float] = field(default_factory=list)


def _month_start(today: date, months_back: int) -> date:
    month_index = today.year * 12 + (today.month - 1) - months_back
    return date(month_index // 12, month_index % 12 + 1, 1)


def find_anomalies(
    rows: list[tuple[str, str, str, float]], current_month: str
) -> list[SpendingAnomaly]:
    """Flag categories whose current month is well above their recent average.

    ``rows`` are ``(category_id, category_name, "YYYY-MM", total)``.  A
    category is flagged when the current month exceeds 150% of the average
    of its earlier months and the increase is more than 100.
    """
    stats: dict[str, _CategoryStats] = {}
    for category_id, name, month, total in rows:
        entry = stats.setdefault(category_id, _CategoryStats(name=name))
        if month == current_month:
            entry.current += abs(total)
        else:
            entry.history.append(abs(total))

    anomalies: list[SpendingAnomaly] = []
    for entry in stats.values():
        if not entry.history:
            continue
        average = sum(entry.history) / len(entry.history)
        if entry.current > average * RATIO_THRESHOLD and entry.current > average + MIN_ABSOLUTE_INCREASE:
            anomalies.append(
                SpendingAnomaly(
                    category=entry.name,
                    current=entry.current,
                    average=average,
                    percentage=((entry.current - average) / average) * 100 if average else 0.0,
                )
            )
    return anomalies


class AnomalyService:
    def __init__(
        self,
        store: FinanceDataStore,
        gateway: CompletionGateway,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._clock = clock

    async def detect_spending_anomalies(self, user_id: str) -> str | None:
        """Return a short Markdown alert, or ``None`` when spending looks normal."""
        today = self._clock().date()
        since = _month_start(today, COMPARISON_MONTHS).isoformat()
        spend = await self._store.monthly_category_spend(user_id, since)
        anomalies = find_anomalies(
            [(row.category_id, row.category_name, row.month, row.total) for row in spend],
            today.isoformat()[:7],
        )
        if not anomalies:
            return None

        logger.info(
            "spending_anomalies_detected",
            extra={"user_id": user_id, "categories": [item.category for item in anomalies]},
        )
        prompt = f"""
You are a financial analyst for Woolet.
The user has some spending anomalies this month compared to their 3-month average.

Anomalies:
{json.dumps([asdict(item) for item in anomalies], indent=2)}

Task:
1. Generate a friendly, non-judgmental alert.
2. Point out the biggest increases.
3. Offer a generic tip for reducing spend in these specific categories (e.g. for "Dining Out", suggest cooking at home).
4. Keep it short (max 3 sentences per anomaly).
5. Format as Markdown.
"""
        generated = await self._gateway.generate_text(prompt, purpose="spending-anomalies")
        return generated.text or "No anomaly insights generated."
