"""Live progress log for one chat turn, kept in the cache for polling clients."""

import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any, Literal

from woolet_ai.cache.store import CacheStore

logger = logging.getLogger("woolet.chat.trace")

StepStatus = Literal["pending", "running", "done"]


@dataclass
class AgentTraceStep:
    key: str
    label: str
    status: StepStatus = "running"
    detail: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


def trace_cache_key(user_id: str, request_id: str) -> str:
    return f"chat:trace:{user_id}:{request_id}"


class AgentTrace:
    """Keyed, insertion-ordered steps; every change is written through to the cache.

    Without a request id the trace is only collected in memory and returned
    with the chat response.
    """

    def __init__(
        self,
        cache: CacheStore,
        user_id: str,
        request_id: str | None = None,
        ttl_seconds: int = 120,
    ) -> None:
        self._cache = cache
        self._user_id = user_id
        self._request_id = request_id
        self._ttl_seconds = ttl_seconds
        self._steps: dict[str, AgentTraceStep] = {}
        self.done = False

    @property
    def steps(self) -> list[AgentTraceStep]:
        return list(self._steps.values())

    async def upsert(
        self,
        key: str,
        label: str,
        status: StepStatus = "running",
        detail: str | None = None,
    ) -> None:
        step = self._steps.get(key)
        if step is None:
            self._steps[key] = AgentTraceStep(key=key, label=label, status=status, detail=detail)
        else:
            step.label = label
            step.status = status
            if detail is not None:
                step.detail = detail
        await self.persist()

    async def mark_done(self) -> None:
        for step in self._steps.values():
            if step.status != "done":
                step.status = "done"
        self.done = True
        await self.persist()

    def as_list(self) -> list[dict[str, Any]]:
        return [step.as_dict() for step in self._steps.values()]

    async def persist(self) -> None:
        if not self._request_id:
            return
        payload = {
            "trace": self.as_list(),
            "done": self.done,
            "updated_at": datetime.now(UTC).isoformat(),
        }
        try:
            await self._cache.set(
                trace_cache_key(self._user_id, self._request_id), payload, self._ttl_seconds
            )
        except Exception as exc:
            # Trace writes never fail the turn.
            logger.warning(
                "agent_trace_persist_failed",
                extra={"request_id": self._request_id, "error": str(exc)},
            )


async def get_live_trace(cache: CacheStore, user_id: str, request_id: str) -> dict[str, Any]:
    stored = await cache.get(trace_cache_key(user_id, request_id))
    if not isinstance(stored, dict):
        return {"trace": [], "done": False, "updated_at": None}
    return {
        "trace": list(stored.get("trace") or []),
        "done": bool(stored.get("done")),
        "updated_at": stored.get("updated_at"),
    }
