"""Agentic chat loop: one user message in, one assistant reply out.

A turn passes the prompt guard and the tier quota, takes the navigation
fast path when the message is a plain "take me to" request, and otherwise
runs a bounded model/tool loop through the completion gateway.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from woolet_ai.cache.store import CacheStore
from woolet_ai.chat import trace as agent_trace
from woolet_ai.chat.intents import (
    is_finance_data_intent,
    is_navigation_intent,
    needs_currency_context,
    resolve_navigation_path,
)
from woolet_ai.chat.tools import FINANCE_TOOLS, GENERAL_TOOLS, ClientAction, ToolExecutor
from woolet_ai.chat.trace import AgentTrace
from woolet_ai.core.errors import AppError, NotFoundError
from woolet_ai.data.store import FinanceDataStore
from woolet_ai.data.types import ChatMessage, ChatSession
from woolet_ai.metrics import record_chat_turn
from woolet_ai.providers.base import CompletionRequest
from woolet_ai.providers.gateway import CompletionGateway
from woolet_ai.services.prompt_guard import PromptGuard
from woolet_ai.services.usage_service import UsageService, UsageStats

logger = logging.getLogger("woolet.chat")

BLOCKED_MESSAGE = "Looks like you are trying to prompt inject, huh? \U0001f928"
EMPTY_RESPONSE = "(No response)"
SESSION_TITLE_LENGTH = 30
FX_CONTEXT_LIMIT = 10

PAGE_NAMES = {
    "/dashboard": "Dashboard",
    "/transactions": "Transactions",
    "/accounts": "Accounts",
    "/investing": "Investing",
    "/insights": "Insights",
    "/budget": "Budget",
    "/subscriptions": "Subscriptions",
    "/debts": "Debts",
    "/settings": "Settings",
}


@dataclass
class ChatTurnResult:
    response: str
    session_id: str
    client_action: ClientAction | None = None
    agent_trace: list[dict[str, Any]] = field(default_factory=list)


def _session_title(message: str) -> str:
    return f"{message[:SESSION_TITLE_LENGTH]}..."


class ChatService:
    def __init__(
        self,
        store: FinanceDataStore,
        gateway: CompletionGateway,
        guard: PromptGuard,
        usage: UsageService,
        cache: CacheStore,
        *,
        max_tool_turns: int = 5,
        history_limit: int = 30,
        trace_ttl_seconds: int = 120,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._guard = guard
        self._usage = usage
        self._cache = cache
        self._max_tool_turns = max_tool_turns
        self._history_limit = history_limit
        self._trace_ttl_seconds = trace_ttl_seconds
        self._clock = clock

    async def run_chat_turn(
        self,
        user_id: str,
        message: str,
        *,
        session_id: str | None = None,
        trace_request_id: str | None = None,
        user_tier: str = "free",
    ) -> ChatTurnResult:
        trace = AgentTrace(self._cache, user_id, trace_request_id, self._trace_ttl_seconds)
        try:
            return await self._run(user_id, message, session_id, user_tier, trace)
        finally:
            await trace.mark_done()

    async def _run(
        self,
        user_id: str,
        message: str,
        session_id: str | None,
        user_tier: str,
        trace: AgentTrace,
    ) -> ChatTurnResult:
        await trace.upsert("guard", "Checking your message")
        usage, guard = await asyncio.gather(
            self._usage.get_usage(user_id), self._guard.check(message)
        )
        self._usage.enforce_chat_limit(usage, user_tier)
        if not guard.is_safe:
            logger.warning(
                "chat_message_blocked",
                extra={"user_id": user_id, "score": guard.score},
            )
            record_chat_turn("blocked", 0, 0)
            return ChatTurnResult(
                response=BLOCKED_MESSAGE,
                session_id=session_id or "blocked",
                agent_trace=trace.as_list(),
            )
        await trace.upsert("guard", "Checking your message", "done")

        navigation_path = (
            resolve_navigation_path(message) if is_navigation_intent(message) else None
        )
        resolved_session_id = await self._ensure_session(user_id, session_id, message)

        if navigation_path is not None:
            return await self._navigate(
                user_id, resolved_session_id, message, navigation_path, trace
            )

        await trace.upsert("context", "Loading your financial context")
        history, system_prompt = await asyncio.gather(
            self._load_history(resolved_session_id, session_id is not None),
            self._build_system_prompt(user_id, message),
        )
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": system_prompt},
            *history,
            {"role": "user", "content": message},
        ]
        await self._store.insert_chat_message(
            ChatMessage(session_id=resolved_session_id, role="user", content=message)
        )
        await trace.upsert("context", "Loading your financial context", "done")

        finance_intent = is_finance_data_intent(message)
        tools = FINANCE_TOOLS if finance_intent else GENERAL_TOOLS
        executor = ToolExecutor(self._store, user_id, self._clock, tools=tools)
        logger.info(
            "chat_turn_start",
            extra={
                "user_id": user_id,
                "session_id": resolved_session_id,
                "finance_intent": finance_intent,
                "tool_count": len(tools),
                "history_count": len(history),
            },
        )

        final_response = ""
        client_action: ClientAction | None = None
        model_calls = 0
        tool_calls_run = 0
        try:
            for turn in range(self._max_tool_turns):
                step_key = f"model:{turn}"
                await trace.upsert(step_key, "Thinking" if turn == 0 else "Reviewing results")
                model_calls += 1
                result = await self._gateway.create_chat_completion(
                    CompletionRequest(
                        messages=messages,
                        tools=[tool.to_openai() for tool in tools],
                        tool_choice="auto",
                    ),
                    purpose="chat",
                )
                await trace.upsert(step_key, "Thinking" if turn == 0 else "Reviewing results", "done")
                response_message = result.message
                if not response_message:
                    break
                messages.append({"role": "assistant", **response_message})
                if result.content:
                    final_response = result.content

                tool_calls = result.tool_calls
                if not tool_calls:
                    break

                for call in tool_calls:
                    outcome_message, action = await self._run_tool_call(executor, call, trace)
                    tool_calls_run += 1
                    messages.append(outcome_message)
                    if action is not None:
                        client_action = action
            else:
                logger.warning(
                    "chat_turn_budget_exhausted",
                    extra={"user_id": user_id, "max_tool_turns": self._max_tool_turns},
                )
        except AppError:
            record_chat_turn("failed", model_calls, tool_calls_run)
            raise
        except Exception as exc:
            logger.error(
                "chat_turn_failed",
                extra={"user_id": user_id, "session_id": resolved_session_id, "error": str(exc)},
            )
            record_chat_turn("failed", model_calls, tool_calls_run)
            raise AppError(
                502, "ai_unavailable", "upstream", str(exc) or "AI service error"
            ) from exc

        response_text = final_response or EMPTY_RESPONSE
        await trace.upsert("respond", "Writing the answer")
        await asyncio.gather(
            self._store.insert_chat_message(
                ChatMessage(session_id=resolved_session_id, role="assistant", content=response_text)
            ),
            self._usage.increment_usage(user_id),
        )
        record_chat_turn("completed", model_calls, tool_calls_run)
        logger.info(
            "chat_turn_complete",
            extra={
                "user_id": user_id,
                "session_id": resolved_session_id,
                "model_calls": model_calls,
                "tool_calls": tool_calls_run,
                "client_action": client_action.path if client_action else None,
            },
        )
        return ChatTurnResult(
            response=response_text,
            session_id=resolved_session_id,
            client_action=client_action,
            agent_trace=trace.as_list(),
        )

    async def _navigate(
        self,
        user_id: str,
        session_id: str,
        message: str,
        path: str,
        trace: AgentTrace,
    ) -> ChatTurnResult:
        response = f"Sure, taking you to {PAGE_NAMES.get(path, path)}."
        await trace.upsert("navigate", f"Opening {PAGE_NAMES.get(path, path)}", "done", path)
        await self._store.insert_chat_message(
            ChatMessage(session_id=session_id, role="user", content=message)
        )
        await asyncio.gather(
            self._store.insert_chat_message(
                ChatMessage(session_id=session_id, role="assistant", content=response)
            ),
            self._usage.increment_usage(user_id),
        )
        record_chat_turn("navigation", 0, 0)
        logger.info(
            "chat_navigation_fast_path",
            extra={"user_id": user_id, "session_id": session_id, "path": path},
        )
        return ChatTurnResult(
            response=response,
            session_id=session_id,
            client_action=ClientAction(type="navigate", path=path),
            agent_trace=trace.as_list(),
        )

    async def _run_tool_call(
        self,
        executor: ToolExecutor,
        call: dict[str, Any],
        trace: AgentTrace,
    ) -> tuple[dict[str, Any], ClientAction | None]:
        call_id = str(call.get("id") or "")
        function = call.get("function") if call.get("type", "function") == "function" else None
        if not isinstance(function, dict):
            content = '{"success": false, "code": "INVALID_TOOL", "error": "Unsupported tool call type."}'
            return {"role": "tool", "tool_call_id": call_id, "content": content}, None

        name = str(function.get("name") or "")
        step_key = f"tool:{call_id or name}"
        await trace.upsert(step_key, name, detail="running")
        outcome = await executor.execute(name, function.get("arguments"))
        await trace.upsert(step_key, name, "done", "ok" if outcome.ok else "error")
        logger.info(
            "chat_tool_executed",
            extra={"tool": name, "tool_call_id": call_id, "ok": outcome.ok},
        )
        return (
            {"role": "tool", "tool_call_id": call_id, "content": outcome.serialized()},
            outcome.client_action,
        )

    async def _ensure_session(self, user_id: str, session_id: str | None, message: str) -> str:
        if not session_id:
            created = await self._store.insert_chat_session(
                ChatSession(user_id=user_id, title=_session_title(message))
            )
            return created.id
        existing = await self._store.get_chat_session(session_id, user_id)
        if existing is None:
            raise NotFoundError("Chat session not found.", code="chat_session_not_found")
        await self._store.touch_chat_session(session_id)
        return session_id

    async def _load_history(self, session_id: str, should_load: bool) -> list[dict[str, Any]]:
        if not should_load:
            return []
        rows = await self._store.list_recent_chat_messages(session_id, self._history_limit)
        return [
            {"role": "assistant" if row.role == "assistant" else "user", "content": row.content}
            for row in rows
            if row.role in ("user", "assistant")
        ]

    async def _build_system_prompt(self, user_id: str, message: str) -> str:
        holdings = await self._store.list_portfolio_holdings(user_id)
        top = ", ".join(f"{item.stock.ticker} ({item.quantity:g})" for item in holdings[:3])
        today = self._clock().date().isoformat()

        lines = [
            "You are Woo, a helpful financial assistant inside the Woolet app.",
            "",
            "Rules:",
            "- Use the provided tools whenever the user's own data or an action is needed.",
            "- Never invent account, category or balance ids; look them up first.",
            "- Confirm the amount, date and account before creating a transaction if the request is ambiguous.",
            "- Keep answers concise and practical.",
            "",
            "User financial context:",
            f"- Portfolio positions: {len(holdings)}",
            f"- Top holdings: {top or 'None'}",
            f"- Today: {today}",
        ]
        if needs_currency_context(message):
            lines.extend(await self._currency_context(user_id))
        return "\n".join(lines)

    async def _currency_context(self, user_id: str) -> list[str]:
        user = await self._store.get_user(user_id)
        currency = user.default_currency if user else "USD"
        rates = await self._store.list_fx_rates(currency, limit=FX_CONTEXT_LIMIT * 5)
        seen: dict[str, str] = {}
        for rate in rates:
            if rate.from_currency not in seen and len(seen) < FX_CONTEXT_LIMIT:
                seen[rate.from_currency] = f"- 1 {rate.from_currency} = {rate.rate:g} {currency} ({rate.date})"
        if not seen:
            return [f"- Default currency: {currency}"]
        return [f"- Default currency: {currency}", "Latest exchange rates:", *seen.values()]

    # -- supplements --

    async def get_live_trace(self, user_id: str, request_id: str) -> dict[str, Any]:
        return await agent_trace.get_live_trace(self._cache, user_id, request_id)

    async def get_usage_stats(self, user_id: str, tier: str) -> UsageStats:
        return await self._usage.get_usage_stats(user_id, tier)

    async def list_sessions(self, user_id: str, limit: int = 20) -> list[ChatSession]:
        return await self._store.list_chat_sessions(user_id, max(1, min(limit, 100)))

    async def get_session(
        self, user_id: str, session_id: str
    ) -> tuple[ChatSession, list[ChatMessage]]:
        session = await self._store.get_chat_session(session_id, user_id)
        if session is None:
            raise NotFoundError("Chat session not found.", code="chat_session_not_found")
        return session, await self._store.list_chat_messages(session_id)

    async def delete_session(self, user_id: str, session_id: str) -> None:
        session = await self._store.get_chat_session(session_id, user_id)
        if session is None:
            raise NotFoundError("Chat session not found.", code="chat_session_not_found")
        await self._store.delete_chat_session(session_id, user_id)
        logger.info("chat_session_deleted", extra={"user_id": user_id, "session_id": session_id})
