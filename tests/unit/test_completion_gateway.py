import asyncio
import logging
from typing import Any

import pytest

from woolet_ai.config.settings import Settings
from woolet_ai.data.memory import InMemoryFinanceStore
from woolet_ai.metrics import counter_value
from woolet_ai.models.ai_config import AiConfig
from woolet_ai.providers.base import (
    CompletionRequest,
    ProviderHTTPError,
    ProviderTransportError,
    ProviderValidationError,
)
from woolet_ai.providers.gateway import AllProvidersFailedError, CompletionGateway
from woolet_ai.providers.registry import ProviderClients
from woolet_ai.services.ai_config_service import AiConfigService


def _completion(content: str, model: str, tool_calls: list[dict[str, Any]] | None = None) -> dict:
    message: dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {
        "id": "cmpl-1",
        "object": "chat.completion",
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": message,
                "finish_reason": "tool_calls" if tool_calls else "stop",
            }
        ],
    }


class FakeChatProvider:
    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.payloads: list[dict[str, Any]] = []

    async def chat(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.payloads.append(payload)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeTextProvider:
    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[tuple[str, str, float | None]] = []

    async def generate_text(self, model: str, prompt: str, temperature: float | None = None) -> str:
        self.calls.append((model, prompt, temperature))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class _BrokenConfigStore(InMemoryFinanceStore):
    async def get_ai_config(self) -> AiConfig | None:
        raise ConnectionError("database unavailable")


def _gateway(
    clients: ProviderClients,
    config: AiConfig | None = None,
    store: InMemoryFinanceStore | None = None,
) -> CompletionGateway:
    store = store or InMemoryFinanceStore()
    store.ai_config = config
    settings = Settings(ai_provider_order="openrouter,groq,openai,gemini")
    return CompletionGateway(clients, AiConfigService(store, settings))


def _request() -> CompletionRequest:
    return CompletionRequest(messages=[{"role": "user", "content": "hello"}])


def test_falls_back_to_next_provider_on_server_error(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="woolet.gateway")
    openrouter = FakeChatProvider(ProviderHTTPError(500, "Provider returned 500"))
    openai = FakeChatProvider(_completion("hi there", "gpt-4o-mini"))
    gateway = _gateway(ProviderClients(openrouter=openrouter, openai=openai))

    result = asyncio.run(
        gateway.create_chat_completion(
            _request(), provider_order=["openrouter", "openai"], purpose="chat"
        )
    )

    assert result.provider == "openai"
    assert result.model == "gpt-4o-mini"
    assert result.content == "hi there"
    assert result.attempts == 2
    assert len(openrouter.payloads) == 1

    events = [record.getMessage() for record in caplog.records]
    assert events.count("chat_completion_provider_failed") == 1
    assert events.count("chat_completion_provider_success") == 1
    assert counter_value(
        "woolet_provider_fallbacks_total", {"from_provider": "openrouter", "purpose": "chat"}
    ) == 1.0


def test_all_providers_failing_names_every_provider() -> None:
    gateway = _gateway(
        ProviderClients(
            openrouter=FakeChatProvider(ProviderHTTPError(503, "Provider returned 503")),
            groq=FakeChatProvider(ProviderTransportError("Cannot connect to provider")),
            openai=FakeChatProvider(ProviderHTTPError(429, "Provider rate limit exceeded")),
        )
    )

    with pytest.raises(AllProvidersFailedError) as exc_info:
        asyncio.run(gateway.create_chat_completion(_request(), purpose="chat"))

    message = str(exc_info.value)
    assert message.startswith("All chat providers failed (chat): ")
    assert "openrouter => 503: Provider returned 503" in message
    assert "groq => Cannot connect to provider" in message
    assert "openai => 429: Provider rate limit exceeded" in message
    assert [failure.provider for failure in exc_info.value.failures] == [
        "openrouter",
        "groq",
        "openai",
    ]


def test_validation_error_fails_fast() -> None:
    openrouter = FakeChatProvider(ProviderValidationError("bad request", status_code=400))
    openai = FakeChatProvider(_completion("unused", "gpt-4o-mini"))
    gateway = _gateway(ProviderClients(openrouter=openrouter, openai=openai))

    with pytest.raises(AllProvidersFailedError):
        asyncio.run(
            gateway.create_chat_completion(_request(), provider_order=["openrouter", "openai"])
        )
    assert openai.payloads == []


def test_fallback_disabled_stops_after_first_failure() -> None:
    openrouter = FakeChatProvider(ProviderHTTPError(502, "bad gateway"))
    openai = FakeChatProvider(_completion("unused", "gpt-4o-mini"))
    config = AiConfig(provider_order=["openrouter", "openai"], fallback_enabled=False)
    gateway = _gateway(ProviderClients(openrouter=openrouter, openai=openai), config=config)

    with pytest.raises(AllProvidersFailedError) as exc_info:
        asyncio.run(gateway.create_chat_completion(_request()))
    assert len(exc_info.value.failures) == 1
    assert openai.payloads == []


def test_foreign_exceptions_are_wrapped_and_fall_back() -> None:
    openrouter = FakeChatProvider(KeyError("choices"))
    groq = FakeChatProvider(_completion("ok", "llama-3.1-8b-instant"))
    gateway = _gateway(ProviderClients(openrouter=openrouter, groq=groq))

    result = asyncio.run(gateway.create_chat_completion(_request()))
    assert result.provider == "groq"


def test_model_override_and_tools_are_sent() -> None:
    openrouter = FakeChatProvider(_completion("ok", "custom/model"))
    gateway = _gateway(ProviderClients(openrouter=openrouter))
    tools = [{"type": "function", "function": {"name": "get_categories", "parameters": {}}}]

    asyncio.run(
        gateway.create_chat_completion(
            CompletionRequest(
                messages=[{"role": "user", "content": "hi"}], tools=tools, tool_choice="auto"
            ),
            models={"openrouter": "custom/model"},
        )
    )

    payload = openrouter.payloads[0]
    assert payload["model"] == "custom/model"
    assert payload["tools"] == tools
    assert payload["tool_choice"] == "auto"


def test_tool_calls_are_exposed_on_result() -> None:
    call = {
        "id": "call-1",
        "type": "function",
        "function": {"name": "get_categories", "arguments": "{}"},
    }
    gateway = _gateway(
        ProviderClients(openrouter=FakeChatProvider(_completion("", "m", tool_calls=[call])))
    )
    result = asyncio.run(gateway.create_chat_completion(_request()))
    assert result.tool_calls == [call]
    assert result.finish_reason == "tool_calls"


def test_no_configured_provider_raises_aggregate_error() -> None:
    gateway = _gateway(ProviderClients())
    with pytest.raises(AllProvidersFailedError, match="no provider is configured"):
        asyncio.run(gateway.create_chat_completion(_request(), purpose="chat"))


def test_generate_text_folds_system_prompt_for_gemini() -> None:
    gemini = FakeTextProvider("A" * 80)
    gateway = _gateway(ProviderClients(gemini=gemini))

    generated = asyncio.run(
        gateway.generate_text("hello", system="Be brief", provider_order=["gemini"])
    )

    assert generated.provider == "gemini"
    assert generated.text == "A" * 80
    _, prompt, _ = gemini.calls[0]
    assert prompt == "System:\nBe brief\n\nUser:\nhello"


def test_generate_text_falls_back_from_chat_provider_to_gemini() -> None:
    openrouter = FakeChatProvider(ProviderHTTPError(503, "Provider returned 503"))
    gemini = FakeTextProvider("digest text")
    gateway = _gateway(ProviderClients(openrouter=openrouter, gemini=gemini))

    generated = asyncio.run(
        gateway.generate_text(
            "write", system="sys", purpose="daily-digest", provider_order=["openrouter", "gemini"]
        )
    )

    assert generated.provider == "gemini"
    assert openrouter.payloads[0]["messages"] == [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "write"},
    ]


def test_generate_text_all_failures_uses_text_label() -> None:
    gateway = _gateway(
        ProviderClients(
            openai=FakeChatProvider(ProviderHTTPError(500, "Provider returned 500")),
            gemini=FakeTextProvider(ProviderTransportError("timed out")),
        )
    )
    with pytest.raises(AllProvidersFailedError) as exc_info:
        asyncio.run(
            gateway.generate_text(
                "write", purpose="daily-digest", provider_order=["openai", "gemini"]
            )
        )
    message = str(exc_info.value)
    assert message.startswith("All text providers failed (daily-digest): ")
    assert "openai => 500: Provider returned 500" in message
    assert "gemini => timed out" in message


def test_ai_status_reports_configured_and_disabled_providers() -> None:
    config = AiConfig(
        provider_order=["groq", "openai"],
        default_provider="groq",
        model_settings={"openai": {"model": "gpt-4.1-mini", "enabled": False}},
    )
    gateway = _gateway(
        ProviderClients(openai=FakeChatProvider({}), groq=FakeChatProvider({})), config=config
    )

    status = asyncio.run(gateway.ai_status())

    assert status.provider_order == ["groq", "openai"]
    assert status.default_provider == "groq"
    assert status.enabled["groq"] is True
    assert status.enabled["openai"] is False
    assert status.enabled["openrouter"] is False
    assert status.configured["openai"] is True
    assert status.models["openai"] == "gpt-4.1-mini"


def test_ai_status_falls_back_to_environment_when_config_unavailable() -> None:
    gateway = _gateway(ProviderClients(groq=FakeChatProvider({})), store=_BrokenConfigStore())

    status = asyncio.run(gateway.ai_status())

    assert status.provider_order == ["openrouter", "groq", "openai", "gemini"]
    assert status.fallback_enabled is True
    assert status.enabled == {
        "openrouter": False,
        "groq": True,
        "openai": False,
        "gemini": False,
    }
