"""Completion gateway: one logical request, tried provider by provider."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, cast

from woolet_ai.metrics import record_provider_attempt, record_provider_fallback
from woolet_ai.models.ai_config import AiConfig
from woolet_ai.providers.base import (
    ChatProviderName,
    CompletionRequest,
    ProviderError,
    ProviderName,
    as_provider_error,
)
from woolet_ai.providers.registry import (
    CHAT_PROVIDERS,
    DEFAULT_PROVIDER_ORDER,
    DefaultModels,
    ProviderClients,
    enabled_providers,
    should_fallback,
    summarize_error,
)
from woolet_ai.services.ai_config_service import AiConfigService

logger = logging.getLogger("woolet.gateway")


@dataclass
class ProviderFailure:
    provider: ProviderName
    error: ProviderError


class AllProvidersFailedError(Exception):
    """Every provider in the resolved order failed, or fallback stopped early."""

    def __init__(
        self,
        failures: list[ProviderFailure],
        purpose: str | None = None,
        kind: str = "chat",
    ):
        self.failures = failures
        self.purpose = purpose
        self.kind = kind
        label = f"All {kind} providers failed"
        if purpose:
            label += f" ({purpose})"
        details = " | ".join(
            f"{failure.provider} => {summarize_error(failure.error)}" for failure in failures
        )
        if not failures:
            details = "no provider is configured and enabled"
        super().__init__(f"{label}: {details}")


@dataclass
class CompletionResult:
    provider: ChatProviderName
    model: str
    response: dict[str, Any]
    attempts: int = 1

    @property
    def _choice(self) -> dict[str, Any]:
        choices = self.response.get("choices") or []
        return choices[0] if choices and isinstance(choices[0], dict) else {}

    @property
    def message(self) -> dict[str, Any]:
        message = self._choice.get("message")
        return message if isinstance(message, dict) else {}

    @property
    def finish_reason(self) -> str | None:
        return self._choice.get("finish_reason")

    @property
    def tool_calls(self) -> list[dict[str, Any]]:
        return list(self.message.get("tool_calls") or [])

    @property
    def content(self) -> str:
        return str(self.message.get("content") or "")


@dataclass
class GeneratedText:
    text: str
    provider: ProviderName
    model: str


@dataclass
class ProviderStatus:
    enabled: dict[str, bool]
    models: dict[str, str]
    provider_order: list[ProviderName]
    default_provider: ProviderName | None
    fallback_enabled: bool
    configured: dict[str, bool] = field(default_factory=dict)


def _ms(started: float) -> int:
    return int((perf_counter() - started) * 1000)


class CompletionGateway:
    def __init__(
        self,
        clients: ProviderClients,
        config_service: AiConfigService,
        default_models: DefaultModels | None = None,
        env_provider_order: Sequence[ProviderName] | None = None,
    ) -> None:
        self._clients = clients
        self._config_service = config_service
        self._default_models = default_models or DefaultModels()
        self._env_provider_order = list(env_provider_order or DEFAULT_PROVIDER_ORDER)

    @property
    def clients(self) -> ProviderClients:
        return self._clients

    def _resolve_order(
        self, provider_order: Sequence[ProviderName] | None, config: AiConfig
    ) -> list[ProviderName]:
        order = list(provider_order or config.provider_order or self._env_provider_order)
        return enabled_providers(order, config, self._clients)

    def _resolve_model(
        self,
        provider: ProviderName,
        models: dict[str, str] | None,
        config: AiConfig,
    ) -> str:
        override = (models or {}).get(provider)
        return override or config.model_for(provider) or self._default_models.for_provider(provider)

    async def create_chat_completion(
        self,
        request: CompletionRequest,
        *,
        provider_order: Sequence[ProviderName] | None = None,
        models: dict[str, str] | None = None,
        purpose: str | None = None,
        config: AiConfig | None = None,
    ) -> CompletionResult:
        started = perf_counter()
        ai_config = config or await self._config_service.get_config()
        providers = [
            cast(ChatProviderName, provider)
            for provider in self._resolve_order(provider_order, ai_config)
            if provider in CHAT_PROVIDERS
        ]
        purpose_label = purpose or "none"

        logger.info(
            "chat_completion_start",
            extra={
                "purpose": purpose_label,
                "providers": providers,
                "message_count": len(request.messages),
                "tool_count": len(request.tools or []),
            },
        )

        failures: list[ProviderFailure] = []
        for index, provider in enumerate(providers):
            client = self._clients.chat_client(provider)
            if client is None:
                continue
            model = self._resolve_model(provider, models, ai_config)
            provider_started = perf_counter()
            logger.info(
                "chat_completion_provider_attempt",
                extra={"provider": provider, "model": model, "purpose": purpose_label},
            )
            try:
                response = await client.chat(request.to_payload(model))
            except Exception as exc:
                error = as_provider_error(exc)
                record_provider_attempt(
                    provider, purpose_label, "failure", perf_counter() - provider_started
                )
                logger.error(
                    "chat_completion_provider_failed",
                    extra={
                        "provider": provider,
                        "purpose": purpose_label,
                        "duration_ms": _ms(provider_started),
                        "error": summarize_error(error),
                        "error_kind": error.kind,
                    },
                )
                failures.append(ProviderFailure(provider=provider, error=error))
                if not should_fallback(error) or ai_config.fallback_enabled is False:
                    break
                if index < len(providers) - 1:
                    record_provider_fallback(provider, purpose_label)
                continue

            result = CompletionResult(
                provider=provider,
                model=str(response.get("model") or model),
                response=response,
                attempts=len(failures) + 1,
            )
            record_provider_attempt(
                provider, purpose_label, "success", perf_counter() - provider_started
            )
            logger.info(
                "chat_completion_provider_success",
                extra={
                    "provider": provider,
                    "model": model,
                    "purpose": purpose_label,
                    "duration_ms": _ms(provider_started),
                    "total_duration_ms": _ms(started),
                    "finish_reason": result.finish_reason,
                    "has_tool_calls": bool(result.tool_calls),
                },
            )
            return result

        raise AllProvidersFailedError(failures, purpose=purpose, kind="chat")

    async def generate_text(
        self,
        prompt: str,
        *,
        system: str | None = None,
        purpose: str | None = None,
        temperature: float | None = None,
        provider_order: Sequence[ProviderName] | None = None,
        models: dict[str, str] | None = None,
        config: AiConfig | None = None,
    ) -> GeneratedText:
        started = perf_counter()
        ai_config = config or await self._config_service.get_config()
        providers = self._resolve_order(provider_order, ai_config)
        purpose_label = purpose or "none"

        logger.info(
            "text_generation_start",
            extra={
                "purpose": purpose_label,
                "providers": providers,
                "prompt_length": len(prompt),
                "has_system_prompt": bool(system),
            },
        )

        failures: list[ProviderFailure] = []
        for index, provider in enumerate(providers):
            provider_started = perf_counter()
            try:
                if provider == "gemini":
                    generated = await self._generate_gemini(
                        prompt, system, temperature, models, ai_config, purpose_label
                    )
                else:
                    messages: list[dict[str, Any]] = []
                    if system:
                        messages.append({"role": "system", "content": system})
                    messages.append({"role": "user", "content": prompt})
                    completion = await self.create_chat_completion(
                        CompletionRequest(messages=messages, temperature=temperature),
                        provider_order=[provider],
                        models=models,
                        purpose=purpose,
                        config=ai_config,
                    )
                    generated = GeneratedText(
                        text=completion.content,
                        provider=provider,
                        model=completion.model,
                    )
            except Exception as exc:
                error: BaseException = exc
                if isinstance(exc, AllProvidersFailedError) and exc.failures:
                    error = exc.failures[-1].error
                normalized = as_provider_error(error)
                logger.error(
                    "text_generation_provider_failed",
                    extra={
                        "provider": provider,
                        "purpose": purpose_label,
                        "duration_ms": _ms(provider_started),
                        "error": summarize_error(normalized),
                        "error_kind": normalized.kind,
                    },
                )
                failures.append(ProviderFailure(provider=provider, error=normalized))
                if not should_fallback(normalized) or ai_config.fallback_enabled is False:
                    break
                if index < len(providers) - 1:
                    record_provider_fallback(provider, purpose_label)
                continue

            logger.info(
                "text_generation_provider_success",
                extra={
                    "provider": generated.provider,
                    "model": generated.model,
                    "purpose": purpose_label,
                    "duration_ms": _ms(provider_started),
                    "total_duration_ms": _ms(started),
                    "output_length": len(generated.text),
                },
            )
            return generated

        raise AllProvidersFailedError(failures, purpose=purpose, kind="text")

    async def _generate_gemini(
        self,
        prompt: str,
        system: str | None,
        temperature: float | None,
        models: dict[str, str] | None,
        config: AiConfig,
        purpose_label: str,
    ) -> GeneratedText:
        client = self._clients.gemini
        if client is None:
            raise ProviderError("Gemini client not configured", code="provider_not_configured")
        model = self._resolve_model("gemini", models, config)
        logger.info(
            "text_generation_provider_attempt",
            extra={"provider": "gemini", "model": model, "purpose": purpose_label},
        )
        # Gemini has no system role here; fold the instruction into the prompt.
        full_prompt = f"System:\n{system}\n\nUser:\n{prompt}" if system else prompt
        started = perf_counter()
        try:
            text = await client.generate_text(model, full_prompt, temperature=temperature)
        except Exception:
            record_provider_attempt("gemini", purpose_label, "failure", perf_counter() - started)
            raise
        record_provider_attempt("gemini", purpose_label, "success", perf_counter() - started)
        return GeneratedText(text=text, provider="gemini", model=model)

    async def ai_status(self) -> ProviderStatus:
        configured = {
            provider: self._clients.is_configured(provider) for provider in DEFAULT_PROVIDER_ORDER
        }
        try:
            config = await self._config_service.get_config()
        except Exception as exc:
            logger.error("ai_status_config_unavailable", extra={"error": summarize_error(exc)})
            return ProviderStatus(
                enabled=dict(configured),
                models={
                    provider: self._default_models.for_provider(provider)
                    for provider in DEFAULT_PROVIDER_ORDER
                },
                provider_order=list(self._env_provider_order),
                default_provider="openrouter",
                fallback_enabled=True,
                configured=configured,
            )
        return ProviderStatus(
            enabled={
                provider: configured[provider] and not config.is_disabled(provider)
                for provider in DEFAULT_PROVIDER_ORDER
            },
            models={
                provider: config.model_for(provider) or self._default_models.for_provider(provider)
                for provider in DEFAULT_PROVIDER_ORDER
            },
            provider_order=list(config.provider_order or self._env_provider_order),
            default_provider=config.default_provider,
            fallback_enabled=config.fallback_enabled,
            configured=configured,
        )
