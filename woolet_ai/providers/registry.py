"""Provider registry and fallback policy."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import cast

from woolet_ai.config.settings import Settings
from woolet_ai.models.ai_config import AiConfig
from woolet_ai.providers.base import (
    ChatProvider,
    ChatProviderName,
    ProviderError,
    ProviderHTTPError,
    ProviderName,
    ProviderTransportError,
    ProviderUnknownError,
    ProviderValidationError,
    TextProvider,
)
from woolet_ai.providers.gemini import GeminiProvider
from woolet_ai.providers.http_openai import HTTPOpenAIProvider

logger = logging.getLogger("woolet.providers")

DEFAULT_PROVIDER_ORDER: tuple[ProviderName, ...] = ("openrouter", "groq", "openai", "gemini")
CHAT_PROVIDERS: frozenset[str] = frozenset({"openrouter", "openai", "groq"})
RETRYABLE_STATUS_CODES = frozenset({401, 403, 404, 408, 409, 429})


@dataclass(frozen=True)
class ProviderClients:
    """Client handles built once at startup; ``None`` means no API key."""

    openrouter: ChatProvider | None = None
    openai: ChatProvider | None = None
    groq: ChatProvider | None = None
    gemini: TextProvider | None = None

    def chat_client(self, provider: ChatProviderName) -> ChatProvider | None:
        return cast(ChatProvider | None, getattr(self, provider))

    def is_configured(self, provider: ProviderName) -> bool:
        return getattr(self, provider, None) is not None


@dataclass(frozen=True)
class DefaultModels:
    openrouter: str = "openrouter/auto"
    openai: str = "gpt-4o-mini"
    groq: str = "llama-3.1-8b-instant"
    gemini: str = "gemini-1.5-flash"

    @classmethod
    def from_settings(cls, settings: Settings) -> "DefaultModels":
        return cls(
            openrouter=settings.openrouter_chat_model,
            openai=settings.openai_chat_model,
            groq=settings.groq_chat_model,
            gemini=settings.gemini_model,
        )

    def for_provider(self, provider: ProviderName) -> str:
        return str(getattr(self, provider))


def build_provider_clients(settings: Settings) -> ProviderClients:
    openrouter_headers: dict[str, str] = {}
    if settings.openrouter_site_url:
        openrouter_headers["HTTP-Referer"] = settings.openrouter_site_url
    if settings.openrouter_app_name:
        openrouter_headers["X-Title"] = settings.openrouter_app_name

    clients = ProviderClients(
        openrouter=(
            HTTPOpenAIProvider(
                base_url=settings.openrouter_base_url,
                api_key=settings.openrouter_api_key,
                timeout_s=settings.provider_timeout_s,
                default_headers=openrouter_headers,
            )
            if settings.openrouter_api_key
            else None
        ),
        openai=(
            HTTPOpenAIProvider(
                base_url=settings.openai_base_url,
                api_key=settings.openai_api_key,
                timeout_s=settings.provider_timeout_s,
            )
            if settings.openai_api_key
            else None
        ),
        groq=(
            HTTPOpenAIProvider(
                base_url=settings.groq_base_url,
                api_key=settings.groq_api_key,
                timeout_s=settings.provider_timeout_s,
            )
            if settings.groq_api_key
            else None
        ),
        gemini=(
            GeminiProvider(
                api_key=settings.gemini_api_key,
                base_url=settings.gemini_base_url,
                timeout_s=settings.provider_timeout_s,
            )
            if settings.gemini_api_key
            else None
        ),
    )
    logger.info(
        "provider_clients_built",
        extra={
            "providers": [
                name for name in DEFAULT_PROVIDER_ORDER if clients.is_configured(name)
            ]
        },
    )
    return clients


def enabled_providers(
    order: Iterable[ProviderName] | None,
    config: AiConfig | None,
    clients: ProviderClients,
) -> list[ProviderName]:
    """Deduplicate ``order`` and keep providers that are configured and not disabled."""
    candidates = list(order or ())
    if not candidates:
        candidates = list(DEFAULT_PROVIDER_ORDER)

    seen: set[str] = set()
    result: list[ProviderName] = []
    for provider in candidates:
        if provider in seen:
            continue
        seen.add(provider)
        if config is not None and config.is_disabled(provider):
            continue
        if not clients.is_configured(provider):
            continue
        result.append(provider)
    return result


def should_fallback(error: BaseException) -> bool:
    """Return whether the next provider should be tried after ``error``."""
    failures = getattr(error, "failures", None)
    if failures:
        return should_fallback(failures[-1].error)
    if isinstance(error, ProviderValidationError):
        return False
    if isinstance(error, ProviderHTTPError):
        status = error.status_code or 0
        return status in RETRYABLE_STATUS_CODES or status >= 500
    if isinstance(error, (ProviderTransportError, ProviderUnknownError)):
        return True
    # Unclassified exceptions are treated like unknown provider errors.
    return True


def summarize_error(error: BaseException) -> str:
    if isinstance(error, ProviderError):
        return error.summary()
    status = getattr(error, "status_code", None)
    message = str(error) or type(error).__name__
    return f"{status}: {message}" if isinstance(status, int) else message
