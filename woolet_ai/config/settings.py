from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

KNOWN_PROVIDERS = ("openrouter", "openai", "groq", "gemini")


def _parse_limit_map(raw: str) -> dict[str, int]:
    result: dict[str, int] = {}
    for item in raw.split(","):
        item = item.strip()
        if ":" not in item:
            continue
        tier, limit_str = item.split(":", 1)
        try:
            normalized_tier = tier.strip().lower()
            normalized_limit = int(limit_str.strip())
        except ValueError:
            continue
        if not normalized_tier or normalized_limit <= 0:
            continue
        result[normalized_tier] = normalized_limit
    return result


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="WOOLET_", case_sensitive=False)

    env: str = "dev"
    log_level: str = "INFO"
    api_keys: str = Field(default="dev-key", description="Comma separated API keys")
    admin_user_ids: str = Field(
        default="", description="Comma separated user ids allowed to change AI routing"
    )

    # Upstream AI providers
    openrouter_api_key: str | None = None
    openai_api_key: str | None = None
    gemini_api_key: str | None = None
    groq_api_key: str | None = None
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openai_base_url: str = "https://api.openai.com/v1"
    groq_base_url: str = "https://api.groq.com/openai/v1"
    gemini_base_url: str = "https://generativelanguage.googleapis.com"
    openrouter_site_url: str | None = None
    openrouter_app_name: str | None = None
    openrouter_chat_model: str = "openrouter/auto"
    openai_chat_model: str = "gpt-4o-mini"
    gemini_model: str = "gemini-1.5-flash"
    groq_chat_model: str = "llama-3.1-8b-instant"
    ai_provider_order: str = "openrouter,groq,openai,gemini"
    provider_timeout_s: float = 60.0

    # Prompt guard
    prompt_guard_model: str = "meta-llama/llama-prompt-guard-2-86m"
    prompt_guard_threshold: float = 0.93

    # Cache / lock backend
    cache_backend: str = "memory"
    redis_url: str | None = None
    redis_prefix: str = "woolet"

    # Digests
    digest_lock_ttl_seconds: int = 180
    custom_digest_daily_limit: int = 5
    digest_max_stocks: int = 10

    # Chat
    chat_max_tool_turns: int = 5
    chat_history_limit: int = 30
    agent_trace_ttl_seconds: int = 120
    chat_daily_limits: str = "pro:30,premium:200"
    chat_lifetime_limits: str = "free:3"

    # Error reporting
    error_webhook_url: str | None = None
    error_webhook_secret: str = ""
    error_webhook_timeout_s: float = 5.0
    error_webhook_max_retries: int = 1

    metrics_enabled: bool = True

    @property
    def api_key_set(self) -> set[str]:
        return {item.strip() for item in self.api_keys.split(",") if item.strip()}

    @property
    def admin_user_id_set(self) -> set[str]:
        return {item.strip() for item in self.admin_user_ids.split(",") if item.strip()}

    @property
    def provider_order_list(self) -> list[str]:
        return [
            item
            for item in (part.strip().lower() for part in self.ai_provider_order.split(","))
            if item in KNOWN_PROVIDERS
        ]

    @property
    def cache_backend_normalized(self) -> str:
        return self.cache_backend.strip().lower()

    @property
    def chat_daily_limit_map(self) -> dict[str, int]:
        """Parse ``tier:limit,tier:limit`` into a dict."""
        return _parse_limit_map(self.chat_daily_limits)

    @property
    def chat_lifetime_limit_map(self) -> dict[str, int]:
        return _parse_limit_map(self.chat_lifetime_limits)


@lru_cache
def get_settings() -> Settings:
    return Settings()


def clear_settings_cache() -> None:
    get_settings.cache_clear()
