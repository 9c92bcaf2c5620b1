from pydantic import BaseModel, Field

from woolet_ai.providers.base import ProviderName


class ModelSetting(BaseModel):
    model: str
    enabled: bool = True


class AiConfig(BaseModel):
    """Administrative AI routing configuration, stored under id ``default``."""

    id: str = "default"
    provider_order: list[ProviderName] = Field(
        default_factory=lambda: ["openrouter", "groq", "openai", "gemini"]
    )
    default_provider: ProviderName | None = "openrouter"
    model_settings: dict[ProviderName, ModelSetting] = Field(default_factory=dict)
    fallback_enabled: bool = True

    def model_for(self, provider: ProviderName) -> str | None:
        setting = self.model_settings.get(provider)
        return setting.model if setting and setting.model else None

    def is_disabled(self, provider: ProviderName) -> bool:
        setting = self.model_settings.get(provider)
        return setting is not None and setting.enabled is False


class AiConfigUpdate(BaseModel):
    provider_order: list[ProviderName] | None = None
    default_provider: ProviderName | None = None
    model_settings: dict[ProviderName, ModelSetting] | None = None
    fallback_enabled: bool | None = None
