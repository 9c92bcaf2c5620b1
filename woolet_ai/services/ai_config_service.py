import logging
from typing import cast

from woolet_ai.config.settings import Settings
from woolet_ai.data.store import FinanceDataStore
from woolet_ai.models.ai_config import AiConfig, AiConfigUpdate, ModelSetting
from woolet_ai.providers.base import ProviderName
from woolet_ai.providers.registry import DEFAULT_PROVIDER_ORDER, DefaultModels

logger = logging.getLogger("woolet.ai_config")


def default_ai_config(settings: Settings) -> AiConfig:
    """Config derived from environment settings, used until an admin saves one."""
    order = cast(list[ProviderName], settings.provider_order_list) or list(DEFAULT_PROVIDER_ORDER)
    models = DefaultModels.from_settings(settings)
    return AiConfig(
        provider_order=order,
        default_provider=order[0],
        model_settings={
            provider: ModelSetting(model=models.for_provider(provider))
            for provider in DEFAULT_PROVIDER_ORDER
        },
        fallback_enabled=True,
    )


class AiConfigService:
    def __init__(self, store: FinanceDataStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    async def get_config(self) -> AiConfig:
        stored = await self._store.get_ai_config()
        if stored is not None:
            return stored
        return default_ai_config(self._settings)

    async def update_config(self, update: AiConfigUpdate) -> AiConfig:
        current = await self.get_config()
        changes = update.model_dump(exclude_none=True)
        if "model_settings" in changes:
            merged = dict(current.model_settings)
            merged.update(update.model_settings or {})
            changes["model_settings"] = merged
        updated = current.model_copy(update=changes)
        # Re-validate so a bad provider order is rejected before it is stored.
        updated = AiConfig.model_validate(updated.model_dump())
        saved = await self._store.save_ai_config(updated)
        logger.info(
            "ai_config_updated",
            extra={
                "provider_order": saved.provider_order,
                "default_provider": saved.default_provider,
                "fallback_enabled": saved.fallback_enabled,
            },
        )
        return saved

    async def reset_to_default(self) -> AiConfig:
        config = default_ai_config(self._settings)
        saved = await self._store.save_ai_config(config)
        logger.info("ai_config_reset", extra={"provider_order": saved.provider_order})
        return saved
