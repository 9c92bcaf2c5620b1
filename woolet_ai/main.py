from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import cast

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from woolet_ai.alerts.reporter import ErrorReporter
from woolet_ai.api.routes import router
from woolet_ai.cache.store import CacheStore, RedisCacheStore, build_cache_store
from woolet_ai.chat.service import ChatService
from woolet_ai.config.settings import get_settings
from woolet_ai.core.errors import AppError, app_error_response, request_id_from_request
from woolet_ai.core.logging import configure_logging
from woolet_ai.data.memory import InMemoryFinanceStore
from woolet_ai.data.store import FinanceDataStore, NewsSource
from woolet_ai.metrics import metrics_router
from woolet_ai.middleware.auth import AuthMiddleware
from woolet_ai.middleware.request_id import RequestIDMiddleware
from woolet_ai.providers.base import ProviderName
from woolet_ai.providers.gateway import CompletionGateway
from woolet_ai.providers.registry import DefaultModels, ProviderClients, build_provider_clients
from woolet_ai.services.ai_config_service import AiConfigService
from woolet_ai.services.anomaly_service import AnomalyService
from woolet_ai.services.digest_service import DigestService
from woolet_ai.services.prompt_guard import PromptGuard
from woolet_ai.services.usage_service import UsageService


def create_app(
    store: FinanceDataStore | None = None,
    clients: ProviderClients | None = None,
    cache: CacheStore | None = None,
    news: NewsSource | None = None,
) -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    store = store if store is not None else InMemoryFinanceStore()
    clients = clients if clients is not None else build_provider_clients(settings)
    cache = cache if cache is not None else build_cache_store(settings)

    reporter = ErrorReporter(
        webhook_url=settings.error_webhook_url,
        secret=settings.error_webhook_secret,
        environment=settings.env,
        timeout_s=settings.error_webhook_timeout_s,
        max_retries=settings.error_webhook_max_retries,
    )
    config_service = AiConfigService(store, settings)
    gateway = CompletionGateway(
        clients,
        config_service,
        default_models=DefaultModels.from_settings(settings),
        env_provider_order=cast(list[ProviderName], settings.provider_order_list),
    )
    guard = PromptGuard(
        clients.groq,
        model=settings.prompt_guard_model,
        threshold=settings.prompt_guard_threshold,
    )
    usage = UsageService(
        store,
        daily_limits=settings.chat_daily_limit_map,
        lifetime_limits=settings.chat_lifetime_limit_map,
    )
    digest_service = DigestService(
        store,
        cache,
        gateway,
        reporter,
        news,
        guard=guard,
        lock_ttl_seconds=settings.digest_lock_ttl_seconds,
        custom_daily_limit=settings.custom_digest_daily_limit,
        max_stocks=settings.digest_max_stocks,
    )
    chat_service = ChatService(
        store,
        gateway,
        guard,
        usage,
        cache,
        max_tool_turns=settings.chat_max_tool_turns,
        history_limit=settings.chat_history_limit,
        trace_ttl_seconds=settings.agent_trace_ttl_seconds,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await digest_service.drain()
        await reporter.drain()
        if isinstance(cache, RedisCacheStore):
            await cache.close()

    app = FastAPI(title="Woolet AI", version="0.1.0", lifespan=lifespan)

    app.add_middleware(AuthMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.state.store = store
    app.state.cache = cache
    app.state.provider_clients = clients
    app.state.reporter = reporter
    app.state.ai_config_service = config_service
    app.state.gateway = gateway
    app.state.prompt_guard = guard
    app.state.usage_service = usage
    app.state.digest_service = digest_service
    app.state.anomaly_service = AnomalyService(store, gateway)
    app.state.chat_service = chat_service

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        request_id = request_id_from_request(request)
        return app_error_response(
            exc.status_code, exc.code, exc.error_type, exc.message, request_id, exc.retryable
        )

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        request_id = request_id_from_request(request)
        return app_error_response(
            422, "request_validation_failed", "validation", str(exc), request_id
        )

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = request_id_from_request(request)
        reporter.capture_exception(exc, tags={"service": "http"}, extra={"path": request.url.path})
        return app_error_response(
            500, "internal_error", "internal", "Internal server error", request_id
        )

    app.include_router(router)
    if settings.metrics_enabled:
        app.include_router(metrics_router)
    return app


app = create_app()
