from typing import Literal

from fastapi import APIRouter, Query, Request, Response

from woolet_ai.cache.single_flight import PENDING_DIGEST
from woolet_ai.chat.service import ChatService
from woolet_ai.core.errors import AppError
from woolet_ai.models.ai_config import AiConfig, AiConfigUpdate
from woolet_ai.models.api import (
    AiStatusResponse,
    AnomalyInsightResponse,
    ChatMessageItem,
    ChatRequest,
    ChatResponse,
    ChatSessionDetail,
    ChatSessionItem,
    ClientActionModel,
    CustomDigestRequest,
    DigestHistoryItem,
    DigestResponse,
    LiveTraceResponse,
    RemainingDigestsResponse,
    UsageResponse,
)
from woolet_ai.providers.gateway import CompletionGateway
from woolet_ai.services.ai_config_service import AiConfigService
from woolet_ai.services.anomaly_service import AnomalyService
from woolet_ai.services.digest_service import DigestService

router = APIRouter()

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


def _user_id(request: Request) -> str:
    return request.state.user_id


def _require_admin(request: Request) -> None:
    if not getattr(request.state, "is_admin", False):
        raise AppError(403, "admin_required", "auth", "Admin access required")


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


# -- AI configuration --


@router.get("/v1/ai/status", response_model=AiStatusResponse)
async def ai_status(request: Request) -> AiStatusResponse:
    gateway: CompletionGateway = request.app.state.gateway
    status = await gateway.ai_status()
    return AiStatusResponse(
        enabled=status.enabled,
        configured=status.configured,
        models=status.models,
        provider_order=status.provider_order,
        default_provider=status.default_provider,
        fallback_enabled=status.fallback_enabled,
    )


@router.get("/v1/ai/config", response_model=AiConfig)
async def get_ai_config(request: Request) -> AiConfig:
    service: AiConfigService = request.app.state.ai_config_service
    return await service.get_config()


@router.put("/v1/ai/config", response_model=AiConfig)
async def update_ai_config(request: Request, payload: AiConfigUpdate) -> AiConfig:
    _require_admin(request)
    service: AiConfigService = request.app.state.ai_config_service
    return await service.update_config(payload)


@router.delete("/v1/ai/config", response_model=AiConfig)
async def reset_ai_config(request: Request) -> AiConfig:
    _require_admin(request)
    service: AiConfigService = request.app.state.ai_config_service
    return await service.reset_to_default()


# -- digests --


@router.get("/v1/digest/daily", response_model=DigestResponse)
async def daily_digest(
    request: Request,
    length: Literal["short", "complete"] = "short",
    digest_date: str | None = Query(default=None, pattern=DATE_PATTERN),
) -> DigestResponse:
    service: DigestService = request.app.state.digest_service
    resolved_date = digest_date or service.today()
    content = await service.get_daily_digest(_user_id(request), length, resolved_date)
    if content == PENDING_DIGEST:
        return DigestResponse(digest_date=resolved_date, content=None, pending=True)
    return DigestResponse(digest_date=resolved_date, content=content)


@router.post("/v1/digest/custom", response_model=DigestResponse)
async def custom_digest(request: Request, payload: CustomDigestRequest) -> DigestResponse:
    service: DigestService = request.app.state.digest_service
    resolved_date = payload.digest_date or service.today()
    content = await service.regenerate_digest(
        _user_id(request), payload.specs, payload.length, resolved_date
    )
    return DigestResponse(digest_date=resolved_date, content=content)


@router.get("/v1/digest/remaining", response_model=RemainingDigestsResponse)
async def remaining_digests(
    request: Request,
    digest_date: str | None = Query(default=None, pattern=DATE_PATTERN),
) -> RemainingDigestsResponse:
    service: DigestService = request.app.state.digest_service
    resolved_date = digest_date or service.today()
    remaining = await service.get_remaining_custom_digest_count(_user_id(request), resolved_date)
    return RemainingDigestsResponse(digest_date=resolved_date, remaining=remaining)


@router.get("/v1/digest/history", response_model=list[DigestHistoryItem])
async def digest_history(
    request: Request, limit: int = Query(default=30, ge=1, le=100)
) -> list[DigestHistoryItem]:
    service: DigestService = request.app.state.digest_service
    rows = await service.list_digest_history(_user_id(request), limit)
    return [
        DigestHistoryItem(
            id=row.id,
            digest_date=row.digest_date,
            kind=row.kind,
            content=row.content,
            specs=row.specs,
            created_at=row.created_at,
        )
        for row in rows
    ]


# -- chat --


@router.post("/v1/chat", response_model=ChatResponse)
async def chat(request: Request, payload: ChatRequest) -> ChatResponse:
    service: ChatService = request.app.state.chat_service
    result = await service.run_chat_turn(
        _user_id(request),
        payload.message,
        session_id=payload.session_id,
        trace_request_id=payload.trace_request_id,
        user_tier=request.state.user_tier,
    )
    action = result.client_action
    return ChatResponse(
        response=result.response,
        session_id=result.session_id,
        client_action=ClientActionModel(type=action.type, path=action.path) if action else None,
        agent_trace=result.agent_trace,
    )


@router.get("/v1/chat/traces/{request_id}", response_model=LiveTraceResponse)
async def chat_trace(request: Request, request_id: str) -> LiveTraceResponse:
    service: ChatService = request.app.state.chat_service
    return LiveTraceResponse(**await service.get_live_trace(_user_id(request), request_id))


@router.get("/v1/chat/usage", response_model=UsageResponse)
async def chat_usage(request: Request) -> UsageResponse:
    service: ChatService = request.app.state.chat_service
    stats = await service.get_usage_stats(_user_id(request), request.state.user_tier)
    return UsageResponse(
        tier=stats.tier,
        usage_today=stats.daily,
        usage_lifetime=stats.lifetime,
        daily_limit=stats.daily_limit,
        lifetime_limit=stats.lifetime_limit,
        remaining_today=stats.remaining_today,
        remaining_lifetime=stats.remaining_lifetime,
    )


@router.get("/v1/chat/sessions", response_model=list[ChatSessionItem])
async def list_chat_sessions(
    request: Request, limit: int = Query(default=20, ge=1, le=100)
) -> list[ChatSessionItem]:
    service: ChatService = request.app.state.chat_service
    sessions = await service.list_sessions(_user_id(request), limit)
    return [
        ChatSessionItem(
            id=item.id, title=item.title, created_at=item.created_at, updated_at=item.updated_at
        )
        for item in sessions
    ]


@router.get("/v1/chat/sessions/{session_id}", response_model=ChatSessionDetail)
async def get_chat_session(request: Request, session_id: str) -> ChatSessionDetail:
    service: ChatService = request.app.state.chat_service
    session, messages = await service.get_session(_user_id(request), session_id)
    return ChatSessionDetail(
        id=session.id,
        title=session.title,
        created_at=session.created_at,
        updated_at=session.updated_at,
        messages=[
            ChatMessageItem(
                id=item.id, role=item.role, content=item.content, created_at=item.created_at
            )
            for item in messages
        ],
    )


@router.delete("/v1/chat/sessions/{session_id}", status_code=204)
async def delete_chat_session(request: Request, session_id: str) -> Response:
    service: ChatService = request.app.state.chat_service
    await service.delete_session(_user_id(request), session_id)
    return Response(status_code=204)


# -- insights --


@router.get("/v1/insights/anomalies", response_model=AnomalyInsightResponse)
async def spending_anomalies(request: Request) -> AnomalyInsightResponse:
    service: AnomalyService = request.app.state.anomaly_service
    insight = await service.detect_spending_anomalies(_user_id(request))
    return AnomalyInsightResponse(has_anomalies=insight is not None, insight=insight)
