from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from woolet_ai.providers.base import ProviderName

DigestLengthField = Literal["short", "complete"]


class DigestResponse(BaseModel):
    digest_date: str
    content: str | None
    pending: bool = False


class CustomDigestRequest(BaseModel):
    specs: str = Field(min_length=1, max_length=2000)
    length: DigestLengthField = "short"
    digest_date: str | None = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")


class RemainingDigestsResponse(BaseModel):
    digest_date: str
    remaining: int


class DigestHistoryItem(BaseModel):
    id: str
    digest_date: str
    kind: Literal["daily", "custom"]
    content: str
    specs: str | None = None
    created_at: datetime


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=4000)
    session_id: str | None = None
    trace_request_id: str | None = Field(default=None, max_length=128)


class ClientActionModel(BaseModel):
    type: Literal["navigate"] = "navigate"
    path: str


class ChatResponse(BaseModel):
    response: str
    session_id: str
    client_action: ClientActionModel | None = None
    agent_trace: list[dict[str, Any]] = Field(default_factory=list)


class LiveTraceResponse(BaseModel):
    trace: list[dict[str, Any]]
    done: bool
    updated_at: str | None = None


class UsageResponse(BaseModel):
    tier: str
    usage_today: int
    usage_lifetime: int
    daily_limit: int | None = None
    lifetime_limit: int | None = None
    remaining_today: int | None = None
    remaining_lifetime: int | None = None


class ChatSessionItem(BaseModel):
    id: str
    title: str
    created_at: datetime
    updated_at: datetime


class ChatMessageItem(BaseModel):
    id: str
    role: str
    content: str
    created_at: datetime


class ChatSessionDetail(ChatSessionItem):
    messages: list[ChatMessageItem]


class AiStatusResponse(BaseModel):
    enabled: dict[str, bool]
    configured: dict[str, bool]
    models: dict[str, str]
    provider_order: list[ProviderName]
    default_provider: ProviderName | None
    fallback_enabled: bool


class AnomalyInsightResponse(BaseModel):
    has_anomalies: bool
    insight: str | None = None
