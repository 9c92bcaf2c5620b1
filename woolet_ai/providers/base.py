from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

ProviderName = Literal["openrouter", "openai", "groq", "gemini"]
ChatProviderName = Literal["openrouter", "openai", "groq"]


class ProviderError(Exception):
    """Base for the closed set of normalized upstream failures."""

    kind = "unknown"

    def __init__(
        self,
        message: str,
        code: str = "provider_error",
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code

    def summary(self) -> str:
        if self.status_code is not None:
            return f"{self.status_code}: {self.message}"
        return self.message


class ProviderTransportError(ProviderError):
    """Connection failure or timeout before a response was received."""

    kind = "transport"


class ProviderHTTPError(ProviderError):
    """Upstream answered with an error status code."""

    kind = "http_status"

    def __init__(self, status_code: int, message: str, code: str = "provider_error"):
        super().__init__(message, code=code, status_code=status_code)


class ProviderValidationError(ProviderError):
    """Upstream rejected the request itself as malformed."""

    kind = "validation"


class ProviderUnknownError(ProviderError):
    kind = "unknown"

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ProviderUnknownError":
        message = str(exc) or type(exc).__name__
        error = cls(message, code="provider_unknown_error")
        error.__cause__ = exc
        return error


def as_provider_error(exc: BaseException) -> ProviderError:
    if isinstance(exc, ProviderError):
        return exc
    return ProviderUnknownError.from_exception(exc)


@dataclass
class CompletionRequest:
    """One chat-completion call, independent of the provider that serves it."""

    messages: list[dict[str, Any]]
    tools: list[dict[str, Any]] | None = None
    tool_choice: str | None = None
    temperature: float | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_payload(self, model: str) -> dict[str, Any]:
        body: dict[str, Any] = {"model": model, "messages": self.messages}
        if self.tools:
            body["tools"] = self.tools
            if self.tool_choice:
                body["tool_choice"] = self.tool_choice
        if self.temperature is not None:
            body["temperature"] = self.temperature
        body.update(self.extra)
        return body


class ChatProvider(Protocol):
    async def chat(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Return the OpenAI-shaped chat.completion payload."""


class TextProvider(Protocol):
    async def generate_text(
        self, model: str, prompt: str, temperature: float | None = None
    ) -> str:
        """Return the generated text for a single prompt."""
