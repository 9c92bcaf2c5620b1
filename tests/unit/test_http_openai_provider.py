import asyncio

import httpx
import pytest

from woolet_ai.providers.base import (
    ProviderHTTPError,
    ProviderTransportError,
    ProviderUnknownError,
    ProviderValidationError,
)
from woolet_ai.providers.http_openai import HTTPOpenAIProvider


def test_chat_posts_payload_with_auth_and_default_headers(monkeypatch) -> None:
    captured: dict[str, object] = {}

    async def fake_post(self, url: str, json: dict[str, object], headers: dict[str, str]):  # type: ignore[no-untyped-def]  # noqa: ANN001
        captured["url"] = url
        captured["json"] = json
        captured["headers"] = headers
        return httpx.Response(
            status_code=200,
            json={"model": "openrouter/auto", "choices": [{"message": {"content": "hi"}}]},
        )

    monkeypatch.setattr("httpx.AsyncClient.post", fake_post)
    provider = HTTPOpenAIProvider(
        base_url="https://openrouter.ai/api/v1/",
        api_key="secret",
        default_headers={"X-Title": "Woolet"},
    )

    result = asyncio.run(provider.chat({"model": "openrouter/auto", "messages": []}))

    assert result["model"] == "openrouter/auto"
    assert captured["url"] == "https://openrouter.ai/api/v1/chat/completions"
    headers = captured["headers"]
    assert headers["Authorization"] == "Bearer secret"  # type: ignore[index]
    assert headers["X-Title"] == "Woolet"  # type: ignore[index]


def test_connect_error_maps_to_transport_error(monkeypatch) -> None:
    async def fake_post(self, url: str, json: dict[str, object], headers: dict[str, str]):  # type: ignore[no-untyped-def]  # noqa: ANN001
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr("httpx.AsyncClient.post", fake_post)
    provider = HTTPOpenAIProvider(base_url="https://example.test", api_key="secret")

    with pytest.raises(ProviderTransportError) as exc_info:
        asyncio.run(provider.chat({"model": "m", "messages": []}))
    assert exc_info.value.code == "provider_connection_error"


def test_timeout_maps_to_transport_error(monkeypatch) -> None:
    async def fake_post(self, url: str, json: dict[str, object], headers: dict[str, str]):  # type: ignore[no-untyped-def]  # noqa: ANN001
        raise httpx.ReadTimeout("read timed out")

    monkeypatch.setattr("httpx.AsyncClient.post", fake_post)
    provider = HTTPOpenAIProvider(base_url="https://example.test", api_key="secret")

    with pytest.raises(ProviderTransportError) as exc_info:
        asyncio.run(provider.chat({"model": "m", "messages": []}))
    assert exc_info.value.code == "provider_timeout"


def test_non_json_body_maps_to_unknown_error(monkeypatch) -> None:
    async def fake_post(self, url: str, json: dict[str, object], headers: dict[str, str]):  # type: ignore[no-untyped-def]  # noqa: ANN001
        return httpx.Response(status_code=200, text="<html>oops</html>")

    monkeypatch.setattr("httpx.AsyncClient.post", fake_post)
    provider = HTTPOpenAIProvider(base_url="https://example.test", api_key="secret")

    with pytest.raises(ProviderUnknownError):
        asyncio.run(provider.chat({"model": "m", "messages": []}))


def test_raise_for_status_rate_limit() -> None:
    with pytest.raises(ProviderHTTPError, match="rate limit") as exc_info:
        HTTPOpenAIProvider._raise_for_status(httpx.Response(status_code=429))
    assert exc_info.value.status_code == 429


@pytest.mark.parametrize("status_code", [400, 413, 422])
def test_raise_for_status_validation_errors(status_code: int) -> None:
    with pytest.raises(ProviderValidationError) as exc_info:
        HTTPOpenAIProvider._raise_for_status(
            httpx.Response(status_code=status_code, text="invalid")
        )
    assert exc_info.value.status_code == status_code


def test_raise_for_status_server_error() -> None:
    with pytest.raises(ProviderHTTPError, match="Provider returned 503") as exc_info:
        HTTPOpenAIProvider._raise_for_status(httpx.Response(status_code=503))
    assert exc_info.value.code == "provider_upstream_error"


def test_raise_for_status_ok_is_silent() -> None:
    HTTPOpenAIProvider._raise_for_status(httpx.Response(status_code=200, json={}))
