import asyncio

import httpx
import pytest

from woolet_ai.providers.base import ProviderHTTPError, ProviderUnknownError
from woolet_ai.providers.gemini import GeminiProvider


def test_generate_text_joins_candidate_parts(monkeypatch) -> None:
    captured: dict[str, object] = {}

    async def fake_post(self, url: str, headers: dict[str, str], json: dict[str, object]):  # type: ignore[no-untyped-def]  # noqa: ANN001
        captured["url"] = url
        captured["headers"] = headers
        captured["json"] = json
        return httpx.Response(
            status_code=200,
            json={
                "candidates": [
                    {"content": {"parts": [{"text": "## Market "}, {"text": "Insight"}]}}
                ]
            },
        )

    monkeypatch.setattr("httpx.AsyncClient.post", fake_post)
    provider = GeminiProvider(api_key="g-key", base_url="https://gemini.test/")

    text = asyncio.run(provider.generate_text("gemini-1.5-flash", "hello", temperature=0.3))

    assert text == "## Market Insight"
    assert captured["url"] == "https://gemini.test/v1beta/models/gemini-1.5-flash:generateContent"
    assert captured["headers"]["x-goog-api-key"] == "g-key"  # type: ignore[index]
    body = captured["json"]
    assert body["contents"] == [{"role": "user", "parts": [{"text": "hello"}]}]  # type: ignore[index]
    assert body["generationConfig"] == {"temperature": 0.3}  # type: ignore[index]


def test_no_candidates_raises_unknown_error(monkeypatch) -> None:
    async def fake_post(self, url: str, headers: dict[str, str], json: dict[str, object]):  # type: ignore[no-untyped-def]  # noqa: ANN001
        return httpx.Response(
            status_code=200, json={"promptFeedback": {"blockReason": "SAFETY"}}
        )

    monkeypatch.setattr("httpx.AsyncClient.post", fake_post)
    provider = GeminiProvider(api_key="g-key")

    with pytest.raises(ProviderUnknownError, match="no candidates"):
        asyncio.run(provider.generate_text("gemini-1.5-flash", "hello"))


def test_server_error_maps_to_http_error(monkeypatch) -> None:
    async def fake_post(self, url: str, headers: dict[str, str], json: dict[str, object]):  # type: ignore[no-untyped-def]  # noqa: ANN001
        return httpx.Response(status_code=500, text="internal")

    monkeypatch.setattr("httpx.AsyncClient.post", fake_post)
    provider = GeminiProvider(api_key="g-key")

    with pytest.raises(ProviderHTTPError) as exc_info:
        asyncio.run(provider.generate_text("gemini-1.5-flash", "hello"))
    assert exc_info.value.status_code == 500
