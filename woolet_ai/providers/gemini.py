"""Gemini adapter."""

from __future__ import annotations

from typing import Any

import httpx

from woolet_ai.providers.base import (
    ProviderHTTPError,
    ProviderTransportError,
    ProviderUnknownError,
    ProviderValidationError,
)
from woolet_ai.providers.http_openai import VALIDATION_STATUS_CODES


class GeminiProvider:
    """Calls the Gemini ``generateContent`` REST API and unwraps the text.

    The integration has no system role; callers fold any system instruction
    into the prompt before calling :meth:`generate_text`.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://generativelanguage.googleapis.com",
        api_version: str = "v1beta",
        timeout_s: float = 60.0,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._api_version = api_version
        self._timeout = timeout_s

    async def generate_text(
        self, model: str, prompt: str, temperature: float | None = None
    ) -> str:
        body: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        }
        if temperature is not None:
            body["generationConfig"] = {"temperature": temperature}

        result = await self._post(
            path=f"/{self._api_version}/models/{model}:generateContent", body=body
        )
        return self._extract_text(result)

    @staticmethod
    def _extract_text(result: dict[str, Any]) -> str:
        candidates_raw = result.get("candidates")
        candidates = candidates_raw if isinstance(candidates_raw, list) else []
        if not candidates:
            feedback = result.get("promptFeedback")
            raise ProviderUnknownError(
                f"Gemini returned no candidates: {feedback}", code="provider_empty_response"
            )
        first = candidates[0] if isinstance(candidates[0], dict) else {}
        content_raw = first.get("content")
        content = content_raw if isinstance(content_raw, dict) else {}
        parts_raw = content.get("parts")
        parts = parts_raw if isinstance(parts_raw, list) else []
        return "".join(
            str(part.get("text", "")) for part in parts if isinstance(part, dict)
        )

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        headers = {
            "x-goog-api-key": self._api_key,
            "content-type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, headers=headers, json=body)
        except httpx.TimeoutException as exc:
            raise ProviderTransportError(
                f"Provider request timed out: {exc}", code="provider_timeout"
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderTransportError(
                f"Cannot connect to provider: {exc}", code="provider_connection_error"
            ) from exc

        if resp.status_code == 429:
            raise ProviderHTTPError(
                status_code=429,
                code="provider_rate_limited",
                message="Provider rate limit exceeded",
            )
        if resp.status_code in VALIDATION_STATUS_CODES:
            raise ProviderValidationError(
                f"Provider rejected request: {resp.text[:200]}",
                code="provider_bad_request",
                status_code=resp.status_code,
            )
        if resp.status_code >= 400:
            raise ProviderHTTPError(
                status_code=resp.status_code,
                code="provider_error",
                message=f"Provider returned {resp.status_code}: {resp.text[:200]}",
            )

        result: dict[str, Any] = resp.json()
        return result
