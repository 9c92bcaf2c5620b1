"""HTTP client for OpenAI-compatible chat endpoints (OpenRouter, OpenAI, Groq)."""

from typing import Any

import httpx

from woolet_ai.providers.base import (
    ProviderHTTPError,
    ProviderTransportError,
    ProviderUnknownError,
    ProviderValidationError,
)

VALIDATION_STATUS_CODES = frozenset({400, 413, 422})


class HTTPOpenAIProvider:
    """Provider that calls any OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_s: float = 60.0,
        default_headers: dict[str, str] | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout_s
        self._default_headers = dict(default_headers) if default_headers else {}

    async def chat(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._post("/chat/completions", payload)

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        headers = {
            **self._default_headers,
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProviderTransportError(
                f"Provider request timed out: {exc}", code="provider_timeout"
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderTransportError(
                f"Cannot connect to provider: {exc}", code="provider_connection_error"
            ) from exc

        self._raise_for_status(resp)

        try:
            result = resp.json()
        except ValueError as exc:
            raise ProviderUnknownError(
                "Provider returned a non-JSON body", code="provider_invalid_body"
            ) from exc
        if not isinstance(result, dict):
            raise ProviderUnknownError(
                "Provider returned an unexpected payload", code="provider_invalid_body"
            )
        return result

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
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
                code="provider_upstream_error" if resp.status_code >= 500 else "provider_error",
                message=f"Provider returned {resp.status_code}",
            )
