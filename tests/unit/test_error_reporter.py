import asyncio
import hashlib
import hmac
import json
import logging

import httpx
import pytest

from woolet_ai.alerts.reporter import ErrorReporter


class _Response:
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code


def test_reporter_posts_signed_envelope(monkeypatch) -> None:
    captured: list[dict[str, object]] = []

    async def fake_post(self, url: str, content: str, headers: dict[str, str]):  # type: ignore[no-untyped-def]  # noqa: ANN001
        captured.append({"url": url, "content": content, "headers": headers})
        return _Response(200)

    monkeypatch.setattr("httpx.AsyncClient.post", fake_post)
    reporter = ErrorReporter(
        webhook_url="https://alerts.test/hook", secret="secret", environment="prod"
    )

    async def _run() -> None:
        try:
            raise ValueError("bad digest")
        except ValueError as exc:
            reporter.capture_exception(
                exc, tags={"service": "digest-generation"}, extra={"user_id": "u1"}
            )
        await reporter.drain()

    asyncio.run(_run())

    assert len(captured) == 1
    body = str(captured[0]["content"])
    envelope = json.loads(body)
    assert envelope["event_id"].startswith("evt-")
    assert envelope["title"] == "ValueError: bad digest"
    assert envelope["environment"] == "prod"
    assert envelope["tags"] == {"service": "digest-generation"}
    assert envelope["extra"] == {"user_id": "u1"}
    assert "Traceback" in envelope["stacktrace"]

    expected = hmac.new(b"secret", body.encode("utf-8"), hashlib.sha256).hexdigest()
    assert captured[0]["headers"]["X-Woolet-Signature"] == f"sha256={expected}"  # type: ignore[index]


def test_reporter_retries_retryable_status(monkeypatch) -> None:
    status_codes = [503, 200]

    async def fake_post(self, url: str, content: str, headers: dict[str, str]):  # type: ignore[no-untyped-def]  # noqa: ANN001
        return _Response(status_codes.pop(0))

    monkeypatch.setattr("httpx.AsyncClient.post", fake_post)
    reporter = ErrorReporter(
        webhook_url="https://alerts.test/hook", max_retries=1, backoff_base_s=0.0
    )

    result = asyncio.run(reporter.deliver({"event_id": "evt-1", "title": "x"}))

    assert result.success is True
    assert result.attempt_count == 2


def test_reporter_does_not_retry_client_errors(monkeypatch) -> None:
    calls: list[str] = []

    async def fake_post(self, url: str, content: str, headers: dict[str, str]):  # type: ignore[no-untyped-def]  # noqa: ANN001
        calls.append(url)
        return _Response(400)

    monkeypatch.setattr("httpx.AsyncClient.post", fake_post)
    reporter = ErrorReporter(
        webhook_url="https://alerts.test/hook", max_retries=3, backoff_base_s=0.0
    )

    result = asyncio.run(reporter.deliver({"event_id": "evt-1"}))

    assert result.success is False
    assert result.status_code == 400
    assert len(calls) == 1


def test_reporter_survives_transport_errors(monkeypatch) -> None:
    async def fake_post(self, url: str, content: str, headers: dict[str, str]):  # type: ignore[no-untyped-def]  # noqa: ANN001
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr("httpx.AsyncClient.post", fake_post)
    reporter = ErrorReporter(
        webhook_url="https://alerts.test/hook", max_retries=1, backoff_base_s=0.0
    )

    result = asyncio.run(reporter.deliver({"event_id": "evt-1"}))

    assert result.success is False
    assert result.attempt_count == 2
    assert "ConnectError" in (result.error or "")


def test_reporter_without_webhook_only_logs(caplog: pytest.LogCaptureFixture) -> None:
    reporter = ErrorReporter()
    with caplog.at_level(logging.WARNING, logger="woolet.alerts"):
        reporter.capture_message("Digest generation lock expired without result")
    record = next(item for item in caplog.records if item.getMessage() == "error_captured")
    assert record.title == "Digest generation lock expired without result"  # type: ignore[attr-defined]
    assert record.report_level == "warning"  # type: ignore[attr-defined]
