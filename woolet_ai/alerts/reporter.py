"""Fire-and-forget error reporting sink.

Every captured event is logged.  When a webhook URL is configured the event
is also POSTed as a JSON envelope from a background task:

    {
        "event_id": "evt-…",
        "level": "error",
        "timestamp": "2026-02-19T12:00:00+00:00",
        "environment": "prod",
        "title": "DigestGenerationError: …",
        "tags": {"service": "digest-generation"},
        "extra": {"user_id": "…"}
    }

Each POST carries an ``X-Woolet-Signature`` header with an HMAC-SHA256 of
the body keyed by the webhook secret.  Delivery never blocks or raises into
the caller.
"""

import asyncio
import hashlib
import hmac
import json
import logging
import traceback
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import httpx

logger = logging.getLogger("woolet.alerts")

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


@dataclass
class ReportDeliveryResult:
    event_id: str
    status_code: int | None = None
    success: bool = False
    error: str | None = None
    attempt_count: int = 1


class ErrorReporter:
    def __init__(
        self,
        webhook_url: str | None = None,
        secret: str = "",
        environment: str = "dev",
        timeout_s: float = 5.0,
        max_retries: int = 1,
        backoff_base_s: float = 0.2,
        backoff_max_s: float = 2.0,
    ) -> None:
        self._webhook_url = webhook_url
        self._secret = secret
        self._environment = environment
        self._timeout_s = timeout_s
        self._max_retries = max(max_retries, 0)
        self._backoff_base_s = max(backoff_base_s, 0.0)
        self._backoff_max_s = max(backoff_max_s, self._backoff_base_s)
        self._tasks: set[asyncio.Task[ReportDeliveryResult]] = set()

    def capture_exception(
        self,
        exc: BaseException,
        *,
        tags: dict[str, str] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        title = f"{type(exc).__name__}: {exc}"
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        self._capture("error", title, tags, extra, stack)

    def capture_message(
        self,
        message: str,
        *,
        level: str = "warning",
        tags: dict[str, str] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self._capture(level, message, tags, extra, None)

    def _capture(
        self,
        level: str,
        title: str,
        tags: dict[str, str] | None,
        extra: dict[str, Any] | None,
        stack: str | None,
    ) -> None:
        try:
            envelope: dict[str, Any] = {
                "event_id": f"evt-{uuid4().hex}",
                "level": level,
                "timestamp": datetime.now(UTC).isoformat(),
                "environment": self._environment,
                "title": title,
                "tags": dict(tags or {}),
                "extra": dict(extra or {}),
            }
            if stack:
                envelope["stacktrace"] = stack
            logger.log(
                logging.ERROR if level == "error" else logging.WARNING,
                "error_captured",
                extra={
                    "event_id": envelope["event_id"],
                    "report_level": level,
                    "title": title,
                    "tags": envelope["tags"],
                    "report_extra": envelope["extra"],
                },
            )
            if self._webhook_url:
                self._queue(envelope)
        except Exception as exc:  # pragma: no cover - reporting must never raise
            logger.warning("error_capture_failed", extra={"error": str(exc)})

    def _queue(self, envelope: dict[str, Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "error_report_skipped",
                extra={"event_id": envelope["event_id"], "reason": "no_running_loop"},
            )
            return
        task = loop.create_task(self.deliver(envelope))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _headers(self, body: str) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "User-Agent": "WooletAI"}
        if self._secret:
            signature = hmac.new(
                self._secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256
            ).hexdigest()
            headers["X-Woolet-Signature"] = f"sha256={signature}"
        return headers

    async def deliver(self, envelope: dict[str, Any]) -> ReportDeliveryResult:
        """POST one envelope with bounded retries."""
        event_id = str(envelope.get("event_id", ""))
        if not self._webhook_url:
            return ReportDeliveryResult(event_id=event_id, error="no webhook configured")
        body = json.dumps(envelope, separators=(",", ":"), ensure_ascii=True, default=str)
        headers = self._headers(body)

        last_error: str | None = None
        status_code: int | None = None
        for attempt in range(1 + self._max_retries):
            try:
                async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                    resp = await client.post(self._webhook_url, content=body, headers=headers)
                status_code = resp.status_code
                if 200 <= resp.status_code < 300:
                    return ReportDeliveryResult(
                        event_id=event_id,
                        status_code=resp.status_code,
                        success=True,
                        attempt_count=attempt + 1,
                    )
                last_error = f"status {resp.status_code}"
                if resp.status_code not in RETRYABLE_STATUS:
                    break
            except httpx.HTTPError as exc:
                last_error = f"attempt {attempt + 1}: {type(exc).__name__}: {exc}"
            if attempt < self._max_retries:
                await asyncio.sleep(min(self._backoff_base_s * (2**attempt), self._backoff_max_s))

        logger.warning(
            "error_report_delivery_failed",
            extra={"event_id": event_id, "status_code": status_code, "error": last_error},
        )
        return ReportDeliveryResult(
            event_id=event_id,
            status_code=status_code,
            success=False,
            error=last_error,
            attempt_count=attempt + 1,
        )

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
