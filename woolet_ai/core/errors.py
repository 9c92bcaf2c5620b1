from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from fastapi import Request
from fastapi.responses import JSONResponse


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    type: str
    request_id: str
    retryable: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "type": self.type,
                "retryable": self.retryable,
                "request_id": self.request_id,
            }
        }


class AppError(Exception):
    retryable = False

    def __init__(self, status_code: int, code: str, error_type: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.error_type = error_type
        self.message = message


class QuotaExceededError(AppError):
    """A hard per-user limit was reached; the caller must wait or upgrade."""

    def __init__(self, message: str, code: str = "quota_exceeded"):
        super().__init__(403, code, "quota", message)


class DigestGenerationTimeoutError(AppError):
    """The generation lock disappeared without a result; safe to retry."""

    retryable = True

    def __init__(self, message: str = "Digest generation timed out. Please try again."):
        super().__init__(503, "digest_generation_timeout", "digest", message)


class NotFoundError(AppError):
    def __init__(self, message: str, code: str = "not_found"):
        super().__init__(404, code, "not_found", message)


def request_id_from_request(request: Request) -> str:
    state_id = getattr(request.state, "request_id", None)
    header_id = request.headers.get("x-request-id")
    return state_id or header_id or str(uuid4())


def app_error_response(
    status_code: int,
    code: str,
    error_type: str,
    message: str,
    request_id: str,
    retryable: bool = False,
) -> JSONResponse:
    envelope = ErrorEnvelope(
        code=code,
        message=message,
        type=error_type,
        request_id=request_id,
        retryable=retryable,
    )
    response = JSONResponse(status_code=status_code, content=envelope.as_dict())
    response.headers["x-request-id"] = request_id
    return response
