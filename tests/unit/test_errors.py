from woolet_ai.core.errors import (
    DigestGenerationTimeoutError,
    ErrorEnvelope,
    NotFoundError,
    QuotaExceededError,
)


def test_error_envelope_shape() -> None:
    envelope = ErrorEnvelope(
        code="auth_invalid",
        message="Invalid API key",
        type="auth",
        request_id="req-1",
    )
    payload = envelope.as_dict()
    assert payload == {
        "error": {
            "code": "auth_invalid",
            "message": "Invalid API key",
            "type": "auth",
            "retryable": False,
            "request_id": "req-1",
        }
    }


def test_domain_errors_carry_status_and_retryability() -> None:
    quota = QuotaExceededError("limit reached")
    assert (quota.status_code, quota.code, quota.error_type) == (403, "quota_exceeded", "quota")
    assert quota.retryable is False

    timeout = DigestGenerationTimeoutError()
    assert timeout.status_code == 503
    assert timeout.retryable is True

    missing = NotFoundError("Chat session not found.", code="chat_session_not_found")
    assert missing.status_code == 404
    assert str(missing) == "Chat session not found."
