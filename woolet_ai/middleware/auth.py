from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from woolet_ai.config.settings import get_settings
from woolet_ai.core.errors import app_error_response, request_id_from_request

USER_ID_HEADER = "x-woolet-user-id"
USER_TIER_HEADER = "x-woolet-user-tier"
BYPASS_PATHS = {"/healthz", "/metrics", "/openapi.json", "/docs", "/docs/oauth2-redirect"}


class AuthMiddleware(BaseHTTPMiddleware):
    """Bearer API key check plus the calling user's id and subscription tier."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in BYPASS_PATHS:
            return await call_next(request)

        request_id = request_id_from_request(request)
        settings = get_settings()

        auth_header = request.headers.get("authorization", "")
        if not auth_header.startswith("Bearer "):
            return app_error_response(
                401, "auth_missing", "auth", "Missing bearer token", request_id
            )

        token = auth_header.removeprefix("Bearer ").strip()
        if token not in settings.api_key_set:
            return app_error_response(401, "auth_invalid", "auth", "Invalid API key", request_id)

        user_id = request.headers.get(USER_ID_HEADER, "").strip()
        if not user_id:
            return app_error_response(
                422,
                "missing_required_headers",
                "validation",
                f"Missing required headers: {USER_ID_HEADER}",
                request_id,
            )

        request.state.user_id = user_id
        request.state.user_tier = (
            request.headers.get(USER_TIER_HEADER, "").strip().lower() or "free"
        )
        request.state.is_admin = user_id in settings.admin_user_id_set
        return await call_next(request)
