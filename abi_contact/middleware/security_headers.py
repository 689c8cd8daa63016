"""Security response headers and allow-list CORS."""

from collections.abc import Iterable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

logger = structlog.get_logger(__name__)

CORS_ALLOW_METHODS = "GET, POST, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type, X-CSRF-Token"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Add hardening headers to every response and reflect allowed CORS origins.

    Requests from origins outside the allow-list are still processed; their
    responses simply carry no Access-Control-* headers.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        allowed_origins: Iterable[str],
        content_security_policy: str = "default-src 'self'",
        hsts_max_age: int = 31536000,
    ) -> None:
        super().__init__(app)
        self.allowed_origins = frozenset(allowed_origins)
        self.security_headers = {
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "X-XSS-Protection": "1; mode=block",
            "Strict-Transport-Security": f"max-age={hsts_max_age}; includeSubDomains",
            "Content-Security-Policy": content_security_policy,
        }

    def cors_headers(self, origin: str | None) -> dict[str, str]:
        """CORS headers for origin, or an empty dict if it is not allowed."""
        if not origin or origin not in self.allowed_origins:
            return {}
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
            "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
            "Access-Control-Allow-Credentials": "true",
        }

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Process request and decorate the response headers."""
        response = await call_next(request)

        response.headers.update(self.security_headers)

        origin = request.headers.get("origin")
        if cors := self.cors_headers(origin):
            response.headers.update(cors)
        elif origin:
            logger.debug("cors_origin_not_allowed", origin=origin)
        response.headers.append("Vary", "Origin")

        return response
