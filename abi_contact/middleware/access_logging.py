"""Access logging middleware using structlog."""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from abi_contact.utils.pii import hash_pii

logger = structlog.get_logger(__name__)


class AccessLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log one structured `http_request` event per request.

    Client addresses are logged as HMAC hashes; the clear-text IP only goes
    to the security audit log.

    Log fields:
        - method, path, status_code
        - duration_ms: Request duration in milliseconds
        - client_ip_hash: Hash of the direct peer address
        - forwarded_for_hash: Hash of the first X-Forwarded-For hop, when present
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Process request and log access information."""
        start_time = time.perf_counter()

        client_ip = request.client.host if request.client else "unknown"
        forwarded_for = None
        if xff_header := request.headers.get("x-forwarded-for"):
            forwarded_for = xff_header.split(",")[0].strip()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000

        log_kwargs: dict[str, str | int | float | None] = {
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2),
            "client_ip_hash": hash_pii(client_ip),
        }
        if forwarded_for:
            log_kwargs["forwarded_for_hash"] = hash_pii(forwarded_for)

        logger.info("http_request", **log_kwargs)

        return response
