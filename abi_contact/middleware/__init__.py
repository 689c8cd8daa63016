"""ASGI middleware."""

from abi_contact.middleware.access_logging import AccessLoggingMiddleware
from abi_contact.middleware.security_headers import SecurityHeadersMiddleware

__all__ = ["AccessLoggingMiddleware", "SecurityHeadersMiddleware"]
