"""Helpers for extracting client details from incoming requests."""

from dataclasses import dataclass
from functools import cached_property

from starlette.requests import Request

from abi_contact.core.config import settings
from abi_contact.utils.pii import hash_pii

UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClientInfo:
    """Who sent a request, as far as the server can tell."""

    ip: str
    user_agent: str

    @cached_property
    def identity(self) -> str:
        """Stable rate-limit key derived from (IP, User-Agent)."""
        return hash_pii(f"{self.ip}\n{self.user_agent}")


def get_client_ip(request: Request) -> str:
    """
    Get the client IP address.

    X-Forwarded-For is client-controlled, so its first hop is only honoured
    when TRUST_FORWARDED_FOR is enabled for a deployment behind a proxy.
    """
    if settings.TRUST_FORWARDED_FOR and (forwarded := request.headers.get("x-forwarded-for")):
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else UNKNOWN


def get_client_info(request: Request) -> ClientInfo:
    """Build a ClientInfo for the request."""
    return ClientInfo(
        ip=get_client_ip(request),
        user_agent=request.headers.get("user-agent") or UNKNOWN,
    )
