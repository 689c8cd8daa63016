"""Per-session anti-forgery token issuance and validation."""

import hmac
import secrets
import time
from collections.abc import MutableMapping
from typing import Any

import structlog

from abi_contact.core.config import settings

logger = structlog.get_logger(__name__)

TOKEN_BYTES = 32
SESSION_TOKEN_KEY = "csrf_token"
SESSION_TOKEN_TIME_KEY = "csrf_token_time"

Session = MutableMapping[str, Any]


class CsrfService:
    """
    Issue and check the anti-forgery token stored in the visitor's session.

    Token lifecycle: absent -> issued -> expired | consumed. An expired token
    is evicted on validation and is not replaced until the client asks for
    a new one.
    """

    def __init__(self, ttl_seconds: int | None = None) -> None:
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.CSRF_TOKEN_TTL_SECONDS

    def _is_expired(self, session: Session, now: float) -> bool:
        issued_at = session.get(SESSION_TOKEN_TIME_KEY) or 0
        return now - issued_at > self.ttl_seconds

    def issue(self, session: Session, now: float | None = None) -> str:
        """
        Return the session's token, generating a new one when absent or expired.

        Args:
            session: Mutable session mapping (request.session)
            now: Current UNIX time; defaults to time.time()

        Returns:
            64-character hex token
        """
        now = time.time() if now is None else now
        token = session.get(SESSION_TOKEN_KEY)
        if token and not self._is_expired(session, now):
            return token

        rotated = bool(token)
        token = secrets.token_hex(TOKEN_BYTES)
        session[SESSION_TOKEN_KEY] = token
        session[SESSION_TOKEN_TIME_KEY] = now
        logger.debug("csrf_token_issued", rotated=rotated)
        return token

    def validate(self, session: Session, token: str | None, now: float | None = None) -> bool:
        """
        Check a submitted token against the one in the session.

        Args:
            session: Mutable session mapping (request.session)
            token: Token supplied by the client
            now: Current UNIX time; defaults to time.time()

        Returns:
            True only if a stored, unexpired token equals the supplied one
        """
        stored = session.get(SESSION_TOKEN_KEY)
        if not stored or not token:
            return False

        now = time.time() if now is None else now
        if self._is_expired(session, now):
            session.pop(SESSION_TOKEN_KEY, None)
            session.pop(SESSION_TOKEN_TIME_KEY, None)
            logger.info("csrf_token_expired")
            return False

        return hmac.compare_digest(stored.encode(), token.encode())
