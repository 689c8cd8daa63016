"""PII (Personally Identifiable Information) utilities for safe logging."""

import hashlib
import hmac

from abi_contact.core.config import PII_HASH_PLACEHOLDER, settings


def hash_pii(value: str) -> str:
    """
    Hash a PII value with HMAC-SHA256.

    Same input always yields the same digest for a given secret, so the
    result doubles as a stable, non-reversible key (rate-limit identities)
    and as a log-safe stand-in for emails and IP addresses.

    Args:
        value: Email address, IP address or other identifying string

    Returns:
        64-character lowercase hexadecimal digest

    Raises:
        ValueError: If PII_HASH_SECRET is empty or set to the placeholder
    """
    if not settings.PII_HASH_SECRET:
        msg = "PII_HASH_SECRET must be configured and non-empty"
        raise ValueError(msg)
    if settings.PII_HASH_SECRET == PII_HASH_PLACEHOLDER:
        msg = (
            "PII_HASH_SECRET is set to placeholder value. "
            'Generate a secure secret using: python3 -c "import secrets; print(secrets.token_urlsafe(32))"'
        )
        raise ValueError(msg)
    secret = settings.PII_HASH_SECRET.encode()
    return hmac.new(secret, value.encode(), hashlib.sha256).hexdigest()
