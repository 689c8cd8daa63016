"""
Redis client protocol and factory for dependency injection.

Only used when RATE_LIMIT_BACKEND=redis.
"""

from typing import Any, Protocol, cast

import redis.asyncio as redis

from abi_contact.core.config import require_config, settings


class RedisClientProtocol(Protocol):
    """Subset of redis.asyncio.Redis used by the application."""

    async def get(self, name: str) -> str | None:
        """Get the value at key name."""
        ...

    async def set(self, name: str, value: str, ex: int | None = None) -> bool | None:
        """Set the value at key name, optionally expiring after ex seconds."""
        ...

    def lock(self, name: str, timeout: float | None = None, blocking_timeout: float | None = None) -> Any:  # noqa: ANN401
        """Return a distributed lock usable as an async context manager."""
        ...

    async def ping(self) -> bool:
        """Ping the Redis server to check connectivity."""
        ...

    async def aclose(self, close_connection_pool: bool = True) -> None:
        """Close the client connection."""
        ...


def get_redis_client() -> RedisClientProtocol:
    """
    Create Redis client with standard configuration.

    Raises:
        ValueError: If REDIS_URL is not configured
    """
    require_config("REDIS_URL")
    assert settings.REDIS_URL is not None
    return cast(
        RedisClientProtocol,
        redis.from_url(  # type: ignore[no-untyped-call]
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        ),
    )
