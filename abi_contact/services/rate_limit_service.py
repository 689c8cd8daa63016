"""Submission rate limiting keyed by client identity.

Each identity owns a list of attempt timestamps. A check prunes the list to
the trailing window, decides, and (when accepted) appends the new attempt,
all inside one exclusive read-modify-write on the backing store so that
concurrent requests from the same client cannot both see a stale count.
"""

import asyncio
import enum
import fcntl
import functools
import json
import math
import os
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, TextIO, TypeVar

import structlog

from abi_contact.core.config import settings
from abi_contact.core.redis import RedisClientProtocol, get_redis_client
from abi_contact.core.telemetry import service_span

logger = structlog.get_logger(__name__)

T = TypeVar("T")
Mutator = Callable[[list[float]], tuple[list[float], T]]

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def _decode_timestamps(raw: str | None, key: str) -> list[float]:
    """Parse a stored timestamp list, treating unreadable data as empty."""
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("rate_limit_record_corrupt", key=key)
        return []
    if not isinstance(data, list):
        logger.warning("rate_limit_record_corrupt", key=key)
        return []
    return [float(item) for item in data if isinstance(item, int | float) and not isinstance(item, bool)]


def _same_file(handle: TextIO, path: Path) -> bool:
    """True if path still names the open file (it was not unlinked or replaced)."""
    try:
        current = path.stat()
    except FileNotFoundError:
        return False
    opened = os.fstat(handle.fileno())
    return (current.st_dev, current.st_ino) == (opened.st_dev, opened.st_ino)


class RateLimitStore(Protocol):
    """Keyed timestamp-list store with exclusive read-modify-write."""

    async def update(self, key: str, mutate: Mutator[T]) -> T:
        """
        Atomically load the list for key, apply mutate, persist its new list.

        Args:
            key: Client identity
            mutate: Receives the stored list, returns (list to store, result)

        Returns:
            The result half of mutate's return value
        """
        ...


class FileRateLimitStore:
    """
    One JSON file per identity, guarded by an exclusive flock.

    A file untouched for longer than the window holds no live attempts, so
    such files are purged at most once per window. A writer re-checks after
    locking that the path still names the file it opened, and reopens if a
    purge removed it in between.
    """

    def __init__(self, directory: str | Path, ttl_seconds: int | None = None) -> None:
        self.directory = Path(directory)
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.RATE_LIMIT_WINDOW_SECONDS
        self._last_purge = 0.0

    def path_for(self, key: str) -> Path:
        """File that holds the record for key."""
        if not _SAFE_KEY.match(key):
            msg = f"Invalid rate limit key: {key!r}"
            raise ValueError(msg)
        return self.directory / f"{key}.json"

    async def update(self, key: str, mutate: Mutator[T]) -> T:
        path = self.path_for(key)
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, functools.partial(self._update_sync, path, key, mutate))

        now = time.time()
        if now - self._last_purge >= self.ttl_seconds:
            self._last_purge = now
            await loop.run_in_executor(None, functools.partial(self.purge_stale, now))
        return result

    def _update_sync(self, path: Path, key: str, mutate: Mutator[T]) -> T:
        self.directory.mkdir(parents=True, exist_ok=True)
        with self._open_locked(path) as handle:
            try:
                timestamps = _decode_timestamps(handle.read(), key)
                updated, result = mutate(timestamps)
                handle.seek(0)
                handle.truncate()
                json.dump(updated, handle)
                handle.flush()
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        return result

    @staticmethod
    def _open_locked(path: Path) -> TextIO:
        """Open (creating if needed) and exclusively lock the file currently at path."""
        while True:
            fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o600)
            handle = os.fdopen(fd, "r+", encoding="utf-8")
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            if _same_file(handle, path):
                return handle
            # Purged while we waited for the lock; closing releases it
            handle.close()

    def purge_stale(self, now: float | None = None) -> int:
        """
        Delete records not written to for a whole window.

        Files locked by an in-flight update are skipped.

        Returns:
            Number of files removed
        """
        now = time.time() if now is None else now
        removed = 0
        for path in self.directory.glob("*.json"):
            try:
                if now - path.stat().st_mtime < self.ttl_seconds:
                    continue
                fd = os.open(path, os.O_RDWR)
            except FileNotFoundError:
                continue
            with os.fdopen(fd, "r+", encoding="utf-8") as handle:
                try:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                except BlockingIOError:
                    continue
                try:
                    if _same_file(handle, path) and now - path.stat().st_mtime >= self.ttl_seconds:
                        path.unlink()
                        removed += 1
                finally:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

        if removed:
            logger.info("rate_limit_records_purged", removed=removed, directory=str(self.directory))
        return removed


class RedisRateLimitStore:
    """Timestamp lists in Redis, serialised per key with a Redis lock."""

    KEY_PREFIX = "contact:rate_limit:"

    def __init__(self, client: RedisClientProtocol, ttl_seconds: int, lock_timeout: float = 5.0) -> None:
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.lock_timeout = lock_timeout

    async def update(self, key: str, mutate: Mutator[T]) -> T:
        name = f"{self.KEY_PREFIX}{key}"
        async with self.client.lock(f"{name}:lock", timeout=self.lock_timeout, blocking_timeout=self.lock_timeout):
            timestamps = _decode_timestamps(await self.client.get(name), key)
            updated, result = mutate(timestamps)
            await self.client.set(name, json.dumps(updated), ex=self.ttl_seconds)
        return result


class RateLimitOutcome(str, enum.Enum):
    """Result of a rate limit check."""

    ACCEPTED = "accepted"
    LIMIT_EXCEEDED = "Rate limit exceeded"
    TOO_SOON = "Submitted too soon"


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of check_and_record plus context for the response."""

    outcome: RateLimitOutcome
    attempts: int  # Attempts inside the window, including this one when accepted
    retry_after: int = 0  # Seconds until a retry could be accepted

    @property
    def allowed(self) -> bool:
        return self.outcome is RateLimitOutcome.ACCEPTED


class RateLimiter:
    """Bounded attempts per trailing window with a minimum gap between attempts."""

    def __init__(
        self,
        store: RateLimitStore,
        *,
        max_attempts: int | None = None,
        window_seconds: int | None = None,
        min_interval_seconds: int | None = None,
    ) -> None:
        self.store = store
        self.max_attempts = max_attempts if max_attempts is not None else settings.RATE_LIMIT_MAX_ATTEMPTS
        self.window_seconds = window_seconds if window_seconds is not None else settings.RATE_LIMIT_WINDOW_SECONDS
        self.min_interval_seconds = (
            min_interval_seconds if min_interval_seconds is not None else settings.RATE_LIMIT_MIN_INTERVAL_SECONDS
        )

    def _decide(self, timestamps: list[float], now: float) -> tuple[list[float], RateLimitDecision]:
        recent = [ts for ts in timestamps if now - ts < self.window_seconds]

        if len(recent) >= self.max_attempts:
            retry_after = min(recent) + self.window_seconds - now
            return recent, RateLimitDecision(
                RateLimitOutcome.LIMIT_EXCEEDED, len(recent), max(1, math.ceil(retry_after))
            )

        if recent and now - max(recent) < self.min_interval_seconds:
            retry_after = max(recent) + self.min_interval_seconds - now
            return recent, RateLimitDecision(RateLimitOutcome.TOO_SOON, len(recent), max(1, math.ceil(retry_after)))

        recent.append(now)
        return recent, RateLimitDecision(RateLimitOutcome.ACCEPTED, len(recent))

    async def check_and_record(self, identity: str, now: float | None = None) -> RateLimitDecision:
        """
        Decide whether identity may submit now, recording the attempt if so.

        Args:
            identity: Client identity hash
            now: Current UNIX time; defaults to time.time()

        Returns:
            RateLimitDecision describing the verdict
        """
        now = time.time() if now is None else now
        with service_span("rate_limit.check_and_record", "rate-limit-store") as span:
            decision = await self.store.update(identity, lambda timestamps: self._decide(timestamps, now))
            span.set_attribute("rate_limit.outcome", decision.outcome.name)
            span.set_attribute("rate_limit.attempts", decision.attempts)

        if not decision.allowed:
            logger.warning(
                "rate_limit_rejected",
                identity=identity,
                outcome=decision.outcome.name,
                attempts=decision.attempts,
                retry_after=decision.retry_after,
            )
        return decision


def build_rate_limit_store() -> RateLimitStore:
    """Create the store selected by RATE_LIMIT_BACKEND."""
    if settings.RATE_LIMIT_BACKEND == "redis":
        return RedisRateLimitStore(get_redis_client(), ttl_seconds=settings.RATE_LIMIT_WINDOW_SECONDS)
    return FileRateLimitStore(settings.RATE_LIMIT_DIR, ttl_seconds=settings.RATE_LIMIT_WINDOW_SECONDS)
