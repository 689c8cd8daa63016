"""Append-only security audit log with repeated-failure alerting."""

import asyncio
import enum
import functools
import json
import threading
import time
from collections import defaultdict, deque
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog

from abi_contact.core.config import settings
from abi_contact.utils.pii import hash_pii
from abi_contact.utils.request import ClientInfo

logger = structlog.get_logger(__name__)

REDACTED_FIELDS = frozenset({"csrf_token"})


class AuditLevel(str, enum.Enum):
    """Category tag written in each audit line."""

    SECURITY = "SECURITY"
    INFO = "INFO"
    ERROR = "ERROR"
    ALERT = "ALERT"


def format_entry(
    level: AuditLevel,
    message: str,
    client: ClientInfo,
    data: Mapping[str, Any],
    timestamp: datetime,
) -> str:
    """Render one audit line."""
    snapshot = {key: value for key, value in data.items() if key not in REDACTED_FIELDS}
    return (
        f"[{timestamp:%Y-%m-%d %H:%M:%S}] [{level.value}] IP: {client.ip} | Message: {message} | "
        f"User-Agent: {client.user_agent} | Data: {json.dumps(snapshot, ensure_ascii=False, default=str)}\n"
    )


class SecurityLogger:
    """
    Write security events to the audit file and raise alerts on repeats.

    The audit file is write-only from the application's point of view;
    aggregation happens outside. Alert counters live in process memory,
    keyed by (client IP, message).
    """

    def __init__(
        self,
        log_file: str | Path | None = None,
        *,
        alert_threshold: int | None = None,
        alert_window_seconds: int | None = None,
    ) -> None:
        self.log_file = Path(log_file if log_file is not None else settings.SECURITY_LOG_FILE)
        self.alert_threshold = alert_threshold if alert_threshold is not None else settings.SECURITY_ALERT_THRESHOLD
        self.alert_window_seconds = (
            alert_window_seconds if alert_window_seconds is not None else settings.SECURITY_ALERT_WINDOW_SECONDS
        )
        self._write_lock = threading.Lock()
        self._occurrences: defaultdict[tuple[str, str], deque[float]] = defaultdict(deque)
        self._last_sweep = 0.0

    async def record(
        self,
        message: str,
        client: ClientInfo,
        data: Mapping[str, Any] | None = None,
        level: AuditLevel = AuditLevel.SECURITY,
        now: float | None = None,
    ) -> None:
        """
        Append an event to the audit log.

        SECURITY and ERROR events count towards the repeated-failure alert.

        Args:
            message: Human-readable event description
            client: Client that caused the event
            data: Snapshot of the submitted data (csrf_token is dropped)
            level: Audit category
            now: Current UNIX time; defaults to time.time()
        """
        now = time.time() if now is None else now
        lines = [format_entry(level, message, client, data or {}, datetime.fromtimestamp(now))]

        log_method = logger.info if level is AuditLevel.INFO else logger.warning
        log_method("security_event", level=level.value, event_message=message, client_ip_hash=hash_pii(client.ip))

        if level in (AuditLevel.SECURITY, AuditLevel.ERROR) and self._register_failure(client.ip, message, now):
            alert = f"Repeated failure: '{message}' occurred {self.alert_threshold} times"
            lines.append(
                format_entry(
                    AuditLevel.ALERT,
                    alert,
                    client,
                    {"window_seconds": self.alert_window_seconds},
                    datetime.fromtimestamp(now),
                )
            )
            logger.error(
                "security_alert_repeated_failures",
                event_message=message,
                client_ip_hash=hash_pii(client.ip),
                threshold=self.alert_threshold,
                window_seconds=self.alert_window_seconds,
            )

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, functools.partial(self._write_sync, "".join(lines)))

    def _register_failure(self, ip: str, message: str, now: float) -> bool:
        """Track an occurrence; True when the threshold is reached (counter restarts)."""
        if now - self._last_sweep >= self.alert_window_seconds:
            self._sweep(now)

        key = (ip, message)
        occurrences = self._occurrences[key]
        while occurrences and now - occurrences[0] > self.alert_window_seconds:
            occurrences.popleft()
        occurrences.append(now)
        if len(occurrences) >= self.alert_threshold:
            del self._occurrences[key]
            return True
        return False

    def _sweep(self, now: float) -> None:
        """Forget counters whose newest occurrence has left the alert window."""
        stale = [
            key
            for key, times in self._occurrences.items()
            if not times or now - times[-1] > self.alert_window_seconds
        ]
        for key in stale:
            del self._occurrences[key]
        self._last_sweep = now

    def _write_sync(self, text: str) -> None:
        """Append text to the audit file (runs in thread pool)."""
        try:
            with self._write_lock:
                self.log_file.parent.mkdir(parents=True, exist_ok=True)
                with self.log_file.open("a", encoding="utf-8") as f:
                    f.write(text)
        except OSError as e:
            logger.error("security_log_write_failed", path=str(self.log_file), error=str(e))
