"""Pytest configuration and fixtures."""

import os
import tempfile
from pathlib import Path

# Environment must be set BEFORE any abi_contact imports so Settings() picks it up
_TEST_ROOT = Path(tempfile.mkdtemp(prefix="abi-contact-tests-"))
os.environ["DEBUG"] = "true"
os.environ["OTEL_ENABLED"] = "false"
os.environ["SECRET_SESSION_KEY"] = "test-session-secret-key-with-enough-entropy"
os.environ["SECRET_PII_HASH"] = "test-pii-hash-secret-with-at-least-32-chars"
os.environ["SESSION_SECURE_COOKIE"] = "false"  # TestClient talks plain http
os.environ["ALLOWED_ORIGINS"] = "http://localhost,https://allowed.example"
os.environ["RATE_LIMIT_BACKEND"] = "file"
os.environ["RATE_LIMIT_DIR"] = str(_TEST_ROOT / "rate_limits")
os.environ["SECURITY_LOG_FILE"] = str(_TEST_ROOT / "logs" / "security.log")

from collections.abc import AsyncGenerator, Generator  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

import pytest  # noqa: E402
from abi_contact.api.contact import get_notifier, get_rate_limiter, get_security_logger  # noqa: E402
from abi_contact.main import app  # noqa: E402
from abi_contact.services.email_service import ContactNotifier  # noqa: E402
from abi_contact.services.rate_limit_service import FileRateLimitStore, RateLimiter  # noqa: E402
from abi_contact.services.security_log import SecurityLogger  # noqa: E402
from abi_contact.utils.request import ClientInfo  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from opentelemetry import trace  # noqa: E402
from opentelemetry.sdk.resources import Resource  # noqa: E402
from opentelemetry.sdk.trace import TracerProvider  # noqa: E402
from opentelemetry.sdk.trace.export import SimpleSpanProcessor  # noqa: E402
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter  # noqa: E402

from tests.helpers.test_data import CONTACT_URL  # noqa: E402


@pytest.fixture
def client_info() -> ClientInfo:
    """A fixed requesting client."""
    return ClientInfo(ip="203.0.113.10", user_agent="pytest-agent/1.0")


@pytest.fixture
def rate_limit_store(tmp_path: Path) -> FileRateLimitStore:
    """File store rooted in a per-test directory."""
    return FileRateLimitStore(tmp_path / "rate_limits")


@pytest.fixture
def rate_limiter(rate_limit_store: FileRateLimitStore) -> RateLimiter:
    """Rate limiter with the default thresholds (5 per hour, 10s apart)."""
    return RateLimiter(rate_limit_store, max_attempts=5, window_seconds=3600, min_interval_seconds=10)


@pytest.fixture
def security_log_path(tmp_path: Path) -> Path:
    return tmp_path / "logs" / "security.log"


@pytest.fixture
def security_logger(security_log_path: Path) -> SecurityLogger:
    """Audit logger writing to a per-test file."""
    return SecurityLogger(security_log_path, alert_threshold=3, alert_window_seconds=300)


@pytest.fixture
def mock_notifier() -> AsyncMock:
    """Notifier whose SMTP delivery is mocked out."""
    notifier = AsyncMock(spec=ContactNotifier)
    notifier.send_submission = AsyncMock(return_value=None)
    return notifier


@pytest.fixture
def app_overrides(
    rate_limiter: RateLimiter,
    security_logger: SecurityLogger,
    mock_notifier: AsyncMock,
) -> Generator[None]:
    """Point the app's dependencies at per-test stores and a mocked notifier."""
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    app.dependency_overrides[get_security_logger] = lambda: security_logger
    app.dependency_overrides[get_notifier] = lambda: mock_notifier
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client(app_overrides: None) -> Generator[TestClient]:
    """
    FastAPI synchronous test client for making HTTP requests.

    Cookies (and therefore the session) persist across calls on the same client.
    """
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
async def async_client(app_overrides: None) -> AsyncGenerator[AsyncClient]:
    """FastAPI asynchronous HTTP client for async endpoint testing."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def csrf_token(client: TestClient) -> str:
    """Fetch a token so the client's session cookie holds it."""
    response = client.get(CONTACT_URL)
    assert response.status_code == 200
    return response.json()["csrf_token"]


@pytest.fixture
def otel_enabled_provider(
    monkeypatch: pytest.MonkeyPatch,
) -> Generator[tuple[TracerProvider, InMemorySpanExporter]]:
    """
    Install a TracerProvider that records spans in memory.

    Spans never leave the process; read them with exporter.get_finished_spans().
    """
    from abi_contact.core.config import settings  # noqa: PLC0415

    monkeypatch.setattr(settings, "OTEL_ENABLED", True)

    exporter = InMemorySpanExporter()
    provider = TracerProvider(resource=Resource(attributes={"service.name": "abi-contact-api-test"}))
    # SimpleSpanProcessor exports synchronously so assertions see spans immediately
    provider.add_span_processor(SimpleSpanProcessor(exporter))

    # Bypass set_tracer_provider(), which refuses to override once set
    trace._TRACER_PROVIDER = provider  # type: ignore[attr-defined]

    yield provider, exporter

    exporter.clear()
    trace._TRACER_PROVIDER = None  # type: ignore[attr-defined]


@pytest.fixture(autouse=True)
def reset_tracer_provider() -> Generator[None]:
    """Reset the lazily created provider so tests cannot leak spans into each other."""
    from abi_contact.core import telemetry  # noqa: PLC0415

    telemetry._tracer_provider = None
    yield
    telemetry._tracer_provider = None
