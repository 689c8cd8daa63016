"""Tests for the application root, health and readiness endpoints."""

from unittest.mock import AsyncMock, patch

import pytest
from abi_contact import __version__
from abi_contact.core.config import settings
from fastapi.testclient import TestClient

from tests.helpers.http_assertions import assert_security_headers


def test_root(client: TestClient) -> None:
    response = client.get("/")

    assert response.status_code == 200
    assert response.json() == {"message": settings.PROJECT_NAME, "version": __version__}


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
    assert_security_headers(response)


def test_ready_with_file_backend(client: TestClient) -> None:
    response = client.get("/ready")

    assert response.status_code == 200
    assert response.json() == {"status": "ready", "rate_limit_backend": "file"}


class TestReadyWithRedis:
    """Readiness pings Redis when it backs the rate limiter."""

    @pytest.fixture(autouse=True)
    def redis_backend(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "RATE_LIMIT_BACKEND", "redis")

    def test_ready_when_ping_succeeds(self, client: TestClient) -> None:
        redis_client = AsyncMock()
        redis_client.ping.return_value = True

        with patch("abi_contact.main.get_redis_client", return_value=redis_client):
            response = client.get("/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ready", "rate_limit_backend": "redis"}
        redis_client.aclose.assert_awaited_once()

    def test_unavailable_when_ping_fails(self, client: TestClient) -> None:
        redis_client = AsyncMock()
        redis_client.ping.side_effect = ConnectionError("refused")

        with patch("abi_contact.main.get_redis_client", return_value=redis_client):
            response = client.get("/ready")

        assert response.status_code == 503
        assert response.json() == {"status": "unavailable", "rate_limit_backend": "redis"}
        redis_client.aclose.assert_awaited_once()
