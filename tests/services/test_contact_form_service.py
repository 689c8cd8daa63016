"""Tests for the submission pipeline."""

from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest
from abi_contact.schemas.contact import ContactFormPayload
from abi_contact.services.contact_form_service import SUCCESS_MESSAGE, ContactFormService
from abi_contact.services.csrf_service import CsrfService
from abi_contact.services.errors import (
    CsrfValidationError,
    NotificationDeliveryError,
    RateLimitExceededError,
    SpamDetectedError,
    SubmissionValidationError,
)
from abi_contact.services.rate_limit_service import RateLimiter
from abi_contact.services.security_log import SecurityLogger
from abi_contact.services.spam_filter import SpamFilter
from abi_contact.utils.request import ClientInfo

from tests.helpers.test_data import valid_submission


@pytest.fixture
def service(
    rate_limiter: RateLimiter, mock_notifier: AsyncMock, security_logger: SecurityLogger
) -> ContactFormService:
    return ContactFormService(
        csrf=CsrfService(ttl_seconds=3600),
        rate_limiter=rate_limiter,
        spam_filter=SpamFilter(),
        notifier=mock_notifier,
        security_log=security_logger,
    )


@pytest.fixture
def session(service: ContactFormService) -> dict[str, Any]:
    session: dict[str, Any] = {}
    service.csrf.issue(session)
    return session


def payload_for(session: dict[str, Any], **overrides: Any) -> ContactFormPayload:  # noqa: ANN401
    body = valid_submission(csrf_token=session.get("csrf_token", ""), **overrides)
    return ContactFormPayload.model_validate(body)


def audit_text(path: Path) -> str:
    return path.read_text() if path.exists() else ""


class TestSubmit:
    """Tests for ContactFormService.submit gate ordering and side effects."""

    @pytest.mark.asyncio
    async def test_accepted_submission_is_sent_and_audited(
        self,
        service: ContactFormService,
        session: dict[str, Any],
        client_info: ClientInfo,
        mock_notifier: AsyncMock,
        security_log_path: Path,
    ) -> None:
        message = await service.submit(payload_for(session), session, client_info)

        assert message == SUCCESS_MESSAGE
        mock_notifier.send_submission.assert_awaited_once()
        sent, ip = mock_notifier.send_submission.call_args[0]
        assert sent["firstName"] == "Jane"
        assert ip == client_info.ip
        log = audit_text(security_log_path)
        assert "[INFO]" in log
        assert "Form submitted successfully" in log
        assert '"name": "Jane Doe"' in log

    @pytest.mark.asyncio
    async def test_message_is_sanitised_before_sending(
        self,
        service: ContactFormService,
        session: dict[str, Any],
        client_info: ClientInfo,
        mock_notifier: AsyncMock,
    ) -> None:
        await service.submit(payload_for(session, message="I'd like a quote <soon> please"), session, client_info)

        sent = mock_notifier.send_submission.call_args[0][0]
        assert sent["message"] == "I&#x27;d like a quote &lt;soon&gt; please"

    @pytest.mark.asyncio
    async def test_header_token_used_when_body_has_none(
        self, service: ContactFormService, session: dict[str, Any], client_info: ClientInfo
    ) -> None:
        payload = ContactFormPayload.model_validate(valid_submission())

        message = await service.submit(payload, session, client_info, header_token=session["csrf_token"])

        assert message == SUCCESS_MESSAGE

    @pytest.mark.asyncio
    async def test_token_can_be_reused(
        self, service: ContactFormService, session: dict[str, Any], client_info: ClientInfo
    ) -> None:
        await service.submit(payload_for(session), session, client_info)
        other_client = ClientInfo(ip="198.51.100.2", user_agent="other")

        assert await service.submit(payload_for(session), session, other_client) == SUCCESS_MESSAGE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", ["", "f" * 64])
    async def test_bad_token_rejected_before_everything_else(
        self,
        service: ContactFormService,
        session: dict[str, Any],
        client_info: ClientInfo,
        mock_notifier: AsyncMock,
        security_log_path: Path,
        token: str,
    ) -> None:
        payload = ContactFormPayload.model_validate(valid_submission(csrf_token=token, website="spam"))

        with pytest.raises(CsrfValidationError):
            await service.submit(payload, session, client_info)

        mock_notifier.send_submission.assert_not_called()
        assert "CSRF token validation failed" in audit_text(security_log_path)
        # Rejected requests are not counted by the rate limiter
        assert await service.submit(payload_for(session), session, client_info) == SUCCESS_MESSAGE

    @pytest.mark.asyncio
    async def test_rate_limit_rejected_before_spam_check(
        self,
        service: ContactFormService,
        session: dict[str, Any],
        client_info: ClientInfo,
        security_log_path: Path,
    ) -> None:
        await service.submit(payload_for(session), session, client_info)

        with pytest.raises(RateLimitExceededError) as exc_info:
            await service.submit(payload_for(session, website="spam"), session, client_info)

        assert exc_info.value.reason == "Submitted too soon"
        assert exc_info.value.retry_after is not None
        assert exc_info.value.retry_after > 0
        log = audit_text(security_log_path)
        assert "Submitted too soon" in log
        assert "Honeypot triggered" not in log

    @pytest.mark.asyncio
    async def test_spam_rejected_before_validation(
        self,
        service: ContactFormService,
        session: dict[str, Any],
        client_info: ClientInfo,
        mock_notifier: AsyncMock,
        security_log_path: Path,
    ) -> None:
        payload = payload_for(session, email="not-an-email", message="<script>alert(1)</script>")

        with pytest.raises(SpamDetectedError):
            await service.submit(payload, session, client_info)

        mock_notifier.send_submission.assert_not_called()
        assert "Spam pattern detected: script_tag" in audit_text(security_log_path)

    @pytest.mark.asyncio
    async def test_validation_errors_are_not_audited(
        self,
        service: ContactFormService,
        session: dict[str, Any],
        client_info: ClientInfo,
        mock_notifier: AsyncMock,
        security_log_path: Path,
    ) -> None:
        with pytest.raises(SubmissionValidationError) as exc_info:
            await service.submit(payload_for(session, email="not-an-email"), session, client_info)

        assert exc_info.value.errors == {"email": "Please enter a valid email address"}
        mock_notifier.send_submission.assert_not_called()
        assert audit_text(security_log_path) == ""

    @pytest.mark.asyncio
    async def test_delivery_failure_audited_and_reraised(
        self,
        service: ContactFormService,
        session: dict[str, Any],
        client_info: ClientInfo,
        mock_notifier: AsyncMock,
        security_log_path: Path,
    ) -> None:
        mock_notifier.send_submission.side_effect = NotificationDeliveryError("Failed to send email: timeout")

        with pytest.raises(NotificationDeliveryError):
            await service.submit(payload_for(session), session, client_info)

        log = audit_text(security_log_path)
        assert "[ERROR]" in log
        assert "Error: Failed to send email: timeout" in log
        assert "Form submitted successfully" not in log

    @pytest.mark.asyncio
    async def test_csrf_token_never_written_to_audit_log(
        self,
        service: ContactFormService,
        session: dict[str, Any],
        client_info: ClientInfo,
        security_log_path: Path,
    ) -> None:
        with pytest.raises(SpamDetectedError):
            await service.submit(payload_for(session, website="x"), session, client_info)

        assert session["csrf_token"] not in audit_text(security_log_path)
