"""Contact form request pipeline.

A POST passes, in this fixed order, the CSRF check, the rate limiter, the
spam filter and field validation before the notification is sent. Each
gate rejects by raising a ContactFormError subclass; security rejections
are written to the audit log first, validation failures are not.
"""

import structlog

from abi_contact.schemas.contact import ContactFormPayload
from abi_contact.services.csrf_service import CsrfService, Session
from abi_contact.services.email_service import ContactNotifier
from abi_contact.services.errors import (
    CsrfValidationError,
    NotificationDeliveryError,
    RateLimitExceededError,
    SpamDetectedError,
    SubmissionValidationError,
)
from abi_contact.services.field_validation import validate_submission
from abi_contact.services.rate_limit_service import RateLimiter
from abi_contact.services.security_log import AuditLevel, SecurityLogger
from abi_contact.services.spam_filter import SpamFilter
from abi_contact.utils.request import ClientInfo

logger = structlog.get_logger(__name__)

SUCCESS_MESSAGE = "Thank you for contacting us! We will get back to you soon."


class ContactFormService:
    """Sequence the anti-abuse gates and dispatch accepted submissions."""

    def __init__(
        self,
        *,
        csrf: CsrfService,
        rate_limiter: RateLimiter,
        spam_filter: SpamFilter,
        notifier: ContactNotifier,
        security_log: SecurityLogger,
    ) -> None:
        self.csrf = csrf
        self.rate_limiter = rate_limiter
        self.spam_filter = spam_filter
        self.notifier = notifier
        self.security_log = security_log

    async def submit(
        self,
        payload: ContactFormPayload,
        session: Session,
        client: ClientInfo,
        header_token: str | None = None,
    ) -> str:
        """
        Run a submission through every gate and send the notification.

        Args:
            payload: Parsed request body
            session: Visitor session holding the anti-forgery token
            client: Requesting client
            header_token: X-CSRF-Token header, used when the body carries no token

        Returns:
            Success message for the client

        Raises:
            CsrfValidationError: Token missing, expired or wrong
            RateLimitExceededError: Too many or too frequent submissions
            SpamDetectedError: Honeypot filled or spam pattern matched
            SubmissionValidationError: One or more fields invalid
            NotificationDeliveryError: SMTP delivery failed
        """
        data = payload.form_fields()

        token = payload.csrf_token or header_token or ""
        if not self.csrf.validate(session, token):
            await self.security_log.record("CSRF token validation failed", client, data)
            raise CsrfValidationError

        decision = await self.rate_limiter.check_and_record(client.identity)
        if not decision.allowed:
            await self.security_log.record(decision.outcome.value, client, data)
            raise RateLimitExceededError(decision.outcome.value, retry_after=decision.retry_after)

        if verdict := self.spam_filter.check(data):
            await self.security_log.record(verdict.log_message, client, data)
            raise SpamDetectedError(verdict.log_message)

        result = validate_submission(data)
        if not result.is_valid:
            logger.info("contact_submission_invalid", fields=sorted(result.errors))
            raise SubmissionValidationError(result.errors)

        sanitized = result.sanitized
        try:
            await self.notifier.send_submission(sanitized, client.ip)
        except NotificationDeliveryError as e:
            await self.security_log.record(f"Error: {e.reason}", client, data, level=AuditLevel.ERROR)
            raise

        await self.security_log.record(
            "Form submitted successfully",
            client,
            {"email": sanitized["email"], "name": f"{sanitized['firstName']} {sanitized['lastName']}"},
            level=AuditLevel.INFO,
        )
        return SUCCESS_MESSAGE
