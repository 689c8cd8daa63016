"""Exceptions raised by the contact form pipeline.

Each exception carries the HTTP status and the public message the API
returns for it, so the route only has to render them.
"""

from fastapi import status

GENERIC_ERROR_MESSAGE = "An error occurred while processing your request. Please try again later."


class ContactFormError(Exception):
    """Base class for every terminal rejection of a contact form request."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    public_message: str = GENERIC_ERROR_MESSAGE

    def __init__(self, reason: str | None = None) -> None:
        """
        Args:
            reason: Internal description for logs; never returned to the client
        """
        self.reason = reason or self.public_message
        super().__init__(self.reason)

    def to_content(self) -> dict[str, object]:
        """JSON body returned to the client."""
        return {"error": self.public_message}

    def headers(self) -> dict[str, str]:
        """Extra response headers."""
        return {}


class MalformedRequestError(ContactFormError):
    """Body is not a JSON object of string fields.

    Answered with 500 rather than 400 to keep the established client contract.
    """


class CsrfValidationError(ContactFormError):
    """Anti-forgery token missing, expired or mismatched."""

    status_code = status.HTTP_403_FORBIDDEN
    public_message = "Invalid security token. Please refresh the page."


class RateLimitExceededError(ContactFormError):
    """Too many submissions, or a submission too soon after the previous one."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    public_message = "Too many requests. Please try again later."

    def __init__(self, reason: str | None = None, retry_after: int | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(reason)

    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(self.retry_after)} if self.retry_after else {}


class SpamDetectedError(ContactFormError):
    """Honeypot filled or message matched a spam pattern."""

    status_code = status.HTTP_400_BAD_REQUEST
    public_message = "Your submission appears to be spam."


class SubmissionValidationError(ContactFormError):
    """One or more fields failed validation."""

    status_code = status.HTTP_400_BAD_REQUEST
    public_message = "Please correct the highlighted fields."

    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = errors
        super().__init__(f"Validation failed for: {', '.join(errors)}")

    def to_content(self) -> dict[str, object]:
        return {"errors": self.errors}


class NotificationDeliveryError(ContactFormError):
    """The notification transport failed to send the message."""
