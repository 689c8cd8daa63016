"""Contact form endpoint: token issuance, CORS preflight and submission."""

from functools import lru_cache

import structlog
from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from abi_contact.core.config import settings
from abi_contact.schemas.contact import (
    ContactFormPayload,
    ContactResponse,
    CsrfTokenResponse,
    ErrorResponse,
)
from abi_contact.services.contact_form_service import ContactFormService
from abi_contact.services.csrf_service import CsrfService
from abi_contact.services.email_service import ContactNotifier
from abi_contact.services.errors import GENERIC_ERROR_MESSAGE, ContactFormError, MalformedRequestError
from abi_contact.services.rate_limit_service import RateLimiter, build_rate_limit_store
from abi_contact.services.security_log import AuditLevel, SecurityLogger
from abi_contact.services.spam_filter import SpamFilter
from abi_contact.utils.request import get_client_info

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/contact", tags=["contact"])

ALLOWED_METHODS = "GET, POST, OPTIONS"
CONTACT_PATH = f"{settings.API_V1_PREFIX}{router.prefix}"


# ==================== Dependencies ====================


@lru_cache
def get_security_logger() -> SecurityLogger:
    """Process-wide audit logger (holds the repeated-failure counters)."""
    return SecurityLogger()


@lru_cache
def get_rate_limiter() -> RateLimiter:
    """Rate limiter backed by the configured store."""
    return RateLimiter(build_rate_limit_store())


def get_notifier() -> ContactNotifier:
    return ContactNotifier()


def get_csrf_service() -> CsrfService:
    return CsrfService()


def get_contact_form_service(
    csrf: CsrfService = Depends(get_csrf_service),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    notifier: ContactNotifier = Depends(get_notifier),
    security_log: SecurityLogger = Depends(get_security_logger),
) -> ContactFormService:
    """Assemble the submission pipeline for a request."""
    return ContactFormService(
        csrf=csrf,
        rate_limiter=rate_limiter,
        spam_filter=SpamFilter(),
        notifier=notifier,
        security_log=security_log,
    )


async def parse_payload(request: Request) -> ContactFormPayload:
    """
    Decode the JSON body.

    Raises:
        MalformedRequestError: Body is not valid JSON, not an object, or has non-string fields
    """
    try:
        body = await request.json()
    except ValueError as e:
        msg = "Invalid JSON data"
        raise MalformedRequestError(msg) from e
    if not isinstance(body, dict):
        msg = "Invalid JSON data"
        raise MalformedRequestError(msg)
    try:
        return ContactFormPayload.model_validate(body)
    except ValidationError as e:
        msg = "Invalid field types"
        raise MalformedRequestError(msg) from e


# ==================== API Endpoints ====================


@router.get("", response_model=CsrfTokenResponse)
async def get_csrf_token(
    request: Request,
    csrf: CsrfService = Depends(get_csrf_service),
) -> CsrfTokenResponse:
    """
    Issue (or return the still-valid) anti-forgery token for this session.

    The session cookie is set or refreshed on the response.
    """
    return CsrfTokenResponse(csrf_token=csrf.issue(request.session))


@router.options("")
async def preflight() -> Response:
    """CORS preflight; headers are added by SecurityHeadersMiddleware."""
    return Response(status_code=status.HTTP_200_OK)


@router.post(
    "",
    response_model=ContactResponse,
    responses={
        400: {"description": "Spam detected (error) or field validation failed (errors)"},
        403: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def submit_contact_form(
    request: Request,
    service: ContactFormService = Depends(get_contact_form_service),
    security_log: SecurityLogger = Depends(get_security_logger),
) -> ContactResponse | JSONResponse:
    """
    Submit the contact form.

    Gates run in order: CSRF (403), rate limit (429), spam (400),
    field validation (400). Delivery failures and malformed bodies answer 500.
    """
    client = get_client_info(request)
    try:
        payload = await parse_payload(request)
        message = await service.submit(
            payload,
            request.session,
            client,
            header_token=request.headers.get("x-csrf-token"),
        )
    except MalformedRequestError as e:
        await security_log.record(f"Error: {e.reason}", client, level=AuditLevel.ERROR)
        return JSONResponse(status_code=e.status_code, content=e.to_content())
    except ContactFormError as e:
        return JSONResponse(status_code=e.status_code, content=e.to_content(), headers=e.headers())
    except Exception as e:
        logger.exception("contact_submission_failed")
        await security_log.record(f"Error: {e}", client, level=AuditLevel.ERROR)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": GENERIC_ERROR_MESSAGE},
        )

    return ContactResponse(success=True, message=message)


async def method_not_allowed_handler(request: Request, exc: StarletteHTTPException) -> Response:
    """
    Answer a disallowed method on the contact path with a JSON body.

    Every other HTTP error keeps FastAPI's default rendering.
    """
    if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED and request.url.path == CONTACT_PATH:
        return JSONResponse(
            status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
            content={"error": "Method not allowed"},
            headers={"Allow": ALLOWED_METHODS},
        )
    return await http_exception_handler(request, exc)
