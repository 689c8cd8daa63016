"""Main FastAPI application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from abi_contact import __version__
from abi_contact.api import contact
from abi_contact.core.config import settings
from abi_contact.core.logging import configure_logging
from abi_contact.core.redis import get_redis_client
from abi_contact.core.telemetry import get_tracer_provider, shutdown_tracer_provider
from abi_contact.middleware import AccessLoggingMiddleware, SecurityHeadersMiddleware
from abi_contact.schemas.health import HealthResponse, ReadinessResponse, RootResponse

# Configure logging at module level so Uvicorn startup logs go through structlog pipeline
configure_logging(log_level=settings.LOG_LEVEL)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan - initialize the OTEL TracerProvider after fork."""
    if settings.OTEL_ENABLED and (provider := get_tracer_provider()):
        trace.set_tracer_provider(provider)
        logger.info("otel_tracer_provider_initialized")

    logger.info(
        "startup_complete",
        rate_limit_backend=settings.RATE_LIMIT_BACKEND,
        allowed_origins=settings.ALLOWED_ORIGINS,
    )

    yield

    logger.info("shutdown_starting")
    if settings.OTEL_ENABLED:
        shutdown_tracer_provider()
    logger.info("shutdown_complete")


app = FastAPI(
    title="ABI Contact API",
    description="Contact form backend for the ABI website",
    version=__version__,
    lifespan=lifespan,
)

if settings.OTEL_ENABLED:
    FastAPIInstrumentor().instrument_app(
        app,
        excluded_urls=",".join(settings.OTEL_EXCLUDED_URLS),
    )
    logger.info("otel_fastapi_instrumented", excluded_urls=settings.OTEL_EXCLUDED_URLS)

# Middleware added last runs first: security headers wrap everything,
# including responses produced by the inner layers.
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.SESSION_SECRET_KEY,
    session_cookie=settings.SESSION_COOKIE_NAME,
    max_age=settings.SESSION_LIFETIME_MINUTES * 60,
    same_site=settings.SESSION_SAME_SITE,
    https_only=settings.SESSION_SECURE_COOKIE,
)
app.add_middleware(AccessLoggingMiddleware)
app.add_middleware(
    SecurityHeadersMiddleware,
    allowed_origins=settings.ALLOWED_ORIGINS,
    content_security_policy=settings.CONTENT_SECURITY_POLICY,
    hsts_max_age=settings.HSTS_MAX_AGE,
)

app.include_router(contact.router, prefix=settings.API_V1_PREFIX)
app.add_exception_handler(StarletteHTTPException, contact.method_not_allowed_handler)


@app.get("/", response_model=RootResponse)
async def root() -> RootResponse:
    """Root endpoint."""
    return RootResponse(message=settings.PROJECT_NAME, version=__version__)


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="healthy")


@app.get("/ready", response_model=ReadinessResponse)
async def readiness_check() -> ReadinessResponse | JSONResponse:
    """Readiness check endpoint - verify the rate limit store is reachable."""
    if settings.RATE_LIMIT_BACKEND == "redis":
        client = get_redis_client()
        try:
            await client.ping()
        except Exception as e:
            logger.error("readiness_redis_unavailable", error=str(e))
            unavailable = ReadinessResponse(status="unavailable", rate_limit_backend=settings.RATE_LIMIT_BACKEND)
            return JSONResponse(status_code=503, content=unavailable.model_dump())
        finally:
            await client.aclose()
    return ReadinessResponse(status="ready", rate_limit_backend=settings.RATE_LIMIT_BACKEND)
