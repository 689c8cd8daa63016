"""Liveness, readiness and root endpoint schemas."""

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str


class ReadinessResponse(BaseModel):
    """Readiness plus the rate limit store that was checked."""

    status: str
    rate_limit_backend: str


class RootResponse(BaseModel):
    message: str
    version: str
