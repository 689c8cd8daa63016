"""Application configuration."""

import logging
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PII_HASH_PLACEHOLDER = "REPLACE_ME_WITH_RANDOM_SECRET"


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # API Settings
    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "ABI Contact API"
    DEBUG: bool = False
    ALLOWED_ORIGINS: str = "http://localhost,https://yourdomain.com"
    TRUST_FORWARDED_FOR: bool = False  # Only enable behind a proxy that rewrites X-Forwarded-For

    @field_validator("ALLOWED_ORIGINS", mode="after")
    @classmethod
    def parse_cors(cls, v: str | list[str]) -> list[str]:
        """Parse comma-separated CORS origins or pass through list."""
        if isinstance(v, list):
            return v
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # Response security headers
    CONTENT_SECURITY_POLICY: str = "default-src 'self'"
    HSTS_MAX_AGE: int = 31536000

    # Session Settings
    SESSION_SECRET_KEY: str = Field(validation_alias="SECRET_SESSION_KEY")
    SESSION_COOKIE_NAME: str = "abi_session"
    SESSION_LIFETIME_MINUTES: int = 120
    SESSION_SECURE_COOKIE: bool = True
    SESSION_SAME_SITE: Literal["lax", "strict", "none"] = "strict"

    @field_validator("SESSION_SAME_SITE", mode="before")
    @classmethod
    def normalize_same_site(cls, v: str) -> str:
        """Accept SameSite values in any case."""
        return v.lower() if isinstance(v, str) else v

    # CSRF Settings
    CSRF_TOKEN_TTL_SECONDS: int = 3600

    # Rate Limit Settings
    RATE_LIMIT_BACKEND: str = "file"
    RATE_LIMIT_DIR: str = "var/rate_limits"
    RATE_LIMIT_MAX_ATTEMPTS: int = 5  # Max submissions per window
    RATE_LIMIT_WINDOW_SECONDS: int = 3600
    RATE_LIMIT_MIN_INTERVAL_SECONDS: int = 10  # Minimum gap between two submissions
    REDIS_URL: str | None = Field(default=None, validation_alias="SECRET_REDIS_URL")

    @field_validator("RATE_LIMIT_BACKEND", mode="after")
    @classmethod
    def validate_rate_limit_backend(cls, v: str) -> str:
        """Validate and normalize the rate limit store backend name."""
        normalized = v.strip().lower()
        if normalized not in {"file", "redis"}:
            msg = f"Invalid RATE_LIMIT_BACKEND '{v}'. Must be one of: file, redis"
            raise ValueError(msg)
        return normalized

    # Security Audit Log Settings
    SECURITY_LOG_FILE: str = "logs/security.log"
    SECURITY_ALERT_THRESHOLD: int = 3  # Same message from same IP within the window
    SECURITY_ALERT_WINDOW_SECONDS: int = 300

    # Contact Notification Settings
    CONTACT_RECIPIENT_EMAIL: str = "contact@bumikarya.co.id"
    CONTACT_FROM_EMAIL: str = "noreply@bumikarya.co.id"
    CONTACT_FROM_NAME: str = "ABI Contact Form"
    CONTACT_SUBJECT: str = "New Contact Form Submission from ABI Website"

    # Email Settings
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USER: str | None = Field(default=None, validation_alias="SECRET_SMTP_USER")
    SMTP_PASSWORD: str | None = Field(default=None, validation_alias="SECRET_SMTP_PASSWORD")
    SMTP_TIMEOUT: int = 10  # Connection timeout in seconds (prevents indefinite hangs)
    SMTP_REQUIRE_TLS: bool = False  # If True, require STARTTLS upgrade on ports 25/587

    # PII Hashing Settings
    PII_HASH_SECRET: str = Field(validation_alias="SECRET_PII_HASH")

    @field_validator("PII_HASH_SECRET", mode="after")
    @classmethod
    def validate_pii_hash_secret(cls, v: str) -> str:
        """Ensure SECRET_PII_HASH meets minimum security requirements."""
        min_length = 32
        if len(v) < min_length:
            msg = f"SECRET_PII_HASH must be at least {min_length} characters long for security"
            raise ValueError(msg)
        if v == PII_HASH_PLACEHOLDER:
            msg = (
                "SECRET_PII_HASH is set to placeholder value. "
                'Generate a secure secret using: python3 -c "import secrets; print(secrets.token_urlsafe(32))"'
            )
            raise ValueError(msg)
        return v

    # OpenTelemetry Settings
    OTEL_ENABLED: bool = False
    OTEL_SERVICE_NAME: str = "abi-contact-api"
    OTEL_ENVIRONMENT: str = "production"
    OTEL_EXPORTER_OTLP_TRACES_ENDPOINT: str | None = None
    OTEL_EXPORTER_OTLP_HEADERS: str | None = Field(default=None, validation_alias="SECRET_OTEL_HEADERS")
    OTEL_EXCLUDED_URLS: str = "/health,/ready"

    @field_validator("OTEL_EXCLUDED_URLS", mode="after")
    @classmethod
    def parse_otel_excluded_urls(cls, v: str | list[str]) -> list[str]:
        """Parse comma-separated excluded URLs or pass through list, filtering out empty strings."""
        if isinstance(v, list):
            return [url for url in v if url]
        return [url.strip() for url in v.split(",") if url.strip()]

    # Logging Settings
    LOG_LEVEL: str = "INFO"

    @field_validator("LOG_LEVEL", mode="after")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        normalized = v.upper()
        valid_levels = logging.getLevelNamesMapping()
        if normalized not in valid_levels:
            msg = f"Invalid LOG_LEVEL '{v}'. Must be one of: {', '.join(sorted(valid_levels.keys()))}"
            raise ValueError(msg)
        return normalized


settings = Settings()


def require_config(*field_names: str) -> None:
    """
    Validate that required configuration fields are set.

    Args:
        *field_names: Names of required configuration fields

    Raises:
        ValueError: If any required field is missing or None

    Example:
        from abi_contact.core.config import require_config, settings
        require_config("REDIS_URL")
    """
    missing = []
    for field in field_names:
        value = getattr(settings, field, None)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(field)

    if missing:
        msg = f"Required configuration missing: {', '.join(missing)}"
        raise ValueError(msg)
