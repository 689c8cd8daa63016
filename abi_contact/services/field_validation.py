"""Per-field validation and sanitisation of contact form submissions."""

import enum
import html
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import assert_never

from email_validator import EmailNotValidError, validate_email


class FieldKind(enum.Enum):
    """How a field is cleaned and checked."""

    NAME = "name"
    EMAIL = "email"
    PHONE = "phone"
    TEXT = "text"


@dataclass(frozen=True)
class FieldRule:
    """Validation rule for one submitted field."""

    key: str
    label: str
    kind: FieldKind
    required: bool = True
    min_length: int | None = None
    max_length: int | None = None


CONTACT_FIELDS: tuple[FieldRule, ...] = (
    FieldRule("firstName", "First Name", FieldKind.NAME, min_length=2, max_length=50),
    FieldRule("lastName", "Last Name", FieldKind.NAME, min_length=2, max_length=50),
    FieldRule("email", "Email", FieldKind.EMAIL, max_length=254),
    FieldRule("phone", "Phone", FieldKind.PHONE, min_length=10, max_length=15),
    FieldRule("message", "Message", FieldKind.TEXT, min_length=10, max_length=1000),
)

_EMAIL_DISALLOWED = re.compile(r"[^A-Za-z0-9!#$%&'*+\-=?^_`{|}~@.\[\]]")
_PHONE_DISALLOWED = re.compile(r"[^0-9+\-\s()]", re.ASCII)
_NAME_DISALLOWED = re.compile(r"[^A-Za-z\s\-']", re.ASCII)
PHONE_PATTERN = re.compile(r"^[\d\s\-+()]{10,15}$", re.ASCII)
NAME_PATTERN = re.compile(r"^[A-Za-z\s\-']{2,50}$", re.ASCII)


@dataclass
class ValidationResult:
    """Collected field errors and the cleaned record."""

    errors: dict[str, str] = field(default_factory=dict)
    sanitized: dict[str, str] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def normalize(value: str) -> str:
    """Drop NUL bytes and surrounding whitespace."""
    return value.replace("\x00", "").strip()


def sanitize(value: str, kind: FieldKind) -> str:
    """Apply the kind-specific transform to an already normalised value."""
    match kind:
        case FieldKind.EMAIL:
            return _EMAIL_DISALLOWED.sub("", value)
        case FieldKind.PHONE:
            return _PHONE_DISALLOWED.sub("", value)
        case FieldKind.NAME:
            return _NAME_DISALLOWED.sub("", value)
        case FieldKind.TEXT:
            return html.escape(value, quote=True)
        case _:
            assert_never(kind)


def _is_valid_email(value: str) -> bool:
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def _format_error(rule: FieldRule, sanitized: str) -> str | None:
    match rule.kind:
        case FieldKind.EMAIL:
            return None if _is_valid_email(sanitized) else "Please enter a valid email address"
        case FieldKind.PHONE:
            return None if PHONE_PATTERN.match(sanitized) else "Please enter a valid phone number"
        case FieldKind.NAME:
            return None if NAME_PATTERN.match(sanitized) else f"Please enter a valid {rule.label.lower()}"
        case FieldKind.TEXT:
            return None
        case _:
            assert_never(rule.kind)


def validate_field(rule: FieldRule, raw: str) -> tuple[str, str | None]:
    """
    Validate and clean a single field.

    Length limits are counted in code points on the trimmed value; the
    kind check runs on the sanitised value. The first failing check
    provides the error message.

    Returns:
        Tuple of (sanitized value, error message or None)
    """
    value = normalize(raw)
    if not value:
        if rule.required:
            return "", f"{rule.label} is required"
        return "", None

    error: str | None = None
    if rule.min_length is not None and len(value) < rule.min_length:
        error = f"{rule.label} must be at least {rule.min_length} characters"
    elif rule.max_length is not None and len(value) > rule.max_length:
        error = f"{rule.label} must not exceed {rule.max_length} characters"

    sanitized = sanitize(value, rule.kind)
    return sanitized, error or _format_error(rule, sanitized)


def validate_submission(
    data: Mapping[str, str],
    rules: tuple[FieldRule, ...] = CONTACT_FIELDS,
) -> ValidationResult:
    """
    Validate every field of a submission, collecting all errors.

    Args:
        data: Raw submitted values keyed by field name
        rules: Field rules to apply

    Returns:
        ValidationResult with an error per failing field and a sanitised value per field
    """
    result = ValidationResult()
    for rule in rules:
        sanitized, error = validate_field(rule, data.get(rule.key, ""))
        result.sanitized[rule.key] = sanitized
        if error:
            result.errors[rule.key] = error
    return result
