"""Pydantic schemas for the contact API."""

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ContactFormPayload(BaseModel):
    """Raw contact form body. Values are kept as submitted; cleaning happens later."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, strict=True)

    first_name: str = Field(default="", alias="firstName")
    last_name: str = Field(default="", alias="lastName")
    email: str = ""
    phone: str = ""
    message: str = ""
    csrf_token: str = ""
    website: str = ""  # Honeypot, hidden from humans

    @field_validator("*", mode="before")
    @classmethod
    def null_to_empty(cls, v: object) -> object:
        """Treat explicit nulls as omitted fields."""
        return "" if v is None else v

    def form_fields(self) -> dict[str, str]:
        """Submitted fields keyed by their wire names."""
        return self.model_dump(by_alias=True)


class CsrfTokenResponse(BaseModel):
    """Token to echo back in the next submission."""

    csrf_token: str


class ContactResponse(BaseModel):
    """Accepted submission."""

    success: bool
    message: str


class ErrorResponse(BaseModel):
    """Single rejection message."""

    error: str
