"""Pydantic schemas for verification code endpoints."""

from __future__ import annotations

from pydantic import BaseModel, EmailStr, Field, field_validator

PURPOSE_PATTERN = r"^[a-z0-9][a-z0-9_-]{0,63}$"


class CreateCodeRequest(BaseModel):
    """Request a code for an arbitrary ``(purpose, id)`` challenge."""

    id: str = Field(
        ...,
        min_length=1,
        max_length=320,
        description="Subject of the challenge (email address, phone number or user id).",
    )
    purpose: str = Field(
        ...,
        pattern=PURPOSE_PATTERN,
        description="Challenge purpose, e.g. 'signup-email' or 'password-reset'.",
    )


class CreateCodeResponse(BaseModel):
    success: bool = True
    expiry_seconds: int = Field(..., description="Code lifetime in seconds.")
    code: str | None = Field(
        default=None,
        description="Raw code, only present when code exposure is enabled (development).",
    )


class VerifyCodeRequest(BaseModel):
    id: str = Field(..., min_length=1, max_length=320)
    purpose: str = Field(..., pattern=PURPOSE_PATTERN)
    code: str = Field(..., min_length=1, max_length=32, description="Code typed by the user.")


class VerifyCodeResponse(BaseModel):
    """Verification outcome as returned to clients.

    ``status`` is one of ok, expired, locked, failed, failed_locked.
    """

    success: bool
    status: str
    error: str | None = Field(
        default=None,
        description="challenge_expired, challenge_locked or challenge_mismatch.",
    )
    attempts: int | None = Field(default=None, description="Failed attempts so far.")
    retry_after_seconds: int | None = Field(
        default=None,
        description="Remaining lockout in seconds.",
    )


class EmailRequest(BaseModel):
    """Body carrying only an email address (signup, resend)."""

    email: EmailStr = Field(..., description="Address the signup code is sent to.")

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.lower()


class VerifyEmailRequest(EmailRequest):
    code: str = Field(..., min_length=1, max_length=32)


class AcceptedResponse(BaseModel):
    success: bool = True
    expiry_seconds: int
    code: str | None = None
