"""Pydantic schemas for session and user-state endpoints."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator


class CreateSessionRequest(BaseModel):
    """Session registration sent by the identity glue after it authenticated the user."""

    user_id: str = Field(..., min_length=1, max_length=128)
    email_verified: bool = False
    onboarding_completed: bool = False
    preferences: dict[str, Any] = Field(default_factory=dict)


class CreateSessionResponse(BaseModel):
    success: bool = True
    session_id: str
    expires_in: int = Field(..., description="Session lifetime in seconds.")


class StatusResponse(BaseModel):
    verified: bool
    onboarded: bool


class OnboardingUpdate(BaseModel):
    completed: bool


class EmailVerifiedUpdate(BaseModel):
    verified: bool = True


class PreferencesUpdate(BaseModel):
    """Partial preferences. Only provided fields are propagated."""

    communication_method: Literal["email", "sms", "push"] | None = None
    language: str | None = Field(default=None, pattern=r"^[A-Za-z]{2}$")
    timezone: str | None = Field(default=None, max_length=64)
    notifications_enabled: bool | None = None
    theme: str | None = Field(default=None, max_length=32)

    @model_validator(mode="after")
    def _require_one_field(self) -> "PreferencesUpdate":
        if not self.model_dump(exclude_none=True):
            raise ValueError("No valid preference fields provided")
        return self

    def as_patch(self) -> dict[str, Any]:
        prefs = self.model_dump(exclude_none=True)
        if "language" in prefs:
            prefs["language"] = prefs["language"].lower()
        return prefs


class AcceptedUpdateResponse(BaseModel):
    success: bool = True
    propagation: Literal["scheduled"] = "scheduled"
