from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response, status

from gatekeeper.core.auth import verify_api_key
from gatekeeper.core.config import settings
from gatekeeper.core.dependencies import get_session_service
from gatekeeper.core.errors import UnauthenticatedError
from gatekeeper.schemas.sessions import CreateSessionRequest, CreateSessionResponse, StatusResponse
from gatekeeper.services.session_service import SessionRecord, SessionService

router = APIRouter(tags=["Sessions"])


async def current_session(
    request: Request,
    sessions: SessionService = Depends(get_session_service),
) -> SessionRecord:
    """Resolve the session cookie to a live record.

    Raises:
        UnauthenticatedError: When the cookie is missing or the session expired.
    """
    session_id = request.cookies.get(settings.session.cookie_name)
    if not session_id:
        raise UnauthenticatedError(code="no_session", message="No session cookie")

    record = await sessions.get_session(session_id)
    if record is None:
        raise UnauthenticatedError(code="session_expired", message="Session expired or invalid")
    return record


@router.post(
    "/internal/sessions",
    response_model=CreateSessionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(verify_api_key)],
)
async def create_session(
    payload: CreateSessionRequest,
    response: Response,
    sessions: SessionService = Depends(get_session_service),
) -> CreateSessionResponse:
    """Register a session for a user the identity provider already authenticated."""
    session_id = await sessions.create_session(
        payload.user_id,
        email_verified=payload.email_verified,
        onboarding_completed=payload.onboarding_completed,
        preferences=payload.preferences,
    )
    response.set_cookie(
        key=settings.session.cookie_name,
        value=session_id,
        max_age=sessions.ttl_seconds,
        httponly=True,
        secure=settings.session.cookie_secure,
        samesite="lax",
    )
    return CreateSessionResponse(session_id=session_id, expires_in=sessions.ttl_seconds)


@router.get("/me/status", response_model=StatusResponse)
async def me_status(record: SessionRecord = Depends(current_session)) -> StatusResponse:
    return StatusResponse(verified=record.email_verified, onboarded=record.onboarding_completed)


@router.post("/auth/logout")
async def logout(
    request: Request,
    response: Response,
    sessions: SessionService = Depends(get_session_service),
) -> dict:
    """End the current session. Succeeds with or without a live session."""
    session_id = request.cookies.get(settings.session.cookie_name)
    if session_id:
        await sessions.destroy_session(session_id)
    response.delete_cookie(
        key=settings.session.cookie_name,
        httponly=True,
        secure=settings.session.cookie_secure,
        samesite="lax",
    )
    return {"success": True}
