"""Internal hooks called by profile handlers after a durable write.

The write itself happens elsewhere; these endpoints only push the new state
into the user's live sessions. Propagation runs after the response is sent
and its failures never reach the caller.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from fastapi import APIRouter, BackgroundTasks, Depends, Path, status

from gatekeeper.core.auth import verify_api_key
from gatekeeper.core.dependencies import get_session_service
from gatekeeper.core.errors import StoreUnavailableError, ValidationAppError
from gatekeeper.core.logging import hash_identifier
from gatekeeper.schemas.sessions import (
    AcceptedUpdateResponse,
    EmailVerifiedUpdate,
    OnboardingUpdate,
    PreferencesUpdate,
)
from gatekeeper.services.session_service import SessionService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/internal/users",
    tags=["Users"],
    dependencies=[Depends(verify_api_key)],
)

UserId = Path(..., min_length=1, max_length=128)


async def propagate_quietly(
    sessions: SessionService,
    user_id: str,
    patch: Mapping[str, Any],
) -> None:
    """Run ``propagate`` as a background task, logging instead of raising."""
    try:
        await sessions.propagate(user_id, patch)
    except (StoreUnavailableError, ValidationAppError) as exc:
        logger.warning(
            "session.propagate_skipped",
            extra={
                "user_hash": hash_identifier(user_id),
                "fields": sorted(patch),
                "error_type": type(exc).__name__,
            },
        )


@router.post(
    "/{user_id}/onboarding",
    response_model=AcceptedUpdateResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def onboarding_changed(
    payload: OnboardingUpdate,
    background_tasks: BackgroundTasks,
    user_id: str = UserId,
    sessions: SessionService = Depends(get_session_service),
) -> AcceptedUpdateResponse:
    background_tasks.add_task(
        propagate_quietly, sessions, user_id, {"onboarding_completed": payload.completed}
    )
    return AcceptedUpdateResponse()


@router.post(
    "/{user_id}/preferences",
    response_model=AcceptedUpdateResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def preferences_changed(
    payload: PreferencesUpdate,
    background_tasks: BackgroundTasks,
    user_id: str = UserId,
    sessions: SessionService = Depends(get_session_service),
) -> AcceptedUpdateResponse:
    """Merge the changed preference fields into every live session."""
    background_tasks.add_task(
        propagate_quietly, sessions, user_id, {"preferences": payload.as_patch()}
    )
    return AcceptedUpdateResponse()


@router.post(
    "/{user_id}/email-verified",
    response_model=AcceptedUpdateResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def email_verified_changed(
    payload: EmailVerifiedUpdate,
    background_tasks: BackgroundTasks,
    user_id: str = UserId,
    sessions: SessionService = Depends(get_session_service),
) -> AcceptedUpdateResponse:
    """Called by the identity backend once it has tied a verified email to ``user_id``."""
    background_tasks.add_task(
        propagate_quietly, sessions, user_id, {"email_verified": payload.verified}
    )
    return AcceptedUpdateResponse()
