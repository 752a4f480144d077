from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from gatekeeper.adapters.delivery.base import AbstractCodeSender
from gatekeeper.core.config import settings
from gatekeeper.core.dependencies import get_code_sender, get_quota_service, get_verification_service
from gatekeeper.core.rate_limit import enforce_quota, ip_quota
from gatekeeper.schemas.verification import (
    CreateCodeRequest,
    CreateCodeResponse,
    VerifyCodeRequest,
    VerifyCodeResponse,
)
from gatekeeper.services.quota_service import CHECK_IP, RESEND_EMAIL, RESEND_IP, QuotaService
from gatekeeper.services.verification_service import (
    VerificationOutcome,
    VerificationService,
    VerificationStatus,
)

router = APIRouter(tags=["Verification"])

_OUTCOME_HTTP = {
    VerificationStatus.OK: (200, None),
    VerificationStatus.EXPIRED: (410, "challenge_expired"),
    VerificationStatus.LOCKED: (423, "challenge_locked"),
    VerificationStatus.FAILED: (401, "challenge_mismatch"),
    VerificationStatus.FAILED_LOCKED: (423, "challenge_locked"),
}


def outcome_response(outcome: VerificationOutcome) -> JSONResponse:
    """Render a verification outcome with its HTTP status.

    Locked outcomes also carry ``Retry-After``.
    """
    status_code, error = _OUTCOME_HTTP[outcome.status]
    body = VerifyCodeResponse(
        success=outcome.status is VerificationStatus.OK,
        status=outcome.status.value,
        error=error,
        attempts=outcome.attempts,
        retry_after_seconds=outcome.retry_after_seconds,
    )
    headers = None
    if outcome.retry_after_seconds:
        headers = {"Retry-After": str(outcome.retry_after_seconds)}
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
        headers=headers,
    )


def exposed_code(code: str) -> str | None:
    return code if settings.verification.expose_code else None


@router.post(
    "/verification/create",
    response_model=CreateCodeResponse,
    dependencies=[Depends(ip_quota(RESEND_IP))],
)
async def create_verification_code(
    payload: CreateCodeRequest,
    quota: QuotaService = Depends(get_quota_service),
    verification: VerificationService = Depends(get_verification_service),
    sender: AbstractCodeSender = Depends(get_code_sender),
) -> CreateCodeResponse:
    """Issue a code for ``(purpose, id)`` and hand it to the delivery channel.

    Any previous code for the same challenge stops working.
    """
    await enforce_quota(quota, RESEND_EMAIL, payload.id)

    issued = await verification.create_code(payload.id, payload.purpose)
    await sender.send(payload.id, payload.purpose, issued.code, expiry_seconds=issued.expiry_seconds)

    return CreateCodeResponse(
        expiry_seconds=issued.expiry_seconds,
        code=exposed_code(issued.code),
    )


@router.post(
    "/verification/verify",
    response_model=VerifyCodeResponse,
    responses={
        401: {"model": VerifyCodeResponse, "description": "Wrong code"},
        410: {"model": VerifyCodeResponse, "description": "No live code"},
        423: {"model": VerifyCodeResponse, "description": "Challenge locked"},
    },
    dependencies=[Depends(ip_quota(CHECK_IP))],
)
async def verify_verification_code(
    payload: VerifyCodeRequest,
    verification: VerificationService = Depends(get_verification_service),
) -> JSONResponse:
    """Check a code. Expected outcomes are rendered, not raised."""
    outcome = await verification.verify_code(payload.id, payload.purpose, payload.code)
    return outcome_response(outcome)
