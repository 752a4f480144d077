"""Email signup flow: issue, re-issue and check the ``signup-email`` challenge."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from gatekeeper.adapters.delivery.base import AbstractCodeSender
from gatekeeper.api.routes.verification import exposed_code, outcome_response
from gatekeeper.core.dependencies import (
    get_code_sender,
    get_quota_service,
    get_verification_service,
)
from gatekeeper.core.rate_limit import enforce_quota, ip_quota
from gatekeeper.schemas.verification import (
    AcceptedResponse,
    EmailRequest,
    VerifyCodeResponse,
    VerifyEmailRequest,
)
from gatekeeper.services.quota_service import CHECK_IP, RESEND_EMAIL, RESEND_IP, SIGNUP_IP, QuotaService
from gatekeeper.services.verification_service import VerificationService

router = APIRouter(prefix="/auth", tags=["Auth"])

SIGNUP_PURPOSE = "signup-email"


async def _issue(
    verification: VerificationService,
    sender: AbstractCodeSender,
    email: str,
) -> AcceptedResponse:
    issued = await verification.create_code(email, SIGNUP_PURPOSE)
    await sender.send(email, SIGNUP_PURPOSE, issued.code, expiry_seconds=issued.expiry_seconds)
    return AcceptedResponse(expiry_seconds=issued.expiry_seconds, code=exposed_code(issued.code))


@router.post(
    "/signup",
    response_model=AcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(ip_quota(SIGNUP_IP))],
)
async def signup(
    payload: EmailRequest,
    verification: VerificationService = Depends(get_verification_service),
    sender: AbstractCodeSender = Depends(get_code_sender),
) -> AcceptedResponse:
    """Start email verification for a new account."""
    return await _issue(verification, sender, payload.email)


@router.post(
    "/resend",
    response_model=AcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(ip_quota(RESEND_IP))],
)
async def resend(
    payload: EmailRequest,
    quota: QuotaService = Depends(get_quota_service),
    verification: VerificationService = Depends(get_verification_service),
    sender: AbstractCodeSender = Depends(get_code_sender),
) -> AcceptedResponse:
    """Replace the outstanding signup code with a fresh one.

    The per-email quota is charged before anything is revoked, so a denied
    resend leaves the current code usable.
    """
    await enforce_quota(quota, RESEND_EMAIL, payload.email)
    await verification.revoke(payload.email, SIGNUP_PURPOSE)
    return await _issue(verification, sender, payload.email)


@router.post(
    "/verify-email",
    response_model=VerifyCodeResponse,
    responses={
        401: {"model": VerifyCodeResponse},
        410: {"model": VerifyCodeResponse},
        423: {"model": VerifyCodeResponse},
    },
    dependencies=[Depends(ip_quota(CHECK_IP))],
)
async def verify_email(
    payload: VerifyEmailRequest,
    verification: VerificationService = Depends(get_verification_service),
) -> JSONResponse:
    """Check the signup code.

    Marking the account verified is the identity backend's job once this
    returns 200; it reports the change through the internal users hook.
    """
    outcome = await verification.verify_code(payload.email, SIGNUP_PURPOSE, payload.code)
    return outcome_response(outcome)
