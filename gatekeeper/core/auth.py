"""API key guard for internal endpoints.

Internal endpoints (session registration, post-write propagation) are called
by trusted backend collaborators, not by the mobile client. They present a
shared key in ``X-API-Key``; keys come from a comma-separated environment
variable.

Session-cookie endpoints do not use this module.
"""

from __future__ import annotations

import hmac
import logging
from typing import Annotated

from fastapi import Header

from gatekeeper.core.config import settings
from gatekeeper.core.errors import AuthenticationAppError
from gatekeeper.core.logging import hash_identifier

logger = logging.getLogger(__name__)


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated API keys into a set.

    Examples:
        >>> parse_api_keys("key1, key2 , key3 ")
        {'key1', 'key2', 'key3'}
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()

    return {key.strip() for key in keys_string.split(",") if key.strip()}


def validate_api_key(provided_key: str | None) -> None:
    """Check ``provided_key`` against the configured keys.

    Comparison is constant-time per candidate key.

    Raises:
        AuthenticationAppError: If the key is missing/invalid, or
            authentication is required but no keys are configured.
    """
    if not settings.app.api_key_required:
        return

    valid_keys = parse_api_keys(settings.app.api_keys)
    if not valid_keys:
        logger.error(
            "api_key_validation_failed",
            extra={"reason": "api_keys_not_configured"},
        )
        raise AuthenticationAppError(
            code="api_keys_not_configured",
            message="API key authentication is enabled but no valid keys are configured",
            details={"hint": "Set APP_API_KEYS or disable auth with APP_API_KEY_REQUIRED=false"},
        )

    if not provided_key:
        logger.warning("api_key_validation_failed", extra={"reason": "missing_api_key"})
        raise AuthenticationAppError(
            code="missing_api_key",
            message="Missing API key. Provide X-API-Key header.",
        )

    matched = False
    for key in valid_keys:
        # no early exit: every configured key is compared
        matched |= hmac.compare_digest(provided_key.encode(), key.encode())

    if not matched:
        logger.warning(
            "api_key_validation_failed",
            extra={
                "reason": "invalid_api_key",
                "api_key_hash": hash_identifier(provided_key),
            },
        )
        raise AuthenticationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
        )


async def verify_api_key(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency for internal endpoints.

    Usage:
        @router.post("/internal/sessions", dependencies=[Depends(verify_api_key)])

    Raises:
        AuthenticationAppError: Rendered as 403 by the exception handlers.
    """
    if not settings.app.api_key_required:
        logger.debug("auth.skipped", extra={"reason": "auth_required_false"})
        return

    validate_api_key(x_api_key)
    logger.debug("auth.success", extra={"api_key_hash": hash_identifier(x_api_key or "")})
