"""Map application errors to HTTP responses.

Every error body has the same shape::

    {"error": {"code": ..., "message": ..., "request_id": ..., "details": ...}}

``details`` is only sent for client-side failures. Server-side failures
(store outages, configuration, unexpected exceptions) are logged in full and
answered with a generic message so connection strings, script names and
tracebacks never reach callers.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from gatekeeper.core.config import settings
from gatekeeper.core.errors import (
    AppError,
    AuthenticationAppError,
    ConfigurationError,
    QuotaExceededError,
    StoreUnavailableError,
    UnauthenticatedError,
)
from gatekeeper.core.logging import get_request_id

logger = logging.getLogger(__name__)

# Checked in order; anything else is a 400.
_STATUS_BY_ERROR: tuple[tuple[type[AppError], int], ...] = (
    (UnauthenticatedError, 401),
    (AuthenticationAppError, 403),
    (QuotaExceededError, 429),
    (StoreUnavailableError, 503),
    (ConfigurationError, 500),
)


def status_for(exc: AppError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


def _quota_headers(exc: QuotaExceededError) -> dict[str, str]:
    headers = {"Retry-After": str(exc.retry_after)}
    details = exc.details or {}
    if settings.app.rate_limit_include_headers:
        if "limit" in details:
            headers["X-RateLimit-Limit"] = str(details["limit"])
        if "remaining" in details:
            headers["X-RateLimit-Remaining"] = str(details["remaining"])
    return headers


def _error_body(code: str, message: str, details: dict | None = None) -> dict:
    body = {"code": code, "message": message, "request_id": get_request_id()}
    if details:
        body["details"] = details
    return {"error": body}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an ``AppError`` (or subclass) with its mapped status.

    Quota denials also carry ``Retry-After`` and, when enabled, the
    ``X-RateLimit-*`` headers.
    """
    status_code = status_for(exc)
    server_side = status_code >= 500

    log_extra = {
        "error_code": exc.code,
        "status_code": status_code,
        "route": request.url.path,
        "has_details": bool(exc.details),
    }
    if isinstance(exc, StoreUnavailableError):
        log_extra["store_error_kind"] = exc.kind.value
    logger.log(logging.ERROR if server_side else logging.WARNING, "http.app_error", extra=log_extra)

    headers = _quota_headers(exc) if isinstance(exc, QuotaExceededError) else None
    return JSONResponse(
        status_code=status_code,
        content=_error_body(exc.code, exc.message, None if server_side else exc.details),
        headers=headers,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort for exceptions nothing else handled: log the type, answer 500."""
    logger.error(
        "http.unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "route": request.url.path,
            "method": request.method,
        },
        exc_info=exc,
    )

    return JSONResponse(
        status_code=500,
        content=_error_body(
            "internal_server_error",
            "An unexpected error occurred. Please try again later.",
        ),
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the handlers on ``app``. Calling it twice is harmless."""
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
