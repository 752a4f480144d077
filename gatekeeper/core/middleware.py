"""HTTP middleware for request ID propagation and access logging.

The middleware:
- Accepts incoming X-Request-ID header (configurable) or generates a UUID
- Stores request_id in contextvars so service and store logs carry it
- Injects request_id and total duration into response headers
- Emits one ``http.request`` log line per request
- Clears context after request completion to prevent context leaks

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response

from gatekeeper.core.config import settings
from gatekeeper.core.logging import clear_request_id, set_request_id

logger = logging.getLogger(__name__)

# Client-supplied ids longer than this are replaced with a fresh UUID.
MAX_REQUEST_ID_LENGTH = 128


def _resolve_request_id(request: Request, header_name: str) -> str:
    incoming = request.headers.get(header_name)
    if incoming and len(incoming) <= MAX_REQUEST_ID_LENGTH and incoming.isprintable():
        return incoming
    return str(uuid.uuid4())


async def request_id_middleware(request: Request, call_next) -> Response:
    """Attach a correlation id to the request, its logs and its response.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The response from the next handler with request_id and
            duration headers added.
    """

    header_name = settings.log.request_id_header
    request_id = _resolve_request_id(request, header_name)
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "http.request",
            extra={
                "method": request.method,
                "route": request.url.path,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
