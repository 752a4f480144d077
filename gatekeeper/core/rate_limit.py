"""Quota enforcement for FastAPI routes.

This module wires the quota service into the HTTP layer.

- IP-keyed scopes are enforced with the ``ip_quota(scope)`` dependency.
- Scopes keyed by request data (e.g. an email in the body) call
  ``enforce_quota`` from the handler once the body is parsed.

A denial raises ``QuotaExceededError``; the exception handler turns it into
HTTP 429 with ``Retry-After``.
"""

from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import Depends, Request

from gatekeeper.core.config import settings
from gatekeeper.core.dependencies import get_quota_service
from gatekeeper.core.errors import QuotaExceededError
from gatekeeper.services.quota_service import QuotaService


def client_ip(request: Request) -> str:
    """Resolve the caller's IP address.

    Honors the first ``X-Forwarded-For`` hop only when the deployment says
    a trusted proxy sets it.
    """

    if settings.app.trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    return request.client.host if request.client else "unknown"


async def enforce_quota(quota: QuotaService, scope: str, key: str) -> None:
    """Consume one point of ``scope`` for ``key`` or raise.

    Raises:
        QuotaExceededError: When the bucket is exhausted.
    """

    if not settings.app.rate_limit_enabled:
        return

    result = await quota.consume(scope, key)
    if result.allowed:
        return

    retry_after = result.retry_after_seconds or 1
    raise QuotaExceededError(
        code="rate_limited",
        message="Too many requests. Try again later.",
        details={
            "scope": scope,
            "limit": result.limit,
            "remaining": result.remaining,
            "retry_after": retry_after,
        },
    )


def ip_quota(scope: str) -> Callable[..., Awaitable[None]]:
    """Build a dependency enforcing ``scope`` keyed by the client IP.

    Usage:
        @router.post("/signup", dependencies=[Depends(ip_quota(SIGNUP_IP))])
    """

    async def dependency(
        request: Request,
        quota: QuotaService = Depends(get_quota_service),
    ) -> None:
        await enforce_quota(quota, scope, client_ip(request))

    dependency.__name__ = f"ip_quota_{scope.replace('-', '_')}"
    return dependency
