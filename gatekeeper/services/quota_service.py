"""Quota service: per-scope request budgets with graceful degradation.

Each scope owns two limiters built from the same ``QuotaPolicy``:
- a shared-store limiter, authoritative across all processes;
- an in-process limiter, used only while the store is unavailable.

Fallback counters are never written back to the store, so a recovering store
simply resumes from its own state. While degraded, enforcement is per process
(looser across many workers) but never disabled.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable

from gatekeeper.adapters.rate_limit.base import AbstractRateLimiter, QuotaPolicy, RateLimitResult
from gatekeeper.adapters.rate_limit.in_memory import build_in_memory_limiter
from gatekeeper.adapters.rate_limit.store_backed import StoreBackedRateLimiter
from gatekeeper.adapters.store.base import AbstractSharedStore
from gatekeeper.core.config import QuotaSettings
from gatekeeper.core.errors import StoreUnavailableError
from gatekeeper.core.logging import hash_identifier

logger = logging.getLogger(__name__)

SIGNUP_IP = "signup-ip"
RESEND_EMAIL = "resend-email"
RESEND_IP = "resend-ip"
CHECK_IP = "check-ip"


def policies_from_settings(cfg: QuotaSettings) -> list[QuotaPolicy]:
    """Build the configured policy set.

    Raises:
        ValueError: If a configured capacity/window is invalid.
    """

    return [
        QuotaPolicy(SIGNUP_IP, cfg.signup_ip_capacity, cfg.signup_ip_window_seconds, cfg.signup_ip_strategy),
        QuotaPolicy(
            RESEND_EMAIL,
            cfg.resend_email_capacity,
            cfg.resend_email_window_seconds,
            cfg.resend_email_strategy,
        ),
        QuotaPolicy(RESEND_IP, cfg.resend_ip_capacity, cfg.resend_ip_window_seconds, cfg.resend_ip_strategy),
        QuotaPolicy(CHECK_IP, cfg.check_ip_capacity, cfg.check_ip_window_seconds, cfg.check_ip_strategy),
    ]


class QuotaService:
    """Consume quota points per ``(scope, key)`` bucket."""

    def __init__(
        self,
        store: AbstractSharedStore,
        policies: Iterable[QuotaPolicy],
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._primary: dict[str, AbstractRateLimiter] = {}
        self._fallback: dict[str, AbstractRateLimiter] = {}
        for policy in policies:
            if policy.scope in self._primary:
                raise ValueError(f"duplicate quota scope: {policy.scope}")
            self._primary[policy.scope] = StoreBackedRateLimiter(policy, store, clock=clock)
            self._fallback[policy.scope] = build_in_memory_limiter(policy, clock=clock)

    @property
    def scopes(self) -> list[str]:
        return sorted(self._primary)

    @staticmethod
    def _limiter(limiters: dict[str, AbstractRateLimiter], scope: str) -> AbstractRateLimiter:
        try:
            return limiters[scope]
        except KeyError:
            raise ValueError(f"unknown quota scope: {scope}") from None

    async def consume(self, scope: str, key: str) -> RateLimitResult:
        """Consume one point from the ``(scope, key)`` bucket.

        Args:
            scope: Configured quota scope (e.g. ``signup-ip``).
            key: Bucket key within the scope (IP address, email, ...).

        Returns:
            RateLimitResult; ``retry_after_seconds`` is set when denied.

        Raises:
            ValueError: If the scope is unknown or the key is empty.
        """

        primary = self._limiter(self._primary, scope)
        try:
            result = await primary.consume(key)
        except StoreUnavailableError as exc:
            logger.warning(
                "quota.fallback",
                extra={
                    "scope": scope,
                    "key_hash": hash_identifier(key),
                    "kind": exc.kind.value,
                },
            )
            result = await self._fallback[scope].consume(key)
            self._log_result(scope, key, result, source="memory")
            return result

        self._log_result(scope, key, result, source="store")
        return result

    def _log_result(self, scope: str, key: str, result: RateLimitResult, *, source: str) -> None:
        policy = self._primary[scope].policy
        extra = {
            "scope": scope,
            "key_hash": hash_identifier(key),
            "source": source,
            "limit": result.limit,
            "remaining": result.remaining,
            "window_s": policy.window_seconds,
        }
        if result.allowed:
            logger.debug("quota.allowed", extra=extra)
            return
        extra["retry_after_s"] = result.retry_after_seconds
        logger.warning("quota.exceeded", extra=extra)
