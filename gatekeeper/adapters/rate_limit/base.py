"""Rate limiter interfaces.

The quota service depends on this abstraction (not the concrete
implementation) so the shared-store limiter and the in-process fallback are
interchangeable for a given policy.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal


WindowStrategy = Literal["fixed", "sliding"]


@dataclass(frozen=True)
class QuotaPolicy:
    """Capacity and window for one quota scope.

    Attributes:
        scope: Logical bucket family (e.g. ``signup-ip``).
        capacity: Max points per window.
        window_seconds: Window length in seconds.
        strategy: ``fixed`` windows start at the first hit of a bucket and
            reset after ``window_seconds``; ``sliding`` counts the hits in the
            last ``window_seconds``.
    """

    scope: str
    capacity: int
    window_seconds: int
    strategy: WindowStrategy = "sliding"

    def __post_init__(self) -> None:
        if not self.scope:
            raise ValueError("scope must be a non-empty string")
        if self.capacity < 1:
            raise ValueError("capacity must be >= 1")
        if self.window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")
        if self.strategy not in ("fixed", "sliding"):
            raise ValueError("strategy must be 'fixed' or 'sliding'")


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check/consume operation.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining requests in the current window (0 when blocked).
        reset_at: UNIX epoch seconds when the next point becomes available.
        retry_after_seconds: Suggested wait time in seconds when blocked.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after_seconds: int | None


class AbstractRateLimiter(ABC):
    """Interface for rate limiters bound to a single ``QuotaPolicy``."""

    policy: QuotaPolicy

    @abstractmethod
    async def consume(self, key: str, *, cost: int = 1) -> RateLimitResult:
        """Consume rate limit budget for a given key.

        Args:
            key: Unique identifier within the policy scope (e.g. IP address).
            cost: Units to consume (default 1).

        Returns:
            RateLimitResult describing whether it was allowed.
        """
        raise NotImplementedError


def validate_consume_args(key: str, cost: int) -> None:
    if cost < 1:
        raise ValueError("cost must be >= 1")
    if not key:
        raise ValueError("key must be a non-empty string")
