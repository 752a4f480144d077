"""In-memory rate limiters used as the per-process fallback.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state. ``consume`` never awaits
  while holding it.
- Window semantics match the shared-store limiters in ``store_backed`` so a
  scope behaves the same whether or not the store is reachable.
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable

from gatekeeper.adapters.rate_limit.base import (
    AbstractRateLimiter,
    QuotaPolicy,
    RateLimitResult,
    validate_consume_args,
)

# Idle buckets are swept after this many consume calls.
_SWEEP_EVERY = 1024


@dataclass
class _WindowState:
    window_start: float
    count: int


class _InMemoryLimiterBase(AbstractRateLimiter):
    def __init__(
        self,
        policy: QuotaPolicy,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.policy = policy
        self._clock = clock
        self._lock = threading.RLock()
        self._calls = 0

    @property
    def _limit(self) -> int:
        return self.policy.capacity

    @property
    def _window_seconds(self) -> int:
        return self.policy.window_seconds

    def _build_allowed_result(self, *, remaining: int, reset_at: float) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            limit=self._limit,
            remaining=remaining,
            reset_at=int(math.ceil(reset_at)),
            retry_after_seconds=None,
        )

    def _build_blocked_result(self, *, now: float, remaining: int, reset_at: float) -> RateLimitResult:
        retry_after = max(1, int(math.ceil(reset_at - now)))
        return RateLimitResult(
            allowed=False,
            limit=self._limit,
            remaining=remaining,
            reset_at=int(math.ceil(reset_at)),
            retry_after_seconds=retry_after,
        )

    def _maybe_sweep_locked(self, now: float) -> None:
        self._calls += 1
        if self._calls % _SWEEP_EVERY == 0:
            self._sweep_locked(now)

    def _sweep_locked(self, now: float) -> None:
        raise NotImplementedError


class InMemoryFixedWindowRateLimiter(_InMemoryLimiterBase):
    """Rate limiter using a fixed time window per key.

    A bucket's window opens on its first consumed point and resets
    ``window_seconds`` later. Counts are local to this process.
    """

    def __init__(
        self,
        policy: QuotaPolicy,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(policy, clock=clock)
        self._state_by_key: dict[str, _WindowState] = {}

    def _get_or_reset_state(self, key: str, now: float) -> _WindowState:
        """Get the current state for key or open a new window when expired.

        Args:
            key: Rate limit key (e.g., client IP).
            now: Current UNIX time in seconds.

        Returns:
            The current window state for this key.
        """
        state = self._state_by_key.get(key)
        if state is None or now >= state.window_start + self._window_seconds:
            state = _WindowState(window_start=now, count=0)
            self._state_by_key[key] = state
        return state

    def _sweep_locked(self, now: float) -> None:
        expired = [
            k
            for k, state in self._state_by_key.items()
            if now >= state.window_start + self._window_seconds
        ]
        for key in expired:
            del self._state_by_key[key]

    async def consume(self, key: str, *, cost: int = 1) -> RateLimitResult:
        """Take ``cost`` points from the bucket of ``key`` if they fit.

        Raises:
            ValueError: If key is empty or cost is invalid.
        """
        validate_consume_args(key, cost)

        now = self._clock()

        with self._lock:
            self._maybe_sweep_locked(now)
            state = self._get_or_reset_state(key, now)
            reset_at = state.window_start + self._window_seconds

            if state.count + cost <= self._limit:
                state.count += cost
                remaining = max(0, self._limit - state.count)
                return self._build_allowed_result(remaining=remaining, reset_at=reset_at)

            remaining = max(0, self._limit - state.count)
            return self._build_blocked_result(now=now, remaining=remaining, reset_at=reset_at)


class InMemorySlidingWindowRateLimiter(_InMemoryLimiterBase):
    """Rate limiter keeping a timestamp log per key.

    A point is available when fewer than ``capacity`` points were consumed in
    the last ``window_seconds``. Denied attempts are not recorded.
    """

    def __init__(
        self,
        policy: QuotaPolicy,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(policy, clock=clock)
        self._log_by_key: dict[str, deque[float]] = {}

    def _pruned_log(self, key: str, now: float) -> deque[float]:
        log = self._log_by_key.get(key)
        if log is None:
            log = deque()
            self._log_by_key[key] = log
        horizon = now - self._window_seconds
        while log and log[0] <= horizon:
            log.popleft()
        return log

    def _sweep_locked(self, now: float) -> None:
        horizon = now - self._window_seconds
        idle = [k for k, log in self._log_by_key.items() if not log or log[-1] <= horizon]
        for key in idle:
            del self._log_by_key[key]

    async def consume(self, key: str, *, cost: int = 1) -> RateLimitResult:
        """Record ``cost`` hits for ``key`` unless the window is full.

        Raises:
            ValueError: If key is empty or cost is invalid.
        """
        validate_consume_args(key, cost)

        now = self._clock()

        with self._lock:
            self._maybe_sweep_locked(now)
            log = self._pruned_log(key, now)

            if len(log) + cost <= self._limit:
                log.extend([now] * cost)
                remaining = self._limit - len(log)
                reset_at = log[0] + self._window_seconds
                return self._build_allowed_result(remaining=remaining, reset_at=reset_at)

            remaining = max(0, self._limit - len(log))
            if cost > self._limit:
                # Can never fit; report a full window.
                reset_at = now + self._window_seconds
            else:
                # The entry that has to age out before ``cost`` points fit.
                reset_at = log[len(log) + cost - self._limit - 1] + self._window_seconds
            return self._build_blocked_result(now=now, remaining=remaining, reset_at=reset_at)


def build_in_memory_limiter(
    policy: QuotaPolicy,
    *,
    clock: Callable[[], float] = time.time,
) -> AbstractRateLimiter:
    """Return the in-process limiter matching ``policy.strategy``."""

    if policy.strategy == "fixed":
        return InMemoryFixedWindowRateLimiter(policy, clock=clock)
    return InMemorySlidingWindowRateLimiter(policy, clock=clock)
