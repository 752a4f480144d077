"""Shared-store rate limiters.

Each consume is one Lua script run, so the check and the increment are atomic
across every process sharing the store. Time is supplied by the caller (in
milliseconds) rather than read from the server so the window maths matches
the in-process fallback exactly.

Store failures propagate as ``StoreUnavailableError``; choosing a fallback is
the quota service's job.
"""

from __future__ import annotations

import math
import time
import uuid
from typing import Any, Callable

from gatekeeper.adapters.rate_limit.base import (
    AbstractRateLimiter,
    QuotaPolicy,
    RateLimitResult,
    validate_consume_args,
)
from gatekeeper.adapters.store.base import AbstractSharedStore
from gatekeeper.core.errors import StoreErrorKind, StoreUnavailableError

KEY_PREFIX = "rl"

# KEYS[1] = bucket hash {start, count}
# ARGV = now_ms, window_ms, capacity, cost
FIXED_WINDOW_LUA = """
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local capacity = tonumber(ARGV[3])
local cost = tonumber(ARGV[4])

local start = tonumber(redis.call("HGET", KEYS[1], "start"))
local count = tonumber(redis.call("HGET", KEYS[1], "count"))
if (not start) or (not count) or now >= start + window then
  start = now
  count = 0
end

if count + cost > capacity then
  return {0, count, start + window}
end

count = count + cost
redis.call("HSET", KEYS[1], "start", string.format("%d", start), "count", string.format("%d", count))
redis.call("PEXPIRE", KEYS[1], string.format("%d", start + window - now))
return {1, count, start + window}
"""

# KEYS[1] = sorted set of hit timestamps
# ARGV = now_ms, window_ms, capacity, cost, member_prefix
SLIDING_WINDOW_LUA = """
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local capacity = tonumber(ARGV[3])
local cost = tonumber(ARGV[4])

redis.call("ZREMRANGEBYSCORE", KEYS[1], "-inf", string.format("%d", now - window))
local count = redis.call("ZCARD", KEYS[1])

if count + cost > capacity then
  local reset = now + window
  if cost <= capacity then
    local idx = count + cost - capacity - 1
    local entry = redis.call("ZRANGE", KEYS[1], idx, idx, "WITHSCORES")
    reset = tonumber(entry[2]) + window
  end
  return {0, count, reset}
end

for i = 1, cost do
  redis.call("ZADD", KEYS[1], string.format("%d", now), ARGV[5] .. ":" .. i)
end
redis.call("PEXPIRE", KEYS[1], string.format("%d", window))
local oldest = redis.call("ZRANGE", KEYS[1], 0, 0, "WITHSCORES")
return {1, count + cost, tonumber(oldest[2]) + window}
"""


def bucket_key(scope: str, key: str) -> str:
    return f"{KEY_PREFIX}:{scope}:{key}"


class StoreBackedRateLimiter(AbstractRateLimiter):
    """Rate limiter whose counters live in the shared store.

    The same class serves both window strategies; the strategy only selects
    the Lua script.
    """

    def __init__(
        self,
        policy: QuotaPolicy,
        store: AbstractSharedStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.policy = policy
        self._store = store
        self._clock = clock

    def _script_and_args(self, now_ms: int, cost: int) -> tuple[str, list[Any]]:
        window_ms = self.policy.window_seconds * 1000
        args: list[Any] = [now_ms, window_ms, self.policy.capacity, cost]
        if self.policy.strategy == "fixed":
            return FIXED_WINDOW_LUA, args
        args.append(uuid.uuid4().hex)
        return SLIDING_WINDOW_LUA, args

    async def consume(self, key: str, *, cost: int = 1) -> RateLimitResult:
        """Consume budget for ``key`` atomically in the shared store.

        Raises:
            ValueError: If key is empty or cost is invalid.
            StoreUnavailableError: If the store cannot run the script.
        """
        validate_consume_args(key, cost)

        now_ms = int(self._clock() * 1000)
        script, args = self._script_and_args(now_ms, cost)
        reply = await self._store.run_atomic(script, [bucket_key(self.policy.scope, key)], args)

        try:
            allowed, count, reset_ms = (int(v) for v in reply[:3])
        except (TypeError, ValueError) as exc:
            raise StoreUnavailableError.from_kind(StoreErrorKind.OTHER, "rate_limit") from exc
        remaining = max(0, self.policy.capacity - count)
        reset_at = int(math.ceil(reset_ms / 1000))

        if allowed:
            return RateLimitResult(
                allowed=True,
                limit=self.policy.capacity,
                remaining=remaining,
                reset_at=reset_at,
                retry_after_seconds=None,
            )

        retry_after = max(1, int(math.ceil((reset_ms - now_ms) / 1000)))
        return RateLimitResult(
            allowed=False,
            limit=self.policy.capacity,
            remaining=remaining,
            reset_at=reset_at,
            retry_after_seconds=retry_after,
        )
