"""Shared-store limiters running their Lua scripts against fake Redis."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from gatekeeper.adapters.rate_limit.base import QuotaPolicy
from gatekeeper.adapters.rate_limit.store_backed import StoreBackedRateLimiter, bucket_key
from gatekeeper.core.errors import StoreErrorKind, StoreUnavailableError


def _limiter(store, clock, *, capacity: int, window: int, strategy: str) -> StoreBackedRateLimiter:
    return StoreBackedRateLimiter(QuotaPolicy("signup-ip", capacity, window, strategy), store, clock=clock)


def test_bucket_key_layout() -> None:
    assert bucket_key("signup-ip", "203.0.113.5") == "rl:signup-ip:203.0.113.5"


@pytest.mark.asyncio
@pytest.mark.parametrize("strategy", ["fixed", "sliding"])
async def test_sixth_call_in_hour_is_denied(store, clock, strategy: str) -> None:
    limiter = _limiter(store, clock, capacity=5, window=3600, strategy=strategy)

    for expected_remaining in (4, 3, 2, 1, 0):
        result = await limiter.consume("203.0.113.5")
        assert result.allowed is True
        assert result.remaining == expected_remaining

    clock.advance(1)
    blocked = await limiter.consume("203.0.113.5")
    assert blocked.allowed is False
    assert blocked.remaining == 0
    assert 1 <= blocked.retry_after_seconds <= 3600
    assert blocked.retry_after_seconds == 3599


@pytest.mark.asyncio
async def test_fixed_window_resets_after_window(store, clock) -> None:
    limiter = _limiter(store, clock, capacity=1, window=60, strategy="fixed")

    assert (await limiter.consume("k")).allowed is True
    clock.advance(59)
    assert (await limiter.consume("k")).allowed is False
    clock.advance(1)
    assert (await limiter.consume("k")).allowed is True


@pytest.mark.asyncio
async def test_sliding_window_matches_in_memory_semantics(store, clock) -> None:
    limiter = _limiter(store, clock, capacity=2, window=60, strategy="sliding")

    assert (await limiter.consume("k")).allowed is True
    clock.advance(30)
    assert (await limiter.consume("k")).allowed is True
    clock.advance(15)
    blocked = await limiter.consume("k")
    assert blocked.allowed is False
    assert blocked.retry_after_seconds == 15

    clock.advance(15)
    assert (await limiter.consume("k")).allowed is True


@pytest.mark.asyncio
async def test_keys_and_scopes_are_independent(store, clock) -> None:
    first = StoreBackedRateLimiter(QuotaPolicy("a", 1, 60), store, clock=clock)
    second = StoreBackedRateLimiter(QuotaPolicy("b", 1, 60), store, clock=clock)

    assert (await first.consume("k")).allowed is True
    assert (await first.consume("k")).allowed is False
    assert (await first.consume("other")).allowed is True
    assert (await second.consume("k")).allowed is True


@pytest.mark.asyncio
@pytest.mark.parametrize("strategy", ["fixed", "sliding"])
async def test_concurrent_consumers_never_exceed_capacity(store, clock, strategy: str) -> None:
    limiter = _limiter(store, clock, capacity=5, window=3600, strategy=strategy)

    results = await asyncio.gather(*(limiter.consume("k") for _ in range(20)))

    assert sum(r.allowed for r in results) == 5


@pytest.mark.asyncio
async def test_bucket_expires_with_window(store, clock) -> None:
    limiter = _limiter(store, clock, capacity=3, window=60, strategy="fixed")
    await limiter.consume("k")

    ttl = await store.ttl(bucket_key("signup-ip", "k"))
    assert 0 < ttl <= 60


@pytest.mark.asyncio
@pytest.mark.parametrize("reply", [None, [1], ["allowed", "1", "0"]])
async def test_malformed_reply_is_store_error(clock, reply) -> None:
    store = AsyncMock()
    store.run_atomic.return_value = reply
    limiter = _limiter(store, clock, capacity=5, window=60, strategy="fixed")

    with pytest.raises(StoreUnavailableError) as exc_info:
        await limiter.consume("203.0.113.5")

    assert exc_info.value.kind is StoreErrorKind.OTHER
