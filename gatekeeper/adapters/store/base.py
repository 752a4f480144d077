"""Shared store interface.

Services depend on this abstraction (not the concrete client) so every store
round-trip goes through one place that classifies failures. Implementations
must either succeed or raise ``StoreUnavailableError``; they never return
stale or guessed data.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence


class AbstractSharedStore(ABC):
    """Async key-value store with TTLs, counters, sets and atomic scripts."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the string value at ``key`` or None when absent."""
        raise NotImplementedError

    @abstractmethod
    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store ``value`` at ``key`` expiring after ``ttl_seconds``."""
        raise NotImplementedError

    @abstractmethod
    async def increment(self, key: str) -> int:
        """Atomically increment ``key`` (created at 0 when absent) and return it."""
        raise NotImplementedError

    @abstractmethod
    async def expire(self, key: str, ttl_seconds: int) -> bool:
        """Set a TTL on ``key``. Returns False when the key does not exist."""
        raise NotImplementedError

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Remaining TTL in seconds.

        Returns -2 when the key does not exist and -1 when it has no expiry,
        mirroring Redis semantics.
        """
        raise NotImplementedError

    @abstractmethod
    async def add_to_set(self, set_key: str, member: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def remove_from_set(self, set_key: str, member: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def members_of(self, set_key: str) -> set[str]:
        raise NotImplementedError

    @abstractmethod
    async def run_atomic(
        self,
        script: str,
        keys: Sequence[str],
        args: Sequence[Any],
    ) -> Any:
        """Execute ``script`` server-side as a single atomic transaction.

        Args:
            script: Lua source.
            keys: Keys the script touches (KEYS[1..n]).
            args: Extra arguments (ARGV[1..n]).

        Returns:
            The script's reply, decoded to Python values.
        """
        raise NotImplementedError

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete ``keys`` and return how many existed."""
        raise NotImplementedError

    @abstractmethod
    async def ping(self) -> bool:
        """Round-trip check used by readiness probes."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release connections. Default is a no-op."""
        return None
