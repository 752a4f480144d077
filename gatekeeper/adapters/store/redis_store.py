"""Resilient Redis adapter for the shared store.

Notes:
- Every command goes through ``_execute`` which turns driver errors into
  ``StoreUnavailableError`` with a ``StoreErrorKind``.
- When the configured host cannot be resolved (typical when a compose
  service name such as ``redis`` is used outside the compose network), the
  adapter re-targets 127.0.0.1 on the same port exactly once and keeps using
  that connection. It never switches back, so a flaky resolver cannot make it
  flap between hosts.
"""

from __future__ import annotations

import asyncio
import logging
import re
import socket
from typing import Any, Awaitable, Callable, Sequence, TypeVar
from urllib.parse import urlsplit, urlunsplit

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from gatekeeper.adapters.store.base import AbstractSharedStore
from gatekeeper.core.config import StoreSettings
from gatekeeper.core.errors import StoreErrorKind, StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOOPBACK_HOST = "127.0.0.1"
DEFAULT_REDIS_PORT = 6379
_LOOPBACK_HOSTS = {"127.0.0.1", "localhost", "::1"}

_DNS_ERROR_PATTERN = re.compile(
    r"getaddrinfo|name or service not known|nodename nor servname|"
    r"temporary failure in name resolution|no address associated|unknown address|enotfound",
    re.IGNORECASE,
)

ClientFactory = Callable[[str], "redis.Redis"]


def classify_store_error(exc: BaseException) -> StoreErrorKind:
    """Classify a driver exception into a ``StoreErrorKind``.

    Walks the exception chain because redis-py wraps ``socket.gaierror``
    inside its own ``ConnectionError``.
    """

    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, socket.gaierror):
            return StoreErrorKind.DNS_FAILURE
        if isinstance(current, (RedisTimeoutError, asyncio.TimeoutError, socket.timeout)):
            return StoreErrorKind.TIMEOUT
        current = current.__cause__ or current.__context__

    if _DNS_ERROR_PATTERN.search(str(exc)):
        return StoreErrorKind.DNS_FAILURE
    return StoreErrorKind.OTHER


def build_loopback_url(url: str) -> str | None:
    """Return ``url`` re-targeted to the loopback host, or None if already local.

    Credentials, port, database path and query string are preserved.
    """

    parts = urlsplit(url)
    host = parts.hostname
    if not host or host in _LOOPBACK_HOSTS:
        return None

    port = parts.port or DEFAULT_REDIS_PORT
    userinfo = ""
    if parts.username or parts.password:
        userinfo = parts.username or ""
        if parts.password:
            userinfo = f"{userinfo}:{parts.password}"
        userinfo += "@"
    netloc = f"{userinfo}{LOOPBACK_HOST}:{port}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def redact_url(url: str) -> str:
    """Drop credentials from a connection URL so it is safe to log."""

    parts = urlsplit(url)
    host = parts.hostname or ""
    netloc = f"{host}:{parts.port}" if parts.port else host
    return urlunsplit((parts.scheme, netloc, parts.path, "", ""))


def make_client_factory(cfg: StoreSettings) -> ClientFactory:
    """Build a factory creating redis clients with bounded timeouts and backoff."""

    def factory(url: str) -> redis.Redis:
        retry = Retry(
            ExponentialBackoff(cap=cfg.backoff_cap_seconds, base=cfg.backoff_base_seconds),
            cfg.retry_attempts,
        )
        return redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=cfg.socket_timeout_seconds,
            socket_connect_timeout=cfg.connect_timeout_seconds,
            retry=retry,
            retry_on_error=[RedisConnectionError, RedisTimeoutError],
            health_check_interval=30,
        )

    return factory


class RedisSharedStore(AbstractSharedStore):
    """Shared store backed by Redis with a one-shot loopback fallback."""

    def __init__(
        self,
        url: str,
        *,
        client_factory: ClientFactory,
        loopback_fallback: bool = True,
    ) -> None:
        self._url = url
        self._client_factory = client_factory
        self._client = client_factory(url)
        self._loopback_fallback = loopback_fallback
        self._fallback_attempted = False
        self._switch_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, cfg: StoreSettings) -> "RedisSharedStore":
        return cls(
            cfg.url,
            client_factory=make_client_factory(cfg),
            loopback_fallback=cfg.loopback_fallback,
        )

    @property
    def url(self) -> str:
        """Current target URL (changes once if the loopback fallback kicks in)."""
        return self._url

    @property
    def fallback_attempted(self) -> bool:
        return self._fallback_attempted

    async def _switch_to_loopback(self, failed_client: redis.Redis) -> bool:
        """Re-target the loopback host once. Returns True if a retry is worthwhile."""

        async with self._switch_lock:
            if self._client is not failed_client:
                # Another task already switched while we were waiting.
                return True
            if self._fallback_attempted or not self._loopback_fallback:
                return False

            self._fallback_attempted = True
            fallback_url = build_loopback_url(self._url)
            if fallback_url is None:
                logger.error(
                    "store.dns_failure_on_loopback",
                    extra={"store_url": redact_url(self._url)},
                )
                return False

            logger.warning(
                "store.dns_fallback",
                extra={
                    "store_url": redact_url(self._url),
                    "fallback_url": redact_url(fallback_url),
                },
            )
            old_client = self._client
            self._client = self._client_factory(fallback_url)
            self._url = fallback_url
            await self._close_client(old_client)
            return True

    async def _close_client(self, client: redis.Redis) -> None:
        try:
            await client.aclose()
        except (RedisError, OSError) as exc:
            logger.debug("store.close_failed", extra={"error_type": type(exc).__name__})

    async def _execute(self, operation: str, command: Callable[[redis.Redis], Awaitable[T]]) -> T:
        client = self._client
        try:
            return await command(client)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            kind = classify_store_error(exc)
            if kind is StoreErrorKind.DNS_FAILURE and await self._switch_to_loopback(client):
                try:
                    return await command(self._client)
                except (RedisError, OSError, asyncio.TimeoutError) as retry_exc:
                    kind = classify_store_error(retry_exc)
                    self._log_failure(operation, kind, retry_exc)
                    raise StoreUnavailableError.from_kind(kind, operation) from retry_exc

            self._log_failure(operation, kind, exc)
            raise StoreUnavailableError.from_kind(kind, operation) from exc

    def _log_failure(self, operation: str, kind: StoreErrorKind, exc: BaseException) -> None:
        logger.error(
            "store.unavailable",
            extra={
                "operation": operation,
                "kind": kind.value,
                "error_type": type(exc).__name__,
                "store_url": redact_url(self._url),
            },
        )

    async def get(self, key: str) -> str | None:
        return await self._execute("get", lambda c: c.get(key))

    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._execute("set", lambda c: c.set(key, value, ex=int(ttl_seconds)))

    async def increment(self, key: str) -> int:
        return int(await self._execute("incr", lambda c: c.incr(key)))

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        return bool(await self._execute("expire", lambda c: c.expire(key, int(ttl_seconds))))

    async def ttl(self, key: str) -> int:
        return int(await self._execute("ttl", lambda c: c.ttl(key)))

    async def add_to_set(self, set_key: str, member: str) -> None:
        await self._execute("sadd", lambda c: c.sadd(set_key, member))

    async def remove_from_set(self, set_key: str, member: str) -> None:
        await self._execute("srem", lambda c: c.srem(set_key, member))

    async def members_of(self, set_key: str) -> set[str]:
        members = await self._execute("smembers", lambda c: c.smembers(set_key))
        return {str(m) for m in members}

    async def run_atomic(self, script: str, keys: Sequence[str], args: Sequence[Any]) -> Any:
        return await self._execute(
            "eval",
            lambda c: c.eval(script, len(keys), *keys, *[str(a) for a in args]),
        )

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._execute("del", lambda c: c.delete(*keys)))

    async def ping(self) -> bool:
        return bool(await self._execute("ping", lambda c: c.ping()))

    async def close(self) -> None:
        await self._close_client(self._client)
