"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the testing environment before any settings import so no developer
``.env`` file leaks into the suite.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"

# Set default env vars that all tests might need
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("VERIFICATION_HMAC_KEY", "test-hmac-key")
os.environ.setdefault("VERIFICATION_EXPOSE_CODE", "true")
os.environ.setdefault("STORE_URL", "redis://localhost:6379/0")

import fakeredis
import fakeredis.aioredis
import pytest
from fastapi.testclient import TestClient

from gatekeeper.adapters.delivery.logging_sender import LoggingCodeSender
from gatekeeper.adapters.store.redis_store import RedisSharedStore
from gatekeeper.core.app_factory import create_app
from gatekeeper.core.config import settings
from gatekeeper.core.dependencies import ServiceContainer, build_container

API_KEY_HEADERS = {"X-API-Key": "test-api-key-123"}


def make_fake_store(server: fakeredis.FakeServer) -> RedisSharedStore:
    """Shared store backed by an in-process fake Redis (real Lua included)."""
    return RedisSharedStore(
        "redis://localhost:6379/0",
        client_factory=lambda url: fakeredis.aioredis.FakeRedis(server=server, decode_responses=True),
        loopback_fallback=False,
    )


@pytest.fixture
def fake_server() -> fakeredis.FakeServer:
    return fakeredis.FakeServer()


@pytest.fixture
def store(fake_server: fakeredis.FakeServer) -> RedisSharedStore:
    return make_fake_store(fake_server)


class FakeClock:
    """Settable time source for limiters."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sender() -> LoggingCodeSender:
    return LoggingCodeSender()


@pytest.fixture
def container(store: RedisSharedStore, sender: LoggingCodeSender, clock: FakeClock) -> ServiceContainer:
    return build_container(settings, store=store, sender=sender, clock=clock)


@pytest.fixture
def client(container: ServiceContainer):
    """Test client over an app wired to the fake store.

    Used as a context manager so every request runs on the same event loop
    as the store's connections.
    """
    with TestClient(create_app(container)) as test_client:
        yield test_client
