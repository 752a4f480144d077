"""Service container and FastAPI dependency getters.

The store client, the quota fallback state and the services are built once
at startup (``build_container``) and kept on ``app.state``. Route handlers
receive them through ``Depends`` so tests can swap the whole container.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from fastapi import Request

from gatekeeper.adapters.delivery.base import AbstractCodeSender
from gatekeeper.adapters.delivery.logging_sender import LoggingCodeSender
from gatekeeper.adapters.store.base import AbstractSharedStore
from gatekeeper.adapters.store.redis_store import RedisSharedStore
from gatekeeper.core.config import DEV_HMAC_KEY, Settings
from gatekeeper.core.errors import ConfigurationError
from gatekeeper.services.quota_service import QuotaService, policies_from_settings
from gatekeeper.services.session_service import SessionService
from gatekeeper.services.verification_service import VerificationService


@dataclass
class ServiceContainer:
    """Process-wide services shared by all request handlers."""

    store: AbstractSharedStore
    quota: QuotaService
    verification: VerificationService
    sessions: SessionService
    sender: AbstractCodeSender


def validate_settings(cfg: Settings) -> None:
    """Reject configurations that must never reach request handling.

    Raises:
        ConfigurationError: On a missing/placeholder secret in production,
            code exposure in production, or an attempt counter that would
            expire before the code it guards.
    """

    verification = cfg.verification
    if not verification.hmac_key:
        raise ConfigurationError(
            code="missing_hmac_key",
            message="VERIFICATION_HMAC_KEY must be set",
            details={"setting": "VERIFICATION_HMAC_KEY"},
        )
    if cfg.is_production and verification.hmac_key == DEV_HMAC_KEY:
        raise ConfigurationError(
            code="placeholder_hmac_key",
            message="The development HMAC key cannot be used in production",
            details={"setting": "VERIFICATION_HMAC_KEY"},
        )
    if cfg.is_production and verification.expose_code:
        raise ConfigurationError(
            code="code_exposure_in_production",
            message="VERIFICATION_EXPOSE_CODE cannot be enabled in production",
            details={"setting": "VERIFICATION_EXPOSE_CODE"},
        )
    if verification.effective_attempts_ttl_seconds < verification.code_ttl_seconds:
        raise ConfigurationError(
            code="attempts_ttl_too_short",
            message="The attempt counter must live at least as long as the code",
            details={"setting": "VERIFICATION_ATTEMPTS_TTL_SECONDS"},
        )


def build_container(
    cfg: Settings,
    *,
    store: AbstractSharedStore | None = None,
    sender: AbstractCodeSender | None = None,
    clock: Callable[[], float] = time.time,
) -> ServiceContainer:
    """Validate configuration and wire the services.

    Args:
        cfg: Resolved settings.
        store: Shared store override (tests); defaults to Redis from settings.
        sender: Code delivery override; defaults to ``LoggingCodeSender``.
        clock: Time source for the quota limiters.

    Raises:
        ConfigurationError: If the configuration is invalid.
    """

    validate_settings(cfg)
    try:
        policies = policies_from_settings(cfg.quota)
    except ValueError as exc:
        raise ConfigurationError(code="invalid_quota_policy", message=str(exc)) from exc

    shared_store = store or RedisSharedStore.from_settings(cfg.store)
    return ServiceContainer(
        store=shared_store,
        quota=QuotaService(shared_store, policies, clock=clock),
        verification=VerificationService(shared_store, cfg.verification),
        sessions=SessionService(shared_store, ttl_seconds=cfg.session.ttl_seconds),
        sender=sender or LoggingCodeSender(),
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_quota_service(request: Request) -> QuotaService:
    return get_container(request).quota


def get_verification_service(request: Request) -> VerificationService:
    return get_container(request).verification


def get_session_service(request: Request) -> SessionService:
    return get_container(request).sessions


def get_code_sender(request: Request) -> AbstractCodeSender:
    return get_container(request).sender
