"""Application factory for FastAPI app.

Centralizes app construction (metadata, lifespan, middleware, handlers,
routers) so tests can build an app around their own service container.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from gatekeeper.api.routes import (
    auth_router,
    health_router,
    sessions_router,
    users_router,
    verification_router,
)
from gatekeeper.core.config import settings
from gatekeeper.core.dependencies import ServiceContainer, build_container
from gatekeeper.core.exception_handlers import setup_exception_handlers
from gatekeeper.core.logging import configure_logging
from gatekeeper.core.middleware import request_id_middleware
from gatekeeper.core.openapi import apply_openapi_customizations

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the service container on startup and release the store on shutdown.

    A container already placed on ``app.state`` (tests) is used as is.
    """
    if getattr(app.state, "container", None) is None:
        app.state.container = build_container(settings)
    logger.info("app.startup", extra={"app_env": settings.app_env})
    try:
        yield
    finally:
        await app.state.container.store.close()
        logger.info("app.shutdown")


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        container: Pre-built services. When omitted they are built from
            settings during startup.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Gatekeeper API",
        description=(
            "Abuse-resistant gatekeeping for account signup and verification: "
            "per-IP and per-email quotas, one-time verification codes with "
            "attempt lockout, and server-side sessions kept in sync with "
            "durable user state."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.container = container

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(verification_router, prefix="/v1")
    app.include_router(auth_router, prefix="/v1")
    app.include_router(sessions_router, prefix="/v1")
    app.include_router(users_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app, cookie_name=settings.session.cookie_name)

    return app
