from __future__ import annotations

from gatekeeper.api.routes.auth import router as auth_router
from gatekeeper.api.routes.health import router as health_router
from gatekeeper.api.routes.sessions import router as sessions_router
from gatekeeper.api.routes.users import router as users_router
from gatekeeper.api.routes.verification import router as verification_router

__all__ = [
    "auth_router",
    "health_router",
    "sessions_router",
    "users_router",
    "verification_router",
]
