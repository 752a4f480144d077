from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from gatekeeper.core.dependencies import ServiceContainer, get_container
from gatekeeper.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness probe.

    Returns:
        dict: A dictionary with a single "status" key set to "ok".
    """

    return {"status": "ok"}


@router.get("/health/ready")
async def readiness_check(container: ServiceContainer = Depends(get_container)) -> dict:
    """Readiness probe reporting shared store reachability.

    Always answers 200: with the store down the quotas still run on
    in-process counters, so the service is degraded rather than unavailable.
    """

    try:
        store_up = await container.store.ping()
    except StoreUnavailableError as exc:
        logger.warning("health.store_down", extra={"store_error_kind": exc.kind.value})
        store_up = False

    return {"status": "ok" if store_up else "degraded", "store": "up" if store_up else "down"}
