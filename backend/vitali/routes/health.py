"""
Vitali Backend — Health Check Route
=====================================

What:  Health check endpoint for monitoring and load balancer probes.
How:   Reports the state store mode, a lightweight database probe and the
       buckets whose latest changes are not yet durable.

Status levels:
    - ok:         durable store reachable (HTTP 200)
    - degraded:   pure-memory mode; serving, but state will not survive a restart
    - unhealthy:  durable store configured but unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Depends, Response

from vitali import __version__
from vitali.dependencies import get_store
from vitali.schemas.system import HealthResponse
from vitali.store import AppStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(response: Response, store: AppStore = Depends(get_store)) -> HealthResponse:
    """
    Check the service and its snapshot store.

    Database check: SELECT 1 through the backend's engine. Skipped in
    pure-memory mode, which reports `degraded`.
    """
    database = await store.health()
    if database == "ok":
        overall = "ok"
    elif database == "degraded":
        overall = "degraded"
    else:
        overall = "unhealthy"
        response.status_code = 503
        logger.warning("Health check: snapshot store unreachable")

    return HealthResponse(
        status=overall,
        version=__version__,
        store_mode="memory" if store.pure_memory else "postgres",
        database=database,
        pending_flushes=store.pending_flushes(),
        uptime_seconds=round(time.time() - _start_time, 2),
    )
