"""
Serve Tracker Backend — Health Check Route
============================================

What:  GET /health for container health checks and monitoring.
How:   Pings the local cache and checks that remote credentials are set.
       The remote store itself is not called; its outages are absorbed by
       the local fallback and should not pull the instance from rotation.

Status levels:
    healthy    local cache reachable, remote configuration complete
    degraded   remote configuration incomplete (submissions will queue locally)
    unhealthy  local cache unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Depends, Response, status

from serve_tracker import __version__
from serve_tracker.dependencies import Container, get_container
from serve_tracker.schemas.common import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(
    response: Response,
    container: Container = Depends(get_container),
) -> HealthResponse:
    overall = "healthy"

    # ── Local cache ───────────────────────────────────────────────────────
    cache_status = "connected"
    if not await container.cache.ping():
        cache_status = "disconnected"
        overall = "unhealthy"

    # ── Remote configuration ─────────────────────────────────────────────
    remote_status = "configured"
    try:
        container.settings.validate_required_for_production()
    except ValueError as e:
        remote_status = "incomplete"
        if overall == "healthy":
            overall = "degraded"
        logger.debug("Health check: %s", str(e))

    if overall == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status=overall,
        version=__version__,
        local_cache=cache_status,
        remote_config=remote_status,
        pending_background_tasks=container.background.pending_count,
        uptime_seconds=round(time.time() - container.started_at, 2) if container.started_at else 0.0,
    )
