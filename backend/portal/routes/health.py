"""
Client Portal Backend — Health Check Route
===========================================

What:  Health check endpoint for monitoring and uptime checks.
How:   Checks configuration completeness, the Notion circuit breaker and,
       when the circuit is closed, whether the database can be retrieved.

Status levels:
    healthy:   configured and Notion reachable (HTTP 200)
    degraded:  Notion unreachable or circuit open (HTTP 200)
    unhealthy: Notion settings missing (HTTP 200, body says why)
"""

import logging
import time

from fastapi import APIRouter

from portal import __version__
from portal.config import settings
from portal.schemas.records import HealthResponse
from portal.services.notion_service import notion_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check() -> HealthResponse:
    configuration = "complete"
    notion_status = "available"
    overall = "healthy"

    if settings.missing_notion_settings():
        configuration = "incomplete"
        notion_status = "unconfigured"
        overall = "unhealthy"
    elif notion_service.circuit_breaker.state == notion_service.circuit_breaker.OPEN:
        notion_status = "circuit_open"
        overall = "degraded"
    elif not await notion_service.health_check():
        notion_status = "unavailable"
        overall = "degraded"

    return HealthResponse(
        status=overall,
        version=__version__,
        configuration=configuration,
        notion=notion_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
