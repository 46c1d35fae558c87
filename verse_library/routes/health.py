"""
Verse Library — Health Check Route
====================================

What:  Service health for monitoring and load balancers.

Status levels:
    - healthy:  content service reachable
    - degraded: content service unreachable or its circuit is open; the
                cached catalog is still served
"""

import logging
import time

from fastapi import APIRouter, Depends

from verse_library import __version__
from verse_library.dependencies import get_catalog, get_gateway
from verse_library.schemas.library import HealthResponse
from verse_library.services.catalog_cache import CatalogCache
from verse_library.services.gateway_base import ContentGateway

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get("/health", response_model=HealthResponse, summary="Service health check")
async def health_check(
    gateway: ContentGateway = Depends(get_gateway),
    catalog: CatalogCache = Depends(get_catalog),
) -> HealthResponse:
    gateway_status = "available"
    if gateway.breaker_state == "open":
        gateway_status = "circuit_open"
    elif not await gateway.health_check():
        gateway_status = "unavailable"
    if gateway_status != "available":
        logger.warning("Health check: content service %s", gateway_status)

    return HealthResponse(
        status="healthy" if gateway_status == "available" else "degraded",
        version=__version__,
        gateway=gateway_status,
        chapters_cached=len(catalog.state.chapters),
        cache_valid=catalog.is_valid(),
        uptime_seconds=round(time.time() - _start_time, 2),
    )
