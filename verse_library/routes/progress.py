"""
Verse Library — Progress, Lifecycle and Metrics Routes
========================================================

Route Inventory:
    GET  /api/progress              current progress summary
    POST /api/progress/sync         full reconciliation with the content service
    POST /api/lifecycle/foreground  app came to the foreground (may refresh)
    GET  /api/metrics               cache and interaction counters
"""

import logging

from fastapi import APIRouter, Depends

from verse_library.dependencies import (
    get_background_refresh,
    get_catalog,
    get_monitor,
    get_progress_service,
)
from verse_library.schemas.library import (
    ErrorResponse,
    ForegroundResponse,
    PerformanceStats,
    ProgressResponse,
)
from verse_library.services.background_refresh import BackgroundRefreshService
from verse_library.services.catalog_cache import CatalogCache
from verse_library.services.performance_monitor import PerformanceMonitor
from verse_library.services.progress_service import ProgressService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Progress"])


@router.get("/progress", response_model=ProgressResponse, summary="Reading progress")
async def get_progress(
    progress_service: ProgressService = Depends(get_progress_service),
) -> ProgressResponse:
    return ProgressResponse(
        progress=progress_service.progress,
        has_read_today=progress_service.has_read_today,
    )


@router.post(
    "/progress/sync",
    response_model=ProgressResponse,
    responses={502: {"description": "Content service error", "model": ErrorResponse}},
    summary="Reconcile progress with the content service",
)
async def sync_progress(
    progress_service: ProgressService = Depends(get_progress_service),
) -> ProgressResponse:
    progress = await progress_service.sync_from_gateway()
    return ProgressResponse(progress=progress, has_read_today=progress_service.has_read_today)


@router.post(
    "/lifecycle/foreground",
    response_model=ForegroundResponse,
    summary="Notify that the app returned to the foreground",
)
async def app_foreground(
    background_refresh: BackgroundRefreshService = Depends(get_background_refresh),
) -> ForegroundResponse:
    return ForegroundResponse(refreshed=await background_refresh.on_app_foreground())


@router.get("/metrics", response_model=PerformanceStats, summary="Cache performance counters")
async def get_metrics(
    monitor: PerformanceMonitor = Depends(get_monitor),
    catalog: CatalogCache = Depends(get_catalog),
) -> PerformanceStats:
    stats = catalog.cache_stats()
    monitor.update_cache_metrics(
        search_cache_size=stats.search_cache_size,
        filter_cache_size=stats.filter_cache_size,
        chapters_cache_age_seconds=stats.chapters_cache_age_seconds,
    )
    return monitor.get_stats()
