"""
FastAPI dependencies that hand the lifespan-created services to routes.

The services live on `app.state`; tests may assign their own instances there
before issuing requests.
"""

from fastapi import Request

from verse_library.services.background_refresh import BackgroundRefreshService
from verse_library.services.catalog_cache import CatalogCache
from verse_library.services.gateway_base import ContentGateway
from verse_library.services.performance_monitor import PerformanceMonitor
from verse_library.services.progress_service import ProgressService


def get_catalog(request: Request) -> CatalogCache:
    return request.app.state.catalog


def get_progress_service(request: Request) -> ProgressService:
    return request.app.state.progress_service


def get_background_refresh(request: Request) -> BackgroundRefreshService:
    return request.app.state.background_refresh


def get_monitor(request: Request) -> PerformanceMonitor:
    return request.app.state.monitor


def get_gateway(request: Request) -> ContentGateway:
    return request.app.state.gateway
