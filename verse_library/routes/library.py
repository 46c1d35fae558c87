"""
Verse Library — Library Route Handlers
========================================

What:  The consumer surface of the Catalog Cache: catalog reads, refresh,
       search/filter state, optimistic mutations and cache reset.
How:   Thin handlers; every decision (TTL, query caching, optimistic updates)
       lives in CatalogCache and ProgressService.

Read paths never fail on gateway errors: the response carries the stale
chapters and `status.error` / `status.is_stale` / `status.can_retry` instead.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Path, Query, Response

from verse_library.dependencies import get_catalog, get_progress_service
from verse_library.schemas.library import (
    ErrorResponse,
    FavoriteResponse,
    FilterRequest,
    LibraryResponse,
    MarkReadRequest,
    MarkReadResponse,
    SearchQueryRequest,
    Verse,
)
from verse_library.services.catalog_cache import CatalogCache
from verse_library.services.progress_service import ProgressService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Library"])


def _library_response(catalog: CatalogCache, chapters) -> LibraryResponse:
    return LibraryResponse(chapters=chapters, status=catalog.status())


@router.get(
    "/chapters",
    response_model=LibraryResponse,
    summary="Chapter catalog with progress",
    description=(
        "Serves the cached catalog while it is younger than the TTL, otherwise "
        "refreshes it from the content service. On a failed refresh the previous "
        "catalog is returned with an error status."
    ),
)
async def list_chapters(
    force_refresh: bool = Query(default=False, description="Bypass the TTL check"),
    catalog: CatalogCache = Depends(get_catalog),
) -> LibraryResponse:
    chapters = await catalog.fetch_chapters(force_refresh=force_refresh)
    return _library_response(catalog, chapters)


@router.post(
    "/chapters/refresh",
    response_model=LibraryResponse,
    summary="Pull-to-refresh",
)
async def refresh_chapters(catalog: CatalogCache = Depends(get_catalog)) -> LibraryResponse:
    chapters = await catalog.refresh_chapters()
    return _library_response(catalog, chapters)


@router.get(
    "/chapters/filtered",
    response_model=LibraryResponse,
    summary="Chapters matching the current search query and filter",
)
async def filtered_chapters(catalog: CatalogCache = Depends(get_catalog)) -> LibraryResponse:
    return _library_response(catalog, await catalog.get_filtered_chapters())


@router.put(
    "/library/search",
    response_model=LibraryResponse,
    summary="Set the search query",
    description="Stores the query and returns the resulting filtered view.",
)
async def set_search_query(
    body: SearchQueryRequest,
    catalog: CatalogCache = Depends(get_catalog),
) -> LibraryResponse:
    await catalog.set_search_query(body.query)
    return _library_response(catalog, await catalog.get_filtered_chapters())


@router.put(
    "/library/filter",
    response_model=LibraryResponse,
    responses={400: {"description": "Unknown filter id", "model": ErrorResponse}},
    summary="Select the category filter",
    description="One of: all, in-progress, completed, favorites.",
)
async def set_selected_filter(
    body: FilterRequest,
    catalog: CatalogCache = Depends(get_catalog),
) -> LibraryResponse:
    await catalog.set_selected_filter(body.filter)
    return _library_response(catalog, await catalog.get_filtered_chapters())


@router.post(
    "/chapters/{chapter_id}/read",
    response_model=MarkReadResponse,
    responses={
        401: {"description": "Not signed in", "model": ErrorResponse},
        502: {"description": "Completion not stored", "model": ErrorResponse},
        503: {"description": "Content service unavailable", "model": ErrorResponse},
    },
    summary="Mark a verse of a chapter as read",
)
async def mark_chapter_as_read(
    body: MarkReadRequest,
    chapter_id: str = Path(min_length=1),
    catalog: CatalogCache = Depends(get_catalog),
    progress_service: ProgressService = Depends(get_progress_service),
) -> MarkReadResponse:
    """
    Optimistic catalog update first, then the gateway-gated completion.

    If the completion fails, the error is returned but the catalog keeps its
    optimistic count until the next refresh or sync corrects it.
    """
    await catalog.mark_chapter_as_read(chapter_id, body.verse_id)
    recorded = await progress_service.mark_as_read(body.verse_id, body.time_spent_seconds)
    return MarkReadResponse(
        chapter_id=chapter_id,
        verse_id=body.verse_id,
        recorded=recorded,
        progress=progress_service.progress,
    )


@router.post(
    "/chapters/{chapter_id}/favorite",
    response_model=FavoriteResponse,
    summary="Toggle a chapter's favorite flag",
)
async def toggle_chapter_favorite(
    chapter_id: str = Path(min_length=1),
    catalog: CatalogCache = Depends(get_catalog),
) -> FavoriteResponse:
    is_favorite = await catalog.toggle_chapter_favorite(chapter_id)
    return FavoriteResponse(chapter_id=chapter_id, is_favorite=is_favorite)


@router.get(
    "/chapters/{chapter_number}/verses",
    response_model=List[Verse],
    responses={404: {"description": "Unknown chapter", "model": ErrorResponse}},
    summary="Verses of a chapter",
)
async def chapter_verses(
    chapter_number: int = Path(ge=0),
    catalog: CatalogCache = Depends(get_catalog),
) -> List[Verse]:
    return await catalog.get_chapter_verses(chapter_number)


@router.delete("/cache", status_code=204, summary="Clear the library cache")
async def clear_cache(catalog: CatalogCache = Depends(get_catalog)) -> Response:
    await catalog.clear_cache()
    return Response(status_code=204)
