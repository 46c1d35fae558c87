"""
Verse Library — Catalog Cache
===============================

What:  Holds the chapter catalog, its fetch timestamp, the user's progress
       snapshot and the two bounded query caches; owns the TTL policy.
How:   All cache state lives in one immutable LibraryCache snapshot that is
       replaced with a single assignment. An in-flight refresh therefore can
       never leave a half-merged catalog behind, and overlapping refreshes
       resolve as "last writer wins".
Who:   HTTP routes (consumer operations), Progress Service (sync), Background
       Refresh (periodic refresh).

Read Path:
    fetch_chapters()
      → chapters non-empty and is_valid() → serve memory (cache hit)
      → otherwise gateway (catalog + progress, concurrently)
          → success: merge favorites, replace snapshot, clear query caches, persist
          → failure: keep stale snapshot, set error, return stale chapters

Write Path (optimistic):
    mark_chapter_as_read / toggle_chapter_favorite update memory before their
    first suspension point, then persist. They never contact the gateway.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from pydantic import ValidationError as PydanticValidationError

from verse_library.config import settings
from verse_library.exceptions import (
    CacheSerializationError,
    StorageError,
    ValidationError,
    VerseLibraryError,
)
from verse_library.schemas.library import (
    CacheStats,
    ChapterFilter,
    ChapterWithProgress,
    LibraryStatus,
    PersistedLibraryCache,
    ProgressSummary,
    Verse,
)
from verse_library.services.cache_storage import CacheStorage
from verse_library.services.gateway_base import ContentGateway
from verse_library.services.performance_monitor import PerformanceMonitor
from verse_library.services.query_cache import BoundedQueryCache
from verse_library.services.query_engine import filter_chapters, parse_filter, search_cache_key

logger = logging.getLogger(__name__)

LIBRARY_RECORD = "library-store"
FETCH_ERROR_MESSAGE = "Failed to load chapters. Please try again."

ResultCache = BoundedQueryCache[str, List[ChapterWithProgress]]


@dataclass(frozen=True)
class LibraryCache:
    """One generation of the catalog. Query caches are keyed against `chapters`."""
    search_cache: ResultCache
    filter_cache: ResultCache
    chapters: Tuple[ChapterWithProgress, ...] = ()
    last_fetched: float = 0.0
    progress: ProgressSummary = field(default_factory=ProgressSummary)


# ── Persisted layout codec ────────────────────────────────────────────────

def encode_cache(
    state: LibraryCache,
    search_query: str = "",
    selected_filter: ChapterFilter = ChapterFilter.ALL,
) -> str:
    """Serialize a snapshot; query caches become ordered [key, results] pairs."""
    record = PersistedLibraryCache(
        units=list(state.chapters),
        last_fetched=state.last_fetched,
        progress=state.progress,
        search_cache=state.search_cache.items(),
        filter_cache=state.filter_cache.items(),
        search_query=search_query,
        selected_filter=selected_filter,
    )
    return record.model_dump_json(by_alias=True)


def decode_cache(
    text: str,
    search_cache_size: int,
    filter_cache_size: int,
) -> Tuple[LibraryCache, str, ChapterFilter]:
    """
    Rebuild a snapshot from its persisted form.

    Pair order is insertion order, so replaying the pairs through put()
    restores the FIFO eviction order.

    Raises:
        CacheSerializationError: the text is not a valid persisted record.
    """
    try:
        record = PersistedLibraryCache.model_validate_json(text)
    except PydanticValidationError as e:
        raise CacheSerializationError(
            context={"record": LIBRARY_RECORD, "errors": e.error_count()},
        )

    state = LibraryCache(
        search_cache=BoundedQueryCache(search_cache_size, record.search_cache),
        filter_cache=BoundedQueryCache(filter_cache_size, record.filter_cache),
        chapters=tuple(record.units),
        last_fetched=record.last_fetched,
        progress=record.progress,
    )
    return state, record.search_query, record.selected_filter


# ══════════════════════════════════════════════════════════════════════════
# Catalog Cache
# ══════════════════════════════════════════════════════════════════════════

class CatalogCache:
    """
    The library store.

    Concurrency:
        Single event loop. Every mutation computes its new snapshot from the
        snapshot current at that moment and assigns it without an intervening
        await. Refreshes are not mutually excluded; whichever completes last
        wins. Persisted writes are serialized and always encode the newest
        snapshot, so the record on disk never lags behind an older write.
    """

    def __init__(
        self,
        gateway: ContentGateway,
        storage: Optional[CacheStorage] = None,
        monitor: Optional[PerformanceMonitor] = None,
        ttl_seconds: Optional[int] = None,
        search_cache_size: Optional[int] = None,
        filter_cache_size: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            gateway:    Remote source of truth
            storage:    Durable record store; None keeps the cache in memory only
            monitor:    Hit/miss counters; a private one is created if omitted
            ttl_seconds, search_cache_size, filter_cache_size:
                        Overrides for the corresponding settings
            clock:      Wall-clock source in seconds (injectable for tests)
        """
        self.gateway = gateway
        self.storage = storage
        self.monitor = monitor or PerformanceMonitor()
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.cache_ttl_seconds
        self.search_cache_size = search_cache_size or settings.search_cache_size
        self.filter_cache_size = filter_cache_size or settings.filter_cache_size
        self._clock = clock

        self.state = self._empty_state()
        self.search_query = ""
        self.selected_filter = ChapterFilter.ALL
        self.error: Optional[str] = None

        self._loading = 0
        self._refreshing = 0
        self._persist_lock = asyncio.Lock()
        # chapter number → verses, and chapter id → its verse ids, filled lazily
        self._verses: Dict[int, List[Verse]] = {}
        self._chapter_verse_ids: Dict[str, Set[str]] = {}

    def _empty_state(self, **fields) -> LibraryCache:
        return LibraryCache(
            search_cache=BoundedQueryCache(self.search_cache_size),
            filter_cache=BoundedQueryCache(self.filter_cache_size),
            **fields,
        )

    # ── Read-only views ───────────────────────────────────────────────────

    @property
    def chapters(self) -> List[ChapterWithProgress]:
        return list(self.state.chapters)

    @property
    def progress(self) -> ProgressSummary:
        return self.state.progress

    @property
    def is_loading(self) -> bool:
        return self._loading > 0

    @property
    def is_refreshing(self) -> bool:
        return self._refreshing > 0

    def is_valid(self) -> bool:
        """True while the catalog is younger than the TTL; exactly TTL old is stale."""
        return self._clock() - self.state.last_fetched < self.ttl_seconds

    def status(self) -> LibraryStatus:
        has_chapters = bool(self.state.chapters)
        last_fetched = None
        if self.state.last_fetched > 0:
            last_fetched = datetime.fromtimestamp(self.state.last_fetched, tz=timezone.utc)
        return LibraryStatus(
            is_loading=self.is_loading,
            is_refreshing=self.is_refreshing,
            error=self.error,
            is_stale=has_chapters and (not self.is_valid() or self.error is not None),
            can_retry=not has_chapters and self.error is not None,
            last_fetched=last_fetched,
            chapter_count=len(self.state.chapters),
            search_query=self.search_query,
            selected_filter=self.selected_filter,
        )

    def cache_stats(self) -> CacheStats:
        age = None
        if self.state.last_fetched > 0:
            age = round(self._clock() - self.state.last_fetched, 3)
        return CacheStats(
            search_cache_size=len(self.state.search_cache),
            filter_cache_size=len(self.state.filter_cache),
            chapters_cache_age_seconds=age,
        )

    # ── Startup ───────────────────────────────────────────────────────────

    async def load(self) -> None:
        """
        Rehydrate from durable storage.

        A missing, unreadable or undecodable record leaves the cache cold;
        the next fetch_chapters() goes to the gateway.
        """
        if self.storage is None:
            return
        try:
            text = await self.storage.read(LIBRARY_RECORD)
            if text is None:
                logger.info("No persisted library cache; starting cold")
                return
            state, query, selected = decode_cache(
                text, self.search_cache_size, self.filter_cache_size
            )
        except (CacheSerializationError, StorageError) as e:
            logger.warning("Discarding persisted library cache: %s", e.message)
            return

        self.state = state
        self.search_query = query
        self.selected_filter = selected
        self._sync_metrics()
        logger.info(
            "Library cache restored: %d chapters, %d search / %d filter entries",
            len(state.chapters), len(state.search_cache), len(state.filter_cache),
        )

    # ── Fetch / refresh ───────────────────────────────────────────────────

    async def fetch_chapters(self, force_refresh: bool = False) -> List[ChapterWithProgress]:
        """
        Return the catalog, refreshing from the gateway when needed.

        Never raises for gateway failures: the previous snapshot is kept,
        `error` is set and the stale chapters are returned.
        """
        if not force_refresh and self.state.chapters and self.is_valid():
            logger.debug("Serving %d chapters from cache", len(self.state.chapters))
            self.monitor.record_cache_hit()
            return self.chapters

        self.monitor.record_cache_miss()
        self.monitor.record_api_call()
        self._loading += 1
        self.error = None
        start_time = time.time()

        try:
            chapters, progress = await asyncio.gather(
                self.gateway.fetch_catalog_with_progress(),
                self.gateway.fetch_user_progress(),
            )
        except Exception as e:
            logger.error(
                "Chapter fetch failed, keeping %d cached chapters: %s",
                len(self.state.chapters), str(e),
                exc_info=not isinstance(e, VerseLibraryError),
            )
            self.error = FETCH_ERROR_MESSAGE
            return self.chapters
        finally:
            self._loading -= 1

        self._apply_fetch(chapters, progress)
        logger.info(
            "Catalog refreshed: %d chapters in %.0fms",
            len(chapters), (time.time() - start_time) * 1000,
        )

        await self._persist_best_effort()
        return self.chapters

    async def refresh_chapters(self) -> List[ChapterWithProgress]:
        """Forced fetch tracked by the separate `is_refreshing` flag (pull-to-refresh)."""
        self._refreshing += 1
        try:
            return await self.fetch_chapters(force_refresh=True)
        finally:
            self._refreshing -= 1

    def _apply_fetch(self, chapters: List[ChapterWithProgress], progress: ProgressSummary) -> None:
        # Chapter favorites exist only locally; carry them over the refresh
        chapter_ids = {c.id for c in chapters}
        local_favorites = [f for f in self.state.progress.favorite_verses if f in chapter_ids]
        favorites = list(dict.fromkeys([*progress.favorite_verses, *local_favorites]))
        favorite_set = set(favorites)

        merged = tuple(
            c.model_copy(update={"is_favorite": c.id in favorite_set}) for c in chapters
        )
        self.state = self._empty_state(
            chapters=merged,
            last_fetched=self._clock(),
            progress=progress.model_copy(update={"favorite_verses": favorites}),
        )
        self.error = None
        self._sync_metrics()

    # ── Query views ───────────────────────────────────────────────────────

    async def get_filtered_chapters(self) -> List[ChapterWithProgress]:
        """
        Current search query and filter applied to the catalog, through the caches.

        A non-blank query is cached in the search cache under "<query>-<filter>";
        otherwise the result is cached in the filter cache under the filter id.
        """
        state = self.state
        if self.search_query.strip():
            cache, key = state.search_cache, search_cache_key(self.search_query, self.selected_filter)
        else:
            cache, key = state.filter_cache, self.selected_filter.value

        cached = cache.get(key)
        if cached is not None:
            return list(cached)

        result = filter_chapters(state.chapters, self.search_query, self.selected_filter)
        cache.put(key, result)
        self._sync_metrics()
        await self._persist_best_effort()
        return list(result)

    async def set_search_query(self, query: str) -> None:
        self.search_query = query
        if query.strip():
            self.monitor.record_search_query()
        await self._persist_best_effort()

    async def set_selected_filter(self, filter_id: str) -> None:
        """Raises ValidationError for an unknown filter id."""
        self.selected_filter = parse_filter(filter_id)
        self.monitor.record_filter_change()
        await self._persist_best_effort()

    # ── Optimistic mutations ──────────────────────────────────────────────

    async def mark_chapter_as_read(self, chapter_id: str, verse_id: str) -> bool:
        """
        Optimistically count `verse_id` as completed in `chapter_id`.

        Returns False (no change) if the verse is already completed. The
        increment is not capped; the next full refresh or a sync with a known
        verse list corrects the count. It is never rolled back.
        """
        state = self.state
        if verse_id in state.progress.completed_verses:
            logger.debug("Verse %s already completed; ignoring", verse_id)
            return False

        found = False
        chapters = []
        for chapter in state.chapters:
            if chapter.id == chapter_id:
                found = True
                chapter = self._with_completed(chapter, chapter.completed_verses + 1)
            chapters.append(chapter)
        if not found:
            logger.warning("mark_chapter_as_read: chapter %s not in catalog", chapter_id)

        progress = state.progress.model_copy(update={
            "completed_verses": [*state.progress.completed_verses, verse_id],
            "total_verses": state.progress.total_verses + 1,
        })
        self.state = self._replace_chapters(state, chapters, progress)
        await self._persist()
        return True

    async def toggle_chapter_favorite(self, chapter_id: str) -> bool:
        """Flip the chapter's favorite flag and favorites membership together. Returns the new flag."""
        state = self.state
        favorites = state.progress.favorite_verses
        current = next(
            (c.is_favorite for c in state.chapters if c.id == chapter_id),
            chapter_id in favorites,
        )

        chapters = [
            c.model_copy(update={"is_favorite": not current}) if c.id == chapter_id else c
            for c in state.chapters
        ]
        if current:
            favorites = [f for f in favorites if f != chapter_id]
        elif chapter_id not in favorites:
            favorites = [*favorites, chapter_id]

        progress = state.progress.model_copy(update={"favorite_verses": favorites})
        self.state = self._replace_chapters(state, chapters, progress)
        await self._persist()
        return not current

    async def update_user_progress(self, **fields) -> ProgressSummary:
        """Merge fields into the progress snapshot (validated like any ProgressSummary)."""
        unknown = set(fields) - set(ProgressSummary.model_fields)
        if unknown:
            raise ValidationError(
                message=f"Unknown progress fields: {', '.join(sorted(unknown))}",
                field="progress",
            )
        try:
            progress = ProgressSummary.model_validate(
                {**self.state.progress.model_dump(), **fields}
            )
        except PydanticValidationError as e:
            raise ValidationError(message="Invalid progress update", field="progress",
                                  context={"errors": e.error_count()})
        self.state = replace(self.state, progress=progress)
        await self._persist()
        return progress

    # ── Cross-store sync ──────────────────────────────────────────────────

    async def sync_with_verse_store(self, completed_verse_ids: Iterable[str]) -> None:
        """
        Accept the authoritative completed set from the progress store.

        The progress snapshot takes the set as-is (deduplicated, order kept)
        and total_verses becomes its size. Chapter counters are recomputed
        only for chapters whose verse list has been loaded; the rest keep
        their counts until the next refresh.
        """
        completed = list(dict.fromkeys(completed_verse_ids))
        completed_set = set(completed)
        state = self.state

        changed = False
        chapters = []
        for chapter in state.chapters:
            verse_ids = self._chapter_verse_ids.get(chapter.id)
            if verse_ids is not None:
                count = len(verse_ids & completed_set)
                if count != chapter.completed_verses:
                    chapter = self._with_completed(chapter, count)
                    changed = True
            chapters.append(chapter)

        progress = state.progress.model_copy(update={
            "completed_verses": completed,
            "total_verses": len(completed),
        })
        if changed:
            self.state = self._replace_chapters(state, chapters, progress)
        else:
            self.state = replace(state, progress=progress)
        await self._persist()

    async def get_chapter_verses(self, chapter_number: int) -> List[Verse]:
        """
        Verses of one chapter, fetched once and kept in memory.

        Gateway errors propagate (NotFoundError for an unknown chapter number).
        """
        cached = self._verses.get(chapter_number)
        if cached is not None:
            return list(cached)

        self.monitor.record_api_call()
        verses = await self.gateway.fetch_chapter_verses(chapter_number)
        self._verses[chapter_number] = verses
        for verse in verses:
            self._chapter_verse_ids.setdefault(verse.chapter_id, set()).add(verse.id)
        logger.info("Loaded %d verses for chapter %d", len(verses), chapter_number)
        return list(verses)

    async def clear_cache(self) -> None:
        """Drop the catalog, progress snapshot and both query caches."""
        self.state = self._empty_state()
        self.error = None
        self._verses.clear()
        self._chapter_verse_ids.clear()
        self._sync_metrics()
        logger.info("Library cache cleared")
        await self._persist()

    # ── Internals ─────────────────────────────────────────────────────────

    @staticmethod
    def _with_completed(chapter: ChapterWithProgress, completed: int) -> ChapterWithProgress:
        total = chapter.verse_count
        return chapter.model_copy(update={
            "completed_verses": completed,
            "total_progress": (completed / total) * 100 if total > 0 else 0.0,
        })

    def _replace_chapters(
        self,
        state: LibraryCache,
        chapters: List[ChapterWithProgress],
        progress: ProgressSummary,
    ) -> LibraryCache:
        # Cached result lists hold the old chapter objects; start fresh ones
        new_state = replace(
            state,
            chapters=tuple(chapters),
            progress=progress,
            search_cache=BoundedQueryCache(self.search_cache_size),
            filter_cache=BoundedQueryCache(self.filter_cache_size),
        )
        self._sync_metrics(new_state)
        return new_state

    def _sync_metrics(self, state: Optional[LibraryCache] = None) -> None:
        state = state or self.state
        self.monitor.update_cache_metrics(
            search_cache_size=len(state.search_cache),
            filter_cache_size=len(state.filter_cache),
        )

    async def _persist(self) -> None:
        if self.storage is None:
            return
        async with self._persist_lock:
            text = encode_cache(self.state, self.search_query, self.selected_filter)
            await self.storage.write(LIBRARY_RECORD, text)

    async def _persist_best_effort(self) -> None:
        # Read and query-state paths keep serving from memory when the disk fails
        try:
            await self._persist()
        except StorageError as e:
            logger.error("Library cache could not be persisted: %s", e.message)
