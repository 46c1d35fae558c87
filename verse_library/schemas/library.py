"""
Verse Library — Pydantic Domain & Response Schemas
====================================================

What:  Pydantic models for the catalog (chapters, verses), the progress
       summary, the persisted cache layout and the HTTP responses.
How:   Catalog entries are frozen; "mutations" produce copies via
       model_copy(update=...), so a reader never sees a half-updated chapter.
       The persisted layout uses camelCase aliases so the on-disk record reads
       {units, lastFetched, progress, searchCache, filterCache}.
"""

from datetime import date, datetime
from enum import Enum
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


# ══════════════════════════════════════════════════════════════════════════
# Catalog Models
# ══════════════════════════════════════════════════════════════════════════


class Chapter(BaseModel):
    """
    What:  Immutable catalog entry (a content unit).
    Owner: Catalog Cache; replaced wholesale on refresh.
    """
    id: str = Field(description="Unique chapter identifier")
    chapter_number: int = Field(ge=0, description="Ordinal within the catalog")
    title_english: str = Field(description="Canonical title (Latin script)")
    title_sanskrit: str = Field(description="Canonical title (Devanagari/IAST)")
    title_hindi: Optional[str] = None
    description: Optional[str] = None
    theme: Optional[str] = Field(default=None, description="Short descriptive theme")
    verse_count: int = Field(default=0, ge=0, description="Number of child verses")
    created_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


class ChapterWithProgress(Chapter):
    """
    What:  A chapter with the user's progress attached at merge time.

    Invariant after a full refresh: 0 <= completed_verses <= verse_count.
    Optimistic increments are not capped here; the next refresh corrects them.
    """
    completed_verses: int = Field(default=0, ge=0)
    total_progress: float = Field(default=0.0, ge=0, description="Completion percentage")
    is_favorite: bool = False


class Verse(BaseModel):
    """An individual addressable item within a chapter."""
    id: str
    chapter_id: str
    verse_number: int = Field(ge=0)
    sanskrit_text: str = ""
    english_translation: str = ""
    hindi_translation: Optional[str] = None
    pronunciation_guide: Optional[str] = None
    audio_url: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    difficulty_level: Literal["beginner", "intermediate", "advanced"] = "beginner"
    explanation: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


class ChapterFilter(str, Enum):
    """Categorical filters selectable in the library view."""
    ALL = "all"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAVORITES = "favorites"


# ══════════════════════════════════════════════════════════════════════════
# Progress Models
# ══════════════════════════════════════════════════════════════════════════


class ProgressSummary(BaseModel):
    """
    What:  The user's reading progress.

    Invariants:
        - current_streak <= longest_streak (enforced below)
        - total_verses == len(completed_verses) after a full reconciliation;
          may diverge transiently during optimistic updates
    """
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    total_verses: int = Field(default=0, ge=0)
    total_chapters: int = Field(default=0, ge=0)
    total_time: int = Field(default=0, ge=0, description="Total reading time in seconds")
    last_read_date: Optional[date] = None
    completed_verses: List[str] = Field(default_factory=list)
    favorite_verses: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _longest_covers_current(self) -> "ProgressSummary":
        if self.longest_streak < self.current_streak:
            self.longest_streak = self.current_streak
        return self


# ══════════════════════════════════════════════════════════════════════════
# Persisted Layout
# ══════════════════════════════════════════════════════════════════════════


class PersistedLibraryCache(BaseModel):
    """
    What:  On-disk form of the library cache.

    The two query caches are ordered mappings in memory; here they are
    ordered lists of [key, results] pairs, so insertion order (and therefore
    FIFO eviction order) survives a restart.
    """
    units: List[ChapterWithProgress] = Field(default_factory=list)
    last_fetched: float = 0.0
    progress: ProgressSummary = Field(default_factory=ProgressSummary)
    search_cache: List[Tuple[str, List[ChapterWithProgress]]] = Field(default_factory=list)
    filter_cache: List[Tuple[str, List[ChapterWithProgress]]] = Field(default_factory=list)
    search_query: str = ""
    selected_filter: ChapterFilter = ChapterFilter.ALL

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PersistedVerseStore(BaseModel):
    """On-disk form of the progress store."""
    progress: ProgressSummary = Field(default_factory=ProgressSummary)
    has_read_today: bool = False

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BackgroundRefreshConfig(BaseModel):
    """Persisted background refresh settings (record "background-refresh-config")."""
    enabled: bool = True
    interval: int = Field(default=6 * 60 * 60, ge=1, description="Seconds between refreshes")
    last_refresh: float = 0.0
    refresh_on_app_foreground: bool = True

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class LibraryStatus(BaseModel):
    """
    What:  Read-path state for the consumer.

    Fields:
        is_stale:  catalog is being served past its TTL or after a failed refresh
                   (shown as a non-blocking banner)
        can_retry: catalog is empty and the last fetch failed (retry affordance)
    """
    is_loading: bool
    is_refreshing: bool
    error: Optional[str] = None
    is_stale: bool
    can_retry: bool
    last_fetched: Optional[datetime] = None
    chapter_count: int
    search_query: str
    selected_filter: ChapterFilter


class LibraryResponse(BaseModel):
    """Chapters plus the status of the cache that produced them."""
    chapters: List[ChapterWithProgress]
    status: LibraryStatus


class SearchQueryRequest(BaseModel):
    query: str = Field(default="", max_length=200)


class FilterRequest(BaseModel):
    # Plain string so unknown ids reach the service and come back as a 400
    filter: str


class MarkReadRequest(BaseModel):
    """Body of POST /api/chapters/{chapter_id}/read."""
    verse_id: str = Field(min_length=1)
    time_spent_seconds: Optional[int] = Field(default=None, ge=0)


class MarkReadResponse(BaseModel):
    """Result of a completion: `recorded` is False when the verse was already read."""
    chapter_id: str
    verse_id: str
    recorded: bool
    progress: ProgressSummary


class FavoriteResponse(BaseModel):
    chapter_id: str
    is_favorite: bool


class ProgressResponse(BaseModel):
    progress: ProgressSummary
    has_read_today: bool


class ForegroundResponse(BaseModel):
    refreshed: bool


class CacheStats(BaseModel):
    """Cache utilization snapshot."""
    search_cache_size: int
    filter_cache_size: int
    chapters_cache_age_seconds: Optional[float] = None


class PerformanceStats(BaseModel):
    """Counters collected by the performance monitor."""
    cache_hit_rate: float
    total_requests: int
    cache_hits: int
    cache_misses: int
    api_calls: int
    search_queries: int
    filter_changes: int
    uptime_seconds: float
    cache: CacheStats


class ErrorResponse(BaseModel):
    """Standardized error body for all API errors."""
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """Health of the service and its gateway."""
    status: str = Field(description="Overall status: healthy, degraded")
    version: str
    gateway: str = Field(description="available, unavailable, circuit_open")
    chapters_cached: int
    cache_valid: bool
    uptime_seconds: float
