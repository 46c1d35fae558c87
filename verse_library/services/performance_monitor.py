"""
Verse Library — Performance Monitor
=====================================

What:  In-process counters for cache effectiveness and user interaction:
       catalog cache hits/misses, gateway calls, search queries, filter changes.
Who:   The Catalog Cache records events; GET /api/metrics reports them.
"""

import logging
import time
from typing import Callable, Optional

from verse_library.schemas.library import CacheStats, PerformanceStats

logger = logging.getLogger(__name__)


class PerformanceMonitor:
    """Counters plus the latest cache utilization snapshot."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self.cache_hits = 0
        self.cache_misses = 0
        self.api_calls = 0
        self.search_queries = 0
        self.filter_changes = 0
        self.last_reset = clock()
        self.cache = CacheStats(search_cache_size=0, filter_cache_size=0)

    def record_cache_hit(self) -> None:
        self.cache_hits += 1

    def record_cache_miss(self) -> None:
        self.cache_misses += 1

    def record_api_call(self) -> None:
        self.api_calls += 1

    def record_search_query(self) -> None:
        self.search_queries += 1

    def record_filter_change(self) -> None:
        self.filter_changes += 1

    def update_cache_metrics(
        self,
        search_cache_size: Optional[int] = None,
        filter_cache_size: Optional[int] = None,
        chapters_cache_age_seconds: Optional[float] = None,
    ) -> None:
        """Merge the given fields into the utilization snapshot; None keeps the old value."""
        update = {
            "search_cache_size": search_cache_size,
            "filter_cache_size": filter_cache_size,
            "chapters_cache_age_seconds": chapters_cache_age_seconds,
        }
        self.cache = self.cache.model_copy(
            update={k: v for k, v in update.items() if v is not None}
        )

    def get_stats(self) -> PerformanceStats:
        """
        Snapshot of all counters.

        cache_hit_rate is a percentage of catalog requests served from memory,
        rounded to two decimals (0.0 before the first request).
        """
        total = self.cache_hits + self.cache_misses
        hit_rate = (self.cache_hits / total) * 100 if total > 0 else 0.0
        return PerformanceStats(
            cache_hit_rate=round(hit_rate, 2),
            total_requests=total,
            cache_hits=self.cache_hits,
            cache_misses=self.cache_misses,
            api_calls=self.api_calls,
            search_queries=self.search_queries,
            filter_changes=self.filter_changes,
            uptime_seconds=round(self._clock() - self.last_reset, 3),
            cache=self.cache,
        )

    def reset(self) -> None:
        logger.info("Performance metrics reset")
        self.cache_hits = 0
        self.cache_misses = 0
        self.api_calls = 0
        self.search_queries = 0
        self.filter_changes = 0
        self.last_reset = self._clock()
