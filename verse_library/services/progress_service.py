"""
Verse Library — Progress Service
==================================

What:  The progress store: completed verses, favorites, streaks and reading
       time, persisted as the "verse-store" record.
How:   Completion is gated on the gateway. The remote record is written first
       and local state changes only after it succeeded, so the local view never
       shows a completion the backend rejected. The new completed set is then
       pushed to the Catalog Cache.
Who:   POST /api/chapters/{chapter_id}/read, POST /api/progress/sync.

Flow of mark_as_read():
    1. Already completed → no-op (returns False)
    2. gateway.record_completion() → on failure: error haptic, exception propagates
    3. Streak: first read → 1, next day → +1, gap → 1, same day → unchanged
    4. Append verse, add reading time, set last_read_date, persist
    5. Success haptic, streak notification if the streak grew
    6. catalog.sync_with_verse_store(completed_verses); until the first full
       sync the catalog's own completed set is merged in, so a partial local
       record never lowers counts the catalog got from the gateway
"""

import asyncio
import logging
from datetime import date
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from verse_library.config import settings
from verse_library.exceptions import (
    CacheSerializationError,
    GatewayError,
    StorageError,
    ValidationError,
)
from verse_library.schemas.library import PersistedVerseStore, ProgressSummary
from verse_library.services.cache_storage import CacheStorage
from verse_library.services.catalog_cache import CatalogCache
from verse_library.services.gateway_base import ContentGateway
from verse_library.services.ports import (
    STREAK_TITLE,
    HapticPort,
    LoggingHapticPort,
    LoggingNotificationPort,
    NotificationPort,
    streak_message,
)
from verse_library.services.streaks import next_streak, utc_today

logger = logging.getLogger(__name__)

VERSE_RECORD = "verse-store"


class ProgressService:
    """Reconciles local reading progress with the gateway and the Catalog Cache."""

    def __init__(
        self,
        gateway: ContentGateway,
        catalog: CatalogCache,
        storage: Optional[CacheStorage] = None,
        haptics: Optional[HapticPort] = None,
        notifications: Optional[NotificationPort] = None,
        today: Callable[[], date] = utc_today,
    ):
        self.gateway = gateway
        self.catalog = catalog
        self.storage = storage
        self.haptics = haptics or LoggingHapticPort(settings.haptics_enabled)
        self.notifications = notifications or LoggingNotificationPort(settings.notifications_enabled)
        self._today = today
        self.progress = ProgressSummary()
        self._persist_lock = asyncio.Lock()
        # Set by the first successful sync_from_gateway(); the persisted record
        # only knows completions made through this install
        self.is_reconciled = False

    @property
    def has_read_today(self) -> bool:
        return self.progress.last_read_date == self._today()

    async def load(self) -> None:
        """Rehydrate the progress store; undecodable records start empty."""
        if self.storage is None:
            return
        try:
            text = await self.storage.read(VERSE_RECORD)
            if text is None:
                return
            try:
                record = PersistedVerseStore.model_validate_json(text)
            except PydanticValidationError as e:
                raise CacheSerializationError(
                    context={"record": VERSE_RECORD, "errors": e.error_count()}
                )
        except (CacheSerializationError, StorageError) as e:
            logger.warning("Discarding persisted progress: %s", e.message)
            return

        self.progress = record.progress
        logger.info(
            "Progress restored: %d verses, streak %d",
            record.progress.total_verses, record.progress.current_streak,
        )

    async def mark_as_read(self, verse_id: str, time_spent_seconds: Optional[int] = None) -> bool:
        """
        Record a verse completion.

        Args:
            verse_id:           Completed verse
            time_spent_seconds: Reading time; defaults to settings.default_time_spent_seconds

        Returns:
            True if the completion was recorded, False if the verse was
            already completed.

        Raises:
            ValidationError: empty verse id or negative reading time
            GatewayError:    the backend did not store the completion; local
                             state is unchanged
        """
        if not verse_id:
            raise ValidationError(message="verse_id must not be empty", field="verse_id")
        if time_spent_seconds is None:
            time_spent_seconds = settings.default_time_spent_seconds
        if time_spent_seconds < 0:
            raise ValidationError(
                message="time_spent_seconds must not be negative", field="time_spent_seconds"
            )

        if verse_id in self.progress.completed_verses:
            logger.debug("Verse %s already completed; ignoring", verse_id)
            return False

        try:
            await self.gateway.record_completion(verse_id, time_spent_seconds)
        except Exception:
            logger.warning("Completion of verse %s was not recorded", verse_id)
            await self._haptic(self.haptics.error_action)
            raise

        # A concurrent call for the same verse may have finished meanwhile
        if verse_id in self.progress.completed_verses:
            return False

        previous = self.progress
        today = self._today()
        streak = next_streak(previous.current_streak, previous.last_read_date, today)
        self.progress = previous.model_copy(update={
            "current_streak": streak,
            "longest_streak": max(previous.longest_streak, streak),
            "total_verses": previous.total_verses + 1,
            "total_time": previous.total_time + time_spent_seconds,
            "last_read_date": today,
            "completed_verses": [*previous.completed_verses, verse_id],
        })
        logger.info("Verse %s completed (streak %d)", verse_id, streak)

        await self._persist()
        await self._haptic(self.haptics.success)
        if streak > previous.current_streak:
            await self._notify(STREAK_TITLE, streak_message(streak), {"streak": streak})
        completed = self.progress.completed_verses
        if not self.is_reconciled:
            # Keep completions the catalog learned from the gateway
            completed = [*self.catalog.progress.completed_verses, *completed]
        await self.catalog.sync_with_verse_store(completed)
        return True

    async def toggle_favorite(self, verse_id: str) -> bool:
        """Flip a verse's favorite membership. Returns the new state."""
        favorites = self.progress.favorite_verses
        is_favorite = verse_id in favorites
        if is_favorite:
            favorites = [f for f in favorites if f != verse_id]
        else:
            favorites = [*favorites, verse_id]
        self.progress = self.progress.model_copy(update={"favorite_verses": favorites})
        await self._persist()
        return not is_favorite

    async def update_progress(self, **fields) -> ProgressSummary:
        """Merge fields into the summary; unknown or invalid fields raise ValidationError."""
        unknown = set(fields) - set(ProgressSummary.model_fields)
        if unknown:
            raise ValidationError(
                message=f"Unknown progress fields: {', '.join(sorted(unknown))}",
                field="progress",
            )
        try:
            self.progress = ProgressSummary.model_validate({**self.progress.model_dump(), **fields})
        except PydanticValidationError as e:
            raise ValidationError(message="Invalid progress update", field="progress",
                                  context={"errors": e.error_count()})
        await self._persist()
        return self.progress

    async def reset_progress(self) -> None:
        self.progress = ProgressSummary()
        logger.info("Progress reset")
        await self._persist()
        await self.catalog.sync_with_verse_store([])

    async def sync_from_gateway(self) -> ProgressSummary:
        """
        Full reconciliation: replace the summary with the backend's view.

        Locally favorited verses are kept. Gateway errors propagate and leave
        the local summary unchanged.
        """
        remote = await self.gateway.fetch_user_progress()
        favorites = list(dict.fromkeys([*remote.favorite_verses, *self.progress.favorite_verses]))
        self.progress = remote.model_copy(update={"favorite_verses": favorites})
        self.is_reconciled = True
        logger.info("Progress synced from gateway: %d verses", remote.total_verses)

        await self._persist()
        await self.catalog.sync_with_verse_store(self.progress.completed_verses)
        return self.progress

    async def reconcile(self) -> bool:
        """
        sync_from_gateway() for startup and background refresh.

        Gateway and storage errors are logged, not raised. Returns True if
        the summary now matches the backend.
        """
        try:
            await self.sync_from_gateway()
        except (GatewayError, StorageError) as e:
            logger.warning("Progress not reconciled with gateway: %s", e.message)
            return False
        return True

    # ── Internals ─────────────────────────────────────────────────────────

    async def _persist(self) -> None:
        if self.storage is None:
            return
        async with self._persist_lock:
            record = PersistedVerseStore(progress=self.progress, has_read_today=self.has_read_today)
            await self.storage.write(VERSE_RECORD, record.model_dump_json(by_alias=True))

    async def _haptic(self, feedback: Callable) -> None:
        try:
            await feedback()
        except Exception as e:
            logger.warning("Haptic feedback failed: %s", str(e))

    async def _notify(self, title: str, body: str, data: dict) -> None:
        try:
            await self.notifications.notify(title, body, data)
        except Exception as e:
            logger.warning("Notification failed: %s", str(e))
