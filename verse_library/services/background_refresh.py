"""
Verse Library — Background Refresh
====================================

What:  Periodically re-runs registered refresh callbacks (by default the
       catalog's forced refresh) once the configured interval has elapsed,
       and on app foreground.
How:   An asyncio task wakes every `tick` seconds and calls check_and_refresh().
       A refresh in progress is never started twice; callbacks run
       concurrently and a failing callback does not stop the others.
Who:   Started in the app lifespan; POST /api/lifecycle/foreground.

Configuration is persisted as the "background-refresh-config" record.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from verse_library.config import settings
from verse_library.exceptions import StorageError, ValidationError
from verse_library.schemas.library import BackgroundRefreshConfig
from verse_library.services.cache_storage import CacheStorage

logger = logging.getLogger(__name__)

REFRESH_CONFIG_RECORD = "background-refresh-config"

RefreshCallback = Callable[[], Awaitable[object]]


class BackgroundRefreshService:
    """Interval-gated refresh of registered callbacks."""

    def __init__(
        self,
        storage: Optional[CacheStorage] = None,
        config: Optional[BackgroundRefreshConfig] = None,
        tick_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.config = config or BackgroundRefreshConfig(
            enabled=settings.background_refresh_enabled,
            interval=settings.background_refresh_interval,
            refresh_on_app_foreground=settings.background_refresh_on_foreground,
        )
        self.tick_seconds = tick_seconds or settings.background_refresh_tick
        self._clock = clock
        self._callbacks: List[RefreshCallback] = []
        self._task: Optional[asyncio.Task] = None
        self.is_refreshing = False

    # ── Callbacks ─────────────────────────────────────────────────────────

    def register_refresh_callback(self, callback: RefreshCallback) -> None:
        self._callbacks.append(callback)

    def unregister_refresh_callback(self, callback: RefreshCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    # ── Refresh ───────────────────────────────────────────────────────────

    async def check_and_refresh(self) -> bool:
        """Refresh if enabled, idle, and the interval has elapsed. Returns True if it ran."""
        if not self.config.enabled or self.is_refreshing:
            return False
        if self._clock() - self.config.last_refresh < self.config.interval:
            return False
        return await self._perform_refresh()

    async def force_refresh(self) -> bool:
        """Refresh now, regardless of the interval (still never twice at once)."""
        return await self._perform_refresh()

    async def on_app_foreground(self) -> bool:
        if not self.config.refresh_on_app_foreground:
            return False
        return await self.check_and_refresh()

    async def _perform_refresh(self) -> bool:
        if self.is_refreshing:
            return False

        self.is_refreshing = True
        logger.info("Background refresh starting (%d callbacks)", len(self._callbacks))
        try:
            results = await asyncio.gather(
                *(callback() for callback in list(self._callbacks)),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, Exception):
                    logger.error("Refresh callback failed: %s", str(result))

            self.config = self.config.model_copy(update={"last_refresh": self._clock()})
            await self._save_config()
            logger.info("Background refresh completed")
            return True
        finally:
            self.is_refreshing = False

    # ── Configuration ─────────────────────────────────────────────────────

    async def load_config(self) -> None:
        """Apply the persisted configuration, if any."""
        if self.storage is None:
            return
        try:
            text = await self.storage.read(REFRESH_CONFIG_RECORD)
            if text is None:
                return
            self.config = BackgroundRefreshConfig.model_validate_json(text)
        except (PydanticValidationError, StorageError) as e:
            logger.warning("Ignoring persisted background refresh config: %s", str(e))

    async def update_config(self, **updates) -> BackgroundRefreshConfig:
        try:
            self.config = BackgroundRefreshConfig.model_validate(
                {**self.config.model_dump(), **updates}
            )
        except PydanticValidationError as e:
            raise ValidationError(message="Invalid background refresh settings",
                                  field="background_refresh",
                                  context={"errors": e.error_count()})
        await self._save_config()
        return self.config

    async def _save_config(self) -> None:
        if self.storage is None:
            return
        try:
            await self.storage.write(REFRESH_CONFIG_RECORD, self.config.model_dump_json(by_alias=True))
        except StorageError as e:
            logger.error("Background refresh config not saved: %s", e.message)

    # ── Periodic task ─────────────────────────────────────────────────────

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(), name="background-refresh")
        logger.info("Background refresh scheduled every %.0fs (interval %ds)",
                    self.tick_seconds, self.config.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.tick_seconds)
            try:
                await self.check_and_refresh()
            except Exception:
                logger.exception("Background refresh tick failed")
