"""
Verse Library — Background Refresh Tests
==========================================

What we test:
    ✅ Interval gating and the enabled / foreground switches
    ✅ A failing callback neither stops the others nor the refresh
    ✅ A refresh in progress is never started twice
    ✅ Config persistence and validation
    ✅ The periodic task runs and stops cleanly
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from tests.conftest import T0
from verse_library.exceptions import ValidationError
from verse_library.schemas.library import BackgroundRefreshConfig
from verse_library.services.background_refresh import (
    REFRESH_CONFIG_RECORD,
    BackgroundRefreshService,
)

HOUR = 60 * 60


@pytest.fixture
def config():
    return BackgroundRefreshConfig(enabled=True, interval=6 * HOUR, last_refresh=T0)


@pytest.fixture
def refresher(temp_storage, config, clock):
    return BackgroundRefreshService(storage=temp_storage, config=config, tick_seconds=0.01, clock=clock)


class TestIntervalGating:

    @pytest.mark.asyncio
    async def test_skips_before_interval(self, refresher, clock):
        callback = AsyncMock()
        refresher.register_refresh_callback(callback)
        clock.advance(6 * HOUR - 1)

        assert await refresher.check_and_refresh() is False
        callback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_runs_once_interval_elapsed(self, refresher, clock):
        callback = AsyncMock()
        refresher.register_refresh_callback(callback)
        clock.advance(6 * HOUR)

        assert await refresher.check_and_refresh() is True
        callback.assert_awaited_once()
        assert refresher.config.last_refresh == T0 + 6 * HOUR

        # Interval restarts from the refresh just performed
        assert await refresher.check_and_refresh() is False

    @pytest.mark.asyncio
    async def test_disabled_never_runs(self, refresher, clock):
        callback = AsyncMock()
        refresher.register_refresh_callback(callback)
        await refresher.update_config(enabled=False)
        clock.advance(48 * HOUR)

        assert await refresher.check_and_refresh() is False
        callback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_force_refresh_ignores_interval(self, refresher):
        callback = AsyncMock()
        refresher.register_refresh_callback(callback)

        assert await refresher.force_refresh() is True
        callback.assert_awaited_once()


class TestCallbacks:

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_others(self, refresher):
        failing = AsyncMock(side_effect=RuntimeError("network down"))
        healthy = AsyncMock()
        refresher.register_refresh_callback(failing)
        refresher.register_refresh_callback(healthy)

        assert await refresher.force_refresh() is True

        healthy.assert_awaited_once()
        assert refresher.is_refreshing is False

    @pytest.mark.asyncio
    async def test_unregister(self, refresher):
        callback = AsyncMock()
        refresher.register_refresh_callback(callback)
        refresher.unregister_refresh_callback(callback)
        refresher.unregister_refresh_callback(callback)

        await refresher.force_refresh()

        callback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refresh_in_progress_is_not_restarted(self, refresher):
        release = asyncio.Event()
        calls = 0

        async def slow_refresh():
            nonlocal calls
            calls += 1
            await release.wait()

        refresher.register_refresh_callback(slow_refresh)
        first = asyncio.create_task(refresher.force_refresh())
        await asyncio.sleep(0)
        assert refresher.is_refreshing is True

        assert await refresher.force_refresh() is False

        release.set()
        assert await first is True
        assert calls == 1


class TestForeground:

    @pytest.mark.asyncio
    async def test_foreground_refreshes_when_due(self, refresher, clock):
        callback = AsyncMock()
        refresher.register_refresh_callback(callback)
        clock.advance(7 * HOUR)

        assert await refresher.on_app_foreground() is True
        callback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_foreground_switch_off(self, refresher, clock):
        callback = AsyncMock()
        refresher.register_refresh_callback(callback)
        await refresher.update_config(refresh_on_app_foreground=False)
        clock.advance(7 * HOUR)

        assert await refresher.on_app_foreground() is False
        callback.assert_not_awaited()


class TestConfig:

    @pytest.mark.asyncio
    async def test_config_persisted_and_loaded(self, refresher, temp_storage, clock):
        await refresher.update_config(interval=HOUR)

        text = await temp_storage.read(REFRESH_CONFIG_RECORD)
        assert '"refreshOnAppForeground":true' in text

        restored = BackgroundRefreshService(storage=temp_storage, clock=clock)
        await restored.load_config()
        assert restored.config.interval == HOUR
        assert restored.config.last_refresh == T0

    @pytest.mark.asyncio
    async def test_last_refresh_saved_after_refresh(self, refresher, temp_storage, clock):
        clock.advance(10)
        await refresher.force_refresh()

        restored = BackgroundRefreshService(storage=temp_storage, clock=clock)
        await restored.load_config()
        assert restored.config.last_refresh == T0 + 10

    @pytest.mark.asyncio
    async def test_invalid_update_rejected(self, refresher):
        with pytest.raises(ValidationError):
            await refresher.update_config(interval=0)
        assert refresher.config.interval == 6 * HOUR

    @pytest.mark.asyncio
    async def test_corrupt_config_ignored(self, temp_storage, config):
        await temp_storage.write(REFRESH_CONFIG_RECORD, '{"interval": "often"}')

        refresher = BackgroundRefreshService(storage=temp_storage, config=config)
        await refresher.load_config()

        assert refresher.config == config


class TestPeriodicTask:

    @pytest.mark.asyncio
    async def test_start_and_stop(self, refresher, clock):
        callback = AsyncMock()
        refresher.register_refresh_callback(callback)
        clock.advance(6 * HOUR)

        refresher.start()
        for _ in range(200):
            if callback.await_count:
                break
            await asyncio.sleep(0.01)
        await refresher.stop()

        callback.assert_awaited_once()
        assert refresher._task is None
