"""
Verse Library — Test Configuration (conftest.py)
==================================================

What:  Shared pytest fixtures for the whole suite.
How:   Environment is pinned before any verse_library import so the settings
       singleton never points at a real backend or the working directory.

Function-scoped fixtures:
    ├── clock:          Controllable wall clock (seconds)
    ├── chapters:       Three sample chapters (completed, untouched, in progress)
    ├── fake_gateway:   AsyncMock(spec=ContentGateway) serving `chapters`
    ├── temp_storage:   CacheStorage rooted in a fresh tmp directory
    ├── monitor:        PerformanceMonitor on the fake clock
    └── catalog:        CatalogCache wired to all of the above
"""

import os
import tempfile

os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="verse_library_test_")
os.environ["GATEWAY_BASE_URL"] = "http://gateway.test"
os.environ["GATEWAY_API_KEY"] = "test-key-not-real"
os.environ["GATEWAY_USER_ID"] = ""
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["BACKGROUND_REFRESH_ENABLED"] = "false"

from unittest.mock import AsyncMock

import pytest

from verse_library.schemas.library import ChapterWithProgress, ProgressSummary
from verse_library.services.cache_storage import CacheStorage
from verse_library.services.catalog_cache import CatalogCache
from verse_library.services.gateway_base import ContentGateway
from verse_library.services.performance_monitor import PerformanceMonitor

T0 = 1_700_000_000.0


class FakeClock:
    """Callable time source that only moves when told to."""

    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_chapter(chapter_id: str, **fields) -> ChapterWithProgress:
    data = {
        "id": chapter_id,
        "chapter_number": int(chapter_id),
        "title_english": f"Chapter {chapter_id}",
        "title_sanskrit": f"Adhyaya {chapter_id}",
        "verse_count": 10,
    }
    data.update(fields)
    return ChapterWithProgress(**data)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def chapters():
    return [
        make_chapter(
            "1",
            title_english="Arjuna's Dilemma",
            title_sanskrit="Arjuna Vishada Yoga",
            theme="Grief on the battlefield",
            verse_count=10,
            completed_verses=10,
            total_progress=100.0,
        ),
        make_chapter(
            "2",
            title_english="Transcendental Knowledge",
            title_sanskrit="Sankhya Yoga",
            theme="The eternal self",
            verse_count=5,
        ),
        make_chapter(
            "3",
            title_english="Path of Action",
            title_sanskrit="Karma Yoga",
            theme=None,
            description="Selfless work as worship",
            verse_count=4,
            completed_verses=2,
            total_progress=50.0,
        ),
    ]


@pytest.fixture
def fake_gateway(chapters):
    gateway = AsyncMock(spec=ContentGateway)
    gateway.fetch_catalog_with_progress.return_value = chapters
    gateway.fetch_user_progress.return_value = ProgressSummary()
    gateway.record_completion.return_value = None
    gateway.fetch_chapter_verses.return_value = []
    gateway.health_check.return_value = True
    gateway.breaker_state = "closed"
    return gateway


@pytest.fixture
def temp_storage(tmp_path):
    return CacheStorage(str(tmp_path / "storage"))


@pytest.fixture
def monitor(clock):
    return PerformanceMonitor(clock=clock)


@pytest.fixture
def catalog(fake_gateway, temp_storage, monitor, clock):
    return CatalogCache(
        gateway=fake_gateway,
        storage=temp_storage,
        monitor=monitor,
        ttl_seconds=24 * 60 * 60,
        search_cache_size=50,
        filter_cache_size=10,
        clock=clock,
    )
