"""
Verse Library — API Route Tests
=================================

What:  End-to-end tests of the HTTP surface against in-process services.
How:   The app is built with create_app(); its services are assigned to
       app.state directly (the lifespan does not run under ASGITransport),
       with an AsyncMock gateway behind them.

What we test:
    ✅ Catalog reads report stale / retry status instead of failing
    ✅ Search and filter endpoints return the filtered view
    ✅ Domain errors map to 400 / 401 / 404 / 502 / 503
    ✅ Health reflects the gateway and its circuit
    ✅ X-Request-ID is echoed back
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from verse_library.exceptions import (
    CircuitBreakerOpenError,
    GatewayAuthError,
    GatewayError,
    GatewayUnavailableError,
    NotFoundError,
)
from verse_library.main import create_app
from verse_library.schemas.library import BackgroundRefreshConfig
from verse_library.services.background_refresh import BackgroundRefreshService
from verse_library.services.progress_service import ProgressService


@pytest.fixture
def app(fake_gateway, catalog, monitor, temp_storage):
    app = create_app()
    background_refresh = BackgroundRefreshService(
        storage=temp_storage, config=BackgroundRefreshConfig(enabled=True)
    )
    background_refresh.register_refresh_callback(catalog.refresh_chapters)

    app.state.gateway = fake_gateway
    app.state.monitor = monitor
    app.state.catalog = catalog
    app.state.progress_service = ProgressService(
        gateway=fake_gateway, catalog=catalog, storage=temp_storage
    )
    app.state.background_refresh = background_refresh
    return app


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


class TestChapters:

    @pytest.mark.asyncio
    async def test_list_chapters(self, client):
        response = await client.get("/api/chapters")

        assert response.status_code == 200
        body = response.json()
        assert [c["id"] for c in body["chapters"]] == ["1", "2", "3"]
        assert body["status"]["is_stale"] is False
        assert body["status"]["error"] is None
        assert body["status"]["chapter_count"] == 3

    @pytest.mark.asyncio
    async def test_failed_first_fetch_offers_retry(self, client, fake_gateway):
        fake_gateway.fetch_catalog_with_progress.side_effect = GatewayUnavailableError()

        response = await client.get("/api/chapters")

        assert response.status_code == 200
        body = response.json()
        assert body["chapters"] == []
        assert body["status"]["can_retry"] is True
        assert body["status"]["error"] == "Failed to load chapters. Please try again."

    @pytest.mark.asyncio
    async def test_failed_refresh_serves_stale(self, client, fake_gateway):
        await client.get("/api/chapters")
        fake_gateway.fetch_catalog_with_progress.side_effect = GatewayError()

        response = await client.post("/api/chapters/refresh")

        body = response.json()
        assert len(body["chapters"]) == 3
        assert body["status"]["is_stale"] is True

    @pytest.mark.asyncio
    async def test_filter_endpoint(self, client):
        await client.get("/api/chapters")

        response = await client.put("/api/library/filter", json={"filter": "completed"})

        assert response.status_code == 200
        body = response.json()
        assert [c["id"] for c in body["chapters"]] == ["1"]
        assert body["status"]["selected_filter"] == "completed"

    @pytest.mark.asyncio
    async def test_unknown_filter_is_bad_request(self, client):
        response = await client.put("/api/library/filter", json={"filter": "popular"})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["details"]["field"] == "filter"

    @pytest.mark.asyncio
    async def test_search_endpoint(self, client):
        await client.get("/api/chapters")

        response = await client.put("/api/library/search", json={"query": "karma"})

        assert [c["id"] for c in response.json()["chapters"]] == ["3"]
        filtered = await client.get("/api/chapters/filtered")
        assert [c["id"] for c in filtered.json()["chapters"]] == ["3"]

    @pytest.mark.asyncio
    async def test_overlong_query_rejected(self, client):
        response = await client.put("/api/library/search", json={"query": "x" * 201})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_toggle_favorite(self, client):
        await client.get("/api/chapters")

        response = await client.post("/api/chapters/3/favorite")

        assert response.json() == {"chapter_id": "3", "is_favorite": True}

    @pytest.mark.asyncio
    async def test_unknown_chapter_verses(self, client, fake_gateway):
        fake_gateway.fetch_chapter_verses.side_effect = NotFoundError("chapter", "99")

        response = await client.get("/api/chapters/99/verses")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_clear_cache(self, client, catalog):
        await client.get("/api/chapters")

        response = await client.delete("/api/cache")

        assert response.status_code == 204
        assert catalog.chapters == []


class TestMarkRead:

    @pytest.mark.asyncio
    async def test_mark_read(self, client, catalog):
        await client.get("/api/chapters")

        response = await client.post(
            "/api/chapters/2/read", json={"verse_id": "v2-1", "time_spent_seconds": 30}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["recorded"] is True
        assert body["progress"]["completed_verses"] == ["v2-1"]
        assert body["progress"]["total_time"] == 30
        assert catalog.chapters[1].completed_verses == 1

    @pytest.mark.asyncio
    async def test_signed_out_is_unauthorized(self, client, fake_gateway):
        fake_gateway.record_completion.side_effect = GatewayAuthError()

        response = await client.post("/api/chapters/2/read", json={"verse_id": "v2-1"})

        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_gateway_down_is_unavailable(self, client, fake_gateway):
        fake_gateway.record_completion.side_effect = GatewayUnavailableError()

        response = await client.post("/api/chapters/2/read", json={"verse_id": "v2-1"})

        assert response.status_code == 503
        assert "Retry-After" in response.headers

    @pytest.mark.asyncio
    async def test_open_circuit_sets_retry_after(self, client, fake_gateway):
        fake_gateway.record_completion.side_effect = CircuitBreakerOpenError(recovery_time=30)

        response = await client.post("/api/chapters/2/read", json={"verse_id": "v2-1"})

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "30"
        assert response.json()["details"]["recovery_time"] == 30

    @pytest.mark.asyncio
    async def test_negative_time_rejected(self, client):
        response = await client.post(
            "/api/chapters/2/read", json={"verse_id": "v2-1", "time_spent_seconds": -5}
        )
        assert response.status_code == 422


class TestProgressAndLifecycle:

    @pytest.mark.asyncio
    async def test_get_progress(self, client):
        response = await client.get("/api/progress")

        assert response.status_code == 200
        assert response.json()["has_read_today"] is False
        assert response.json()["progress"]["current_streak"] == 0

    @pytest.mark.asyncio
    async def test_sync_failure_is_bad_gateway(self, client, fake_gateway):
        fake_gateway.fetch_user_progress.side_effect = GatewayError()

        response = await client.post("/api/progress/sync")

        assert response.status_code == 502
        assert response.json()["error"] == "gateway_error"

    @pytest.mark.asyncio
    async def test_foreground_triggers_due_refresh(self, client, fake_gateway):
        response = await client.post("/api/lifecycle/foreground")

        assert response.json() == {"refreshed": True}
        fake_gateway.fetch_catalog_with_progress.assert_awaited_once()

        again = await client.post("/api/lifecycle/foreground")
        assert again.json() == {"refreshed": False}

    @pytest.mark.asyncio
    async def test_metrics(self, client):
        await client.get("/api/chapters")
        await client.get("/api/chapters")

        stats = (await client.get("/api/metrics")).json()

        assert stats["cache_hits"] == 1
        assert stats["cache_misses"] == 1
        assert stats["cache_hit_rate"] == 50.0
        assert stats["cache"]["chapters_cache_age_seconds"] == 0.0


class TestHealth:

    @pytest.mark.asyncio
    async def test_healthy(self, client):
        body = (await client.get("/health")).json()
        assert body["status"] == "healthy"
        assert body["gateway"] == "available"

    @pytest.mark.asyncio
    async def test_unreachable_gateway_is_degraded(self, client, fake_gateway):
        fake_gateway.health_check.return_value = False
        body = (await client.get("/health")).json()
        assert body["status"] == "degraded"
        assert body["gateway"] == "unavailable"

    @pytest.mark.asyncio
    async def test_open_circuit_skips_health_check(self, client, fake_gateway):
        fake_gateway.breaker_state = "open"

        body = (await client.get("/health")).json()

        assert body["gateway"] == "circuit_open"
        fake_gateway.health_check.assert_not_awaited()


class TestRequestId:

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"

    @pytest.mark.asyncio
    async def test_request_id_generated(self, client):
        response = await client.get("/health")
        assert len(response.headers["X-Request-ID"]) == 8
