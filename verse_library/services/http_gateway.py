"""
Verse Library — HTTP Content Gateway
======================================

What:  ContentGateway implementation for a PostgREST-style hosted backend
       (tables: chapters, verses, user_progress under /rest/v1).
How:   httpx.AsyncClient for transport, tenacity for retrying transient
       failures, and a circuit breaker so a dead backend fails fast.
Who:   Instantiated once in the app lifespan; shared by the Catalog Cache and
       the Progress Service so both see the same breaker state.

Resilience Strategy:
    1. Tenacity retry with exponential backoff + jitter (5xx and transport errors)
    2. Circuit breaker after N consecutive failed calls
    3. Per-request timeout from settings.gateway_timeout
    4. Auth failures (401/403) are never retried and never trip the breaker

Progress derivation:
    The backend stores raw completion records only. Per-chapter counts,
    streaks, totals and the last read date are computed here from those
    records.
"""

import logging
import time
import uuid
from collections import Counter
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx
from pydantic import TypeAdapter
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential_jitter,
    retry_if_exception_type,
    before_sleep_log,
)

from verse_library.config import settings
from verse_library.exceptions import (
    CircuitBreakerOpenError,
    GatewayAuthError,
    GatewayError,
    GatewayUnavailableError,
    NotFoundError,
)
from verse_library.schemas.library import ChapterWithProgress, ProgressSummary, Verse
from verse_library.services.gateway_base import ContentGateway
from verse_library.services.streaks import streaks_from_dates, utc_today

logger = logging.getLogger(__name__)

_TIMESTAMP = TypeAdapter(datetime)


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Circuit breaker guarding the gateway.

    State Machine:
        CLOSED (normal operation)
            → On failure: increment failure_count
            → When failure_count >= threshold: transition to OPEN

        OPEN (rejecting all calls)
            → before_call() raises CircuitBreakerOpenError immediately
            → After recovery_timeout seconds: transition to HALF_OPEN

        HALF_OPEN (probing)
            → Calls go through
            → On success: CLOSED (failure_count reset)
            → On failure: back to OPEN (timer restarted)

    Single event loop only; no locking.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            failure_threshold: Consecutive failed calls before opening
            recovery_timeout:  Seconds to stay OPEN before probing
            clock:             Monotonic time source (injectable for tests)
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self.failure_count = 0
        self.state = self.CLOSED
        self.opened_at: Optional[float] = None

    def before_call(self) -> None:
        """
        Gate a call.

        Raises:
            CircuitBreakerOpenError while OPEN and the recovery timeout has not elapsed.
        """
        if self.state != self.OPEN:
            return

        elapsed = self._clock() - (self.opened_at or 0.0)
        if elapsed >= self.recovery_timeout:
            logger.info("Gateway circuit HALF_OPEN after %.1fs", elapsed)
            self.state = self.HALF_OPEN
            return

        raise CircuitBreakerOpenError(recovery_time=int(self.recovery_timeout - elapsed))

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Gateway circuit CLOSED (backend recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.opened_at = None

    def record_failure(self) -> None:
        self.failure_count += 1

        if self.state == self.HALF_OPEN:
            logger.warning("Gateway circuit back to OPEN (trial call failed)")
            self._open()
        elif self.state == self.CLOSED and self.failure_count >= self.failure_threshold:
            logger.warning(
                "Gateway circuit OPENING after %d consecutive failures",
                self.failure_count,
            )
            self._open()

    def _open(self) -> None:
        self.state = self.OPEN
        self.opened_at = self._clock()


# ══════════════════════════════════════════════════════════════════════════
# HTTP Gateway
# ══════════════════════════════════════════════════════════════════════════

class HttpContentGateway(ContentGateway):
    """
    PostgREST client for the catalog and the user's completion records.

    Error Handling Chain:
        HTTP 5xx / transport error → tenacity retries (backoff + jitter)
        → retries exhausted → breaker failure recorded → GatewayUnavailableError
        → threshold reached → later calls rejected with CircuitBreakerOpenError
        HTTP 401/403 → GatewayAuthError (no retry, breaker untouched)
        other HTTP 4xx → GatewayError (no retry, breaker untouched)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        access_token: Optional[str] = None,
        user_id: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        today: Callable[[], date] = utc_today,
    ):
        """
        Args:
            base_url:     Backend root; defaults to settings.gateway_base_url
            api_key:      Public API key sent as the `apikey` header
            access_token: Bearer token of the signed-in user (falls back to api_key)
            user_id:      Signed-in user's id; empty means anonymous
            timeout:      Per-request timeout in seconds
            transport:    Custom httpx transport (httpx.MockTransport in tests)
            today:        Calendar-day source for streak computation
        """
        root = (base_url or settings.gateway_base_url).rstrip("/")
        key = api_key if api_key is not None else settings.gateway_api_key
        token = access_token if access_token is not None else settings.gateway_access_token

        headers = {"Accept": "application/json"}
        if key:
            headers["apikey"] = key
        if token or key:
            headers["Authorization"] = f"Bearer {token or key}"

        self.user_id = user_id if user_id is not None else settings.gateway_user_id
        self._today = today
        self._client = httpx.AsyncClient(
            base_url=f"{root}/rest/v1",
            headers=headers,
            timeout=timeout or settings.gateway_timeout,
            transport=transport,
        )
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

        logger.info(
            "HttpContentGateway initialized for %s (user=%s), "
            "circuit_breaker(threshold=%d, recovery=%ds)",
            root,
            "set" if self.user_id else "anonymous",
            settings.cb_failure_threshold,
            settings.cb_recovery_timeout,
        )

    @property
    def breaker_state(self) -> Optional[str]:
        return self.circuit_breaker.state

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── ContentGateway operations ─────────────────────────────────────────

    async def fetch_catalog_with_progress(self) -> List[ChapterWithProgress]:
        rows = await self._call(
            "GET", "/chapters", params={"select": "*", "order": "chapter_number.asc"}
        )
        if not self.user_id:
            logger.info("No signed-in user; returning chapters without progress")
            return [self._chapter_from_row(row, 0) for row in rows]

        completed = await self._call(
            "GET",
            "/user_progress",
            params={"select": "verse_id", "user_id": f"eq.{self.user_id}"},
        )
        verse_index = await self._call("GET", "/verses", params={"select": "id,chapter_id"})

        verse_to_chapter = {str(v["id"]): str(v["chapter_id"]) for v in verse_index}
        per_chapter = Counter(
            verse_to_chapter.get(str(row["verse_id"])) for row in completed
        )
        return [
            self._chapter_from_row(row, per_chapter.get(str(row["id"]), 0))
            for row in rows
        ]

    async def fetch_user_progress(self) -> ProgressSummary:
        if not self.user_id:
            return ProgressSummary()

        rows = await self._call(
            "GET",
            "/user_progress",
            params={
                "select": "verse_id,completed_at,time_spent_seconds,is_favorite,verses(chapter_id)",
                "user_id": f"eq.{self.user_id}",
                "order": "completed_at.desc",
            },
        )
        if not rows:
            return ProgressSummary()

        read_dates = [self._completion_date(row["completed_at"]) for row in rows]
        current, longest = streaks_from_dates(read_dates, self._today())
        chapters = {
            str(row["verses"]["chapter_id"])
            for row in rows
            if isinstance(row.get("verses"), dict) and row["verses"].get("chapter_id") is not None
        }

        return ProgressSummary(
            current_streak=current,
            longest_streak=longest,
            total_verses=len(rows),
            total_chapters=len(chapters),
            total_time=sum(row.get("time_spent_seconds") or 0 for row in rows),
            last_read_date=read_dates[0],
            completed_verses=[str(row["verse_id"]) for row in rows],
            favorite_verses=[str(row["verse_id"]) for row in rows if row.get("is_favorite")],
        )

    async def record_completion(self, verse_id: str, time_spent_seconds: int) -> None:
        if not self.user_id:
            raise GatewayAuthError(
                message="Sign in to save your reading progress",
                context={"verse_id": verse_id},
            )

        await self._call(
            "POST",
            "/user_progress",
            params={"on_conflict": "user_id,verse_id"},
            json={
                "user_id": self.user_id,
                "verse_id": verse_id,
                "time_spent_seconds": time_spent_seconds,
                "completed_at": datetime.now(timezone.utc).isoformat(),
            },
            headers={"Prefer": "resolution=ignore-duplicates,return=minimal"},
        )
        logger.info("Completion recorded for verse %s", verse_id)

    async def fetch_chapter_verses(self, chapter_number: int) -> List[Verse]:
        matches = await self._call(
            "GET",
            "/chapters",
            params={"select": "id", "chapter_number": f"eq.{chapter_number}"},
        )
        if not matches:
            raise NotFoundError(resource="chapter", resource_id=str(chapter_number))

        rows = await self._call(
            "GET",
            "/verses",
            params={
                "select": "*",
                "chapter_id": f"eq.{matches[0]['id']}",
                "order": "verse_number.asc",
            },
        )
        return [
            Verse(**{**row, "id": str(row["id"]), "chapter_id": str(row["chapter_id"]),
                     "keywords": row.get("keywords") or []})
            for row in rows
        ]

    async def health_check(self) -> bool:
        """Single unretried read of the chapters table."""
        try:
            response = await self._client.get("/chapters", params={"select": "id", "limit": 1})
            return response.is_success
        except httpx.HTTPError as e:
            logger.warning("Gateway health check failed: %s", str(e))
            return False

    # ── Transport ─────────────────────────────────────────────────────────

    async def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        """
        Send one logical request through the breaker and the retry policy.

        Returns:
            The decoded JSON body, or None for an empty body.
        """
        request_id = uuid.uuid4().hex[:8]
        self.circuit_breaker.before_call()

        try:
            response = await self._send(method, path, request_id, **kwargs)
        except GatewayAuthError:
            raise
        except GatewayUnavailableError:
            self.circuit_breaker.record_failure()
            raise
        except GatewayError:
            # A 4xx means the backend answered; it is not an outage
            raise
        except httpx.HTTPError as e:
            self.circuit_breaker.record_failure()
            logger.error("[%s] Gateway retries exhausted for %s %s: %s",
                         request_id, method, path, str(e))
            raise GatewayUnavailableError(
                context={"request_id": request_id, "path": path, "error_type": type(e).__name__},
            )

        self.circuit_breaker.record_success()
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            raise GatewayError(
                message="The content service returned an unreadable response",
                status_code=response.status_code,
                context={"request_id": request_id, "path": path},
            )

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, GatewayUnavailableError)),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _send(
        self,
        method: str,
        path: str,
        request_id: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """
        One HTTP attempt. Tenacity re-invokes it on transient failures.

        The breaker check lives in _call so that retries of one logical
        request never count as separate breaker trials.
        """
        start_time = time.time()
        response = await self._client.request(
            method, path, params=params, json=json, headers=headers
        )
        duration_ms = (time.time() - start_time) * 1000
        logger.debug("[%s] %s %s → %d in %.0fms",
                     request_id, method, path, response.status_code, duration_ms)

        status = response.status_code
        if status >= 500:
            raise GatewayUnavailableError(
                status_code=status, context={"request_id": request_id, "path": path}
            )
        if status in (401, 403):
            raise GatewayAuthError(
                status_code=status, context={"request_id": request_id, "path": path}
            )
        if status >= 400:
            raise GatewayError(
                message=f"The content service rejected the request (HTTP {status})",
                status_code=status,
                context={"request_id": request_id, "path": path},
            )
        return response

    # ── Row mapping ───────────────────────────────────────────────────────

    @staticmethod
    def _chapter_from_row(row: Dict[str, Any], completed: int) -> ChapterWithProgress:
        verse_count = row.get("verse_count") or 0
        return ChapterWithProgress(
            **{
                **row,
                "id": str(row["id"]),
                "verse_count": verse_count,
                "completed_verses": completed,
                "total_progress": (completed / verse_count) * 100 if verse_count > 0 else 0.0,
            }
        )

    @staticmethod
    def _completion_date(value: Any) -> date:
        stamp = _TIMESTAMP.validate_python(value)
        if stamp.tzinfo is not None:
            stamp = stamp.astimezone(timezone.utc)
        return stamp.date()
