"""
Verse Library — Abstract Content Gateway Interface
====================================================

What:  Abstract base class for the remote source of truth (catalog, verses,
       per-user completion records).
How:   Concrete implementations inherit from ContentGateway; the Catalog Cache
       and Progress Service only ever see this interface.
Who:   HttpContentGateway in production, AsyncMock(spec=ContentGateway) in tests.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from verse_library.schemas.library import ChapterWithProgress, ProgressSummary, Verse


class ContentGateway(ABC):
    """
    Contract for the remote content backend.

    Contract:
        - Every method is a suspension point and may be slow
        - Implementations handle their own retry logic and error translation
        - Failures surface as GatewayError (or a subclass); callers decide
          whether to swallow them (catalog fetch) or propagate (completion)
    """

    @abstractmethod
    async def fetch_catalog_with_progress(self) -> List[ChapterWithProgress]:
        """
        Fetch every chapter annotated with the signed-in user's progress.

        Returns:
            Chapters in catalog order, each with completed_verses and
            total_progress filled in. is_favorite is left False; the Catalog
            Cache attaches it from the progress summary.

        Raises:
            GatewayError: the catalog could not be fetched.
        """
        ...

    @abstractmethod
    async def fetch_user_progress(self) -> ProgressSummary:
        """
        Fetch the user's progress summary.

        Returns:
            A summary derived from the user's completion records. An
            anonymous user gets an empty summary.

        Raises:
            GatewayError: the completion records could not be fetched.
        """
        ...

    @abstractmethod
    async def record_completion(self, verse_id: str, time_spent_seconds: int) -> None:
        """
        Persist a completion record for a verse.

        Raises:
            GatewayAuthError: no signed-in user, or credentials rejected.
            GatewayError: the record could not be stored.
        """
        ...

    @abstractmethod
    async def fetch_chapter_verses(self, chapter_number: int) -> List[Verse]:
        """
        Fetch the verses of one chapter, ordered by verse number.

        Returns:
            An empty list when the chapter has no verses.

        Raises:
            NotFoundError: no chapter has this number.
            GatewayError: the verses could not be fetched.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Lightweight reachability check. Returns False instead of raising."""
        ...

    @property
    def breaker_state(self) -> Optional[str]:
        """Circuit breaker state for health reporting, if the gateway has one."""
        return None
