"""Search and filter composition over a catalog snapshot."""

from typing import List, Sequence, Union

from verse_library.exceptions import ValidationError
from verse_library.schemas.library import ChapterFilter, ChapterWithProgress


def parse_filter(filter_id: Union[str, ChapterFilter]) -> ChapterFilter:
    """Convert a raw filter id into a ChapterFilter, raising ValidationError if unknown."""
    try:
        return ChapterFilter(filter_id)
    except ValueError:
        allowed = [f.value for f in ChapterFilter]
        raise ValidationError(
            message=f"Unknown filter '{filter_id}'. Allowed filters: {', '.join(allowed)}",
            field="filter",
            context={"filter": str(filter_id), "allowed": allowed},
        )


def matches_search(chapter: ChapterWithProgress, needle: str) -> bool:
    """Case-insensitive substring match on English title, Sanskrit title or theme.

    `needle` must already be lower-cased. The description stands in for the
    theme when a chapter has none.
    """
    theme = chapter.theme or chapter.description or ""
    return (
        needle in chapter.title_english.lower()
        or needle in chapter.title_sanskrit.lower()
        or needle in theme.lower()
    )


def matches_filter(chapter: ChapterWithProgress, selected: ChapterFilter) -> bool:
    completed = chapter.completed_verses
    total = chapter.verse_count
    if selected is ChapterFilter.IN_PROGRESS:
        return 0 < completed < total
    if selected is ChapterFilter.COMPLETED:
        return completed == total
    if selected is ChapterFilter.FAVORITES:
        return chapter.is_favorite
    return True


def filter_chapters(
    chapters: Sequence[ChapterWithProgress],
    search_query: str,
    filter_id: Union[str, ChapterFilter] = ChapterFilter.ALL,
) -> List[ChapterWithProgress]:
    """
    Derive the visible chapter list from a catalog snapshot.

    1. A non-blank search query keeps chapters matching any of the three text fields.
    2. Exactly one categorical filter is then applied.

    The result keeps catalog order. This function never touches a cache;
    see CatalogCache.get_filtered_chapters for the cached path.
    """
    selected = parse_filter(filter_id)
    needle = (search_query or "").strip().lower()

    result = list(chapters)
    if needle:
        result = [c for c in result if matches_search(c, needle)]
    if selected is not ChapterFilter.ALL:
        result = [c for c in result if matches_filter(c, selected)]
    return result


def search_cache_key(search_query: str, filter_id: Union[str, ChapterFilter]) -> str:
    """Key for the search cache: raw query and filter id joined by '-'."""
    return f"{search_query}-{parse_filter(filter_id).value}"
