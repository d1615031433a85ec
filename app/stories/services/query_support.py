"""
Query semantics shared by every metadata index backend.

SQL backends use the column mapping and result helpers; the DynamoDB
backend, which has no native substring or multi-attribute filtering,
evaluates the same predicates and ordering in memory.
"""

from __future__ import annotations

from typing import Iterable, Optional

from thousand_core.domain.stories import (
    QueryOptions,
    QueryResult,
    SearchOptions,
    SortField,
    SortOrder,
    StoryMetadata,
)

# Logical sort field -> SQL column
SORT_COLUMNS: dict[SortField, str] = {
    SortField.PUBLISHED_AT: "published_at",
    SortField.UPDATED_AT: "updated_at",
    SortField.CREATED_AT: "created_at",
    SortField.TITLE: "title",
}


def resolve_query_options(options: Optional[QueryOptions], **overrides) -> QueryOptions:
    options = options or QueryOptions()
    if overrides:
        options = options.model_copy(update=overrides)
    return options


def has_all_tags(story: StoryMetadata, tags: Optional[list[str]]) -> bool:
    """Exact-element AND match: the story must carry every requested tag."""
    if not tags:
        return True
    story_tags = set(story.tags or [])
    return all(tag in story_tags for tag in tags)


def matches_text(story: StoryMetadata, query: str) -> bool:
    """Case-insensitive substring match on title or excerpt."""
    needle = query.lower()
    return needle in story.title.lower() or needle in (story.excerpt or "").lower()


def matches_query(story: StoryMetadata, options: QueryOptions) -> bool:
    if options.author_did and story.author_did != options.author_did:
        return False
    return has_all_tags(story, options.tags)


def matches_search(story: StoryMetadata, options: SearchOptions) -> bool:
    if options.author_did and story.author_did != options.author_did:
        return False
    return matches_text(story, options.query)


def sort_stories(
    stories: Iterable[StoryMetadata],
    sort_by: SortField = SortField.PUBLISHED_AT,
    sort_order: SortOrder = SortOrder.DESC,
) -> list[StoryMetadata]:
    """
    Order stories the way the SQL backends do.

    Ties on the sort key fall back to ``id`` ascending in code point order
    regardless of the requested direction, matching
    ``ORDER BY <col> <dir>, id ASC``.
    """
    ordered = sorted(stories, key=lambda s: s.id)
    return sorted(
        ordered,
        key=lambda s: getattr(s, sort_by.value),
        reverse=sort_order == SortOrder.DESC,
    )


def paginate(stories: list[StoryMetadata], offset: int, limit: int) -> QueryResult:
    """Slice an already filtered and ordered list into a QueryResult."""
    page = stories[offset:offset + limit]
    return QueryResult.page(page, total=len(stories), offset=offset)
