"""Domain models and capability interfaces for thousand-words."""

from .interfaces import ContentStore, MetadataIndex
from .stories import (
    CreateStoryInput,
    ListOptions,
    ListResult,
    PutOptions,
    QueryOptions,
    QueryResult,
    SearchOptions,
    SortField,
    SortOrder,
    StoryFileMetadata,
    StoryMetadata,
    UpdateStoryInput,
)

__all__ = [
    "ContentStore",
    "CreateStoryInput",
    "ListOptions",
    "ListResult",
    "MetadataIndex",
    "PutOptions",
    "QueryOptions",
    "QueryResult",
    "SearchOptions",
    "SortField",
    "SortOrder",
    "StoryFileMetadata",
    "StoryMetadata",
    "UpdateStoryInput",
]
