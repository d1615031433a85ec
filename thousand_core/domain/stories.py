"""
Domain models for story metadata and story files.

StoryMetadata records are owned by the metadata index; StoryFileMetadata
is derived on demand by the content store and never persisted. Option and
result models are shared by every backend so callers never see
backend-specific field names.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_PAGE_SIZE = 20
DEFAULT_LIST_SIZE = 100
DEFAULT_CONTENT_TYPE = "text/markdown"


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    """
    Serialize a timestamp with a fixed width so string order is time order.

    ``datetime.isoformat`` drops the fraction when microseconds are zero,
    which breaks lexicographic sorting in text columns and sort keys.
    """
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def from_iso(value: str) -> datetime:
    return ensure_utc(datetime.fromisoformat(value))


def next_updated_at(previous: datetime) -> datetime:
    """Return now(), nudged forward so it is strictly after ``previous``."""
    now = utcnow()
    previous = ensure_utc(previous)
    if now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def normalize_tags(tags: Optional[list[str]]) -> Optional[list[str]]:
    """Strip, drop empties and de-duplicate tags, keeping first occurrence."""
    if tags is None:
        return None
    seen: list[str] = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


class SortField(str, Enum):
    """Logical sort fields accepted by ``MetadataIndex.query``."""
    PUBLISHED_AT = "published_at"
    UPDATED_AT = "updated_at"
    CREATED_AT = "created_at"
    TITLE = "title"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class StoryMetadata(BaseModel):
    """
    Index record describing a published story.

    ``id``, ``author_did``, ``storage_key`` and ``created_at`` never change
    after creation.
    """
    id: str = Field(..., description="Backend-generated unique identifier")
    title: str = Field(..., min_length=1, description="Display title")
    author_did: str = Field(..., description="Author identifier from the identity provider")
    author_name: str = Field(..., description="Display name snapshot")
    storage_key: str = Field(..., description="Key of the content blob")
    word_count: int = Field(..., description="Word count of the story body")
    excerpt: Optional[str] = Field(None, description="Short text snippet")
    tags: Optional[list[str]] = Field(None, description="Tags or categories")
    published_at: datetime
    updated_at: datetime
    created_at: datetime

    @field_validator("published_at", "updated_at", "created_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class CreateStoryInput(BaseModel):
    """Data required to create a new index record."""
    title: str = Field(..., min_length=1)
    author_did: str = Field(..., min_length=1)
    author_name: str
    storage_key: str = Field(..., min_length=1)
    word_count: int
    excerpt: Optional[str] = None
    tags: Optional[list[str]] = None
    # Backends default all three to the creation time
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        return normalize_tags(value)

    @field_validator("published_at", "created_at", "updated_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    def build(self, story_id: str, now: Optional[datetime] = None) -> StoryMetadata:
        """Materialize the full record with an id and resolved timestamps."""
        now = now or utcnow()
        return StoryMetadata(
            id=story_id,
            title=self.title,
            author_did=self.author_did,
            author_name=self.author_name,
            storage_key=self.storage_key,
            word_count=self.word_count,
            excerpt=self.excerpt,
            tags=self.tags,
            published_at=self.published_at or now,
            created_at=self.created_at or now,
            updated_at=self.updated_at or now,
        )


class UpdateStoryInput(BaseModel):
    """
    Partial update for an index record.

    Only fields explicitly passed are applied; see ``changes()``. Passing
    ``excerpt=None`` or ``tags=None`` clears the field.
    """
    title: Optional[str] = Field(None, min_length=1)
    excerpt: Optional[str] = None
    tags: Optional[list[str]] = None
    word_count: Optional[int] = None

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        return normalize_tags(value)

    def changes(self) -> dict:
        """Fields explicitly set by the caller, in declaration order."""
        changes = {}
        for name in type(self).model_fields:
            if name in self.model_fields_set:
                value = getattr(self, name)
                # title and word_count are NOT NULL
                if value is None and name in ("title", "word_count"):
                    continue
                changes[name] = value
        return changes


class QueryOptions(BaseModel):
    """Filtering, sorting and offset pagination for ``MetadataIndex.query``."""
    author_did: Optional[str] = None
    tags: Optional[list[str]] = Field(None, description="Records must carry every tag")
    sort_by: SortField = SortField.PUBLISHED_AT
    sort_order: SortOrder = SortOrder.DESC
    limit: int = Field(DEFAULT_PAGE_SIZE, ge=1)
    offset: int = Field(0, ge=0)

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        return normalize_tags(value)


class SearchOptions(BaseModel):
    """Case-insensitive substring search over title and excerpt."""
    query: str
    author_did: Optional[str] = None
    limit: int = Field(DEFAULT_PAGE_SIZE, ge=1)
    offset: int = Field(0, ge=0)


class QueryResult(BaseModel):
    stories: list[StoryMetadata]
    total: int
    has_more: bool

    @classmethod
    def page(cls, stories: list[StoryMetadata], total: int, offset: int) -> "QueryResult":
        return cls(stories=stories, total=total, has_more=offset + len(stories) < total)


class StoryFileMetadata(BaseModel):
    """Blob attributes reported by a content store without reading content."""
    key: str
    size: int
    content_type: str = DEFAULT_CONTENT_TYPE
    last_modified: datetime
    etag: Optional[str] = None


class PutOptions(BaseModel):
    content_type: Optional[str] = None
    metadata: Optional[dict[str, str]] = None


class ListOptions(BaseModel):
    prefix: Optional[str] = None
    max_results: int = Field(DEFAULT_LIST_SIZE, ge=1)
    continuation_token: Optional[str] = None


class ListResult(BaseModel):
    files: list[StoryFileMetadata]
    continuation_token: Optional[str] = None
    has_more: bool = False
