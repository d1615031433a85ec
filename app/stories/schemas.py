"""
Pydantic schemas for the stories module.

This module contains the request/response models for the story service
and the stories API, keeping route handlers clean and enabling schema
reuse.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from thousand_core.domain.stories import QueryResult, StoryMetadata


# ==============================================================================
# SERVICE SCHEMAS
# ==============================================================================


class PublishStoryRequest(BaseModel):
    """A story to publish: author identity from the identity provider plus the text."""

    author_did: str = Field(..., min_length=1)
    author_name: str
    title: str
    content: str
    excerpt: Optional[str] = None
    tags: Optional[list[str]] = None
    published_at: Optional[datetime] = None


class StoryWithContent(BaseModel):
    """Index record plus its text. ``content`` is None when the blob is missing."""

    story: StoryMetadata
    content: Optional[str] = None


# ==============================================================================
# API SCHEMAS
# ==============================================================================


class UpdateStoryRequest(BaseModel):
    """Request body for PATCH /stories/{id}."""

    title: Optional[str] = Field(None, min_length=1)
    excerpt: Optional[str] = None
    tags: Optional[list[str]] = None


class StoryListResponse(BaseModel):
    """Response model for listing and search endpoints."""

    stories: list[StoryMetadata]
    total: int
    has_more: bool
    limit: int
    offset: int

    @classmethod
    def from_result(cls, result: QueryResult, limit: int, offset: int) -> "StoryListResponse":
        return cls(
            stories=result.stories,
            total=result.total,
            has_more=result.has_more,
            limit=limit,
            offset=offset,
        )


class DeleteResponse(BaseModel):
    id: str
    deleted: bool
