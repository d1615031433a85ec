"""
Capability interfaces (Protocols) for thousand-words.

This module defines the two backend families of the storage core:
- MetadataIndex: searchable story records (SQLite, PostgreSQL, DynamoDB)
- ContentStore: raw story text keyed by storage key (S3/MinIO, filesystem)

Application code depends on these protocols only; concrete backends are
chosen by the backend selector and never referenced by type.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from .stories import (
    CreateStoryInput,
    ListOptions,
    ListResult,
    PutOptions,
    QueryOptions,
    QueryResult,
    SearchOptions,
    StoryFileMetadata,
    StoryMetadata,
    UpdateStoryInput,
)


@runtime_checkable
class MetadataIndex(Protocol):
    """
    Index of story metadata records.

    Every backend must agree on filtering, sorting, pagination and search
    semantics. Point lookups return ``None`` on a miss instead of raising.
    """

    async def create(self, data: CreateStoryInput) -> StoryMetadata:
        """
        Create a record with a generated id.

        Raises:
            ConflictError: If the storage key is already indexed.
        """
        ...

    async def get(self, story_id: str) -> Optional[StoryMetadata]:
        """Fetch a record by id, or None."""
        ...

    async def update(self, story_id: str, data: UpdateStoryInput) -> Optional[StoryMetadata]:
        """
        Apply the fields set on ``data`` and refresh ``updated_at``.

        Returns:
            The updated record, or None if the id does not exist.
        """
        ...

    async def delete(self, story_id: str) -> bool:
        """Remove a record. Returns False if nothing was removed."""
        ...

    async def query(self, options: Optional[QueryOptions] = None) -> QueryResult:
        """Filter by author and tags (AND), sort, and paginate by offset."""
        ...

    async def list_by_author(
        self, author_did: str, options: Optional[QueryOptions] = None
    ) -> QueryResult:
        """Same as ``query`` with ``author_did`` fixed."""
        ...

    async def search(self, options: SearchOptions) -> QueryResult:
        """Case-insensitive substring match on title or excerpt, newest first."""
        ...

    async def count(self, options: Optional[QueryOptions] = None) -> int:
        """Number of records matching the filters of ``options``."""
        ...

    async def aclose(self) -> None:
        """Release the backend's connection or pool."""
        ...


@runtime_checkable
class ContentStore(Protocol):
    """
    Key-addressed blob storage for story text.

    Keys are chosen by the caller. A missing key is a normal return value
    for get/delete/exists/get_metadata, never an error.
    """

    async def get(self, key: str) -> Optional[str]:
        """Return the full content, or None."""
        ...

    async def put(self, key: str, content: str, options: Optional[PutOptions] = None) -> None:
        """Store content, overwriting unconditionally."""
        ...

    async def delete(self, key: str) -> bool:
        """Remove a blob. Returns False if it did not exist."""
        ...

    async def list(self, options: Optional[ListOptions] = None) -> ListResult:
        """List blobs by prefix with continuation-token pagination."""
        ...

    async def exists(self, key: str) -> bool:
        """Check existence without reading content."""
        ...

    async def get_metadata(self, key: str) -> Optional[StoryFileMetadata]:
        """Return size, content type, modification time and etag, or None."""
        ...

    async def aclose(self) -> None:
        """Release the backend's client."""
        ...
