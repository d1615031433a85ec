"""
StoryService: orchestration of the content store and the metadata index.

This service handles:
- Enforcing the word-count contract before anything is persisted
- Publishing: blob first, then the index record sharing its storage key
- Reading through the index (the source of truth) to the blob
- Explicit blob deletion when a story is unpublished

There are no cross-store transactions. If the index write fails after the
blob was stored, the blob is left orphaned; orphans are never surfaced
because every read goes through the index.
"""

from __future__ import annotations

import re
import uuid
from typing import Optional

from loguru import logger

from thousand_core.config import Settings, settings as default_settings
from thousand_core.domain.interfaces import ContentStore, MetadataIndex
from thousand_core.domain.stories import (
    CreateStoryInput,
    PutOptions,
    QueryOptions,
    QueryResult,
    SearchOptions,
    StoryMetadata,
    UpdateStoryInput,
)
from thousand_core.runtime.errors import ValidationError

from app.stories.schemas import PublishStoryRequest, StoryWithContent

# Letters/digits, allowing inner apostrophes and hyphens ("don't", "well-known")
_WORD = re.compile(r"[^\W_]+(?:['’-][^\W_]+)*")
_MARKDOWN_NOISE = re.compile(r"[*_`>#\[\]]")
_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def count_words(text: str) -> int:
    """Count words, ignoring markdown punctuation."""
    return len(_WORD.findall(text))


def make_excerpt(text: str, max_length: int = 200) -> str:
    """
    Build a plain-text excerpt from markdown content.

    Heading lines are skipped, markdown punctuation is dropped and the
    result is cut on a word boundary.
    """
    lines = [line for line in text.splitlines() if not line.lstrip().startswith("#")]
    plain = " ".join(_MARKDOWN_NOISE.sub("", " ".join(lines)).split())
    if len(plain) <= max_length:
        return plain
    cut = plain[:max_length].rsplit(" ", 1)[0]
    return f"{cut}…"


def build_storage_key(author_did: str) -> str:
    """Fresh storage key under the author's prefix, e.g. stories/did-plc-abc/<uuid>.md."""
    author = _UNSAFE_KEY_CHARS.sub("-", author_did).strip("-") or "anonymous"
    return f"stories/{author}/{uuid.uuid4()}.md"


class StoryService:
    """
    Service composing a ContentStore and a MetadataIndex.

    Both collaborators are injected as capability interfaces.

    Usage:
        async with open_backends(settings) as backends:
            service = StoryService(backends.index, backends.store)
            story = await service.publish(PublishStoryRequest(...))
    """

    def __init__(
        self,
        index: MetadataIndex,
        store: ContentStore,
        config: Settings | None = None,
    ):
        config = config or default_settings
        self.index = index
        self.store = store
        self.min_words = config.MIN_WORD_COUNT
        self.max_words = config.MAX_WORD_COUNT
        self.excerpt_length = config.EXCERPT_LENGTH

    def validate_word_count(self, word_count: int) -> None:
        """
        Raises:
            ValidationError: If the count is outside the allowed range.
        """
        if not self.min_words <= word_count <= self.max_words:
            raise ValidationError(
                f"Stories must be between {self.min_words} and {self.max_words} words "
                f"(got {word_count})"
            )

    @staticmethod
    def validate_title(title: str) -> str:
        title = title.strip()
        if not title:
            raise ValidationError("Title must not be empty")
        return title

    async def publish(self, request: PublishStoryRequest) -> StoryMetadata:
        """
        Publish a story.

        Args:
            request: Author identity, title and markdown content.

        Returns:
            StoryMetadata: The created index record.

        Raises:
            ValidationError: Empty title or word count out of range.
            ConflictError: The generated storage key is already indexed.
        """
        title = self.validate_title(request.title)
        word_count = count_words(request.content)
        self.validate_word_count(word_count)

        storage_key = build_storage_key(request.author_did)
        excerpt = request.excerpt if request.excerpt is not None else make_excerpt(
            request.content, self.excerpt_length
        )

        await self.store.put(
            storage_key,
            request.content,
            PutOptions(
                content_type="text/markdown",
                metadata={"author-did": request.author_did, "word-count": str(word_count)},
            ),
        )

        try:
            story = await self.index.create(
                CreateStoryInput(
                    title=title,
                    author_did=request.author_did,
                    author_name=request.author_name,
                    storage_key=storage_key,
                    word_count=word_count,
                    excerpt=excerpt,
                    tags=request.tags,
                    published_at=request.published_at,
                )
            )
        except Exception as e:
            logger.warning(f"Index write failed, blob {storage_key} is orphaned: {e}")
            raise

        logger.info(f"Published story {story.id} by {story.author_did} ({word_count} words)")
        return story

    async def get_story(self, story_id: str) -> Optional[StoryWithContent]:
        """Fetch the index record and its text; None if the story is not indexed."""
        story = await self.index.get(story_id)
        if story is None:
            return None

        content = await self.store.get(story.storage_key)
        if content is None:
            logger.warning(f"Story {story_id} has no content at {story.storage_key}")
        return StoryWithContent(story=story, content=content)

    async def update_story(self, story_id: str, changes: UpdateStoryInput) -> Optional[StoryMetadata]:
        """
        Update index fields of a story. Content is immutable once stored.

        Returns:
            The updated record, or None if the story does not exist.
        """
        fields = changes.changes()
        if "title" in fields:
            changes = changes.model_copy(update={"title": self.validate_title(fields["title"])})
        if "word_count" in fields:
            self.validate_word_count(fields["word_count"])

        return await self.index.update(story_id, changes)

    async def unpublish(self, story_id: str, delete_content: bool = True) -> bool:
        """
        Remove a story from the index and, unless told otherwise, delete its blob.

        Returns:
            True if the index record existed.
        """
        story = await self.index.get(story_id)
        if story is None:
            return False

        deleted = await self.index.delete(story_id)
        if deleted and delete_content:
            if not await self.store.delete(story.storage_key):
                logger.warning(f"No content to delete for story {story_id} at {story.storage_key}")

        logger.info(f"Unpublished story {story_id}")
        return deleted

    async def list_stories(self, options: Optional[QueryOptions] = None) -> QueryResult:
        return await self.index.query(options)

    async def list_by_author(self, author_did: str, options: Optional[QueryOptions] = None) -> QueryResult:
        return await self.index.list_by_author(author_did, options)

    async def search_stories(self, options: SearchOptions) -> QueryResult:
        return await self.index.search(options)

    async def count_stories(self, options: Optional[QueryOptions] = None) -> int:
        return await self.index.count(options)
