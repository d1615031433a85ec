"""
DynamoDB metadata index backend.

Wide-column index for AWS serverless deployments, using boto3.

Table layout:
- Story items:  pk = sk = "STORY#<id>", gsi1pk = "AUTHOR#<author_did>",
  gsi1sk = published_at (ISO, fixed width)
- Guard items:  pk = sk = "STORAGEKEY#<storage_key>", written with a
  conditional put so duplicate storage keys are rejected atomically.

DynamoDB has no substring search and no multi-attribute AND filtering, so
``query`` and ``search`` read every candidate item (the author partition
of ``gsi1`` when an author is given, otherwise a full table scan) and
filter, sort and paginate in memory. This is slow on large tables but
returns exactly the same pages and totals as the SQL backends.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Optional

from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from thousand_core.domain.stories import (
    CreateStoryInput,
    QueryOptions,
    QueryResult,
    SearchOptions,
    SortField,
    SortOrder,
    StoryMetadata,
    UpdateStoryInput,
    from_iso,
    next_updated_at,
    to_iso,
)
from thousand_core.runtime.errors import (
    BackendUnavailable,
    ConflictError,
    IOFailure,
    ServiceError,
)

from .query_support import (
    matches_query,
    matches_search,
    paginate,
    resolve_query_options,
    sort_stories,
)

STORY_PREFIX = "STORY#"
AUTHOR_PREFIX = "AUTHOR#"
STORAGE_KEY_PREFIX = "STORAGEKEY#"
AUTHOR_INDEX = "gsi1"

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"
UNAVAILABLE_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
    "ServiceUnavailable",
    "InternalServerError",
    "ResourceNotFoundException",
}


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def translate_error(error: Exception) -> ServiceError:
    """Map a boto3/botocore exception to the service error hierarchy."""
    if isinstance(error, ClientError):
        code = _error_code(error)
        if code in UNAVAILABLE_CODES:
            return BackendUnavailable(f"DynamoDB is unavailable ({code})", message_debug=str(error), cause=error)
        return IOFailure(f"DynamoDB request failed ({code})", message_debug=str(error), cause=error)
    return BackendUnavailable("DynamoDB is unreachable", message_debug=str(error), cause=error)


def _story_key(story_id: str) -> dict[str, str]:
    return {"pk": f"{STORY_PREFIX}{story_id}", "sk": f"{STORY_PREFIX}{story_id}"}


def _guard_key(storage_key: str) -> dict[str, str]:
    return {"pk": f"{STORAGE_KEY_PREFIX}{storage_key}", "sk": f"{STORAGE_KEY_PREFIX}{storage_key}"}


class DynamoDBIndex:
    """
    Metadata index stored in a single DynamoDB table.

    Usage:
        resource = create_dynamodb_resource(region="us-east-1")
        index = DynamoDBIndex(resource, "stories")
        await index.initialize()
        result = await index.search(SearchOptions(query="ghost"))
        await index.aclose()
    """

    def __init__(self, resource: Any, table_name: str, create_table: bool = True):
        """
        Args:
            resource: boto3 DynamoDB service resource (the index takes ownership).
            table_name: Name of the stories table.
            create_table: Create the table on ``initialize()`` if missing.
        """
        self._resource = resource
        self.table_name = table_name
        self._create_table = create_table
        self._table = None
        # boto3 resources are not thread-safe; one worker thread at a time
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Resolve the table, creating it with the author index if needed."""
        try:
            async with self._lock:
                self._table = await asyncio.to_thread(self._ensure_table)
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e) from e
        logger.info(f"DynamoDBIndex initialized (table={self.table_name})")

    def _ensure_table(self):
        table = self._resource.Table(self.table_name)
        try:
            table.load()
            return table
        except ClientError as e:
            if _error_code(e) != "ResourceNotFoundException" or not self._create_table:
                raise

        logger.info(f"Creating DynamoDB table '{self.table_name}'")
        table = self._resource.create_table(
            TableName=self.table_name,
            KeySchema=[
                {"AttributeName": "pk", "KeyType": "HASH"},
                {"AttributeName": "sk", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "pk", "AttributeType": "S"},
                {"AttributeName": "sk", "AttributeType": "S"},
                {"AttributeName": "gsi1pk", "AttributeType": "S"},
                {"AttributeName": "gsi1sk", "AttributeType": "S"},
            ],
            GlobalSecondaryIndexes=[
                {
                    "IndexName": AUTHOR_INDEX,
                    "KeySchema": [
                        {"AttributeName": "gsi1pk", "KeyType": "HASH"},
                        {"AttributeName": "gsi1sk", "KeyType": "RANGE"},
                    ],
                    "Projection": {"ProjectionType": "ALL"},
                }
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        table.wait_until_exists()
        return table

    async def aclose(self) -> None:
        """Close the underlying botocore client."""
        async with self._lock:
            if self._resource is None:
                return
            resource, self._resource = self._resource, None
            self._table = None
            await asyncio.to_thread(resource.meta.client.close)
            logger.debug("Closed DynamoDB client")

    async def _call(self, operation: str, **kwargs) -> dict:
        """Run a blocking table call; conditional-check failures are re-raised as is."""
        if self._table is None:
            raise BackendUnavailable("DynamoDB index is not initialized")
        try:
            async with self._lock:
                return await asyncio.to_thread(getattr(self._table, operation), **kwargs)
        except ClientError as e:
            if _error_code(e) == CONDITIONAL_CHECK_FAILED:
                raise
            raise translate_error(e) from e
        except BotoCoreError as e:
            raise translate_error(e) from e

    @staticmethod
    def _to_item(story: StoryMetadata) -> dict[str, Any]:
        item: dict[str, Any] = {
            **_story_key(story.id),
            "gsi1pk": f"{AUTHOR_PREFIX}{story.author_did}",
            "gsi1sk": to_iso(story.published_at),
            "id": story.id,
            "title": story.title,
            "author_did": story.author_did,
            "author_name": story.author_name,
            "storage_key": story.storage_key,
            "word_count": story.word_count,
            "published_at": to_iso(story.published_at),
            "updated_at": to_iso(story.updated_at),
            "created_at": to_iso(story.created_at),
        }
        if story.excerpt is not None:
            item["excerpt"] = story.excerpt
        if story.tags is not None:
            item["tags"] = list(story.tags)
        return item

    @staticmethod
    def _item_to_metadata(item: dict[str, Any]) -> StoryMetadata:
        return StoryMetadata(
            id=item["id"],
            title=item["title"],
            author_did=item["author_did"],
            author_name=item["author_name"],
            storage_key=item["storage_key"],
            # numbers come back as Decimal
            word_count=int(item["word_count"]),
            excerpt=item.get("excerpt"),
            tags=list(item["tags"]) if item.get("tags") is not None else None,
            published_at=from_iso(item["published_at"]),
            updated_at=from_iso(item["updated_at"]),
            created_at=from_iso(item["created_at"]),
        )

    async def create(self, data: CreateStoryInput) -> StoryMetadata:
        story = data.build(str(uuid.uuid4()))

        try:
            await self._call(
                "put_item",
                Item={**_guard_key(story.storage_key), "story_id": story.id},
                ConditionExpression="attribute_not_exists(pk)",
            )
        except ClientError as e:
            raise ConflictError(
                "A story with this storage key already exists",
                message_debug=f"storage_key={story.storage_key}",
                cause=e,
            ) from e

        try:
            await self._call(
                "put_item",
                Item=self._to_item(story),
                ConditionExpression="attribute_not_exists(pk)",
            )
        except Exception as e:
            # Release the guard so the storage key is not orphaned
            logger.warning(f"Story put failed for {story.id}, releasing storage key guard: {e}")
            try:
                await self._call("delete_item", Key=_guard_key(story.storage_key))
            except ServiceError as release_error:
                logger.error(f"Could not release storage key guard {story.storage_key}: {release_error}")
            if isinstance(e, ClientError):
                raise ConflictError("Generated story id collided", cause=e) from e
            raise

        logger.info(f"Indexed story {story.id} (storage_key={story.storage_key})")
        return story

    async def get(self, story_id: str) -> Optional[StoryMetadata]:
        response = await self._call("get_item", Key=_story_key(story_id))
        item = response.get("Item")
        return self._item_to_metadata(item) if item else None

    async def update(self, story_id: str, data: UpdateStoryInput) -> Optional[StoryMetadata]:
        existing = await self.get(story_id)
        if existing is None:
            return None

        changes = data.changes()
        names: dict[str, str] = {"#updated_at": "updated_at"}
        values: dict[str, Any] = {":updated_at": to_iso(next_updated_at(existing.updated_at))}
        sets = ["#updated_at = :updated_at"]
        removes = []

        for field, value in changes.items():
            names[f"#{field}"] = field
            if value is None:
                removes.append(f"#{field}")
            else:
                values[f":{field}"] = list(value) if field == "tags" else value
                sets.append(f"#{field} = :{field}")

        expression = f"SET {', '.join(sets)}"
        if removes:
            expression += f" REMOVE {', '.join(removes)}"

        try:
            response = await self._call(
                "update_item",
                Key=_story_key(story_id),
                UpdateExpression=expression,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ConditionExpression="attribute_exists(pk)",
                ReturnValues="ALL_NEW",
            )
        except ClientError:
            # Deleted between the read and the write
            return None

        logger.debug(f"Updated story {story_id}: {sorted(changes)}")
        return self._item_to_metadata(response["Attributes"])

    async def delete(self, story_id: str) -> bool:
        response = await self._call(
            "delete_item",
            Key=_story_key(story_id),
            ReturnValues="ALL_OLD",
        )
        old = response.get("Attributes")
        if not old:
            return False

        await self._call("delete_item", Key=_guard_key(old["storage_key"]))
        logger.info(f"Removed story {story_id} from index")
        return True

    async def _scan_items(self) -> list[dict[str, Any]]:
        """Read every story item in the table, following pagination."""
        items: list[dict[str, Any]] = []
        kwargs: dict[str, Any] = {}
        while True:
            response = await self._call("scan", **kwargs)
            items.extend(
                item for item in response.get("Items", []) if item["pk"].startswith(STORY_PREFIX)
            )
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    async def _author_items(self, author_did: str) -> list[dict[str, Any]]:
        """Read an author's whole partition from the author index."""
        items: list[dict[str, Any]] = []
        kwargs: dict[str, Any] = {
            "IndexName": AUTHOR_INDEX,
            "KeyConditionExpression": Key("gsi1pk").eq(f"{AUTHOR_PREFIX}{author_did}"),
        }
        while True:
            response = await self._call("query", **kwargs)
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    async def _candidates(self, author_did: Optional[str]) -> list[StoryMetadata]:
        items = await self._author_items(author_did) if author_did else await self._scan_items()
        return [self._item_to_metadata(item) for item in items]

    async def query(self, options: Optional[QueryOptions] = None) -> QueryResult:
        options = resolve_query_options(options)
        candidates = await self._candidates(options.author_did)
        matching = [story for story in candidates if matches_query(story, options)]
        ordered = sort_stories(matching, options.sort_by, options.sort_order)
        return paginate(ordered, options.offset, options.limit)

    async def list_by_author(
        self, author_did: str, options: Optional[QueryOptions] = None
    ) -> QueryResult:
        return await self.query(resolve_query_options(options, author_did=author_did))

    async def search(self, options: SearchOptions) -> QueryResult:
        candidates = await self._candidates(options.author_did)
        matching = [story for story in candidates if matches_search(story, options)]
        ordered = sort_stories(matching, SortField.PUBLISHED_AT, SortOrder.DESC)
        return paginate(ordered, options.offset, options.limit)

    async def count(self, options: Optional[QueryOptions] = None) -> int:
        options = resolve_query_options(options)

        if options.author_did and not options.tags:
            # Count on the author partition without transferring items
            total = 0
            kwargs: dict[str, Any] = {
                "IndexName": AUTHOR_INDEX,
                "KeyConditionExpression": Key("gsi1pk").eq(f"{AUTHOR_PREFIX}{options.author_did}"),
                "Select": "COUNT",
            }
            while True:
                response = await self._call("query", **kwargs)
                total += response.get("Count", 0)
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    return total
                kwargs["ExclusiveStartKey"] = last_key

        candidates = await self._candidates(options.author_did)
        return sum(1 for story in candidates if matches_query(story, options))
