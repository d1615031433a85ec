"""
Object storage content store.

This module provides:
- S3ContentStore: story text in an S3-compatible bucket via the MinIO SDK

The backend is selected by the backend selector (see backends.py).
"""

from __future__ import annotations

import asyncio
import io
from datetime import datetime, timezone
from itertools import islice
from typing import Any, Callable, Optional

import urllib3
from loguru import logger
from minio import Minio
from minio.error import MinioException, S3Error, ServerError

from thousand_core.domain.stories import (
    DEFAULT_CONTENT_TYPE,
    ListOptions,
    ListResult,
    PutOptions,
    StoryFileMetadata,
)
from thousand_core.runtime.errors import (
    BackendUnavailable,
    ErrorCode,
    IOFailure,
    ServiceError,
)

NOT_FOUND_CODES = {"NoSuchKey", "NoSuchObject", "ResourceNotFound"}


def translate_error(error: Exception, action: str, code: str = ErrorCode.STORAGE_READ_ERROR) -> ServiceError:
    """Map MinIO/urllib3 exceptions to the service error hierarchy."""
    if isinstance(error, (ServerError, urllib3.exceptions.HTTPError)):
        return BackendUnavailable(
            f"Object storage is unavailable while trying to {action}",
            message_debug=str(error),
            cause=error,
            code=ErrorCode.STORAGE_UNAVAILABLE,
        )
    return IOFailure(f"Object storage failed to {action}", message_debug=str(error), cause=error, code=code)


def _is_not_found(error: Exception) -> bool:
    return isinstance(error, S3Error) and error.code in NOT_FOUND_CODES


class S3ContentStore:
    """
    S3-compatible content store.

    Stores each story as one object in a bucket, optionally under a key
    prefix. The MinIO SDK is blocking, so calls run in worker threads.
    Listing uses ``start_after`` with the last returned object name as the
    continuation token.

    Usage:
        client = create_minio_client("localhost:9000", "minioadmin", "minioadmin", secure=False)
        store = S3ContentStore(client, bucket="stories")
        await store.initialize()
        await store.put("stories/alice/abc.md", "# Title\n...")
    """

    def __init__(
        self,
        client: Minio,
        bucket: str,
        prefix: str = "",
        http_client: urllib3.PoolManager | None = None,
        create_bucket: bool = True,
    ):
        """
        Args:
            client: MinIO client (the store takes ownership).
            bucket: Bucket holding story objects.
            prefix: Optional key prefix for every object.
            http_client: The client's HTTP pool, cleared on ``aclose()``.
            create_bucket: Create the bucket on ``initialize()`` if missing.
        """
        self._client = client
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self._http_client = http_client
        self._create_bucket = create_bucket

    async def initialize(self) -> None:
        """Check the bucket, creating it if allowed."""

        def _ensure_bucket() -> None:
            if self._client.bucket_exists(bucket_name=self.bucket):
                return
            if not self._create_bucket:
                raise IOFailure(f"Bucket '{self.bucket}' does not exist")
            self._client.make_bucket(bucket_name=self.bucket)
            logger.info(f"Created bucket '{self.bucket}'")

        await self._call(_ensure_bucket, action="check the bucket")
        logger.info(f"S3ContentStore initialized (bucket={self.bucket}, prefix={self.prefix or '-'})")

    async def aclose(self) -> None:
        """Release pooled HTTP connections."""
        if self._http_client is not None:
            self._http_client.clear()
            self._http_client = None
        logger.debug(f"Closed S3ContentStore for bucket '{self.bucket}'")

    async def _call(
        self, fn: Callable[..., Any], *args, action: str, code: str = ErrorCode.STORAGE_READ_ERROR, **kwargs
    ) -> Any:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except S3Error as e:
            if _is_not_found(e):
                raise
            raise translate_error(e, action, code) from e
        except (MinioException, urllib3.exceptions.HTTPError, ValueError) as e:
            raise translate_error(e, action, code) from e

    def _full_key(self, key: str) -> str:
        return f"{self.prefix}/{key}" if self.prefix else key

    def _strip_prefix(self, object_name: str) -> str:
        if self.prefix and object_name.startswith(f"{self.prefix}/"):
            return object_name[len(self.prefix) + 1:]
        return object_name

    async def get(self, key: str) -> Optional[str]:
        def _read() -> bytes:
            response = self._client.get_object(bucket_name=self.bucket, object_name=self._full_key(key))
            try:
                return response.read()
            finally:
                response.close()
                response.release_conn()

        try:
            data = await self._call(_read, action=f"read {key}")
        except S3Error:
            return None

        logger.debug(f"Downloaded {self.bucket}/{self._full_key(key)}")
        return data.decode("utf-8")

    async def put(self, key: str, content: str, options: Optional[PutOptions] = None) -> None:
        options = options or PutOptions()
        data = content.encode("utf-8")

        await self._call(
            self._client.put_object,
            bucket_name=self.bucket,
            object_name=self._full_key(key),
            data=io.BytesIO(data),
            length=len(data),
            content_type=options.content_type or DEFAULT_CONTENT_TYPE,
            metadata=options.metadata or None,
            action=f"write {key}",
            code=ErrorCode.STORAGE_WRITE_ERROR,
        )
        logger.info(f"Uploaded {self.bucket}/{self._full_key(key)} ({len(data)} bytes)")

    async def delete(self, key: str) -> bool:
        # S3 deletes succeed for missing keys, so check first
        if not await self.exists(key):
            return False

        await self._call(
            self._client.remove_object,
            bucket_name=self.bucket,
            object_name=self._full_key(key),
            action=f"delete {key}",
            code=ErrorCode.STORAGE_WRITE_ERROR,
        )
        logger.info(f"Deleted {self.bucket}/{self._full_key(key)}")
        return True

    async def list(self, options: Optional[ListOptions] = None) -> ListResult:
        options = options or ListOptions()
        if options.prefix:
            prefix = self._full_key(options.prefix)
        else:
            prefix = f"{self.prefix}/" if self.prefix else None

        def _list_page() -> list:
            objects = self._client.list_objects(
                bucket_name=self.bucket,
                prefix=prefix,
                recursive=True,
                start_after=options.continuation_token,
            )
            # One extra object tells us whether another page exists
            return [obj for obj in islice(objects, options.max_results + 1) if not obj.is_dir]

        objects = await self._call(_list_page, action="list objects")
        page = objects[: options.max_results]
        has_more = len(objects) > len(page)

        files = [
            StoryFileMetadata(
                key=self._strip_prefix(obj.object_name),
                size=obj.size or 0,
                # listings do not carry content types
                content_type=DEFAULT_CONTENT_TYPE,
                last_modified=obj.last_modified or datetime.now(timezone.utc),
                etag=obj.etag,
            )
            for obj in page
        ]
        return ListResult(
            files=files,
            continuation_token=page[-1].object_name if has_more else None,
            has_more=has_more,
        )

    async def _stat(self, key: str):
        try:
            return await self._call(
                self._client.stat_object,
                bucket_name=self.bucket,
                object_name=self._full_key(key),
                action=f"stat {key}",
            )
        except S3Error:
            return None

    async def exists(self, key: str) -> bool:
        return await self._stat(key) is not None

    async def get_metadata(self, key: str) -> Optional[StoryFileMetadata]:
        stat = await self._stat(key)
        if stat is None:
            return None
        return StoryFileMetadata(
            key=key,
            size=stat.size or 0,
            content_type=stat.content_type or DEFAULT_CONTENT_TYPE,
            last_modified=stat.last_modified or datetime.now(timezone.utc),
            etag=stat.etag,
        )
