"""
Backend selector for the story storage core.

This module provides:
- IndexBackendKind / ContentBackendKind: supported backend identifiers
- create_backends: build, initialize and return both capability interfaces
- open_backends: async context manager that also closes them

Backends are chosen from Settings. Required parameters are checked and
eager initialization (schema/table creation, bucket check) is run here,
so misconfiguration fails at startup rather than on first use.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator

from loguru import logger

from thousand_core.config import Settings, settings as default_settings
from thousand_core.domain.interfaces import ContentStore, MetadataIndex
from thousand_core.runtime.errors import ConfigurationError


class IndexBackendKind(str, Enum):
    SQLITE = "sqlite"
    POSTGRES = "postgres"
    DYNAMODB = "dynamodb"


class ContentBackendKind(str, Enum):
    S3 = "s3"
    LOCAL = "local"


@dataclass
class StoryBackends:
    """The selected index and content store, closed together."""

    index: MetadataIndex
    store: ContentStore

    async def aclose(self) -> None:
        try:
            await self.index.aclose()
        finally:
            await self.store.aclose()
        logger.info("Story backends closed")


def _require(config: Settings, *names: str) -> None:
    missing = [name for name in names if not getattr(config, name, None)]
    if missing:
        raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")


def _kind(enum_cls: type[Enum], value: str, setting: str):
    try:
        return enum_cls(value.lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ConfigurationError(f"Unknown {setting} '{value}' (expected one of: {allowed})") from None


async def create_index(config: Settings) -> MetadataIndex:
    """Build and initialize the configured metadata index."""
    kind = _kind(IndexBackendKind, config.INDEX_BACKEND, "INDEX_BACKEND")

    if kind == IndexBackendKind.SQLITE:
        from .sqlite_index import SQLiteIndex

        _require(config, "SQLITE_PATH")
        index = SQLiteIndex(config.SQLITE_PATH)

    elif kind == IndexBackendKind.POSTGRES:
        from .postgres_index import PostgresIndex

        _require(config, "POSTGRES_DSN")
        index = PostgresIndex(
            dsn=config.POSTGRES_DSN,
            table_name=config.POSTGRES_TABLE,
            min_size=config.POSTGRES_POOL_MIN_SIZE,
            max_size=config.POSTGRES_POOL_MAX_SIZE,
            connect_timeout=config.POSTGRES_CONNECT_TIMEOUT,
        )

    else:
        from thousand_core.infrastructure.dynamodb import create_dynamodb_resource

        from .dynamodb_index import DynamoDBIndex

        _require(config, "DYNAMODB_TABLE", "DYNAMODB_REGION")
        resource = create_dynamodb_resource(
            region=config.DYNAMODB_REGION,
            endpoint=config.DYNAMODB_ENDPOINT,
            access_key_id=config.AWS_ACCESS_KEY_ID,
            secret_access_key=config.AWS_SECRET_ACCESS_KEY,
        )
        index = DynamoDBIndex(resource, config.DYNAMODB_TABLE)

    await index.initialize()
    logger.info(f"Using {type(index).__name__} metadata index")
    return index


async def create_store(config: Settings) -> ContentStore:
    """Build and initialize the configured content store."""
    kind = _kind(ContentBackendKind, config.CONTENT_BACKEND, "CONTENT_BACKEND")

    if kind == ContentBackendKind.LOCAL:
        from .local_content import LocalContentStore

        _require(config, "LOCAL_STORAGE_PATH")
        store = LocalContentStore(base_path=config.LOCAL_STORAGE_PATH)

    else:
        from thousand_core.infrastructure.minio import create_http_pool, create_minio_client

        from .content_store import S3ContentStore

        _require(config, "S3_BUCKET", "S3_ENDPOINT")
        http_client = create_http_pool()
        client = create_minio_client(
            endpoint=config.S3_ENDPOINT,
            access_key=config.S3_ACCESS_KEY,
            secret_key=config.S3_SECRET_KEY,
            secure=config.S3_SECURE,
            region=config.S3_REGION,
            http_client=http_client,
        )
        store = S3ContentStore(
            client, bucket=config.S3_BUCKET, prefix=config.S3_PREFIX, http_client=http_client
        )

    await store.initialize()
    logger.info(f"Using {type(store).__name__} content store")
    return store


async def create_backends(config: Settings | None = None) -> StoryBackends:
    """
    Build both backends from configuration.

    Args:
        config: Settings to read; defaults to the process settings.

    Returns:
        StoryBackends: Initialized index and store. Call ``aclose()`` when done.

    Raises:
        ConfigurationError: Unknown backend kind or missing parameters.
        BackendUnavailable: A backend could not be reached during initialization.
    """
    config = config or default_settings
    index = await create_index(config)
    try:
        store = await create_store(config)
    except Exception:
        await index.aclose()
        raise
    return StoryBackends(index=index, store=store)


@asynccontextmanager
async def open_backends(config: Settings | None = None) -> AsyncIterator[StoryBackends]:
    """
    Scoped backends: initialized on entry, closed on exit.

    Usage:
        async with open_backends(settings) as backends:
            service = StoryService(backends.index, backends.store)
    """
    backends = await create_backends(config)
    try:
        yield backends
    finally:
        await backends.aclose()
