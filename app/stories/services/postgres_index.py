"""
PostgreSQL metadata index backend.

Production index on PostgreSQL using psycopg 3's async connection pool.
Tags are a native TEXT[] column matched with array containment, and
titles sort with the "C" collation so ordering is by code point like the
other backends.
"""

from __future__ import annotations

import re
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import psycopg
from loguru import logger
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool, PoolTimeout

from thousand_core.domain.stories import (
    CreateStoryInput,
    QueryOptions,
    QueryResult,
    SearchOptions,
    SortField,
    StoryMetadata,
    UpdateStoryInput,
    utcnow,
)
from thousand_core.infrastructure.postgres import open_pool
from thousand_core.runtime.errors import (
    BackendUnavailable,
    ConfigurationError,
    ConflictError,
    IOFailure,
)

from .query_support import SORT_COLUMNS, resolve_query_options

_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")

COLUMNS = (
    "id, title, author_did, author_name, storage_key, word_count, "
    "excerpt, tags, published_at, updated_at, created_at"
)


class PostgresIndex:
    """
    Metadata index stored in a PostgreSQL table.

    The instance owns one connection pool for its lifetime. The schema is
    created on ``initialize()`` so connectivity problems surface at startup.

    Usage:
        index = PostgresIndex(dsn=settings.POSTGRES_DSN)
        await index.initialize()
        result = await index.query(QueryOptions(author_did="did:plc:abc"))
        await index.aclose()
    """

    def __init__(
        self,
        dsn: str | None = None,
        table_name: str = "stories",
        pool: AsyncConnectionPool | None = None,
        min_size: int = 1,
        max_size: int = 10,
        connect_timeout: float = 10.0,
    ):
        """
        Args:
            dsn: Connection string; required unless ``pool`` is given.
            table_name: Table holding story records.
            pool: Optional pre-built pool (the index takes ownership).
            min_size: Minimum pool size.
            max_size: Maximum pool size.
            connect_timeout: Seconds to wait for the first connection.
        """
        if not _TABLE_NAME.match(table_name):
            raise ConfigurationError(f"Invalid PostgreSQL table name: {table_name!r}")
        if pool is None and not dsn:
            raise ConfigurationError("POSTGRES_DSN is required for the postgres index")

        self.table = table_name
        self._dsn = dsn
        self._pool = pool
        self._min_size = min_size
        self._max_size = max_size
        self._connect_timeout = connect_timeout

    def _schema(self) -> list[str]:
        t = self.table
        return [
            f"""
            CREATE TABLE IF NOT EXISTS {t} (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                author_did TEXT NOT NULL,
                author_name TEXT NOT NULL,
                storage_key TEXT NOT NULL UNIQUE,
                word_count INTEGER NOT NULL,
                excerpt TEXT,
                tags TEXT[],
                published_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """,
            f"CREATE INDEX IF NOT EXISTS idx_{t}_author_did ON {t}(author_did)",
            f"CREATE INDEX IF NOT EXISTS idx_{t}_published_at ON {t}(published_at)",
            f"CREATE INDEX IF NOT EXISTS idx_{t}_tags ON {t} USING GIN (tags)",
        ]

    async def initialize(self) -> None:
        """Open the pool (if needed) and create the table and indexes."""
        if self._pool is None:
            self._pool = await open_pool(
                self._dsn,
                min_size=self._min_size,
                max_size=self._max_size,
                timeout=self._connect_timeout,
            )

        async with self._cursor() as cur:
            for statement in self._schema():
                await cur.execute(statement)

        logger.info(f"PostgresIndex initialized (table={self.table})")

    async def aclose(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            pool, self._pool = self._pool, None
            await pool.close()
            logger.debug("Closed PostgreSQL pool")

    @asynccontextmanager
    async def _cursor(self) -> AsyncIterator[psycopg.AsyncCursor]:
        """Yield a dict-row cursor in a transaction, translating driver errors."""
        if self._pool is None:
            raise BackendUnavailable("PostgreSQL index is not initialized")
        try:
            async with self._pool.connection() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    yield cur
        except psycopg.errors.UniqueViolation as e:
            raise ConflictError(
                "A story with this storage key already exists",
                message_debug=str(e),
                cause=e,
            ) from e
        except (psycopg.OperationalError, PoolTimeout) as e:
            raise BackendUnavailable(
                "PostgreSQL is unavailable", message_debug=str(e), cause=e
            ) from e
        except psycopg.Error as e:
            raise IOFailure("PostgreSQL operation failed", message_debug=str(e), cause=e) from e

    @staticmethod
    def _row_to_metadata(row: dict[str, Any]) -> StoryMetadata:
        return StoryMetadata(
            id=row["id"],
            title=row["title"],
            author_did=row["author_did"],
            author_name=row["author_name"],
            storage_key=row["storage_key"],
            word_count=row["word_count"],
            excerpt=row["excerpt"],
            tags=list(row["tags"]) if row["tags"] is not None else None,
            published_at=row["published_at"],
            updated_at=row["updated_at"],
            created_at=row["created_at"],
        )

    async def create(self, data: CreateStoryInput) -> StoryMetadata:
        story = data.build(str(uuid.uuid4()))

        async with self._cursor() as cur:
            await cur.execute(
                f"""
                INSERT INTO {self.table} ({COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {COLUMNS}
                """,
                (
                    story.id,
                    story.title,
                    story.author_did,
                    story.author_name,
                    story.storage_key,
                    story.word_count,
                    story.excerpt,
                    story.tags,
                    story.published_at,
                    story.updated_at,
                    story.created_at,
                ),
            )
            row = await cur.fetchone()

        logger.info(f"Indexed story {story.id} (storage_key={story.storage_key})")
        return self._row_to_metadata(row)

    async def get(self, story_id: str) -> Optional[StoryMetadata]:
        async with self._cursor() as cur:
            await cur.execute(f"SELECT {COLUMNS} FROM {self.table} WHERE id = %s", (story_id,))
            row = await cur.fetchone()

        return self._row_to_metadata(row) if row else None

    async def update(self, story_id: str, data: UpdateStoryInput) -> Optional[StoryMetadata]:
        changes = data.changes()
        assignments = [f"{field} = %s" for field in changes]
        values: list[Any] = list(changes.values())

        # Strictly after the stored value even within one clock tick
        assignments.append("updated_at = GREATEST(%s, updated_at + interval '1 microsecond')")
        values.extend([utcnow(), story_id])

        async with self._cursor() as cur:
            await cur.execute(
                f"""
                UPDATE {self.table} SET {', '.join(assignments)}
                WHERE id = %s
                RETURNING {COLUMNS}
                """,
                values,
            )
            row = await cur.fetchone()

        if row is None:
            return None
        logger.debug(f"Updated story {story_id}: {sorted(changes)}")
        return self._row_to_metadata(row)

    async def delete(self, story_id: str) -> bool:
        async with self._cursor() as cur:
            await cur.execute(f"DELETE FROM {self.table} WHERE id = %s", (story_id,))
            deleted = cur.rowcount > 0

        if deleted:
            logger.info(f"Removed story {story_id} from index")
        return deleted

    @staticmethod
    def _filters(options: QueryOptions) -> tuple[str, list[Any]]:
        conditions: list[str] = []
        values: list[Any] = []

        if options.author_did:
            conditions.append("author_did = %s")
            values.append(options.author_did)

        if options.tags:
            conditions.append("tags @> %s::text[]")
            values.append(options.tags)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        return where, values

    async def _select_page(
        self, where: str, values: list[Any], order_by: str, limit: int, offset: int
    ) -> tuple[list[StoryMetadata], int]:
        async with self._cursor() as cur:
            await cur.execute(f"SELECT COUNT(*) AS count FROM {self.table} {where}", values)
            total = (await cur.fetchone())["count"]

            await cur.execute(
                f"""
                SELECT {COLUMNS} FROM {self.table} {where}
                ORDER BY {order_by}
                LIMIT %s OFFSET %s
                """,
                [*values, limit, offset],
            )
            rows = await cur.fetchall()

        return [self._row_to_metadata(row) for row in rows], total

    async def query(self, options: Optional[QueryOptions] = None) -> QueryResult:
        options = resolve_query_options(options)
        where, values = self._filters(options)

        column = SORT_COLUMNS[options.sort_by]
        if options.sort_by == SortField.TITLE:
            column = f'{column} COLLATE "C"'
        order_by = f'{column} {options.sort_order.value.upper()}, id COLLATE "C" ASC'

        stories, total = await self._select_page(
            where, values, order_by, options.limit, options.offset
        )
        return QueryResult.page(stories, total=total, offset=options.offset)

    async def list_by_author(
        self, author_did: str, options: Optional[QueryOptions] = None
    ) -> QueryResult:
        return await self.query(resolve_query_options(options, author_did=author_did))

    async def search(self, options: SearchOptions) -> QueryResult:
        needle = options.query.lower()
        conditions = [
            "(strpos(lower(title), %s) > 0 OR strpos(lower(coalesce(excerpt, '')), %s) > 0)"
        ]
        values: list[Any] = [needle, needle]

        if options.author_did:
            conditions.append("author_did = %s")
            values.append(options.author_did)

        where = f"WHERE {' AND '.join(conditions)}"
        stories, total = await self._select_page(
            where, values, 'published_at DESC, id COLLATE "C" ASC', options.limit, options.offset
        )
        return QueryResult.page(stories, total=total, offset=options.offset)

    async def count(self, options: Optional[QueryOptions] = None) -> int:
        where, values = self._filters(resolve_query_options(options))
        async with self._cursor() as cur:
            await cur.execute(f"SELECT COUNT(*) AS count FROM {self.table} {where}", values)
            row = await cur.fetchone()
        return row["count"]
