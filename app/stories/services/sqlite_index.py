"""
SQLite metadata index backend.

Embedded index for local development and small deployments. The sqlite3
module is blocking, so every statement runs in a worker thread; a lock
keeps the single connection to one statement batch at a time.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import uuid
from typing import Any, Callable, Optional

from loguru import logger

from thousand_core.domain.stories import (
    CreateStoryInput,
    QueryOptions,
    QueryResult,
    SearchOptions,
    StoryMetadata,
    UpdateStoryInput,
    from_iso,
    next_updated_at,
    to_iso,
)
from thousand_core.infrastructure.sqlite import connect_sqlite
from thousand_core.runtime.errors import (
    BackendUnavailable,
    ConflictError,
    ErrorCode,
    IOFailure,
)

from .query_support import SORT_COLUMNS, resolve_query_options

SCHEMA = """
CREATE TABLE IF NOT EXISTS stories (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    author_did TEXT NOT NULL,
    author_name TEXT NOT NULL,
    storage_key TEXT NOT NULL UNIQUE,
    word_count INTEGER NOT NULL,
    excerpt TEXT,
    tags TEXT,
    published_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_stories_author_did ON stories(author_did);
CREATE INDEX IF NOT EXISTS idx_stories_published_at ON stories(published_at);
CREATE INDEX IF NOT EXISTS idx_stories_title ON stories(title);
"""

COLUMNS = (
    "id, title, author_did, author_name, storage_key, word_count, "
    "excerpt, tags, published_at, updated_at, created_at"
)

# Timestamps are stored as fixed-width ISO strings
_TIMESTAMP_FIELDS = ("published_at", "updated_at", "created_at")


class SQLiteIndex:
    """
    Metadata index stored in a single SQLite file.

    Tags are kept as a JSON array and matched element-wise with
    ``json_each``; search uses a Unicode-aware lower() so case folding
    agrees with the other backends.

    Usage:
        index = SQLiteIndex("data/stories.db")
        await index.initialize()
        story = await index.create(CreateStoryInput(...))
        await index.aclose()
    """

    def __init__(self, db_path: str):
        """
        Args:
            db_path: Path to the database file, or ":memory:".
        """
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open the database and create the schema if needed."""
        if self._conn is not None:
            return

        def _open() -> sqlite3.Connection:
            conn = connect_sqlite(self.db_path)
            conn.executescript(SCHEMA)
            return conn

        try:
            self._conn = await asyncio.to_thread(_open)
        except sqlite3.Error as e:
            raise BackendUnavailable(
                f"SQLite database at '{self.db_path}' is unavailable",
                message_debug=str(e),
                cause=e,
            ) from e
        logger.info(f"SQLiteIndex initialized at {self.db_path}")

    async def aclose(self) -> None:
        """Close the database connection."""
        async with self._lock:
            if self._conn is not None:
                conn, self._conn = self._conn, None
                await asyncio.to_thread(conn.close)
                logger.debug(f"Closed SQLite database at {self.db_path}")

    async def _run(self, fn: Callable[[sqlite3.Connection], Any]) -> Any:
        if self._conn is None:
            raise BackendUnavailable("SQLite index is not initialized")
        async with self._lock:
            try:
                return await asyncio.to_thread(fn, self._conn)
            except sqlite3.IntegrityError as e:
                if "UNIQUE" in str(e):
                    raise ConflictError(
                        "A story with this storage key already exists",
                        message_debug=str(e),
                        cause=e,
                    ) from e
                raise IOFailure("SQLite rejected the write", message_debug=str(e), cause=e) from e
            except sqlite3.OperationalError as e:
                raise BackendUnavailable(
                    "SQLite database is unavailable", message_debug=str(e), cause=e
                ) from e
            except sqlite3.Error as e:
                raise IOFailure(
                    "SQLite operation failed",
                    message_debug=str(e),
                    cause=e,
                    code=ErrorCode.STORAGE_READ_ERROR,
                ) from e

    @staticmethod
    def _row_to_metadata(row: sqlite3.Row) -> StoryMetadata:
        return StoryMetadata(
            id=row["id"],
            title=row["title"],
            author_did=row["author_did"],
            author_name=row["author_name"],
            storage_key=row["storage_key"],
            word_count=row["word_count"],
            excerpt=row["excerpt"],
            tags=json.loads(row["tags"]) if row["tags"] is not None else None,
            published_at=from_iso(row["published_at"]),
            updated_at=from_iso(row["updated_at"]),
            created_at=from_iso(row["created_at"]),
        )

    @staticmethod
    def _fetch(conn: sqlite3.Connection, story_id: str) -> Optional[StoryMetadata]:
        row = conn.execute(f"SELECT {COLUMNS} FROM stories WHERE id = ?", (story_id,)).fetchone()
        return SQLiteIndex._row_to_metadata(row) if row else None

    async def create(self, data: CreateStoryInput) -> StoryMetadata:
        story = data.build(str(uuid.uuid4()))

        def _insert(conn: sqlite3.Connection) -> None:
            conn.execute(
                f"INSERT INTO stories ({COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    story.id,
                    story.title,
                    story.author_did,
                    story.author_name,
                    story.storage_key,
                    story.word_count,
                    story.excerpt,
                    json.dumps(story.tags) if story.tags is not None else None,
                    to_iso(story.published_at),
                    to_iso(story.updated_at),
                    to_iso(story.created_at),
                ),
            )

        await self._run(_insert)
        logger.info(f"Indexed story {story.id} (storage_key={story.storage_key})")
        return story

    async def get(self, story_id: str) -> Optional[StoryMetadata]:
        return await self._run(lambda conn: self._fetch(conn, story_id))

    async def update(self, story_id: str, data: UpdateStoryInput) -> Optional[StoryMetadata]:
        changes = data.changes()

        def _update(conn: sqlite3.Connection) -> Optional[StoryMetadata]:
            existing = self._fetch(conn, story_id)
            if existing is None:
                return None

            assignments = []
            values: list[Any] = []
            for field, value in changes.items():
                if field == "tags" and value is not None:
                    value = json.dumps(value)
                assignments.append(f"{field} = ?")
                values.append(value)

            assignments.append("updated_at = ?")
            values.append(to_iso(next_updated_at(existing.updated_at)))
            values.append(story_id)

            conn.execute(f"UPDATE stories SET {', '.join(assignments)} WHERE id = ?", values)
            return self._fetch(conn, story_id)

        updated = await self._run(_update)
        if updated is not None:
            logger.debug(f"Updated story {story_id}: {sorted(changes)}")
        return updated

    async def delete(self, story_id: str) -> bool:
        def _delete(conn: sqlite3.Connection) -> bool:
            return conn.execute("DELETE FROM stories WHERE id = ?", (story_id,)).rowcount > 0

        deleted = await self._run(_delete)
        if deleted:
            logger.info(f"Removed story {story_id} from index")
        return deleted

    @staticmethod
    def _filters(options: QueryOptions) -> tuple[str, list[Any]]:
        conditions: list[str] = []
        values: list[Any] = []

        if options.author_did:
            conditions.append("author_did = ?")
            values.append(options.author_did)

        for tag in options.tags or []:
            conditions.append(
                "EXISTS (SELECT 1 FROM json_each(stories.tags) WHERE json_each.value = ?)"
            )
            values.append(tag)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        return where, values

    def _select_page(
        self,
        where: str,
        values: list[Any],
        order_by: str,
        limit: int,
        offset: int,
    ) -> Callable[[sqlite3.Connection], tuple[list[StoryMetadata], int]]:
        def _select(conn: sqlite3.Connection) -> tuple[list[StoryMetadata], int]:
            total = conn.execute(f"SELECT COUNT(*) FROM stories {where}", values).fetchone()[0]
            rows = conn.execute(
                f"SELECT {COLUMNS} FROM stories {where} ORDER BY {order_by} LIMIT ? OFFSET ?",
                [*values, limit, offset],
            ).fetchall()
            return [self._row_to_metadata(row) for row in rows], total

        return _select

    async def query(self, options: Optional[QueryOptions] = None) -> QueryResult:
        options = resolve_query_options(options)
        where, values = self._filters(options)
        order_by = f"{SORT_COLUMNS[options.sort_by]} {options.sort_order.value.upper()}, id ASC"

        stories, total = await self._run(
            self._select_page(where, values, order_by, options.limit, options.offset)
        )
        return QueryResult.page(stories, total=total, offset=options.offset)

    async def list_by_author(
        self, author_did: str, options: Optional[QueryOptions] = None
    ) -> QueryResult:
        return await self.query(resolve_query_options(options, author_did=author_did))

    async def search(self, options: SearchOptions) -> QueryResult:
        needle = options.query.lower()
        conditions = [
            "(instr(py_lower(title), ?) > 0 OR instr(py_lower(coalesce(excerpt, '')), ?) > 0)"
        ]
        values: list[Any] = [needle, needle]

        if options.author_did:
            conditions.append("author_did = ?")
            values.append(options.author_did)

        where = f"WHERE {' AND '.join(conditions)}"
        stories, total = await self._run(
            self._select_page(where, values, "published_at DESC, id ASC", options.limit, options.offset)
        )
        return QueryResult.page(stories, total=total, offset=options.offset)

    async def count(self, options: Optional[QueryOptions] = None) -> int:
        where, values = self._filters(resolve_query_options(options))
        return await self._run(
            lambda conn: conn.execute(f"SELECT COUNT(*) FROM stories {where}", values).fetchone()[0]
        )
