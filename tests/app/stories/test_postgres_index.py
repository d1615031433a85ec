"""
Unit tests for the PostgreSQL metadata index with a mocked connection pool.

Behavior against a live database is covered by the shared contract tests
when TEST_POSTGRES_DSN is set; these tests check the SQL sent and how
driver errors are translated.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import psycopg
import pytest

from app.stories.services.postgres_index import PostgresIndex
from thousand_core.domain.stories import (
    QueryOptions,
    SearchOptions,
    SortField,
    SortOrder,
    UpdateStoryInput,
)
from thousand_core.runtime.errors import (
    BackendUnavailable,
    ConfigurationError,
    ConflictError,
    IOFailure,
)

from tests.app.stories.fakes import make_input

NOW = datetime(2024, 1, 13, 12, 0, tzinfo=timezone.utc)


def story_row(**overrides) -> dict:
    row = {
        "id": "story-1",
        "title": "Digital Ghosts",
        "author_did": "did:plc:alice",
        "author_name": "Alice",
        "storage_key": "stories/alice/1.md",
        "word_count": 975,
        "excerpt": None,
        "tags": ["fiction"],
        "published_at": NOW,
        "updated_at": NOW,
        "created_at": NOW,
    }
    row.update(overrides)
    return row


def _async_context(value):
    context = MagicMock()
    context.__aenter__.return_value = value
    context.__aexit__.return_value = False
    return context


@pytest.fixture
def cursor():
    cur = MagicMock()
    cur.execute = AsyncMock()
    cur.fetchone = AsyncMock(return_value=story_row())
    cur.fetchall = AsyncMock(return_value=[])
    cur.rowcount = 1
    return cur


@pytest.fixture
def pool(cursor):
    conn = MagicMock()
    conn.cursor.return_value = _async_context(cursor)
    pool = MagicMock()
    pool.connection.return_value = _async_context(conn)
    pool.close = AsyncMock()
    return pool


@pytest.fixture
def index(pool):
    return PostgresIndex(pool=pool)


def executed_sql(cursor) -> list[str]:
    return [" ".join(c.args[0].split()) for c in cursor.execute.call_args_list]


class TestConstruction:
    def test_rejects_unsafe_table_name(self, pool):
        with pytest.raises(ConfigurationError):
            PostgresIndex(pool=pool, table_name="stories; DROP TABLE users")

    def test_requires_dsn_or_pool(self):
        with pytest.raises(ConfigurationError):
            PostgresIndex(dsn="")

    @pytest.mark.asyncio
    async def test_initialize_creates_schema(self, index, cursor):
        await index.initialize()

        statements = executed_sql(cursor)
        assert statements[0].startswith("CREATE TABLE IF NOT EXISTS stories")
        assert "storage_key TEXT NOT NULL UNIQUE" in statements[0]
        assert any("USING GIN (tags)" in s for s in statements)

    @pytest.mark.asyncio
    async def test_initialize_opens_pool_from_dsn(self, pool):
        with patch(
            "app.stories.services.postgres_index.open_pool", AsyncMock(return_value=pool)
        ) as mock_open:
            index = PostgresIndex(dsn="postgresql://localhost/stories", max_size=4)
            await index.initialize()

        assert mock_open.call_args[0][0] == "postgresql://localhost/stories"
        assert mock_open.call_args[1]["max_size"] == 4

    @pytest.mark.asyncio
    async def test_aclose_closes_pool(self, index, pool):
        await index.aclose()

        pool.close.assert_awaited_once()
        with pytest.raises(BackendUnavailable):
            await index.get("story-1")


class TestWrites:
    @pytest.mark.asyncio
    async def test_create_inserts_and_returns_row(self, index, cursor):
        story = await index.create(make_input(storage_key="stories/alice/1.md"))

        sql = executed_sql(cursor)[0]
        assert sql.startswith("INSERT INTO stories")
        assert "RETURNING" in sql
        assert story.storage_key == "stories/alice/1.md"

    @pytest.mark.asyncio
    async def test_unique_violation_is_conflict(self, index, cursor):
        cursor.execute.side_effect = psycopg.errors.UniqueViolation("duplicate key value")

        with pytest.raises(ConflictError):
            await index.create(make_input())

    @pytest.mark.asyncio
    async def test_operational_error_is_unavailable(self, index, cursor):
        cursor.execute.side_effect = psycopg.OperationalError("server closed the connection")

        with pytest.raises(BackendUnavailable):
            await index.get("story-1")

    @pytest.mark.asyncio
    async def test_other_driver_errors_are_io_failures(self, index, cursor):
        cursor.execute.side_effect = psycopg.errors.UndefinedTable("relation does not exist")

        with pytest.raises(IOFailure):
            await index.get("story-1")

    @pytest.mark.asyncio
    async def test_update_bumps_updated_at_monotonically(self, index, cursor):
        await index.update("story-1", UpdateStoryInput(title="New", excerpt=None))

        sql = executed_sql(cursor)[0]
        assert "title = %s" in sql
        assert "excerpt = %s" in sql
        assert "GREATEST(%s, updated_at + interval '1 microsecond')" in sql
        params = cursor.execute.call_args.args[1]
        assert params[0] == "New"
        assert params[1] is None
        assert params[-1] == "story-1"

    @pytest.mark.asyncio
    async def test_update_missing_returns_none(self, index, cursor):
        cursor.fetchone.return_value = None

        assert await index.update("missing", UpdateStoryInput(title="X")) is None

    @pytest.mark.asyncio
    async def test_delete_reports_rowcount(self, index, cursor):
        cursor.rowcount = 0

        assert await index.delete("missing") is False


class TestReads:
    @pytest.mark.asyncio
    async def test_query_filters_and_orders(self, index, cursor):
        cursor.fetchone.return_value = {"count": 1}
        cursor.fetchall.return_value = [story_row()]

        result = await index.query(
            QueryOptions(
                author_did="did:plc:alice",
                tags=["fiction", "horror"],
                sort_by=SortField.TITLE,
                sort_order=SortOrder.ASC,
                limit=5,
                offset=10,
            )
        )

        count_sql, page_sql = executed_sql(cursor)
        assert "WHERE author_did = %s AND tags @> %s::text[]" in count_sql
        assert 'ORDER BY title COLLATE "C" ASC, id COLLATE "C" ASC' in page_sql
        assert cursor.execute.call_args.args[1] == ["did:plc:alice", ["fiction", "horror"], 5, 10]
        assert result.total == 1
        assert result.stories[0].tags == ["fiction"]

    @pytest.mark.asyncio
    async def test_search_uses_lowercased_substring(self, index, cursor):
        cursor.fetchone.return_value = {"count": 0}

        await index.search(SearchOptions(query="GHOST"))

        page_sql = executed_sql(cursor)[1]
        assert "strpos(lower(title), %s) > 0" in page_sql
        assert 'ORDER BY published_at DESC, id COLLATE "C" ASC' in page_sql
        assert cursor.execute.call_args.args[1][:2] == ["ghost", "ghost"]

    @pytest.mark.asyncio
    async def test_count(self, index, cursor):
        cursor.fetchone.return_value = {"count": 7}

        assert await index.count(QueryOptions(tags=["fiction"])) == 7
        assert "tags @> %s::text[]" in executed_sql(cursor)[0]
