"""
Shared fixtures for story backend tests.

The ``index`` fixture runs each test against every metadata index
backend: SQLite on a temp file, DynamoDB on an in-memory table fake, and
PostgreSQL when TEST_POSTGRES_DSN points at a live database.
"""

import os
import uuid

import pytest
import pytest_asyncio

from app.stories.services.dynamodb_index import DynamoDBIndex
from app.stories.services.local_content import LocalContentStore
from app.stories.services.postgres_index import PostgresIndex
from app.stories.services.sqlite_index import SQLiteIndex
from thousand_core.config import Settings

from tests.app.stories.fakes import FakeDynamoResource, FakeDynamoTable


@pytest_asyncio.fixture(params=["sqlite", "dynamodb", "postgres"])
async def index(request, tmp_path):
    """An initialized, empty MetadataIndex of each backend kind."""
    if request.param == "sqlite":
        backend = SQLiteIndex(str(tmp_path / "stories.db"))
    elif request.param == "dynamodb":
        # Small pages so scan/query pagination is exercised
        backend = DynamoDBIndex(FakeDynamoResource(FakeDynamoTable(page_size=2)), "stories")
    else:
        dsn = os.environ.get("TEST_POSTGRES_DSN")
        if not dsn:
            pytest.skip("TEST_POSTGRES_DSN not set")
        backend = PostgresIndex(dsn=dsn, table_name=f"stories_test_{uuid.uuid4().hex[:8]}")

    await backend.initialize()
    yield backend

    if request.param == "postgres":
        async with backend._cursor() as cur:
            await cur.execute(f"DROP TABLE IF EXISTS {backend.table}")
    await backend.aclose()


@pytest_asyncio.fixture
async def local_store(tmp_path):
    store = LocalContentStore(base_path=str(tmp_path / "content"))
    await store.initialize()
    yield store
    await store.aclose()


@pytest.fixture
def local_settings(tmp_path) -> Settings:
    """Settings selecting SQLite + local storage under tmp_path."""
    return Settings(
        INDEX_BACKEND="sqlite",
        CONTENT_BACKEND="local",
        SQLITE_PATH=str(tmp_path / "index" / "stories.db"),
        LOCAL_STORAGE_PATH=str(tmp_path / "content"),
        _env_file=None,
    )
