"""Unit tests for the local filesystem content store."""

from pathlib import Path
from unittest.mock import patch

import pytest

from app.stories.services.local_content import LocalContentStore, decode_token, encode_token
from thousand_core.domain.interfaces import ContentStore
from thousand_core.domain.stories import ListOptions, PutOptions
from thousand_core.runtime.errors import IOFailure, ValidationError


class TestReadWrite:
    @pytest.mark.asyncio
    async def test_satisfies_protocol(self, local_store):
        assert isinstance(local_store, ContentStore)

    @pytest.mark.asyncio
    async def test_hello_world_round_trip(self, local_store):
        await local_store.put("stories/k.md", "hello world")

        assert await local_store.get("stories/k.md") == "hello world"
        assert await local_store.exists("stories/k.md") is True
        await local_store.delete("stories/k.md")
        assert await local_store.get("stories/k.md") is None

    @pytest.mark.asyncio
    async def test_put_then_get_returns_content(self, local_store):
        content = "# Café Ghosts\n\nThe espresso machine hummed at 3 a.m."

        await local_store.put("stories/alice/1.md", content)

        assert await local_store.get("stories/alice/1.md") == content

    @pytest.mark.asyncio
    async def test_put_overwrites(self, local_store):
        await local_store.put("stories/alice/1.md", "first")
        await local_store.put("stories/alice/1.md", "second")

        assert await local_store.get("stories/alice/1.md") == "second"

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, local_store):
        assert await local_store.get("stories/nobody/missing.md") is None

    @pytest.mark.asyncio
    async def test_exists(self, local_store):
        await local_store.put("stories/alice/1.md", "text")

        assert await local_store.exists("stories/alice/1.md") is True
        assert await local_store.exists("stories/alice/2.md") is False
        assert await local_store.exists("stories/alice") is False

    @pytest.mark.asyncio
    async def test_delete(self, local_store):
        await local_store.put("stories/alice/1.md", "text")

        assert await local_store.delete("stories/alice/1.md") is True
        assert await local_store.get("stories/alice/1.md") is None
        assert await local_store.delete("stories/alice/1.md") is False

    @pytest.mark.asyncio
    async def test_no_temp_files_left_behind(self, local_store):
        await local_store.put("stories/alice/1.md", "text")

        names = [p.name for p in (local_store.base_path / "stories" / "alice").iterdir()]
        assert names == ["1.md"]
        assert list((local_store.base_path / ".tmp").iterdir()) == []

    @pytest.mark.asyncio
    async def test_directory_key_is_not_a_blob(self, local_store):
        await local_store.put("stories/alice/a.md", "text")

        assert await local_store.get("stories/alice") is None
        assert await local_store.get_metadata("stories/alice") is None
        assert await local_store.exists("stories/alice") is False
        assert await local_store.delete("stories/alice") is False
        assert await local_store.get("stories/alice/a.md") == "text"

    @pytest.mark.asyncio
    async def test_key_below_a_file_is_missing(self, local_store):
        await local_store.put("stories/a.md", "text")

        assert await local_store.get("stories/a.md/b.md") is None
        assert await local_store.get_metadata("stories/a.md/b.md") is None

    @pytest.mark.asyncio
    async def test_exists_failure_is_reported(self, local_store):
        with patch.object(Path, "is_file", side_effect=PermissionError(13, "Permission denied")):
            with pytest.raises(IOFailure):
                await local_store.exists("stories/alice/1.md")


class TestMetadata:
    @pytest.mark.asyncio
    async def test_size_is_encoded_byte_length(self, local_store):
        await local_store.put("stories/alice/1.md", "café")

        meta = await local_store.get_metadata("stories/alice/1.md")

        assert meta.key == "stories/alice/1.md"
        assert meta.size == 5
        assert meta.etag
        assert meta.last_modified.tzinfo is not None

    @pytest.mark.asyncio
    async def test_default_content_type(self, local_store):
        await local_store.put("stories/alice/1.md", "text")

        meta = await local_store.get_metadata("stories/alice/1.md")

        assert meta.content_type == "text/markdown"

    @pytest.mark.asyncio
    async def test_content_type_from_put_options(self, local_store):
        await local_store.put("stories/alice/1.txt", "text", PutOptions(content_type="text/plain"))

        meta = await local_store.get_metadata("stories/alice/1.txt")

        assert meta.content_type == "text/plain"

    @pytest.mark.asyncio
    async def test_missing_returns_none(self, local_store):
        assert await local_store.get_metadata("stories/alice/none.md") is None

    @pytest.mark.asyncio
    async def test_delete_removes_sidecar(self, local_store):
        await local_store.put("stories/alice/1.md", "text", PutOptions(content_type="text/plain"))
        await local_store.delete("stories/alice/1.md")

        await local_store.put("stories/alice/1.md", "text")
        meta = await local_store.get_metadata("stories/alice/1.md")

        assert meta.content_type == "text/markdown"


class TestList:
    @pytest.mark.asyncio
    async def test_lists_keys_in_order(self, local_store):
        for key in ["stories/b/2.md", "stories/a/1.md", "drafts/x.md"]:
            await local_store.put(key, "text", PutOptions(content_type="text/plain"))

        result = await local_store.list()

        assert [f.key for f in result.files] == ["drafts/x.md", "stories/a/1.md", "stories/b/2.md"]
        assert result.has_more is False
        assert result.continuation_token is None

    @pytest.mark.asyncio
    async def test_prefix_filter(self, local_store):
        for key in ["stories/a/1.md", "stories/b/2.md", "drafts/x.md"]:
            await local_store.put(key, "text")

        result = await local_store.list(ListOptions(prefix="stories/"))

        assert [f.key for f in result.files] == ["stories/a/1.md", "stories/b/2.md"]

    @pytest.mark.asyncio
    async def test_pages_concatenate(self, local_store):
        keys = [f"stories/alice/{n:02d}.md" for n in range(7)]
        for key in keys:
            await local_store.put(key, "text")

        seen, token = [], None
        while True:
            page = await local_store.list(ListOptions(max_results=3, continuation_token=token))
            seen.extend(f.key for f in page.files)
            if not page.has_more:
                assert page.continuation_token is None
                break
            token = page.continuation_token

        assert seen == keys

    @pytest.mark.asyncio
    async def test_token_survives_new_files(self, local_store):
        for key in ["stories/a.md", "stories/c.md", "stories/e.md"]:
            await local_store.put(key, "text")

        first = await local_store.list(ListOptions(max_results=1))
        await local_store.put("stories/0.md", "text")
        await local_store.put("stories/d.md", "text")
        rest = await local_store.list(ListOptions(continuation_token=first.continuation_token))

        assert [f.key for f in first.files] == ["stories/a.md"]
        assert [f.key for f in rest.files] == ["stories/c.md", "stories/d.md", "stories/e.md"]

    @pytest.mark.asyncio
    async def test_empty_store(self, local_store):
        result = await local_store.list()

        assert result.files == []
        assert result.has_more is False

    @pytest.mark.asyncio
    async def test_temp_like_names_are_listed(self, local_store):
        await local_store.put("stories/.draft.tmp", "text")

        result = await local_store.list()

        assert [f.key for f in result.files] == ["stories/.draft.tmp"]

    @pytest.mark.asyncio
    async def test_unreadable_directory_fails_the_listing(self, local_store):
        await local_store.put("stories/alice/1.md", "text")

        with patch("os.scandir", side_effect=PermissionError(13, "Permission denied")):
            with pytest.raises(IOFailure):
                await local_store.list()

    @pytest.mark.asyncio
    async def test_invalid_token_rejected(self, local_store):
        with pytest.raises(ValidationError):
            await local_store.list(ListOptions(continuation_token="not a token!"))

    def test_token_is_opaque_round_trip(self):
        assert decode_token(encode_token("stories/a.md")) == "stories/a.md"


class TestKeyValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "key",
        ["", "/etc/passwd", "../outside.md", "stories/../../x.md", "a//b.md", "./a.md", ".meta/a.md", ".tmp/a.md", "a\\b.md"],
    )
    async def test_rejects_unsafe_keys(self, local_store, key):
        with pytest.raises(ValidationError):
            await local_store.put(key, "text")

    @pytest.mark.asyncio
    async def test_initialize_creates_base_directory(self, tmp_path):
        store = LocalContentStore(base_path=str(tmp_path / "new" / "root"))

        await store.initialize()

        assert (tmp_path / "new" / "root").is_dir()
