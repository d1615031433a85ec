"""
Local filesystem content store.

This implementation stores story text on the local filesystem,
useful for development and testing without an object store.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import os
import stat
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger

from thousand_core.domain.stories import (
    DEFAULT_CONTENT_TYPE,
    ListOptions,
    ListResult,
    PutOptions,
    StoryFileMetadata,
)
from thousand_core.runtime.errors import ErrorCode, IOFailure, ValidationError

# Sidecar directory for put options and scratch directory for in-flight
# writes; both are hidden from listings and refused as key prefixes
META_DIR = ".meta"
TMP_DIR = ".tmp"
RESERVED_DIRS = (META_DIR, TMP_DIR)


def encode_token(last_key: str) -> str:
    """Opaque continuation token: the last key of the previous page."""
    raw = json.dumps({"after": last_key}).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_token(token: str) -> str:
    try:
        payload = json.loads(base64.urlsafe_b64decode(token.encode("ascii")))
        return payload["after"]
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError) as e:
        raise ValidationError("Invalid continuation token", message_debug=token, cause=e) from e


class LocalContentStore:
    """
    File-system based content store for local development.

    Keys map to paths under a base directory; intermediate directories
    are created on write. Keys are listed in lexicographic order so the
    continuation token (the last returned key) stays valid while files
    are added or removed.

    Usage:
        store = LocalContentStore(base_path="/tmp/thousand-words")
        await store.put("stories/alice/abc.md", "# Title\n...")
        content = await store.get("stories/alice/abc.md")
    """

    def __init__(self, base_path: str = "data/stories"):
        """
        Args:
            base_path: Root directory for all stored files.
        """
        self.base_path = Path(base_path).resolve()

    async def initialize(self) -> None:
        """Create the base directory."""
        try:
            await asyncio.to_thread(self.base_path.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise IOFailure(
                f"Cannot create storage directory {self.base_path}", message_debug=str(e), cause=e
            ) from e
        logger.info(f"LocalContentStore initialized at {self.base_path}")

    async def aclose(self) -> None:
        """Nothing to release."""

    def _resolve(self, key: str) -> Path:
        """Map a key to a path, refusing keys that escape the base directory."""
        if not key or key.startswith("/") or "\\" in key:
            raise ValidationError(f"Invalid storage key: {key!r}")
        parts = key.split("/")
        if any(part in ("", ".", "..") for part in parts) or parts[0] in RESERVED_DIRS:
            raise ValidationError(f"Invalid storage key: {key!r}")

        path = (self.base_path / key).resolve()
        if not path.is_relative_to(self.base_path):
            raise ValidationError(f"Invalid storage key: {key!r}")
        return path

    def _meta_path(self, key: str) -> Path:
        return self.base_path / META_DIR / f"{key}.json"

    async def get(self, key: str) -> Optional[str]:
        path = self._resolve(key)
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            # a directory is a key prefix, not a blob
            return None
        except OSError as e:
            raise IOFailure(
                f"Failed to read {key}", message_debug=str(e), cause=e, code=ErrorCode.STORAGE_READ_ERROR
            ) from e

    def _write(self, key: str, path: Path, content: str, options: PutOptions) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write then rename so readers never see a partial file
        tmp_dir = self.base_path / TMP_DIR
        tmp_dir.mkdir(exist_ok=True)
        tmp = tmp_dir / uuid.uuid4().hex
        try:
            tmp.write_text(content, encoding="utf-8")
            os.replace(tmp, path)
        finally:
            tmp.unlink(missing_ok=True)

        meta_path = self._meta_path(key)
        meta_path.parent.mkdir(parents=True, exist_ok=True)
        meta_path.write_text(
            json.dumps(
                {
                    "content_type": options.content_type or DEFAULT_CONTENT_TYPE,
                    "metadata": options.metadata or {},
                }
            ),
            encoding="utf-8",
        )

    async def put(self, key: str, content: str, options: Optional[PutOptions] = None) -> None:
        path = self._resolve(key)
        try:
            await asyncio.to_thread(self._write, key, path, content, options or PutOptions())
        except OSError as e:
            raise IOFailure(f"Failed to write {key}", message_debug=str(e), cause=e) from e
        logger.info(f"Stored {key} ({len(content)} chars)")

    async def delete(self, key: str) -> bool:
        path = self._resolve(key)

        def _unlink() -> bool:
            if not path.is_file():
                return False
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            self._meta_path(key).unlink(missing_ok=True)
            return True

        try:
            deleted = await asyncio.to_thread(_unlink)
        except OSError as e:
            raise IOFailure(f"Failed to delete {key}", message_debug=str(e), cause=e) from e

        if deleted:
            logger.info(f"Deleted {key}")
        else:
            logger.debug(f"File not found for deletion: {key}")
        return deleted

    @staticmethod
    def _walk_error(error: OSError) -> None:
        # directories removed mid-walk are simply gone
        if not isinstance(error, FileNotFoundError):
            raise error

    def _all_keys(self) -> list[str]:
        keys = []
        # os.walk skips unreadable directories unless onerror raises
        for root, dirs, files in os.walk(self.base_path, onerror=self._walk_error):
            if Path(root) == self.base_path:
                dirs[:] = [d for d in dirs if d not in RESERVED_DIRS]
            for name in files:
                keys.append((Path(root) / name).relative_to(self.base_path).as_posix())
        return sorted(keys)

    def _describe(self, key: str, path: Path) -> Optional[StoryFileMetadata]:
        try:
            st = path.stat()
        except (FileNotFoundError, NotADirectoryError):
            return None
        if not stat.S_ISREG(st.st_mode):
            return None
        content_type = DEFAULT_CONTENT_TYPE
        meta_path = self._meta_path(key)
        if meta_path.is_file():
            content_type = json.loads(meta_path.read_text(encoding="utf-8")).get(
                "content_type", DEFAULT_CONTENT_TYPE
            )
        return StoryFileMetadata(
            key=key,
            size=st.st_size,
            content_type=content_type,
            last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
            etag=f'"{st.st_size:x}-{st.st_mtime_ns:x}"',
        )

    async def list(self, options: Optional[ListOptions] = None) -> ListResult:
        options = options or ListOptions()
        after = decode_token(options.continuation_token) if options.continuation_token else None

        def _list() -> ListResult:
            if not self.base_path.is_dir():
                return ListResult(files=[], has_more=False)

            keys = [
                key
                for key in self._all_keys()
                if key.startswith(options.prefix or "") and (after is None or key > after)
            ]
            page = keys[: options.max_results]
            files = []
            for key in page:
                described = self._describe(key, self.base_path / key)
                # None when removed while listing
                if described is not None:
                    files.append(described)
            has_more = len(keys) > len(page)
            return ListResult(
                files=files,
                continuation_token=encode_token(page[-1]) if has_more else None,
                has_more=has_more,
            )

        try:
            return await asyncio.to_thread(_list)
        except OSError as e:
            raise IOFailure(
                "Failed to list stored files", message_debug=str(e), cause=e, code=ErrorCode.STORAGE_READ_ERROR
            ) from e

    async def exists(self, key: str) -> bool:
        path = self._resolve(key)
        try:
            return await asyncio.to_thread(path.is_file)
        except OSError as e:
            raise IOFailure(
                f"Failed to stat {key}", message_debug=str(e), cause=e, code=ErrorCode.STORAGE_READ_ERROR
            ) from e

    async def get_metadata(self, key: str) -> Optional[StoryFileMetadata]:
        path = self._resolve(key)
        try:
            return await asyncio.to_thread(self._describe, key, path)
        except OSError as e:
            raise IOFailure(
                f"Failed to stat {key}", message_debug=str(e), cause=e, code=ErrorCode.STORAGE_READ_ERROR
            ) from e
