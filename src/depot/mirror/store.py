"""On-disk cache store mirroring the upstream path hierarchy."""

from __future__ import annotations

import asyncio
import os
import stat
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Optional
from uuid import uuid4

import structlog

from .errors import CacheWriteFailure, InvalidPath


LOGGER = structlog.get_logger("depot.mirror.store")

# In-progress downloads live here, outside every addressable request path.
STAGING_DIR = ".depot-staging"
PARTIAL_SUFFIX = ".partial"


class EntryKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"


@dataclass(frozen=True)
class CacheEntry:
    """A file or directory under the cache root, computed from the file system."""

    name: str
    relative_path: str
    kind: EntryKind
    size: Optional[int]
    modified: datetime

    @property
    def is_directory(self) -> bool:
        return self.kind is EntryKind.DIRECTORY


def is_staging_path(relative_path: str) -> bool:
    return relative_path.split("/", 1)[0] == STAGING_DIR


def sort_entries(entries: list[CacheEntry]) -> list[CacheEntry]:
    """Directories first, then case-sensitive ordering by name."""
    return sorted(entries, key=lambda entry: (not entry.is_directory, entry.name))


def _entry_from_stat(name: str, relative_path: str, info: os.stat_result) -> Optional[CacheEntry]:
    modified = datetime.fromtimestamp(info.st_mtime, tz=UTC)
    if stat.S_ISDIR(info.st_mode):
        return CacheEntry(name, relative_path, EntryKind.DIRECTORY, None, modified)
    if stat.S_ISREG(info.st_mode):
        return CacheEntry(name, relative_path, EntryKind.FILE, info.st_size, modified)
    return None


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        LOGGER.warning("partial_cleanup_failed", path=str(path))


class CacheStore:
    """Local directory tree holding cached artifacts at their request paths."""

    def __init__(self, root: Path) -> None:
        self._root = root.expanduser().resolve()

    @property
    def root(self) -> Path:
        return self._root

    def ensure_root(self) -> None:
        self._root.mkdir(parents=True, exist_ok=True)

    def locate(self, relative_path: str) -> Path:
        """Return the absolute location of ``relative_path``.

        Paths outside the root, after symlinks are resolved, and paths into the
        staging area raise :class:`InvalidPath`.
        """
        if is_staging_path(relative_path):
            raise InvalidPath(relative_path)
        candidate = self._root.joinpath(*relative_path.split("/"))
        resolved = candidate.resolve(strict=False)
        if resolved != self._root and not resolved.is_relative_to(self._root):
            raise InvalidPath(relative_path)
        if resolved.is_relative_to(self._root / STAGING_DIR):
            raise InvalidPath(relative_path)
        return resolved

    async def lookup(self, relative_path: str) -> Optional[CacheEntry]:
        path = self.locate(relative_path)
        return await asyncio.to_thread(self._stat_entry, path, relative_path)

    @staticmethod
    def _stat_entry(path: Path, relative_path: str) -> Optional[CacheEntry]:
        try:
            info = path.stat()
        except (FileNotFoundError, NotADirectoryError):
            return None
        return _entry_from_stat(path.name, relative_path, info)

    async def list_directory(self, relative_path: str) -> list[CacheEntry]:
        path = self.locate(relative_path)
        entries = await asyncio.to_thread(self._scan, path, relative_path)
        return sort_entries(entries)

    @staticmethod
    def _scan(path: Path, relative_path: str) -> list[CacheEntry]:
        entries: list[CacheEntry] = []
        with os.scandir(path) as iterator:
            for item in iterator:
                if not relative_path and item.name == STAGING_DIR:
                    continue
                try:
                    info = item.stat()
                except FileNotFoundError:
                    continue
                child_path = f"{relative_path}/{item.name}" if relative_path else item.name
                entry = _entry_from_stat(item.name, child_path, info)
                if entry is not None:
                    entries.append(entry)
        return entries

    async def store(self, relative_path: str, chunks: AsyncIterator[bytes]) -> int:
        """Write ``chunks`` to ``relative_path`` and return the byte count.

        Bytes land in a fixed-length file under the staging directory, opened
        with exclusive create, and are renamed onto the destination only after
        the stream is drained and the handle closed. The final path never holds
        a truncated artifact and the partial file is never addressable by a
        request. On any failure the partial file is removed and
        :class:`CacheWriteFailure` is raised.
        """

        target = self.locate(relative_path)
        if target == self._root:
            raise InvalidPath(relative_path)
        staging = self._root / STAGING_DIR
        partial = staging / f"{uuid4().hex}{PARTIAL_SUFFIX}"
        written = 0
        try:
            await asyncio.to_thread(staging.mkdir, exist_ok=True)
            await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
            handle = await asyncio.to_thread(partial.open, "xb")
            try:
                async for chunk in chunks:
                    if not chunk:
                        continue
                    await asyncio.to_thread(handle.write, chunk)
                    written += len(chunk)
            finally:
                await asyncio.to_thread(handle.close)
            await asyncio.to_thread(os.replace, partial, target)
        except asyncio.CancelledError:
            _discard(partial)
            raise
        except Exception as exc:  # noqa: BLE001 - disk and stream failures both abort the write
            await asyncio.to_thread(_discard, partial)
            LOGGER.error("cache_write_failed", path=relative_path, bytes=written, error=str(exc))
            raise CacheWriteFailure(relative_path) from exc
        return written

    def status(self) -> dict[str, object]:
        return {
            "cache_dir": str(self._root),
            "writable": self._root.is_dir() and os.access(self._root, os.W_OK),
        }
