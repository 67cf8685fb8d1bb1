"""
Async helpers shared by the file operations: thread-offloaded filesystem calls,
size-bounded upload streaming, atomic JSON snapshots and per-key locks.
"""

import asyncio
import os
import shutil
from contextlib import asynccontextmanager
from pathlib import Path
from stat import S_ISDIR
from typing import AsyncIterator, Dict

import aiofiles
from aiofiles import os as aioos
from asyncer import asyncify
from fastapi import UploadFile

from .exceptions import PayloadTooLarge

READ_BLOCK_SIZE = 10 * 1024 * 1024


# Async utility functions
@asyncify
def _rmtree_async(path: Path):
    """Asynchronously remove a directory tree."""
    shutil.rmtree(path)


@asyncify
def _scandir_async(path: Path) -> list[tuple[str, os.stat_result, bool]]:
    """List a directory as (name, stat, is_dir) in discovery order.

    Only a missing ``path`` raises FileNotFoundError. Entries whose target
    cannot be stat'ed (dangling or looping symlinks) are reported with the
    link's own stat; entries removed while listing are left out.
    """
    entries = []
    with os.scandir(path) as it:
        for entry in it:
            try:
                stat_result = entry.stat()
            except OSError:
                try:
                    stat_result = entry.stat(follow_symlinks=False)
                except FileNotFoundError:
                    continue
            entries.append((entry.name, stat_result, S_ISDIR(stat_result.st_mode)))
    return entries


async def remove_quietly(path: Path) -> None:
    """Remove a leftover temporary file, ignoring a file that is already gone."""
    try:
        await aioos.remove(path)
    except FileNotFoundError:
        pass


async def save_upload(file: UploadFile, dest: Path, max_size: int) -> int:
    """Stream an uploaded file to ``dest`` without buffering it in memory.

    Returns the number of bytes written. ``dest`` is removed again when the
    payload exceeds ``max_size`` or the write fails.
    """
    written = 0
    try:
        async with aiofiles.open(dest, "wb") as f:
            while block := await file.read(READ_BLOCK_SIZE):
                written += len(block)
                if written > max_size:
                    raise PayloadTooLarge(
                        f"File exceeds the maximum size of {max_size} bytes"
                    )
                await f.write(block)
    except BaseException:
        await remove_quietly(dest)
        raise
    return written


async def write_json_atomic(path: Path, data: str) -> None:
    """Write ``data`` to ``path`` via a temporary sibling and an atomic rename.

    Readers see either the previous content or the new one, never a torn write.
    """
    tmp_path = path.with_name(path.name + ".tmp")
    async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
        await f.write(data)
        await f.flush()
    await aioos.replace(tmp_path, path)


class KeyedLock:
    """A table of asyncio locks, one per key, created on demand.

    Callers holding different keys never contend. A key's lock is dropped once
    nobody holds or waits for it.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
