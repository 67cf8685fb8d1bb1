"""
Chunked upload sessions.

A large file arrives as ``total_chunks`` numbered chunks, possibly out of order
and in parallel. ``ChunkStore`` keeps each session's chunks and its
``progress.json`` record in a private directory under the temp root.
``SessionRegistry`` tracks which indices arrived and merges the chunks, in
index order, into the final file once all of them are present.

All reads and writes of one session's record happen under a lock keyed by the
upload id. Sessions with different ids never share a lock.
"""

import time
import uuid
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional

import aiofiles
from aiofiles import os as aioos
from fastapi import UploadFile
from pydantic import ValidationError

from ..logger import logger
from .exceptions import (
    FileSyncError,
    IncompleteUpload,
    Internal,
    InvalidChunkIndex,
    InvalidRequest,
    SessionNotFound,
    SessionTotalMismatch,
)
from .path_guard import (
    decode_filename,
    join_relative,
    resolve_path,
    sanitize_name_part,
    validate_name,
)
from .types import ChunkUploadResponse, MergeResponse, UploadSession
from .utils import (
    READ_BLOCK_SIZE,
    KeyedLock,
    _rmtree_async,
    _scandir_async,
    remove_quietly,
    save_upload,
    write_json_atomic,
)

PROGRESS_FILENAME = "progress.json"
CHUNK_PREFIX = "chunk-"
# Characters of the sanitized file name kept in a generated upload id
UPLOAD_ID_NAME_LENGTH = 40


class ChunkStore:
    """On-disk layout of upload sessions: ``<temp_root>/<upload_id>/``."""

    def __init__(self, temp_root: Path):
        self.temp_root = temp_root

    def session_dir(self, upload_id: str) -> Path:
        validate_name(upload_id, "Upload id")
        return resolve_path(self.temp_root, upload_id)

    def chunk_path(self, upload_id: str, index: int) -> Path:
        return self.session_dir(upload_id) / f"{CHUNK_PREFIX}{index}"

    def progress_path(self, upload_id: str) -> Path:
        return self.session_dir(upload_id) / PROGRESS_FILENAME

    async def write_chunk(
        self, upload_id: str, index: int, chunk: UploadFile, max_size: int
    ) -> int:
        """Persist one chunk; a chunk already stored under ``index`` is replaced."""
        session_dir = self.session_dir(upload_id)
        await aioos.makedirs(session_dir, exist_ok=True)

        part_path = session_dir / f"{CHUNK_PREFIX}{index}.{uuid.uuid4().hex}.part"
        size = await save_upload(chunk, part_path, max_size)
        await aioos.replace(part_path, self.chunk_path(upload_id, index))
        return size

    async def read_chunk(self, upload_id: str, index: int) -> AsyncIterator[bytes]:
        async with aiofiles.open(self.chunk_path(upload_id, index), "rb") as f:
            while block := await f.read(READ_BLOCK_SIZE):
                yield block

    async def load_session(self, upload_id: str) -> Optional[UploadSession]:
        """Read a session's progress record; None when there is no valid record."""
        try:
            async with aiofiles.open(
                self.progress_path(upload_id), "r", encoding="utf-8"
            ) as f:
                data = await f.read()
        except FileNotFoundError:
            return None

        try:
            return UploadSession.model_validate_json(data)
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable progress record of '{upload_id}': {e}")
            return None

    async def save_session(self, session: UploadSession) -> None:
        await write_json_atomic(
            self.progress_path(session.upload_id),
            session.model_dump_json(by_alias=True),
        )

    async def discard(self, upload_id: str) -> None:
        session_dir = self.session_dir(upload_id)
        if await aioos.path.exists(session_dir):
            await _rmtree_async(session_dir)

    async def list_upload_ids(self) -> List[str]:
        try:
            entries = await _scandir_async(self.temp_root)
        except FileNotFoundError:
            return []
        return [name for name, _, is_dir in entries if is_dir]

    async def last_activity(self, upload_id: str) -> float:
        """When a session was last touched, for sessions without a readable record."""
        stat_result = await aioos.stat(self.session_dir(upload_id))
        return stat_result.st_mtime


class SessionRegistry:
    """Tracks chunked upload sessions and merges completed ones."""

    def __init__(self, store: ChunkStore, storage_root: Path, max_chunk_size: int):
        self.store = store
        self.storage_root = storage_root
        self.max_chunk_size = max_chunk_size
        self._sessions: Dict[str, UploadSession] = {}
        self._locks = KeyedLock()

    async def _get_session(self, upload_id: str) -> Optional[UploadSession]:
        session = self._sessions.get(upload_id)
        if session is None:
            # Not seen since startup; pick up a record left by a previous run
            session = await self.store.load_session(upload_id)
            if session is not None:
                self._sessions[upload_id] = session
        return session

    async def ingest(
        self,
        chunk: UploadFile,
        chunk_index: int,
        total_chunks: int,
        file_name: str,
        relative_path: str = "",
        upload_id: Optional[str] = None,
    ) -> ChunkUploadResponse:
        """Store one chunk and register its index with the session.

        The session is created by its first chunk. Re-sending an index already
        received replaces the stored chunk without counting it twice.
        """
        if total_chunks < 1:
            raise InvalidRequest("totalChunks must be a positive integer")
        if not 0 <= chunk_index < total_chunks:
            raise InvalidChunkIndex(
                f"Chunk index {chunk_index} is outside 0..{total_chunks - 1}"
            )

        file_name = validate_name(decode_filename(file_name))
        resolve_path(self.storage_root, join_relative(relative_path, file_name))

        if upload_id:
            self.store.session_dir(upload_id)
        else:
            name_part = sanitize_name_part(file_name)[:UPLOAD_ID_NAME_LENGTH]
            upload_id = f"{name_part}-{time.time_ns()}"

        async with self._locks.hold(upload_id):
            session = await self._get_session(upload_id)
            now = time.time()
            if session is None:
                session = UploadSession(
                    upload_id=upload_id,
                    file_name=file_name,
                    relative_path=relative_path or "",
                    total_chunks=total_chunks,
                    created_at=now,
                    updated_at=now,
                )
                logger.info(
                    f"Started upload '{upload_id}' for "
                    f"'{join_relative(relative_path, file_name)}' ({total_chunks} chunks)"
                )
            elif session.total_chunks != total_chunks:
                raise SessionTotalMismatch(
                    f"Upload '{upload_id}' expects {session.total_chunks} chunks, "
                    f"got totalChunks={total_chunks}"
                )

            await self.store.write_chunk(
                upload_id, chunk_index, chunk, self.max_chunk_size
            )

            updated = session.model_copy(deep=True)
            updated.chunks.add(chunk_index)
            updated.updated_at = now
            await self.store.save_session(updated)
            self._sessions[upload_id] = updated

        return ChunkUploadResponse(
            upload_id=upload_id, received=updated.received, total=updated.total_chunks
        )

    async def get(self, upload_id: str) -> Optional[UploadSession]:
        self.store.session_dir(upload_id)
        async with self._locks.hold(upload_id):
            session = await self._get_session(upload_id)
            return session.model_copy(deep=True) if session else None

    async def merge(self, upload_id: str) -> MergeResponse:
        """Concatenate all chunks of a complete session into the target file.

        Chunks are appended strictly by index. The target only appears once it
        is fully written; on failure the session is kept so the merge can be
        retried.
        """
        self.store.session_dir(upload_id)

        async with self._locks.hold(upload_id):
            session = await self._get_session(upload_id)
            if session is None:
                raise SessionNotFound(upload_id)
            if not session.is_complete:
                raise IncompleteUpload(session.received, session.total_chunks)

            final_path = join_relative(session.relative_path, session.file_name)
            target_path = resolve_path(self.storage_root, final_path)
            target_dir = target_path.parent
            merge_path = target_dir / f".{uuid.uuid4().hex}.merge"

            try:
                await aioos.makedirs(target_dir, exist_ok=True)
                await remove_quietly(merge_path)
                async with aiofiles.open(merge_path, "xb") as out:
                    for index in range(session.total_chunks):
                        async for block in self.store.read_chunk(upload_id, index):
                            await out.write(block)
                    await out.flush()
                await aioos.replace(merge_path, target_path)
            except OSError as e:
                await remove_quietly(merge_path)
                logger.error(f"Merge of upload '{upload_id}' failed: {e}")
                raise Internal(f"Failed to merge upload '{upload_id}': {e}")

            self._sessions.pop(upload_id, None)
            try:
                await self.store.discard(upload_id)
            except OSError as e:
                logger.warning(f"Merged '{upload_id}' but could not remove its chunks: {e}")

        logger.info(f"Merged upload '{upload_id}' into '{final_path}'")
        return MergeResponse(path=final_path)

    async def sweep(self, max_age_seconds: float) -> int:
        """Delete sessions idle for longer than ``max_age_seconds``.

        Each session is removed under its own lock, so a sweep never cuts into
        an ingest or merge of the same session. Returns the number removed.
        """
        removed = 0
        now = time.time()

        for upload_id in await self.store.list_upload_ids():
            try:
                self.store.session_dir(upload_id)
            except FileSyncError as e:
                logger.warning(f"Skipping unexpected temp entry '{upload_id}': {e}")
                continue

            async with self._locks.hold(upload_id):
                session = await self._get_session(upload_id)
                try:
                    if session is not None:
                        last_activity = session.updated_at
                    else:
                        last_activity = await self.store.last_activity(upload_id)
                except FileNotFoundError:
                    continue

                if now - last_activity <= max_age_seconds:
                    continue

                await self.store.discard(upload_id)
                self._sessions.pop(upload_id, None)
                removed += 1
                logger.info(f"Removed stale upload session '{upload_id}'")

        return removed

    def __len__(self) -> int:
        return len(self._sessions)
