"""
Tests for chunked upload sessions: chunk ingestion, progress tracking,
ordered merge, restart recovery and stale session sweeping.
"""

import asyncio
import io
import json
import os
import random
import tempfile
from pathlib import Path

import pytest
from fastapi import UploadFile

from lansync.files import (
    AccessDenied,
    ChunkStore,
    IncompleteUpload,
    Internal,
    InvalidChunkIndex,
    InvalidName,
    InvalidRequest,
    PayloadTooLarge,
    SessionNotFound,
    SessionRegistry,
    SessionTotalMismatch,
)


def make_chunk(content: bytes) -> UploadFile:
    return UploadFile(file=io.BytesIO(content), filename="blob")


def split(data: bytes, sizes: list[int]) -> list[bytes]:
    chunks, offset = [], 0
    for size in sizes:
        chunks.append(data[offset : offset + size])
        offset += size
    chunks.append(data[offset:])
    return chunks


class TestChunkedUpload:
    """Test the session registry and chunk store together."""

    @pytest.fixture
    def temp_dir(self):
        with tempfile.TemporaryDirectory(prefix="lansync_chunked_test_", dir="/tmp") as temp_dir:
            yield Path(temp_dir)

    @pytest.fixture
    def storage(self, temp_dir):
        storage = temp_dir / "storage"
        storage.mkdir()
        return storage

    @pytest.fixture
    def temp_root(self, temp_dir):
        return temp_dir / "temp"

    @pytest.fixture
    def registry(self, storage, temp_root):
        return SessionRegistry(ChunkStore(temp_root), storage, max_chunk_size=16 * 1024 * 1024)

    async def upload_all(self, registry, chunks, order, upload_id="upload-1", **kwargs):
        kwargs.setdefault("file_name", "data.bin")
        kwargs.setdefault("relative_path", "")
        response = None
        for index in order:
            response = await registry.ingest(
                make_chunk(chunks[index]),
                chunk_index=index,
                total_chunks=len(chunks),
                upload_id=upload_id,
                **kwargs,
            )
        return response

    @pytest.mark.asyncio
    async def test_first_chunk_creates_session(self, registry, temp_root):
        response = await registry.ingest(
            make_chunk(b"abc"), chunk_index=0, total_chunks=3, file_name="f.txt", relative_path="docs"
        )

        assert response.upload_id.startswith("f.txt-")
        assert response.received == 1
        assert response.total == 3

        session_dir = temp_root / response.upload_id
        assert (session_dir / "chunk-0").read_bytes() == b"abc"
        progress = json.loads((session_dir / "progress.json").read_text())
        assert progress["totalChunks"] == 3
        assert progress["fileName"] == "f.txt"
        assert progress["relativePath"] == "docs"
        assert progress["chunks"] == [0]

    @pytest.mark.asyncio
    async def test_generated_ids_differ_for_same_name(self, registry):
        first = await registry.ingest(make_chunk(b"a"), chunk_index=0, total_chunks=2, file_name="same.txt")
        second = await registry.ingest(make_chunk(b"b"), chunk_index=0, total_chunks=2, file_name="same.txt")

        assert first.upload_id != second.upload_id

    @pytest.mark.asyncio
    async def test_out_of_order_round_trip(self, registry, storage):
        data = os.urandom(50_000)
        chunks = split(data, [1, 7_000, 20_000, 3])

        order = list(range(len(chunks)))
        random.Random(1234).shuffle(order)
        await self.upload_all(registry, chunks, order, relative_path="nested/dir")

        result = await registry.merge("upload-1")

        assert result.success is True
        assert result.path == "nested/dir/data.bin"
        assert (storage / "nested" / "dir" / "data.bin").read_bytes() == data

    @pytest.mark.asyncio
    async def test_twelve_megabytes_in_three_chunks(self, registry, storage, temp_root):
        chunk_size = 4 * 1024 * 1024
        data = os.urandom(3 * chunk_size)
        chunks = [data[i * chunk_size : (i + 1) * chunk_size] for i in range(3)]

        response = await self.upload_all(registry, chunks, [2, 0, 1], upload_id="big-upload")
        assert response.received == 3
        assert response.total == 3

        result = await registry.merge("big-upload")

        merged = storage / "data.bin"
        assert result.path == "data.bin"
        assert merged.stat().st_size == 12 * 1024 * 1024
        assert merged.read_bytes() == data
        assert not (temp_root / "big-upload").exists()

    @pytest.mark.asyncio
    async def test_replayed_chunk_is_counted_once(self, registry):
        for _ in range(3):
            response = await registry.ingest(
                make_chunk(b"zero"), chunk_index=0, total_chunks=2, file_name="f.bin", upload_id="replay"
            )
            assert response.received == 1

        response = await registry.ingest(
            make_chunk(b"one"), chunk_index=1, total_chunks=2, file_name="f.bin", upload_id="replay"
        )
        assert response.received == 2

    @pytest.mark.asyncio
    async def test_replayed_chunk_overwrites_payload(self, registry, storage):
        await registry.ingest(make_chunk(b"old"), chunk_index=0, total_chunks=1, file_name="f.txt", upload_id="ow")
        await registry.ingest(make_chunk(b"new"), chunk_index=0, total_chunks=1, file_name="f.txt", upload_id="ow")

        await registry.merge("ow")

        assert (storage / "f.txt").read_bytes() == b"new"

    @pytest.mark.asyncio
    async def test_concurrent_chunks_of_one_session(self, registry, storage):
        chunks = [bytes([i]) * 1000 for i in range(20)]

        await asyncio.gather(
            *(
                registry.ingest(
                    make_chunk(chunk), chunk_index=i, total_chunks=20, file_name="par.bin", upload_id="parallel"
                )
                for i, chunk in enumerate(chunks)
            )
        )

        session = await registry.get("parallel")
        assert session.chunks == set(range(20))

        await registry.merge("parallel")
        assert (storage / "par.bin").read_bytes() == b"".join(chunks)

    @pytest.mark.asyncio
    async def test_concurrent_sessions_are_independent(self, registry, storage):
        await asyncio.gather(
            self.upload_all(registry, [b"a1", b"a2"], [1, 0], upload_id="a", file_name="a.txt"),
            self.upload_all(registry, [b"b1", b"b2"], [0, 1], upload_id="b", file_name="b.txt"),
        )

        await asyncio.gather(registry.merge("a"), registry.merge("b"))

        assert (storage / "a.txt").read_bytes() == b"a1a2"
        assert (storage / "b.txt").read_bytes() == b"b1b2"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("index", [-1, 3, 100])
    async def test_invalid_chunk_index(self, registry, temp_root, index):
        with pytest.raises(InvalidChunkIndex):
            await registry.ingest(make_chunk(b"x"), chunk_index=index, total_chunks=3, file_name="f", upload_id="bad")

        assert not (temp_root / "bad").exists()

    @pytest.mark.asyncio
    async def test_non_positive_total(self, registry):
        with pytest.raises(InvalidRequest):
            await registry.ingest(make_chunk(b"x"), chunk_index=0, total_chunks=0, file_name="f")

    @pytest.mark.asyncio
    async def test_total_mismatch(self, registry):
        await registry.ingest(make_chunk(b"x"), chunk_index=0, total_chunks=3, file_name="f", upload_id="mm")

        with pytest.raises(SessionTotalMismatch):
            await registry.ingest(make_chunk(b"y"), chunk_index=1, total_chunks=4, file_name="f", upload_id="mm")

        session = await registry.get("mm")
        assert session.total_chunks == 3
        assert session.chunks == {0}

    @pytest.mark.asyncio
    async def test_invalid_file_name(self, registry):
        with pytest.raises(InvalidName):
            await registry.ingest(make_chunk(b"x"), chunk_index=0, total_chunks=1, file_name="../evil")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("upload_id", ["../escape", "a/b", ".."])
    async def test_invalid_upload_id(self, registry, temp_dir, upload_id):
        with pytest.raises((InvalidName, AccessDenied)):
            await registry.ingest(make_chunk(b"x"), chunk_index=0, total_chunks=1, file_name="f", upload_id=upload_id)

        assert not (temp_dir / "escape").exists()

    @pytest.mark.asyncio
    async def test_target_escape_is_denied(self, registry, temp_root, temp_dir):
        with pytest.raises(AccessDenied):
            await registry.ingest(
                make_chunk(b"x"), chunk_index=0, total_chunks=1, file_name="f", relative_path="../../", upload_id="esc"
            )

        assert not (temp_root / "esc").exists()

    @pytest.mark.asyncio
    async def test_chunk_too_large(self, storage, temp_root):
        registry = SessionRegistry(ChunkStore(temp_root), storage, max_chunk_size=4)

        with pytest.raises(PayloadTooLarge):
            await registry.ingest(make_chunk(b"12345"), chunk_index=0, total_chunks=1, file_name="f", upload_id="big")

        assert await registry.get("big") is None
        assert not (temp_root / "big" / "chunk-0").exists()

    @pytest.mark.asyncio
    async def test_incomplete_merge_is_rejected(self, registry, storage, temp_root):
        await self.upload_all(registry, [b"a", b"b", b"c"], [0, 2])

        with pytest.raises(IncompleteUpload) as exc_info:
            await registry.merge("upload-1")

        assert exc_info.value.received == 2
        assert exc_info.value.expected == 3
        assert exc_info.value.to_dict() == {"error": "Not all chunks uploaded", "received": 2, "expected": 3}
        assert not (storage / "data.bin").exists()
        assert (temp_root / "upload-1" / "chunk-0").exists()
        assert (temp_root / "upload-1" / "chunk-2").exists()

        # Uploading the missing chunk afterwards completes the session
        await registry.ingest(make_chunk(b"b"), chunk_index=1, total_chunks=3, file_name="data.bin", upload_id="upload-1")
        await registry.merge("upload-1")
        assert (storage / "data.bin").read_bytes() == b"abc"

    @pytest.mark.asyncio
    async def test_merge_unknown_session(self, registry):
        with pytest.raises(SessionNotFound):
            await registry.merge("never-started")

    @pytest.mark.asyncio
    async def test_merge_twice_fails_second_time(self, registry):
        await self.upload_all(registry, [b"a"], [0])
        await registry.merge("upload-1")

        with pytest.raises(SessionNotFound):
            await registry.merge("upload-1")

    @pytest.mark.asyncio
    async def test_merge_failure_keeps_session(self, registry, storage, temp_root):
        await self.upload_all(registry, [b"a", b"b"], [0, 1])
        (temp_root / "upload-1" / "chunk-1").unlink()

        with pytest.raises(Internal):
            await registry.merge("upload-1")

        assert not (storage / "data.bin").exists()
        assert [p.name for p in storage.iterdir()] == []
        session = await registry.get("upload-1")
        assert session is not None
        assert session.chunks == {0, 1}

        # A retry after re-sending the chunk succeeds
        await registry.ingest(make_chunk(b"b"), chunk_index=1, total_chunks=2, file_name="data.bin", upload_id="upload-1")
        await registry.merge("upload-1")
        assert (storage / "data.bin").read_bytes() == b"ab"

    @pytest.mark.asyncio
    async def test_merge_replaces_existing_file(self, registry, storage):
        (storage / "data.bin").write_bytes(b"previous content")

        await self.upload_all(registry, [b"fresh"], [0])
        await registry.merge("upload-1")

        assert (storage / "data.bin").read_bytes() == b"fresh"

    @pytest.mark.asyncio
    async def test_session_survives_restart(self, storage, temp_root):
        first = SessionRegistry(ChunkStore(temp_root), storage, max_chunk_size=1024)
        await first.ingest(make_chunk(b"he"), chunk_index=0, total_chunks=2, file_name="r.txt", upload_id="restart")

        second = SessionRegistry(ChunkStore(temp_root), storage, max_chunk_size=1024)
        response = await second.ingest(
            make_chunk(b"llo"), chunk_index=1, total_chunks=2, file_name="r.txt", upload_id="restart"
        )
        assert response.received == 2

        await second.merge("restart")
        assert (storage / "r.txt").read_bytes() == b"hello"

    @pytest.mark.asyncio
    async def test_progress_record_is_replaced_atomically(self, registry, temp_root):
        await self.upload_all(registry, [b"a", b"b"], [0, 1])

        session_dir = temp_root / "upload-1"
        assert sorted(p.name for p in session_dir.iterdir()) == ["chunk-0", "chunk-1", "progress.json"]

    @pytest.mark.asyncio
    async def test_sweep_removes_stale_sessions(self, registry, temp_root):
        await self.upload_all(registry, [b"a", b"b"], [0])

        assert await registry.sweep(max_age_seconds=3600) == 0
        assert (temp_root / "upload-1").exists()

        assert await registry.sweep(max_age_seconds=-1) == 1
        assert not (temp_root / "upload-1").exists()
        assert await registry.get("upload-1") is None

    @pytest.mark.asyncio
    async def test_sweep_removes_session_without_record(self, registry, temp_root):
        orphan = temp_root / "orphan"
        orphan.mkdir(parents=True)
        (orphan / "chunk-0").write_bytes(b"x")
        old = 1_000_000_000
        os.utime(orphan, (old, old))

        assert await registry.sweep(max_age_seconds=3600) == 1
        assert not orphan.exists()

    @pytest.mark.asyncio
    async def test_sweep_waits_for_merge(self, registry, storage):
        await self.upload_all(registry, [b"x" * 1000] * 5, range(5))

        result, removed = await asyncio.gather(
            registry.merge("upload-1"), registry.sweep(max_age_seconds=-1)
        )

        assert result.path == "data.bin"
        assert (storage / "data.bin").stat().st_size == 5000
        assert removed == 0

    @pytest.mark.asyncio
    async def test_locks_are_released(self, registry):
        await self.upload_all(registry, [b"a", b"b"], [0, 1])
        await registry.merge("upload-1")

        assert len(registry._locks) == 0

    @pytest.mark.asyncio
    async def test_long_multibyte_name_merges(self, registry, storage):
        file_name = "文" * 80 + ".bin"

        response = await registry.ingest(
            make_chunk(b"payload"), chunk_index=0, total_chunks=1, file_name=file_name
        )
        result = await registry.merge(response.upload_id)

        assert len(response.upload_id.encode("utf-8")) < 255
        assert result.path == file_name
        assert (storage / file_name).read_bytes() == b"payload"
        assert [p.name for p in storage.iterdir()] == [file_name]
