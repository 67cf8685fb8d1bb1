"""
Streaming zip archives of storage entries, for folder and multi-item downloads.

The archive is produced as an iterator of byte blocks; nothing is buffered
beyond the block being compressed, so arbitrarily large trees can be sent.
"""

import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, List

import zipstream
from aiofiles import os as aioos

from ..logger import logger
from .exceptions import FileSyncError, NotFound
from .path_guard import resolve_path, to_relative


@dataclass(frozen=True)
class ArchiveSource:
    path: Path  # Resolved absolute path inside the storage root
    arcname: str  # Archive-internal name of the entry (root of its subtree for dirs)
    is_dir: bool


async def collect_sources(
    base_path: Path, paths: List[str], single: bool = False
) -> List[ArchiveSource]:
    """Validate requested paths and decide their names inside the archive.

    In a batch (``single=False``) a denied or missing path is skipped. When the
    request names a single target, the same conditions fail the request.

    Raises:
        AccessDenied: single target outside the storage root
        NotFound: single target that does not exist
    """
    sources = []
    for relative_path in paths:
        try:
            source_path = resolve_path(base_path, relative_path)
            if await aioos.path.isdir(source_path):
                sources.append(ArchiveSource(source_path, source_path.name, True))
            elif await aioos.path.isfile(source_path):
                arcname = (
                    source_path.name
                    if single
                    else to_relative(base_path, source_path)
                )
                sources.append(ArchiveSource(source_path, arcname, False))
            else:
                raise NotFound(f"'{relative_path}' not found")
        except FileSyncError as e:
            if single:
                raise
            logger.warning(f"Skipping '{relative_path}' in archive: {e}")

    return sources


def _iter_entries(base: Path, sources: List[ArchiveSource]) -> Iterator[tuple[Path, str]]:
    """Yield ``(path, arcname)`` for every file and empty directory to archive.

    Directory trees are walked lazily with an explicit worklist; a directory
    is only listed once the entries before it have been consumed. Entries
    whose real path leaves the storage root (e.g. via symlinks) are left out.
    """
    for source in sources:
        if not source.is_dir:
            yield source.path, source.arcname
            continue

        pending = [(source.path, source.arcname)]
        visited = set()
        while pending:
            directory, arc_dir = pending.pop()
            real_dir = directory.resolve()
            if real_dir in visited:
                continue
            visited.add(real_dir)

            try:
                with os.scandir(directory) as it:
                    entries = sorted(it, key=lambda entry: entry.name)
            except OSError as e:
                logger.warning(f"Skipping unreadable directory '{directory}': {e}")
                continue

            if not entries:
                yield directory, arc_dir
                continue

            for entry in entries:
                entry_path = Path(entry.path)
                try:
                    real_path = entry_path.resolve()
                except (OSError, RuntimeError) as e:
                    logger.warning(f"Skipping '{entry_path}': {e}")
                    continue
                if real_path != base and base not in real_path.parents:
                    logger.warning(f"Skipping '{entry_path}': outside the storage root")
                    continue

                arcname = f"{arc_dir}/{entry.name}"
                if real_path.is_dir():
                    pending.append((entry_path, arcname))
                elif real_path.is_file():
                    yield entry_path, arcname


def iter_archive(base_path: Path, sources: List[ArchiveSource]) -> Iterator[bytes]:
    """Yield the zip archive of ``sources`` block by block.

    Each entry is compressed and emitted before the walk moves on, so the
    first bytes go out before a large tree has been scanned and closing the
    stream stops both the walk and the reads.
    """
    zf = zipstream.ZipFile(
        mode="w", compression=zipstream.ZIP_DEFLATED, allowZip64=True
    )

    try:
        for path, arcname in _iter_entries(base_path.resolve(), sources):
            zf.write(str(path), arcname=arcname)
            yield from zf.flush()
        # Central directory
        yield from zf
    except GeneratorExit:
        logger.info("Archive stream closed before completion")
        raise
    except OSError as e:
        # Headers are already sent; the client ends up with a truncated archive
        logger.error(f"Archive stream aborted: {e}")
        raise


def write_archive(
    base_path: Path, sources: List[ArchiveSource], sink: BinaryIO
) -> None:
    """Write the archive of ``sources`` to any binary sink."""
    for block in iter_archive(base_path, sources):
        sink.write(block)


def archive_filename(sources: List[ArchiveSource], single: bool) -> str:
    """Download name: ``<folder>.zip`` for one folder, else ``files-<ms>.zip``."""
    if single and len(sources) == 1 and sources[0].is_dir:
        return f"{sources[0].arcname}.zip"
    return f"files-{int(time.time() * 1000)}.zip"
