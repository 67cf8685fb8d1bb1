"""
Basic file operations on the storage tree: listing, deletion, folder creation
and whole-file uploads. Every path goes through the path guard first.
"""

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from aiofiles import os as aioos
from fastapi import UploadFile

from ..logger import logger
from .exceptions import AccessDenied, AlreadyExists, FileSyncError, Internal
from .path_guard import (
    decode_filename,
    join_relative,
    resolve_entry,
    resolve_path,
    to_relative,
    validate_name,
)
from .types import FileEntry, UploadedFile
from .utils import _rmtree_async, _scandir_async, remove_quietly, save_upload


async def get_file_items(base_path: Path, current_path: str = "") -> List[FileEntry]:
    """List the entries of a storage directory in discovery order.

    A directory that does not exist lists as empty.
    """
    actual_path = resolve_path(base_path, current_path)

    try:
        entries = await _scandir_async(actual_path)
    except FileNotFoundError:
        return []
    except OSError as e:
        raise Internal(str(e))

    items = []
    for name, stat_result, is_dir in entries:
        items.append(
            FileEntry(
                name=name,
                type="directory" if is_dir else "file",
                size=0 if is_dir else stat_result.st_size,
                modified=datetime.fromtimestamp(stat_result.st_mtime, tz=timezone.utc),
                path=to_relative(base_path, actual_path / name),
            )
        )
    return items


async def delete_paths(base_path: Path, paths: List[str]) -> List[str]:
    """Delete each path independently, returning the ones actually removed.

    Denied, missing or failing paths are logged and skipped.
    """
    deleted = []
    for relative_path in paths:
        try:
            # A symlink is removed itself, never the tree it points to
            target_path = resolve_entry(base_path, relative_path)
            if target_path == base_path.resolve():
                raise AccessDenied("Refusing to delete the storage root")

            if await aioos.path.isdir(target_path) and not await aioos.path.islink(
                target_path
            ):
                await _rmtree_async(target_path)
            else:
                await aioos.unlink(target_path)
        except FileNotFoundError:
            logger.warning(f"Skipping delete of '{relative_path}': not found")
            continue
        except (FileSyncError, OSError) as e:
            logger.warning(f"Failed to delete '{relative_path}': {e}")
            continue

        logger.info(f"Deleted '{relative_path}'")
        deleted.append(relative_path)

    return deleted


async def create_folder(base_path: Path, folder_name: str | None, relative_path: str) -> str:
    """Create ``folder_name`` under ``relative_path``; returns its relative path."""
    validate_name(folder_name, "Folder")
    target_path = resolve_path(base_path, join_relative(relative_path, folder_name))

    if await aioos.path.exists(target_path):
        raise AlreadyExists("Folder already exists")

    await aioos.makedirs(target_path, exist_ok=True)
    logger.info(f"Created folder '{to_relative(base_path, target_path)}'")
    return join_relative(relative_path, folder_name)


async def save_uploaded_files(
    base_path: Path, relative_path: str, files: List[UploadFile], max_size: int
) -> List[UploadedFile]:
    """Store whole-file uploads in ``relative_path``, overwriting same-named files."""
    target_dir = resolve_path(base_path, relative_path)

    # Validate every name before writing anything
    names = []
    for file in files:
        name = decode_filename(file.filename or "")
        validate_name(name)
        names.append(name)

    await aioos.makedirs(target_dir, exist_ok=True)

    uploaded = []
    for file, name in zip(files, names):
        target_path = target_dir / name
        part_path = target_dir / f".{uuid.uuid4().hex}.upload"
        try:
            await save_upload(file, part_path, max_size)
            await aioos.replace(part_path, target_path)
        except OSError as e:
            await remove_quietly(part_path)
            raise Internal(f"Failed to store '{name}': {e}")

        uploaded.append(UploadedFile(name=name, path=join_relative(relative_path, name)))
        logger.info(f"Uploaded '{join_relative(relative_path, name)}'")

    return uploaded
