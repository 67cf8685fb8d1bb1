from pathlib import Path

from .config import settings
from .files import ChunkStore, SessionRegistry

upload_registry = SessionRegistry(
    ChunkStore(settings.temp_path),
    settings.storage_path,
    settings.max_file_size,
)


def get_storage_root() -> Path:
    """Root directory of the shared storage tree"""
    return settings.storage_path


def get_upload_registry() -> SessionRegistry:
    return upload_registry


def get_max_file_size() -> int:
    return settings.max_file_size
