"""
File operations module with organized components.

This module provides file management capabilities including:
- Path containment and name validation
- Basic file operations (listing, deletion, folder creation, uploads)
- Chunked upload sessions with ordered merge
- Streaming zip archives for downloads
- Type definitions for all operations
"""

from .archive import (
    ArchiveSource,
    archive_filename,
    collect_sources,
    iter_archive,
    write_archive,
)
from .base import create_folder, delete_paths, get_file_items, save_uploaded_files
from .chunked import ChunkStore, SessionRegistry
from .exceptions import (
    AccessDenied,
    AlreadyExists,
    FileSyncError,
    IncompleteUpload,
    Internal,
    InvalidChunkIndex,
    InvalidName,
    InvalidRequest,
    NotFound,
    PayloadTooLarge,
    SessionNotFound,
    SessionTotalMismatch,
)
from .path_guard import decode_filename, resolve_path, validate_name
from .sweeper import UploadSweeper
from .types import (
    ChunkUploadResponse,
    CreateFolderRequest,
    CreateFolderResponse,
    DeleteRequest,
    DeleteResponse,
    DownloadMultipleRequest,
    FileEntry,
    FileListResponse,
    MergeRequest,
    MergeResponse,
    UploadedFile,
    UploadResponse,
    UploadSession,
)

__all__ = [
    # Types
    "ChunkUploadResponse",
    "CreateFolderRequest",
    "CreateFolderResponse",
    "DeleteRequest",
    "DeleteResponse",
    "DownloadMultipleRequest",
    "FileEntry",
    "FileListResponse",
    "MergeRequest",
    "MergeResponse",
    "UploadedFile",
    "UploadResponse",
    "UploadSession",
    # Errors
    "AccessDenied",
    "AlreadyExists",
    "FileSyncError",
    "IncompleteUpload",
    "Internal",
    "InvalidChunkIndex",
    "InvalidName",
    "InvalidRequest",
    "NotFound",
    "PayloadTooLarge",
    "SessionNotFound",
    "SessionTotalMismatch",
    # Path guard
    "decode_filename",
    "resolve_path",
    "validate_name",
    # Base operations
    "create_folder",
    "delete_paths",
    "get_file_items",
    "save_uploaded_files",
    # Chunked uploads
    "ChunkStore",
    "SessionRegistry",
    "UploadSweeper",
    # Archives
    "ArchiveSource",
    "archive_filename",
    "collect_sources",
    "iter_archive",
    "write_archive",
]
