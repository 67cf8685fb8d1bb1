"""
File operation type definitions and Pydantic models.

JSON field names follow the public API (camelCase where the API uses it);
Python attribute names stay snake_case through field aliases.
"""

from datetime import datetime
from typing import List, Literal, Optional, Set

from pydantic import BaseModel, ConfigDict, Field


class _ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# Listing models
class FileEntry(_ApiModel):
    name: str
    type: Literal["file", "directory"]
    size: int  # 0 for directories
    modified: datetime
    path: str  # Storage-relative, forward slashes, no leading slash


class FileListResponse(_ApiModel):
    files: List[FileEntry]


# Simple upload models
class UploadedFile(_ApiModel):
    name: str
    path: str


class UploadResponse(_ApiModel):
    success: bool = True
    files: List[UploadedFile]


# Chunked upload models
class UploadSession(_ApiModel):
    """Progress record of one chunked upload, persisted as progress.json"""

    upload_id: str = Field(alias="uploadId")
    file_name: str = Field(alias="fileName")
    relative_path: str = Field(default="", alias="relativePath")
    total_chunks: int = Field(alias="totalChunks", ge=1)
    chunks: Set[int] = Field(default_factory=set)
    created_at: float = Field(alias="createdAt")  # Unix timestamp
    updated_at: float = Field(alias="updatedAt")  # Unix timestamp

    @property
    def received(self) -> int:
        return len(self.chunks)

    @property
    def is_complete(self) -> bool:
        return len(self.chunks) == self.total_chunks


class ChunkUploadResponse(_ApiModel):
    upload_id: str = Field(alias="uploadId")
    received: int
    total: int


class MergeRequest(_ApiModel):
    upload_id: str = Field(alias="uploadId")


class MergeResponse(_ApiModel):
    success: bool = True
    path: str


# Folder, delete and download models
class CreateFolderRequest(_ApiModel):
    folder_name: Optional[str] = Field(default=None, alias="folderName")
    relative_path: str = Field(default="", alias="relativePath")


class CreateFolderResponse(_ApiModel):
    success: bool = True
    path: str


class DeleteRequest(_ApiModel):
    paths: List[str] = Field(default_factory=list)


class DeleteResponse(_ApiModel):
    success: bool = True
    deleted: List[str]


class DownloadMultipleRequest(_ApiModel):
    files: List[str] = Field(default_factory=list)
