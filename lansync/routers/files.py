from pathlib import Path

from fastapi import APIRouter, Depends

from ..dependencies import get_storage_root
from ..files import (
    CreateFolderRequest,
    CreateFolderResponse,
    DeleteRequest,
    DeleteResponse,
    FileListResponse,
    InvalidRequest,
    create_folder,
    delete_paths,
    get_file_items,
)

router = APIRouter(tags=["files"])


@router.get("/files", response_model=FileListResponse)
async def list_files(path: str = "", base_path: Path = Depends(get_storage_root)):
    """List files and directories in the specified storage path"""
    items = await get_file_items(base_path, path)

    return FileListResponse(files=items)


@router.post("/create-folder", response_model=CreateFolderResponse)
async def create_folder_endpoint(
    create_request: CreateFolderRequest,
    base_path: Path = Depends(get_storage_root),
):
    """Create a new folder"""
    path = await create_folder(
        base_path, create_request.folder_name, create_request.relative_path
    )

    return CreateFolderResponse(path=path)


@router.delete("/delete", response_model=DeleteResponse)
async def delete_endpoint(
    delete_request: DeleteRequest,
    base_path: Path = Depends(get_storage_root),
):
    """Delete files and directories; items that cannot be deleted are skipped"""
    if not delete_request.paths:
        raise InvalidRequest("No paths specified")

    deleted = await delete_paths(base_path, delete_request.paths)

    return DeleteResponse(deleted=deleted)
