from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from ..dependencies import get_max_file_size, get_storage_root, get_upload_registry
from ..files import (
    ChunkUploadResponse,
    MergeRequest,
    MergeResponse,
    SessionRegistry,
    UploadResponse,
    save_uploaded_files,
)

router = APIRouter(tags=["upload"])


@router.post("/upload", response_model=UploadResponse)
async def upload_files_endpoint(
    files: List[UploadFile] = File(...),
    relative_path: str = Form("", alias="relativePath"),
    base_path: Path = Depends(get_storage_root),
    max_size: int = Depends(get_max_file_size),
):
    """Upload one or more whole files into a storage directory"""
    uploaded = await save_uploaded_files(base_path, relative_path, files, max_size)

    return UploadResponse(files=uploaded)


@router.post("/upload-chunk", response_model=ChunkUploadResponse)
async def upload_chunk_endpoint(
    chunk: UploadFile = File(...),
    chunk_index: int = Form(..., alias="chunkIndex"),
    total_chunks: int = Form(..., alias="totalChunks"),
    file_name: str = Form(..., alias="fileName"),
    relative_path: str = Form("", alias="relativePath"),
    upload_id: Optional[str] = Form(None, alias="uploadId"),
    registry: SessionRegistry = Depends(get_upload_registry),
):
    """Store one chunk of a chunked upload"""
    return await registry.ingest(
        chunk,
        chunk_index=chunk_index,
        total_chunks=total_chunks,
        file_name=file_name,
        relative_path=relative_path,
        upload_id=upload_id or None,
    )


@router.post("/merge-chunks", response_model=MergeResponse)
async def merge_chunks_endpoint(
    merge_request: MergeRequest,
    registry: SessionRegistry = Depends(get_upload_registry),
):
    """Merge the chunks of a completed upload into the target file"""
    return await registry.merge(merge_request.upload_id)
