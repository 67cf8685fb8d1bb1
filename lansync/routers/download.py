import urllib.parse
from pathlib import Path

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse, StreamingResponse

from ..dependencies import get_storage_root
from ..files import (
    ArchiveSource,
    DownloadMultipleRequest,
    InvalidRequest,
    archive_filename,
    collect_sources,
    iter_archive,
)

router = APIRouter(tags=["download"])


def _content_disposition(filename: str) -> str:
    try:
        filename.encode("ascii")
        if '"' not in filename:
            return f'attachment; filename="{filename}"'
    except UnicodeEncodeError:
        pass
    encoded_filename = urllib.parse.quote(filename, safe="")
    return f"attachment; filename*=UTF-8''{encoded_filename}"


def _zip_response(
    base_path: Path, sources: list[ArchiveSource], single: bool
) -> StreamingResponse:
    return StreamingResponse(
        iter_archive(base_path, sources),
        media_type="application/zip",
        headers={
            "Content-Disposition": _content_disposition(
                archive_filename(sources, single)
            )
        },
    )


@router.get("/download/{path:path}")
async def download_endpoint(path: str, base_path: Path = Depends(get_storage_root)):
    """Download a file, or a directory as a zip archive"""
    sources = await collect_sources(base_path, [path], single=True)
    source = sources[0]

    if source.is_dir:
        return _zip_response(base_path, sources, single=True)

    return FileResponse(
        path=str(source.path),
        filename=source.path.name,
        media_type="application/octet-stream",
    )


@router.post("/download-multiple")
async def download_multiple_endpoint(
    download_request: DownloadMultipleRequest,
    base_path: Path = Depends(get_storage_root),
):
    """Download several files and directories as one zip archive"""
    if not download_request.files:
        raise InvalidRequest("No files specified")

    single = len(download_request.files) == 1
    sources = await collect_sources(base_path, download_request.files, single=single)

    return _zip_response(base_path, sources, single=False)
