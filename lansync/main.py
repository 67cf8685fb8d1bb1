import socket
from contextlib import asynccontextmanager

import psutil
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.middleware.cors import CORSMiddleware

from .config import settings
from .dependencies import upload_registry
from .files import FileSyncError, UploadSweeper
from .logger import logger
from .routers import download, files, upload


def get_local_ip_addresses() -> list[str]:
    """Non-internal IPv4 addresses of this host, for the LAN access URLs."""
    addresses = []
    for interface_addresses in psutil.net_if_addrs().values():
        for address in interface_addresses:
            if address.family == socket.AF_INET and not address.address.startswith(
                "127."
            ):
                addresses.append(address.address)
    return addresses


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.storage_path.mkdir(parents=True, exist_ok=True)
    settings.temp_path.mkdir(parents=True, exist_ok=True)

    sweeper = UploadSweeper(
        upload_registry,
        ttl_seconds=settings.session_ttl_seconds,
        interval_seconds=settings.cleanup_interval_seconds,
    )
    await sweeper.start()

    logger.info(f"Storage path: {settings.storage_path.resolve()}")
    logger.info(f"Local access: http://localhost:{settings.port}")
    for address in get_local_ip_addresses():
        logger.info(f"LAN access: http://{address}:{settings.port}")

    yield

    await sweeper.stop()


api_app = FastAPI()


@api_app.exception_handler(FileSyncError)
async def file_sync_error_handler(request: Request, exc: FileSyncError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@api_app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


@api_app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(
        f"{request.method} {request.url.path}: {type(exc).__name__}: {exc}",
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content={"error": str(exc)})


api_app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

api_app.include_router(files.router)
api_app.include_router(upload.router)
api_app.include_router(download.router)

app = FastAPI(lifespan=lifespan, title="LAN Sync")
app.mount("/api", api_app)

# The browser UI is optional and served as plain static files
if settings.static_path.is_dir():
    app.mount(
        "/",
        StaticFiles(directory=settings.static_path.resolve(), html=True),
        name="static",
    )
