"""Error kinds raised by the file and upload operations.

Each error carries the HTTP status it maps to; the API layer renders them as
``{"error": message, **extra}``.
"""

from typing import Any


class FileSyncError(Exception):
    """Base class for all storage and upload errors."""

    status_code = 500

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, **self.extra}


class AccessDenied(FileSyncError):
    """The path escapes the storage root."""

    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class InvalidName(FileSyncError):
    """A bare file or folder name contains illegal characters or is empty."""

    status_code = 400


class InvalidRequest(FileSyncError):
    status_code = 400


class AlreadyExists(FileSyncError):
    status_code = 400


class InvalidChunkIndex(FileSyncError):
    status_code = 400


class SessionTotalMismatch(FileSyncError):
    status_code = 400


class IncompleteUpload(FileSyncError):
    """Merge requested before every chunk arrived."""

    status_code = 400

    def __init__(self, received: int, expected: int):
        super().__init__(
            "Not all chunks uploaded", received=received, expected=expected
        )
        self.received = received
        self.expected = expected


class SessionNotFound(FileSyncError):
    status_code = 404

    def __init__(self, upload_id: str):
        super().__init__(f"Upload session '{upload_id}' not found")
        self.upload_id = upload_id


class NotFound(FileSyncError):
    status_code = 404


class PayloadTooLarge(FileSyncError):
    status_code = 413


class Internal(FileSyncError):
    status_code = 500
