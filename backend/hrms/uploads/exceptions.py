from pathlib import Path
from typing import Optional


class UploadError(Exception):
    """Base exception for all upload-ingestion errors."""


class StorageUnavailable(UploadError):
    """Raised when the destination cannot be created or written.

    Fatal for the whole request: sibling parts are not attempted.
    """

    def __init__(self, path: Path, cause: Optional[OSError] = None) -> None:
        self.path = path
        self.cause = cause
        message = f"Upload storage unavailable at {path}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
