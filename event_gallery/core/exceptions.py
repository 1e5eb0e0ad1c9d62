"""
Global Exception Handling

Provides the ingestion error taxonomy and structured JSON error responses.
Every pipeline failure carries the stage it came from and, where a single
file caused it, that file's position in the batch.
"""

import traceback
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from event_gallery.core.logging import get_logger, batch_id_var

logger = get_logger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class GalleryBaseException(Exception):
    """Base exception for the gallery service."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        batch_id: Optional[str] = None,
        stage: Optional[str] = None,
        batch_index: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.batch_id = batch_id or batch_id_var.get()
        self.stage = stage
        self.batch_index = batch_index
        self.details = details or {}
        super().__init__(self.message)

    def to_response_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "batch_id": self.batch_id,
            "code": self.code,
            "stage": self.stage,
            "batch_index": self.batch_index,
            "details": self.details,
            "timestamp": _utc_timestamp()
        }


class InvalidInputError(GalleryBaseException):
    """Raised when input is rejected before any side effect."""

    def __init__(self, message: str, code: int = 400, **kwargs):
        kwargs.setdefault("stage", "validate")
        super().__init__(message, code=code, **kwargs)


class EmptyBatchError(InvalidInputError):
    """Raised when a batch-create request carries no files."""

    def __init__(self, message: str = "At least one image file is required", **kwargs):
        super().__init__(message, **kwargs)


class UnsupportedMediaTypeError(InvalidInputError):
    """Raised when a file declares a media type outside the allowed set."""

    def __init__(self, media_type: str, **kwargs):
        super().__init__(f"Unsupported file type: {media_type}", code=415, **kwargs)
        self.details["media_type"] = media_type


class FileTooLargeError(InvalidInputError):
    """Raised when a file exceeds the per-file size cap."""

    def __init__(self, filename: str, size: int, limit: int, **kwargs):
        super().__init__(f"File too large: {filename}", code=413, **kwargs)
        self.details["size_bytes"] = size
        self.details["limit_bytes"] = limit


class DecodeError(GalleryBaseException):
    """Raised when an image buffer cannot be decoded."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("stage", "transcode")
        super().__init__(message, code=422, **kwargs)


class UploadError(GalleryBaseException):
    """Raised when the remote store is unreachable or rejects an object."""

    def __init__(self, message: str, category: Optional[str] = None, **kwargs):
        kwargs.setdefault("stage", "upload")
        super().__init__(message, code=502, **kwargs)
        if category:
            self.details["category"] = category


class PersistenceError(GalleryBaseException):
    """Raised when the local transaction fails and is rolled back."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("stage", "commit")
        super().__init__(message, code=500, **kwargs)


class NotFoundError(GalleryBaseException):
    """Raised when a requested row does not exist."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=404, **kwargs)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# =============================================================================
# Exception Handlers
# =============================================================================

def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(GalleryBaseException)
    async def gallery_exception_handler(request: Request, exc: GalleryBaseException):
        log = logger.warning if exc.code < 500 else logger.error
        log(
            "gallery_exception",
            error=exc.message,
            code=exc.code,
            stage=exc.stage,
            batch_index=exc.batch_index,
            details=exc.details,
            path=str(request.url.path)
        )

        return JSONResponse(
            status_code=exc.code,
            content=exc.to_response_dict()
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "batch_id": batch_id_var.get(),
                "code": 500,
                "timestamp": _utc_timestamp()
            }
        )
