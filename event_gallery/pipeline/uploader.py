"""
Remote Asset Uploader

Pushes one encoded rendition to the content store and returns its durable URL.
Single attempt, no retries: the caller decides what a failure means for the
batch. Once upload() returns, the object exists remotely regardless of what
happens to the local transaction afterwards.
"""

from dataclasses import dataclass
from typing import Optional

from event_gallery.core.exceptions import InvalidInputError, UploadError
from event_gallery.core.logging import get_logger
from event_gallery.core.metrics import record_upload, track_stage_latency
from event_gallery.core.storage import IStorage

logger = get_logger(__name__)


@dataclass(frozen=True)
class UploadReceipt:
    url: str
    key: str
    category: str


class RemoteAssetUploader:
    """Single-shot uploads into a storage backend."""

    def __init__(self, storage: IStorage, content_type: str = "image/jpeg"):
        self.storage = storage
        self.content_type = content_type

    def planned_key(self, category: str, filename: str) -> str:
        return self.storage.key_for(category, filename)

    async def upload(
        self,
        buffer: bytes,
        category: str,
        filename: str,
        batch_index: Optional[int] = None
    ) -> UploadReceipt:
        """
        Upload a buffer under a category (folder) and return its URL.

        Raises:
            InvalidInputError: If the buffer is empty (no I/O performed)
            UploadError: If the store fails or acknowledges without a URL
        """
        if not buffer:
            raise InvalidInputError(
                "Cannot upload empty file",
                stage="upload",
                batch_index=batch_index
            )

        try:
            with track_stage_latency("upload"):
                stored = await self.storage.upload(
                    buffer,
                    filename,
                    folder=category,
                    content_type=self.content_type
                )
        except Exception as e:
            record_upload(category, "error")
            logger.error(
                "upload_failed",
                category=category,
                filename=filename,
                batch_index=batch_index,
                error=str(e),
                error_type=type(e).__name__
            )
            raise UploadError(
                f"Upload to '{category}' failed: {e}",
                category=category,
                batch_index=batch_index
            ) from e

        if stored is None or not stored.url:
            record_upload(category, "incomplete")
            logger.error("upload_incomplete", category=category, filename=filename)
            raise UploadError(
                f"Upload to '{category}' incomplete - missing URL",
                category=category,
                batch_index=batch_index
            )

        record_upload(category, "success")
        logger.info("upload_succeeded", category=category, key=stored.key, batch_index=batch_index)
        return UploadReceipt(url=stored.url, key=stored.key, category=category)
