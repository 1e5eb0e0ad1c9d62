"""
Storage Abstraction Layer - The Bridge Pattern

Provides a clean interface for the remote content store with LocalStorage
(development) and CloudinaryStorage (production) implementations.
Storage keys are derived from (folder, filename) before upload so callers can
record them ahead of the side effect.
"""

import asyncio
import io
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict, Any

import cloudinary.api
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError, NotFound

from event_gallery.core.config import Settings
from event_gallery.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StoredObject:
    """Acknowledgment returned by a storage backend."""
    key: str
    url: Optional[str]


class StorageError(Exception):
    """Raised by a backend when the remote store rejects an operation."""


class IStorage(ABC):
    """Interface for storage operations - The Bridge"""

    @abstractmethod
    def key_for(self, folder: str, filename: str) -> str:
        """Storage key an upload of (folder, filename) will be stored under."""

    @abstractmethod
    async def upload(
        self,
        file_data: bytes,
        filename: str,
        folder: str = "uploads",
        content_type: str = "image/jpeg"
    ) -> StoredObject:
        """
        Upload a file and return its key and public URL.

        Args:
            file_data: Raw bytes of the file
            filename: Object name inside the folder
            folder: Logical folder/category prefix
            content_type: MIME type of the file
        """

    @abstractmethod
    async def delete(self, storage_key: str) -> bool:
        """
        Delete a file from storage.

        Returns:
            True if an object was deleted, False if none existed
        """

    @abstractmethod
    async def exists(self, storage_key: str) -> bool:
        """Check if a file exists in storage."""

    async def aclose(self):
        """Release any network resources held by the backend."""


class LocalStorage(IStorage):
    """Local filesystem storage implementation for development."""

    def __init__(self, base_path: str = "./data/storage", base_url: str = "/static/storage"):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.base_url = base_url.rstrip("/")

    def key_for(self, folder: str, filename: str) -> str:
        return f"{folder.strip('/')}/{filename}"

    async def upload(
        self,
        file_data: bytes,
        filename: str,
        folder: str = "uploads",
        content_type: str = "image/jpeg"
    ) -> StoredObject:
        key = self.key_for(folder, filename)
        file_path = self.base_path / key

        def _write():
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_bytes(file_data)

        await asyncio.to_thread(_write)
        return StoredObject(key=key, url=f"{self.base_url}/{key}")

    async def delete(self, storage_key: str) -> bool:
        file_path = self.base_path / storage_key

        def _unlink() -> bool:
            try:
                file_path.unlink()
            except FileNotFoundError:
                return False
            return True

        return await asyncio.to_thread(_unlink)

    async def exists(self, storage_key: str) -> bool:
        return await asyncio.to_thread((self.base_path / storage_key).exists)


class CloudinaryStorage(IStorage):
    """Cloudinary implementation over the vendor SDK.

    The SDK is blocking, so every call runs in a worker thread.
    """

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        timeout: float = 60.0
    ):
        self.options: Dict[str, Any] = {
            "cloud_name": cloud_name,
            "api_key": api_key,
            "api_secret": api_secret,
            "secure": True,
        }
        self.timeout = timeout

    def key_for(self, folder: str, filename: str) -> str:
        # Cloudinary public ids carry no extension
        return f"{folder.strip('/')}/{Path(filename).stem}"

    async def upload(
        self,
        file_data: bytes,
        filename: str,
        folder: str = "uploads",
        content_type: str = "image/jpeg"
    ) -> StoredObject:
        public_id = self.key_for(folder, filename)
        try:
            body = await asyncio.to_thread(
                cloudinary.uploader.upload,
                io.BytesIO(file_data),
                public_id=public_id,
                resource_type="image",
                overwrite=True,
                timeout=self.timeout,
                **self.options
            )
        except CloudinaryError as e:
            raise StorageError(f"Cloudinary upload failed: {e}") from e

        logger.debug("cloudinary_upload_acknowledged", public_id=body.get("public_id"))
        return StoredObject(
            key=body.get("public_id") or public_id,
            url=body.get("secure_url")
        )

    async def delete(self, storage_key: str) -> bool:
        try:
            body = await asyncio.to_thread(
                cloudinary.uploader.destroy,
                storage_key,
                resource_type="image",
                invalidate=True,
                timeout=self.timeout,
                **self.options
            )
        except CloudinaryError as e:
            raise StorageError(f"Cloudinary destroy failed: {e}") from e
        return body.get("result") == "ok"

    async def exists(self, storage_key: str) -> bool:
        try:
            await asyncio.to_thread(cloudinary.api.resource, storage_key, **self.options)
        except NotFound:
            return False
        except CloudinaryError as e:
            raise StorageError(f"Cloudinary lookup failed: {e}") from e
        return True


def build_storage(settings: Settings) -> IStorage:
    """Create the storage backend selected by STORAGE_BACKEND."""
    backend = settings.STORAGE_BACKEND.lower()

    if backend == "cloudinary":
        if not (settings.CLOUDINARY_CLOUD_NAME and settings.CLOUDINARY_API_KEY and settings.CLOUDINARY_API_SECRET):
            raise ValueError(
                "STORAGE_BACKEND=cloudinary requires CLOUDINARY_CLOUD_NAME, "
                "CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET"
            )
        return CloudinaryStorage(
            cloud_name=settings.CLOUDINARY_CLOUD_NAME,
            api_key=settings.CLOUDINARY_API_KEY,
            api_secret=settings.CLOUDINARY_API_SECRET,
            timeout=settings.UPLOAD_TIMEOUT_SECONDS
        )
    if backend == "local":
        return LocalStorage(
            base_path=settings.LOCAL_STORAGE_PATH,
            base_url=settings.LOCAL_STORAGE_BASE_URL
        )
    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")
