"""
Storage Service - object storage for product files.

put_object hands back a StoredObject token. Whoever receives the token
owns the uploaded object until it is committed (kept) or released
(deleted). This keeps a failed database write from leaving orphans.
"""

import asyncio
import io
import logging
from abc import ABC, abstractmethod
from typing import Optional

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
import cloudinary.utils
import httpx

from fulfillment.config import settings
from fulfillment.errors import StorageError

logger = logging.getLogger(__name__)


class StoredObject:
    """Ownership token for an uploaded object."""

    def __init__(self, storage: "ObjectStorage", key: str, size: int, url: Optional[str] = None):
        self.storage = storage
        self.key = key
        self.size = size
        self.url = url
        self._committed = False
        self._released = False

    def commit(self) -> None:
        """Keep the object. Releasing afterwards is a no-op."""
        if self._released:
            raise StorageError(f"Object {self.key} was already released")
        self._committed = True

    async def release(self) -> None:
        """Delete the object unless it has been committed."""
        if self._committed or self._released:
            return
        await self.storage.delete_object(self.key)
        self._released = True
        logger.info(f"Released uploaded object {self.key}")


class ObjectStorage(ABC):
    """Bulk storage primitives."""

    @abstractmethod
    async def put_object(self, key: str, data: bytes, content_type: str) -> StoredObject:
        """Upload bytes under key. Raises StorageError."""

    @abstractmethod
    async def get_object(self, key: str) -> bytes:
        """Fetch an object's bytes. Raises StorageError."""

    @abstractmethod
    async def delete_object(self, key: str) -> None:
        """Delete an object. Raises StorageError."""


class CloudinaryStorage(ObjectStorage):
    """Object storage on Cloudinary raw resources."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout or settings.storage_timeout_seconds
        self.transport = transport
        self.configured = bool(settings.cloudinary_cloud_name)

        if self.configured:
            cloudinary.config(
                cloud_name=settings.cloudinary_cloud_name,
                api_key=settings.cloudinary_api_key,
                api_secret=settings.cloudinary_api_secret,
                secure=True,
            )
        else:
            logger.warning("Cloudinary not configured. Storage operations will fail.")

    def _require_config(self) -> None:
        if not self.configured:
            raise StorageError("Cloudinary storage not configured")

    async def _call(self, func, *args, **kwargs):
        """Run a blocking Cloudinary SDK call with a timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, **kwargs),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise StorageError(f"Cloudinary call timed out after {self.timeout}s") from e
        except cloudinary.exceptions.Error as e:
            raise StorageError(f"Cloudinary error: {e}") from e

    async def put_object(self, key: str, data: bytes, content_type: str) -> StoredObject:
        self._require_config()
        response = await self._call(
            cloudinary.uploader.upload,
            io.BytesIO(data),
            public_id=key,
            resource_type="raw",
            type="private",
            overwrite=False,
        )
        logger.info(f"Uploaded {len(data)} bytes to Cloudinary as {key}")
        return StoredObject(
            storage=self,
            key=response.get("public_id", key),
            size=response.get("bytes", len(data)),
            url=response.get("secure_url"),
        )

    async def get_object(self, key: str) -> bytes:
        self._require_config()
        url, _options = cloudinary.utils.cloudinary_url(
            key,
            resource_type="raw",
            type="private",
            sign_url=True,
            secure=True,
        )
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            raise StorageError(f"Failed to fetch {key}: {e}") from e

        if response.status_code != 200:
            raise StorageError(f"Failed to fetch {key}: HTTP {response.status_code}")
        return response.content

    async def delete_object(self, key: str) -> None:
        self._require_config()
        result = await self._call(
            cloudinary.uploader.destroy,
            key,
            resource_type="raw",
            type="private",
            invalidate=True,
        )
        if result.get("result") not in ("ok", "not found"):
            raise StorageError(f"Cloudinary refused to delete {key}: {result}")
