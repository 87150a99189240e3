"""
File Upload Service - attaches uploaded files to products.

The upload and the database insert form a two-step saga: the stored
object is only committed once the ProductFile row is durable, otherwise
it is released again.
"""

import logging
import uuid
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.config import settings
from fulfillment.errors import StorageError, ValidationError
from fulfillment.fsm.states import FileType
from fulfillment.models.product import ProductFile
from fulfillment.retry import RetryPolicy, run_with_retry
from fulfillment.services.catalog_service import CatalogService
from fulfillment.services.storage_service import ObjectStorage, StoredObject

logger = logging.getLogger(__name__)


def default_upload_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.storage_upload_attempts,
        base_delay=settings.storage_backoff_seconds,
        retry_on=(StorageError,),
    )


class FileUploadService:
    """Service for uploading product files to object storage."""

    def __init__(
        self,
        db: AsyncSession,
        storage: ObjectStorage,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.db = db
        self.storage = storage
        self.retry_policy = retry_policy or default_upload_policy()
        self.sleep = sleep

    @staticmethod
    def build_storage_key(product_id: uuid.UUID, file_name: str) -> str:
        safe_name = "".join(c if c.isalnum() or c in "._-" else "_" for c in file_name) or "file"
        return f"{settings.cloudinary_folder}/{product_id}/{uuid.uuid4().hex}_{safe_name}"

    async def upload_product_file(
        self,
        product_id: uuid.UUID,
        file_name: str,
        content_type: str,
        data: bytes,
    ) -> ProductFile:
        """
        Upload a file and link it to the product.

        Storage failures are retried. If the database step fails the
        uploaded object is deleted and the original error re-raised.
        """
        if not data:
            raise ValidationError("Uploaded file is empty")

        product = await CatalogService(self.db).get_product(product_id)

        key = self.build_storage_key(product_id, file_name)

        async def _put(attempt: int) -> StoredObject:
            return await self.storage.put_object(key, data, content_type)

        retry_kwargs = {"description": f"Upload of {key}"}
        if self.sleep is not None:
            retry_kwargs["sleep"] = self.sleep
        stored = await run_with_retry(self.retry_policy, _put, **retry_kwargs)

        file_type = FileType.from_content_type(content_type)
        try:
            product_file = ProductFile(
                storage_key=stored.key,
                file_name=file_name,
                content_type=content_type,
                file_type=file_type.value,
                file_size=len(data),
            )
            self.db.add(product_file)
            await self.db.flush()

            if file_type == FileType.PDF:
                product.pdf_file_id = product_file.id
            else:
                product.image_file_id = product_file.id

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            try:
                await stored.release()
            except StorageError as release_error:
                logger.error(
                    f"Orphaned object {stored.key}: release failed: {release_error}",
                    extra={"context": {"storage_key": stored.key, "product_id": str(product_id)}},
                )
            raise

        stored.commit()
        logger.info(f"Attached {file_type.value} file {file_name} to product {product_id}")
        return product_file
