"""
Admin API for product files.
Uploads a deliverable file to storage and links it to its product.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.api.deps import get_admin_user, get_storage
from fulfillment.database import get_db
from fulfillment.errors import StorageError, ValidationError
from fulfillment.services.file_service import FileUploadService
from fulfillment.services.storage_service import ObjectStorage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["Admin - Product Files"])


@router.post("/{product_id}/files")
async def upload_product_file(
    product_id: uuid.UUID,
    file: UploadFile = File(..., description="PDF or image deliverable"),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    _: str = Depends(get_admin_user),
):
    """
    Upload a product file.

    The stored object is deleted again if the database write fails.
    """
    data = await file.read()
    service = FileUploadService(db, storage)

    try:
        product_file = await service.upload_product_file(
            product_id=product_id,
            file_name=file.filename or "file",
            content_type=file.content_type or "application/octet-stream",
            data=data,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        logger.error(f"Upload for product {product_id} failed: {e}")
        raise HTTPException(status_code=502, detail="Storage unavailable")

    return {
        "status": "success",
        "file_id": str(product_file.id),
        "file_type": product_file.file_type,
        "file_size": product_file.file_size,
    }
