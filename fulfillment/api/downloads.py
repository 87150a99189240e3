"""
Downloads API - lists a customer's grants and redeems them.
"""

import logging
import uuid
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.api.deps import get_storage
from fulfillment.api.rate_limit import rate_limit
from fulfillment.database import get_db
from fulfillment.errors import RedemptionError, StorageError
from fulfillment.services.grant_service import DownloadGrantIssuer
from fulfillment.services.storage_service import ObjectStorage
from fulfillment.utils import is_valid_email

logger = logging.getLogger(__name__)

router = APIRouter(tags=["downloads"])


@router.get("/downloads")
async def list_downloads(
    email: str = Query(...),
    db: AsyncSession = Depends(get_db),
):
    """Active (non-expired) downloads for an e-mail address."""
    if not is_valid_email(email):
        raise HTTPException(status_code=400, detail="A valid e-mail address is required")

    grants = await DownloadGrantIssuer(db).list_active(email)

    return {
        "status": "success",
        "downloads": [
            {
                "id": str(g.id),
                "order_item_id": str(g.order_item_id),
                "product_id": str(g.product_id),
                "title": g.product.title if g.product else None,
                "download_url": g.download_url,
                "download_count": g.download_count,
                "max_downloads": g.max_downloads,
                "remaining": g.remaining_downloads,
                "expires_at": g.expires_at.isoformat(),
            }
            for g in grants
        ],
    }


@router.get("/download/{item_id}", dependencies=[Depends(rate_limit)])
async def download_file(
    item_id: uuid.UUID,
    email: str = Query(...),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    """
    Redeem one download and stream the file.

    The download is counted before the file is fetched.
    """
    if not is_valid_email(email):
        raise HTTPException(status_code=400, detail="A valid e-mail address is required")

    try:
        grant = await DownloadGrantIssuer(db).redeem_for_item(item_id, email)
    except RedemptionError as e:
        return JSONResponse(
            status_code=e.reason.http_status,
            content={"error": e.reason.value, "message": str(e)},
        )

    product_file = grant.product.deliverable_file if grant.product else None
    if product_file is None:
        logger.error(f"Grant {grant.id} has no deliverable file for product {grant.product_id}")
        raise HTTPException(status_code=404, detail="File not available")

    try:
        content = await storage.get_object(product_file.storage_key)
    except StorageError as e:
        logger.error(f"Download fetch failed for grant {grant.id}: {e}")
        raise HTTPException(status_code=502, detail="File temporarily unavailable")

    return Response(
        content=content,
        media_type=product_file.content_type,
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(product_file.file_name)}",
            "X-Downloads-Remaining": str(grant.remaining_downloads),
        },
    )
