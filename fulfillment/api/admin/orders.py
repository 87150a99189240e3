"""
Admin Order Endpoints.
Manual resend of fulfillment e-mails for support.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.api.deps import get_admin_user, get_email_transport, get_storage
from fulfillment.database import get_db
from fulfillment.errors import NotificationError
from fulfillment.fsm.states import OrderStatus
from fulfillment.models.order import Order
from fulfillment.services.delivery_service import FulfillmentDeliveryService
from fulfillment.services.email_service import EmailTransport
from fulfillment.services.grant_service import DownloadGrantIssuer
from fulfillment.services.storage_service import ObjectStorage

router = APIRouter()
logger = logging.getLogger(__name__)


class ResendEmailRequest(BaseModel):
    """Request body for resending an order e-mail."""
    order_id: uuid.UUID


@router.post("/resend-email")
async def resend_order_email(
    request: ResendEmailRequest,
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    transport: EmailTransport = Depends(get_email_transport),
    _: str = Depends(get_admin_user),
):
    """
    Re-deliver a completed order with a fresh set of download grants.
    """
    order = await db.get(Order, request.order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    if order.order_status != OrderStatus.COMPLETED:
        raise HTTPException(
            status_code=409,
            detail=f"Order is {order.status}; only completed orders can be resent",
        )

    grants = DownloadGrantIssuer(db)
    delivery = FulfillmentDeliveryService(db, storage, transport, grants)

    try:
        report = await delivery.resend(order)
    except NotificationError as e:
        logger.error(f"Resend failed for order {order.id}: {e}")
        raise HTTPException(status_code=502, detail=f"Email delivery failed: {e}")

    logger.info(f"Order {order.id} e-mail resent by admin")

    return {
        "status": "success",
        "order_id": report.order_id,
        "recipient": report.recipient,
        "method": report.method,
        "attachments": report.attachments,
        "links": report.links,
    }
