"""
Payment Webhook Handler.
Verifies signatures and processes payment events for every gateway.
"""

import logging
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.api.deps import get_email_transport, get_gateways, get_storage
from fulfillment.database import get_db
from fulfillment.errors import GatewayError, SignatureVerificationError
from fulfillment.fsm.machine import OrderStateMachine
from fulfillment.gateways import PaymentGateway
from fulfillment.services.delivery_service import FulfillmentDeliveryService
from fulfillment.services.email_service import EmailTransport
from fulfillment.services.event_service import EventIngestionService
from fulfillment.services.grant_service import DownloadGrantIssuer
from fulfillment.services.storage_service import ObjectStorage

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/{gateway}")
async def payment_webhook(
    gateway: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateways: Dict[str, PaymentGateway] = Depends(get_gateways),
    storage: ObjectStorage = Depends(get_storage),
    transport: EmailTransport = Depends(get_email_transport),
):
    """
    Handle a gateway webhook.

    Duplicates and unhandled events are acknowledged with 200 so the
    gateway stops retrying them.
    """
    adapter = gateways.get(gateway)
    if adapter is None:
        raise HTTPException(status_code=404, detail=f"Unknown gateway: {gateway}")

    # Raw body is what the signature covers
    body = await request.body()

    grants = DownloadGrantIssuer(db)
    delivery = FulfillmentDeliveryService(db, storage, transport, grants)
    machine = OrderStateMachine(db, grants=grants, delivery=delivery)
    service = EventIngestionService(db, adapter, machine)

    try:
        result = await service.ingest(body, request.headers)
    except SignatureVerificationError:
        raise HTTPException(status_code=400, detail="Invalid signature")
    except GatewayError as e:
        logger.error(f"{gateway} webhook verification unavailable: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Signature verification unavailable",
        )

    return {"status": "ok", "result": result.status, "event_id": result.event_id}
