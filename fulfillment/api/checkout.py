"""
Checkout API - opens a hosted payment session for a cart.
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.api.deps import get_gateways
from fulfillment.api.rate_limit import rate_limit
from fulfillment.config import settings
from fulfillment.database import get_db
from fulfillment.errors import GatewayError, ValidationError
from fulfillment.gateways import PaymentGateway
from fulfillment.services.catalog_service import CatalogService
from fulfillment.services.checkout_service import CheckoutService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])


class CartItemIn(BaseModel):
    product_id: str
    quantity: int = 1


class CheckoutRequest(BaseModel):
    items: List[CartItemIn] = Field(default_factory=list)
    email: str
    gateway: Optional[str] = None


class CheckoutResponse(BaseModel):
    redirectUrl: str
    orderId: str


@router.post(
    "/session",
    response_model=CheckoutResponse,
    dependencies=[Depends(rate_limit)],
)
async def create_checkout_session(
    body: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    gateways: Dict[str, PaymentGateway] = Depends(get_gateways),
):
    """
    Create a pending order and a hosted checkout for it.

    Prices come from the catalog; the client only sends product ids and
    quantities.
    """
    gateway_name = body.gateway or settings.default_gateway
    gateway = gateways.get(gateway_name)
    if gateway is None:
        raise HTTPException(status_code=400, detail=f"Unsupported gateway: {gateway_name}")

    try:
        cart = await CatalogService(db).price_cart(
            [(item.product_id, item.quantity) for item in body.items]
        )
        result = await CheckoutService(db, gateway).create_session(cart, body.email)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except GatewayError as e:
        logger.error(f"Checkout failed at {gateway_name}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment provider unavailable, please try again",
        )

    return CheckoutResponse(redirectUrl=result.redirect_url, orderId=result.order_id)
