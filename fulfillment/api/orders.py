"""
Orders API - read-only order status for the success page and order history.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.api.rate_limit import rate_limit
from fulfillment.database import get_db
from fulfillment.models.order import Order
from fulfillment.utils import is_valid_email, normalize_email

logger = logging.getLogger(__name__)

router = APIRouter(tags=["orders"])


def serialize_order(order: Order) -> Dict[str, Any]:
    return {
        "id": str(order.id),
        "email": order.email,
        "total": f"{order.total_amount:.2f}",
        "currency": order.currency,
        "status": order.status,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "items": [
            {
                "id": str(item.id),
                "product_id": str(item.product_id),
                "title": item.product.title if item.product else None,
                "quantity": item.quantity,
                "unit_price": f"{item.unit_price:.2f}",
                "total_price": f"{item.total_price:.2f}",
            }
            for item in order.items
        ],
    }


@router.get("/orders", dependencies=[Depends(rate_limit)])
async def get_orders(
    order_id: Optional[uuid.UUID] = Query(None, alias="orderId"),
    email: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """
    One order by id (polled by the success page while the webhook lands),
    or every order placed with an e-mail address, newest first.
    """
    if order_id is not None:
        order = await db.get(Order, order_id)
        if not order:
            raise HTTPException(status_code=404, detail="Order not found")
        return {"status": "success", "order": serialize_order(order)}

    if email is not None:
        email = normalize_email(email)
        if not is_valid_email(email):
            raise HTTPException(status_code=400, detail="A valid e-mail address is required")

        result = await db.execute(
            select(Order).where(Order.email == email).order_by(Order.created_at.desc())
        )
        orders = result.scalars().all()
        logger.info(f"Listed {len(orders)} order(s) for an e-mail lookup")
        return {"status": "success", "orders": [serialize_order(o) for o in orders]}

    raise HTTPException(status_code=400, detail="Email or orderId parameter required")
