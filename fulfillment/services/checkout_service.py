"""
Checkout Service - creates the pending order and the gateway checkout session.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.config import settings
from fulfillment.errors import GatewayError, ValidationError
from fulfillment.fsm.states import OrderStatus
from fulfillment.gateways.base import PaymentGateway
from fulfillment.models.order import Order, OrderItem
from fulfillment.services.catalog_service import CartLine
from fulfillment.utils import is_valid_email, normalize_email

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def line_total(unit_price: Decimal, quantity: int) -> Decimal:
    return (Decimal(unit_price) * quantity).quantize(CENT)


@dataclass(frozen=True)
class CheckoutResult:
    order_id: str
    redirect_url: str
    session_id: str


class CheckoutService:
    """Service for starting a checkout."""

    def __init__(self, db: AsyncSession, gateway: PaymentGateway):
        self.db = db
        self.gateway = gateway

    @staticmethod
    def compute_total(cart: Sequence[CartLine]) -> Decimal:
        """
        Validate cart lines and return the order total.

        Each line is rounded to cents before summing, so the total always
        equals the sum of the stored line totals. Raises ValidationError for
        an empty cart, a non-positive quantity, a price that is not a
        positive amount in whole cents, or a non-positive total.
        """
        if not cart:
            raise ValidationError("Cart is empty")

        total = Decimal("0")
        for line in cart:
            if not isinstance(line.quantity, int) or line.quantity <= 0:
                raise ValidationError(f"Invalid quantity for product {line.product_id}")
            try:
                unit_price = Decimal(line.unit_price)
            except (InvalidOperation, TypeError, ValueError):
                raise ValidationError(f"Invalid price for product {line.product_id}")
            if not unit_price.is_finite() or unit_price <= 0:
                raise ValidationError(f"Invalid price for product {line.product_id}")
            if unit_price != unit_price.quantize(CENT):
                raise ValidationError(f"Price for product {line.product_id} has fractional cents")
            total += line_total(unit_price, line.quantity)

        if total <= 0:
            raise ValidationError("Order total must be a positive amount")

        return total

    async def create_session(
        self,
        cart: Sequence[CartLine],
        email: str,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CheckoutResult:
        """
        Persist a PENDING order and open a hosted checkout for it.

        The order is committed before the gateway is called. If the gateway
        fails the order stays PENDING with no session id and GatewayError
        propagates to the caller.
        """
        email = normalize_email(email)
        if not is_valid_email(email):
            raise ValidationError("A valid e-mail address is required")

        total = self.compute_total(cart)

        order = Order(
            email=email,
            total_amount=total,
            currency=settings.currency,
            status=OrderStatus.PENDING.value,
            gateway=self.gateway.provider.value,
            order_metadata=dict(metadata or {}),
        )
        order.items = [
            OrderItem(
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price=Decimal(line.unit_price),
                total_price=line_total(line.unit_price, line.quantity),
            )
            for line in cart
        ]
        if order.items_total != total:
            raise ValidationError(f"Line totals {order.items_total} do not add up to {total}")
        self.db.add(order)
        await self.db.commit()

        order_id = str(order.id)
        logger.info(
            f"Created pending order {order_id} for {total} {settings.currency}",
            extra={"context": {"order_id": order_id, "gateway": order.gateway}},
        )

        success_url = success_url or f"{settings.site_url}/success?order_id={order_id}"
        cancel_url = cancel_url or f"{settings.site_url}/cart?canceled=true"

        try:
            session = await self.gateway.create_session(
                total=total,
                currency=settings.currency,
                email=email,
                success_url=success_url,
                cancel_url=cancel_url,
                order_id=order_id,
            )
        except GatewayError:
            logger.error(
                f"Gateway session failed for order {order_id}; order left pending",
                extra={"context": {"order_id": order_id, "gateway": order.gateway}},
            )
            raise

        order.gateway_session_id = session.session_id
        await self.db.commit()

        return CheckoutResult(
            order_id=order_id,
            redirect_url=session.redirect_url,
            session_id=session.session_id,
        )
