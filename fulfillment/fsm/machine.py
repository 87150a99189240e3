"""
Order State Machine - drives orders through their lifecycle.

Transitions are applied with an optimistic compare-and-swap on
orders.status, so two webhook deliveries racing on the same order
cannot both complete it.
"""

import logging
import uuid
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.errors import OrderResolutionError
from fulfillment.fsm.states import OrderStatus, can_transition
from fulfillment.gateways.base import GatewayEvent
from fulfillment.models.download_grant import DownloadGrant
from fulfillment.models.order import Order
from fulfillment.utils import utc_now

if TYPE_CHECKING:
    from fulfillment.services.delivery_service import FulfillmentDeliveryService
    from fulfillment.services.grant_service import DownloadGrantIssuer

logger = logging.getLogger(__name__)


class TransitionOutcome(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"            # Already in the target state
    REJECTED = "rejected"    # Illegal from the current state


class OrderStateMachine:
    """
    Applies payment events to orders.

    Completion issues grants inside the status transaction and commits
    before delivery touches the network.
    """

    def __init__(
        self,
        db: AsyncSession,
        grants: Optional["DownloadGrantIssuer"] = None,
        delivery: Optional["FulfillmentDeliveryService"] = None,
    ):
        self.db = db
        self.grants = grants
        self.delivery = delivery

    async def resolve_order(self, event: GatewayEvent, gateway: str) -> Order:
        """
        Find the order an event refers to.

        Tries our own order id from the payment metadata, then the gateway
        session id, then the captured payment id.
        """
        if event.order_ref:
            try:
                order_id = uuid.UUID(str(event.order_ref))
            except ValueError:
                logger.warning(f"Event {event.event_id} carries malformed order id {event.order_ref}")
            else:
                order = await self.db.get(Order, order_id)
                if order:
                    return order

        if event.session_ref:
            result = await self.db.execute(
                select(Order).where(
                    Order.gateway == gateway,
                    Order.gateway_session_id == event.session_ref,
                )
            )
            order = result.scalar_one_or_none()
            if order:
                return order

        if event.payment_ref:
            result = await self.db.execute(
                select(Order).where(Order.gateway_payment_id == event.payment_ref)
            )
            order = result.scalar_one_or_none()
            if order:
                return order

        logger.critical(
            f"No order found for {gateway} event {event.event_id} ({event.event_type})",
            extra={
                "context": {
                    "event_id": event.event_id,
                    "gateway": gateway,
                    "order_ref": event.order_ref,
                    "session_ref": event.session_ref,
                    "payment_ref": event.payment_ref,
                }
            },
        )
        raise OrderResolutionError(f"No order for event {event.event_id}")

    async def transition(
        self,
        order: Order,
        target: OrderStatus,
        payment_ref: Optional[str] = None,
    ) -> TransitionOutcome:
        """
        Compare-and-swap the order status. Does not commit.

        On a lost race the order is re-read and the check is retried once.
        """
        for _attempt in range(2):
            current = order.order_status

            if current == target:
                return TransitionOutcome.NOOP

            if not can_transition(current, target):
                kind = "settled" if current.is_terminal else "invalid"
                logger.warning(
                    f"Ignoring transition {current.value} -> {target.value} "
                    f"for {kind} order {order.id}"
                )
                return TransitionOutcome.REJECTED

            values = {"status": target.value, "updated_at": utc_now()}
            if payment_ref and not order.gateway_payment_id:
                values["gateway_payment_id"] = payment_ref

            result = await self.db.execute(
                update(Order)
                .where(Order.id == order.id, Order.status == current.value)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await self.db.refresh(order)

            if result.rowcount == 1:
                logger.info(f"Order {order.id}: {current.value} -> {target.value}")
                return TransitionOutcome.APPLIED

            logger.info(
                f"Order {order.id} changed concurrently (now {order.status}); re-checking"
            )

        return TransitionOutcome.REJECTED

    async def mark_approved(self, order: Order) -> TransitionOutcome:
        """Wallet payer approved the payment; capture still pending."""
        outcome = await self.transition(order, OrderStatus.APPROVED)
        await self.db.commit()
        return outcome

    async def complete(self, order: Order, payment_ref: Optional[str] = None) -> TransitionOutcome:
        """
        Complete the order, issue its grants and deliver them.

        A second success event for a completed order is a no-op.
        """
        if order.order_status == OrderStatus.COMPLETED:
            logger.info(f"Order {order.id} already completed; nothing to do")
            return TransitionOutcome.NOOP

        outcome = await self.transition(order, OrderStatus.COMPLETED, payment_ref=payment_ref)
        if outcome != TransitionOutcome.APPLIED:
            await self.db.commit()
            return outcome

        grants: List[DownloadGrant] = []
        if self.grants is not None:
            grants = await self.grants.issue(order.items, order.email)

        # Status and grants become visible together
        await self.db.commit()

        logger.info(
            f"Order {order.id} completed with {len(grants)} grant(s)",
            extra={"context": {"order_id": str(order.id), "grant_count": len(grants)}},
        )

        if self.delivery is not None:
            try:
                await self.delivery.deliver(order, grants=grants)
            except Exception as e:
                logger.error(
                    f"Delivery failed for completed order {order.id}: {e}",
                    exc_info=True,
                    extra={"context": {"order_id": str(order.id)}},
                )

        return outcome

    async def fail(self, order: Order) -> TransitionOutcome:
        outcome = await self.transition(order, OrderStatus.FAILED)
        await self.db.commit()
        if outcome == TransitionOutcome.APPLIED:
            logger.info(f"Order {order.id} marked failed")
        return outcome

    async def refund(self, order: Order) -> TransitionOutcome:
        outcome = await self.transition(order, OrderStatus.REFUNDED)
        await self.db.commit()
        return outcome
