"""
Event Ingestion Service - verified, idempotent webhook processing.

Each gateway event is claimed exactly once by inserting its id into
processed_events. The claim is flushed, not committed: it becomes durable
in the same commit as the order transition it causes, so an interrupted
delivery leaves no trace and the gateway's retry redoes the work. The
primary key rejects a second claim, which makes concurrent duplicate
deliveries safe without any locking.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional

from sqlalchemy import delete, insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.errors import OrderResolutionError, SignatureVerificationError
from fulfillment.fsm.machine import OrderStateMachine, TransitionOutcome
from fulfillment.fsm.states import EventKind
from fulfillment.gateways.base import GatewayEvent, PaymentGateway
from fulfillment.models.processed_event import ProcessedEvent
from fulfillment.utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestResult:
    """What happened to one webhook delivery."""

    status: str                      # processed | duplicate | ignored | unresolved
    event_id: str
    event_type: str = ""
    order_id: Optional[str] = None
    outcome: Optional[str] = None


class EventIngestionService:
    """Service for turning gateway webhooks into order transitions."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        state_machine: OrderStateMachine,
    ):
        self.db = db
        self.gateway = gateway
        self.machine = state_machine

    @property
    def gateway_name(self) -> str:
        return self.gateway.provider.value

    async def ingest(self, body: bytes, headers: Mapping[str, str]) -> IngestResult:
        """
        Verify, claim and route one webhook delivery.

        Raises SignatureVerificationError for inauthentic requests.
        Duplicates and unknown event kinds return normally.
        """
        try:
            event = await self.gateway.verify_and_parse(body, headers)
        except SignatureVerificationError as e:
            logger.warning(
                f"Rejected {self.gateway_name} webhook: {e}",
                extra={"context": {"security_event": "webhook_signature_invalid", "gateway": self.gateway_name}},
            )
            raise

        logger.info(f"{self.gateway_name} webhook received: {event.event_type} ({event.event_id})")

        if not await self.claim(event):
            logger.info(f"Duplicate event {event.event_id} ignored")
            return IngestResult(status="duplicate", event_id=event.event_id, event_type=event.event_type)

        if event.kind == EventKind.IGNORED:
            await self.db.commit()
            logger.info(f"Unhandled {self.gateway_name} event: {event.event_type}")
            return IngestResult(status="ignored", event_id=event.event_id, event_type=event.event_type)

        try:
            result = await self.route(event)
        except OrderResolutionError:
            # Keep the claim; resolve_order already raised the alarm
            await self.db.commit()
            return IngestResult(status="unresolved", event_id=event.event_id, event_type=event.event_type)
        except Exception:
            logger.error(
                f"Processing failed for event {event.event_id}; claim rolled back",
                exc_info=True,
                extra={"context": {"event_id": event.event_id, "gateway": self.gateway_name}},
            )
            await self.db.rollback()
            raise

        await self.db.commit()
        return result

    async def claim(self, event: GatewayEvent) -> bool:
        """
        Return True if the event is new (claimed), False if duplicate.

        The row is only flushed. Whoever commits the resulting transition
        commits the claim with it; a rollback or a dropped session forgets it.
        """
        try:
            await self.db.execute(
                insert(ProcessedEvent).values(
                    event_id=event.event_id,
                    gateway=self.gateway_name,
                    event_type=event.event_type[:100] or None,
                    processed_at=utc_now(),
                )
            )
            return True
        except IntegrityError:
            await self.db.rollback()
            return False

    async def route(self, event: GatewayEvent) -> IngestResult:
        """Apply a claimed event to its order."""
        order = await self.machine.resolve_order(event, self.gateway_name)

        if event.kind == EventKind.ORDER_APPROVED:
            outcome = await self.machine.mark_approved(order)
        elif event.kind == EventKind.PAYMENT_SUCCEEDED:
            outcome = await self.machine.complete(order, payment_ref=event.payment_ref)
        elif event.kind == EventKind.PAYMENT_FAILED:
            outcome = await self.machine.fail(order)
        elif event.kind == EventKind.PAYMENT_REFUNDED:
            outcome = await self.machine.refund(order)
        else:
            outcome = TransitionOutcome.NOOP

        logger.info(
            f"Event {event.event_id} applied to order {order.id}: {outcome.value}",
            extra={"context": {"event_id": event.event_id, "order_id": str(order.id), "outcome": outcome.value}},
        )
        return IngestResult(
            status="processed",
            event_id=event.event_id,
            event_type=event.event_type,
            order_id=str(order.id),
            outcome=outcome.value,
        )


async def prune_processed_events(db: AsyncSession, older_than: timedelta) -> int:
    """Delete idempotency rows older than the retention window."""
    cutoff = utc_now() - older_than
    result = await db.execute(
        delete(ProcessedEvent).where(ProcessedEvent.processed_at < cutoff)
    )
    await db.commit()
    logger.info(f"Pruned {result.rowcount} processed event(s) older than {cutoff.isoformat()}")
    return result.rowcount
