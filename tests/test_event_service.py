"""
Tests for EventIngestionService idempotency and routing.
"""

import asyncio
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from fulfillment.errors import SignatureVerificationError
from fulfillment.fsm.machine import OrderStateMachine
from fulfillment.fsm.states import OrderStatus
from fulfillment.gateways.razorpay import RazorpayGateway
from fulfillment.models import DownloadGrant, Order, ProcessedEvent
from fulfillment.services.catalog_service import CatalogService
from fulfillment.services.checkout_service import CheckoutService
from fulfillment.services.delivery_service import FulfillmentDeliveryService
from fulfillment.services.event_service import EventIngestionService, prune_processed_events
from fulfillment.services.grant_service import DownloadGrantIssuer
from fulfillment.utils import utc_now


@pytest.fixture
def gateway(razorpay_client):
    return RazorpayGateway(key_id="rzp_test", key_secret="secret", webhook_secret="whsec_test", client=razorpay_client)


def build_service(session, gateway, storage, transport):
    grants = DownloadGrantIssuer(session)
    delivery = FulfillmentDeliveryService(session, storage, transport, grants)
    machine = OrderStateMachine(session, grants=grants, delivery=delivery)
    return EventIngestionService(session, gateway, machine)


async def place_order(session, make_product, gateway):
    product = await make_product(session)
    cart = await CatalogService(session).price_cart([(product.id, 1)])
    result = await CheckoutService(session, gateway).create_session(cart, "buyer@example.com")
    return uuid.UUID(result.order_id)


async def count(session, model) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.mark.asyncio
async def test_payment_success_completes_order(db, make_product, gateway, storage, transport, razorpay_webhook):
    order_id = await place_order(db, make_product, gateway)
    body, headers = razorpay_webhook("payment_link.paid", order_id=str(order_id), payment_id="pay_1")

    result = await build_service(db, gateway, storage, transport).ingest(body, headers)

    assert result.status == "processed"
    assert result.order_id == str(order_id)
    order = await db.get(Order, order_id)
    assert order.status == OrderStatus.COMPLETED.value
    assert order.gateway_payment_id == "pay_1"
    assert await count(db, DownloadGrant) == 1
    assert len(transport.sent) == 1


@pytest.mark.asyncio
async def test_duplicate_event_has_no_side_effects(db, make_product, gateway, storage, transport, razorpay_webhook):
    order_id = await place_order(db, make_product, gateway)
    body, headers = razorpay_webhook("payment_link.paid", order_id=str(order_id), event_id="evt_dup")
    service = build_service(db, gateway, storage, transport)

    first = await service.ingest(body, headers)
    second = await service.ingest(body, headers)

    assert first.status == "processed"
    assert second.status == "duplicate"
    assert await count(db, DownloadGrant) == 1
    assert await count(db, ProcessedEvent) == 1
    assert len(transport.sent) == 1


@pytest.mark.asyncio
async def test_concurrent_duplicates_processed_once(session_factory, make_product, gateway, storage, transport, razorpay_webhook):
    async with session_factory() as setup:
        order_id = await place_order(setup, make_product, gateway)
    body, headers = razorpay_webhook("payment_link.paid", order_id=str(order_id), event_id="evt_race")

    async def deliver():
        async with session_factory() as session:
            result = await build_service(session, gateway, storage, transport).ingest(body, headers)
            return result.status

    statuses = await asyncio.gather(*(deliver() for _ in range(3)))

    assert sorted(statuses) == ["duplicate", "duplicate", "processed"]
    async with session_factory() as check:
        assert await count(check, DownloadGrant) == 1
    assert len(transport.sent) == 1


@pytest.mark.asyncio
async def test_bad_signature_changes_nothing(db, make_product, gateway, storage, transport, razorpay_webhook):
    order_id = await place_order(db, make_product, gateway)
    body, headers = razorpay_webhook("payment_link.paid", order_id=str(order_id), secret="wrong")

    with pytest.raises(SignatureVerificationError):
        await build_service(db, gateway, storage, transport).ingest(body, headers)

    assert await count(db, ProcessedEvent) == 0
    order = await db.get(Order, order_id)
    assert order.status == OrderStatus.PENDING.value


@pytest.mark.asyncio
async def test_payment_failed_marks_order_failed(db, make_product, gateway, storage, transport, razorpay_webhook):
    order_id = await place_order(db, make_product, gateway)
    body, headers = razorpay_webhook("payment.failed", order_id=str(order_id))

    result = await build_service(db, gateway, storage, transport).ingest(body, headers)

    assert result.outcome == "applied"
    order = await db.get(Order, order_id)
    assert order.status == OrderStatus.FAILED.value
    assert await count(db, DownloadGrant) == 0
    assert transport.sent == []


@pytest.mark.asyncio
async def test_out_of_order_failure_after_success_is_ignored(db, make_product, gateway, storage, transport, razorpay_webhook):
    order_id = await place_order(db, make_product, gateway)
    service = build_service(db, gateway, storage, transport)

    await service.ingest(*razorpay_webhook("payment_link.paid", order_id=str(order_id)))
    result = await service.ingest(*razorpay_webhook("payment.failed", order_id=str(order_id)))

    assert result.status == "processed"
    assert result.outcome == "rejected"
    order = await db.get(Order, order_id)
    assert order.status == OrderStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_unknown_event_is_acknowledged(db, gateway, storage, transport, razorpay_webhook):
    body, headers = razorpay_webhook("order.paid", event_id="evt_unknown")

    result = await build_service(db, gateway, storage, transport).ingest(body, headers)

    assert result.status == "ignored"
    stored = await db.get(ProcessedEvent, "evt_unknown")
    assert stored.event_type == "order.paid"


@pytest.mark.asyncio
async def test_unresolvable_event_stays_claimed(db, gateway, storage, transport, razorpay_webhook, caplog):
    body, headers = razorpay_webhook("payment_link.paid", order_id=str(uuid.uuid4()), event_id="evt_orphan")

    result = await build_service(db, gateway, storage, transport).ingest(body, headers)

    assert result.status == "unresolved"
    assert await db.get(ProcessedEvent, "evt_orphan") is not None
    assert any(record.levelname == "CRITICAL" for record in caplog.records)


@pytest.mark.asyncio
async def test_unexpected_error_rolls_back_claim(db, make_product, gateway, storage, transport, razorpay_webhook):
    order_id = await place_order(db, make_product, gateway)
    body, headers = razorpay_webhook("payment_link.paid", order_id=str(order_id), event_id="evt_retry")
    service = build_service(db, gateway, storage, transport)
    service.machine.grants.issue = AsyncMock(side_effect=RuntimeError("database went away"))

    with pytest.raises(RuntimeError):
        await service.ingest(body, headers)

    assert await db.get(ProcessedEvent, "evt_retry") is None
    status = (await db.execute(select(Order.status).where(Order.id == order_id))).scalar_one()
    assert status == OrderStatus.PENDING.value

    # The gateway's retry goes through once the fault clears
    retry_service = build_service(db, gateway, storage, transport)
    result = await retry_service.ingest(body, headers)
    assert result.status == "processed"
    assert await count(db, DownloadGrant) == 1


@pytest.mark.asyncio
async def test_cancelled_processing_leaves_event_retryable(session_factory, make_product, gateway, storage, transport, razorpay_webhook):
    async with session_factory() as setup:
        order_id = await place_order(setup, make_product, gateway)
    body, headers = razorpay_webhook("payment_link.paid", order_id=str(order_id), event_id="evt_cancelled")

    # The request is cancelled mid-transition and its session closes uncommitted
    async with session_factory() as first:
        service = build_service(first, gateway, storage, transport)
        service.machine.grants.issue = AsyncMock(side_effect=asyncio.CancelledError())
        with pytest.raises(asyncio.CancelledError):
            await service.ingest(body, headers)

    async with session_factory() as second:
        assert await second.get(ProcessedEvent, "evt_cancelled") is None
        result = await build_service(second, gateway, storage, transport).ingest(body, headers)

    assert result.status == "processed"
    async with session_factory() as check:
        order = await check.get(Order, order_id)
        assert order.status == OrderStatus.COMPLETED.value
        assert await count(check, DownloadGrant) == 1
        assert await check.get(ProcessedEvent, "evt_cancelled") is not None


@pytest.mark.asyncio
async def test_prune_processed_events(db):
    db.add_all([
        ProcessedEvent(event_id="old", gateway="razorpay", processed_at=utc_now() - timedelta(days=40)),
        ProcessedEvent(event_id="new", gateway="razorpay", processed_at=utc_now()),
    ])
    await db.commit()

    deleted = await prune_processed_events(db, timedelta(days=30))

    assert deleted == 1
    remaining = (await db.execute(select(ProcessedEvent.event_id))).scalars().all()
    assert remaining == ["new"]
