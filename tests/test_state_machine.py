"""
Tests for OrderStateMachine resolution and transitions.
"""

import asyncio
import uuid

import pytest
from sqlalchemy import select

from fulfillment.errors import OrderResolutionError
from fulfillment.fsm.machine import OrderStateMachine, TransitionOutcome
from fulfillment.fsm.states import EventKind, OrderStatus
from fulfillment.gateways.base import GatewayEvent
from fulfillment.gateways.razorpay import RazorpayGateway
from fulfillment.models import DownloadGrant, Order
from fulfillment.services.catalog_service import CatalogService
from fulfillment.services.checkout_service import CheckoutService
from fulfillment.services.delivery_service import FulfillmentDeliveryService
from fulfillment.services.grant_service import DownloadGrantIssuer


async def place_order(session, make_product, razorpay_client, quantity_pairs=None):
    """Create a pending Razorpay order through checkout."""
    if quantity_pairs is None:
        product = await make_product(session)
        quantity_pairs = [(product.id, 1)]
    gateway = RazorpayGateway(webhook_secret="whsec_test", client=razorpay_client)
    cart = await CatalogService(session).price_cart(quantity_pairs)
    result = await CheckoutService(session, gateway).create_session(cart, "buyer@example.com")
    return await session.get(Order, uuid.UUID(result.order_id))


def event(kind=EventKind.PAYMENT_SUCCEEDED, **refs) -> GatewayEvent:
    return GatewayEvent(
        event_id=f"evt_{uuid.uuid4().hex[:10]}",
        event_type="test.event",
        kind=kind,
        **refs,
    )


def build_machine(session, storage, transport):
    grants = DownloadGrantIssuer(session)
    delivery = FulfillmentDeliveryService(session, storage, transport, grants)
    return OrderStateMachine(session, grants=grants, delivery=delivery)


@pytest.mark.asyncio
async def test_resolve_by_order_id(db, make_product, razorpay_client):
    order = await place_order(db, make_product, razorpay_client)
    machine = OrderStateMachine(db)

    resolved = await machine.resolve_order(event(order_ref=str(order.id)), "razorpay")

    assert resolved.id == order.id


@pytest.mark.asyncio
async def test_resolve_falls_back_to_session_id(db, make_product, razorpay_client):
    order = await place_order(db, make_product, razorpay_client)
    machine = OrderStateMachine(db)

    resolved = await machine.resolve_order(
        event(order_ref="not-a-uuid", session_ref=order.gateway_session_id),
        "razorpay",
    )
    assert resolved.id == order.id

    # Session ids are only unique per gateway
    with pytest.raises(OrderResolutionError):
        await machine.resolve_order(event(session_ref=order.gateway_session_id), "paypal")


@pytest.mark.asyncio
async def test_resolve_falls_back_to_payment_id(db, make_product, razorpay_client):
    order = await place_order(db, make_product, razorpay_client)
    order.gateway_payment_id = "pay_known"
    await db.commit()

    resolved = await OrderStateMachine(db).resolve_order(event(payment_ref="pay_known"), "razorpay")

    assert resolved.id == order.id


@pytest.mark.asyncio
async def test_unresolvable_event_raises(db):
    with pytest.raises(OrderResolutionError):
        await OrderStateMachine(db).resolve_order(event(order_ref=str(uuid.uuid4())), "razorpay")


@pytest.mark.asyncio
async def test_complete_issues_grants_and_delivers(db, make_product, razorpay_client, storage, transport):
    first = await make_product(db, title="A")
    second = await make_product(db, title="B")
    order = await place_order(db, make_product, razorpay_client, [(first.id, 1), (second.id, 1)])
    machine = build_machine(db, storage, transport)

    outcome = await machine.complete(order, payment_ref="pay_123")

    assert outcome == TransitionOutcome.APPLIED
    assert order.status == OrderStatus.COMPLETED.value
    assert order.gateway_payment_id == "pay_123"
    grants = (await db.execute(select(DownloadGrant))).scalars().all()
    assert len(grants) == 2
    assert len(transport.sent) == 1
    assert len(transport.sent[0].attachments) == 2


@pytest.mark.asyncio
async def test_second_success_is_noop(db, make_product, razorpay_client, storage, transport):
    order = await place_order(db, make_product, razorpay_client)
    machine = build_machine(db, storage, transport)

    await machine.complete(order, payment_ref="pay_1")
    outcome = await machine.complete(order, payment_ref="pay_1")

    assert outcome == TransitionOutcome.NOOP
    grants = (await db.execute(select(DownloadGrant))).scalars().all()
    assert len(grants) == 1
    assert len(transport.sent) == 1


@pytest.mark.asyncio
async def test_delivery_failure_does_not_undo_completion(db, make_product, razorpay_client, storage, transport):
    transport.exc = RuntimeError("smtp exploded")
    order = await place_order(db, make_product, razorpay_client)
    machine = build_machine(db, storage, transport)

    outcome = await machine.complete(order, payment_ref="pay_1")

    assert outcome == TransitionOutcome.APPLIED
    stored = (await db.execute(select(Order.status).where(Order.id == order.id))).scalar_one()
    assert stored == OrderStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_wallet_flow_pending_approved_completed(db, make_product, razorpay_client):
    order = await place_order(db, make_product, razorpay_client)
    machine = OrderStateMachine(db, grants=DownloadGrantIssuer(db))

    assert await machine.mark_approved(order) == TransitionOutcome.APPLIED
    assert order.status == OrderStatus.APPROVED.value
    assert await machine.complete(order) == TransitionOutcome.APPLIED
    assert order.status == OrderStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_terminal_states_do_not_regress(db, make_product, razorpay_client, caplog):
    order = await place_order(db, make_product, razorpay_client)
    machine = OrderStateMachine(db, grants=DownloadGrantIssuer(db))

    await machine.complete(order)

    assert await machine.fail(order) == TransitionOutcome.REJECTED
    assert await machine.mark_approved(order) == TransitionOutcome.REJECTED
    assert "for settled order" in caplog.text
    assert order.status == OrderStatus.COMPLETED.value

    assert await machine.refund(order) == TransitionOutcome.APPLIED
    assert await machine.complete(order) == TransitionOutcome.REJECTED
    assert order.status == OrderStatus.REFUNDED.value


@pytest.mark.asyncio
async def test_failed_order_gets_no_grants(db, make_product, razorpay_client, storage, transport):
    order = await place_order(db, make_product, razorpay_client)
    machine = build_machine(db, storage, transport)

    assert await machine.fail(order) == TransitionOutcome.APPLIED
    assert await machine.complete(order, payment_ref="pay_late") == TransitionOutcome.REJECTED

    grants = (await db.execute(select(DownloadGrant))).scalars().all()
    assert grants == []
    assert transport.sent == []


@pytest.mark.asyncio
async def test_concurrent_completion_applies_once(session_factory, make_product, razorpay_client, storage, transport):
    """Two success events racing on one order produce one set of grants."""
    async with session_factory() as setup:
        order = await place_order(setup, make_product, razorpay_client)
        order_id = order.id

    async def complete(payment_ref):
        async with session_factory() as session:
            machine = build_machine(session, storage, transport)
            target = await session.get(Order, order_id)
            return await machine.complete(target, payment_ref=payment_ref)

    outcomes = await asyncio.gather(complete("pay_a"), complete("pay_a"))

    assert sorted(o.value for o in outcomes) == ["applied", "noop"]
    async with session_factory() as check:
        grants = (await check.execute(select(DownloadGrant))).scalars().all()
        assert len(grants) == 1
    assert len(transport.sent) == 1
