"""
Tests for CatalogService pricing and CheckoutService.
"""

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select

from fulfillment.errors import GatewayError, ValidationError
from fulfillment.fsm.states import OrderStatus
from fulfillment.gateways.razorpay import RazorpayGateway
from fulfillment.models import Order, OrderItem
from fulfillment.services.catalog_service import CartLine, CatalogService
from fulfillment.services.checkout_service import CheckoutService


@pytest.fixture
def gateway(razorpay_client):
    return RazorpayGateway(
        key_id="rzp_test",
        key_secret="secret",
        webhook_secret="whsec_test",
        client=razorpay_client,
    )


def line(price: str, quantity: int = 1) -> CartLine:
    return CartLine(product_id=uuid.uuid4(), quantity=quantity, unit_price=Decimal(price))


class TestComputeTotal:

    def test_sums_quantity_times_price(self):
        total = CheckoutService.compute_total([line("10.00", 2), line("4.50")])
        assert total == Decimal("24.50")

    def test_empty_cart_rejected(self):
        with pytest.raises(ValidationError):
            CheckoutService.compute_total([])

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_non_positive_quantity_rejected(self, quantity):
        with pytest.raises(ValidationError):
            CheckoutService.compute_total([line("10.00", quantity)])

    @pytest.mark.parametrize("price", ["0", "-5.00", "NaN", "Infinity"])
    def test_bad_price_rejected(self, price):
        with pytest.raises(ValidationError):
            CheckoutService.compute_total([line(price)])

    @pytest.mark.parametrize("price", ["0.004", "10.005"])
    def test_fractional_cent_price_rejected(self, price):
        with pytest.raises(ValidationError):
            CheckoutService.compute_total([line(price, 3)])

    def test_total_has_cent_precision(self):
        total = CheckoutService.compute_total([line("0.10", 3), line("19.99", 7)])
        assert total == Decimal("140.23")
        assert total.as_tuple().exponent == -2


@pytest.mark.asyncio
async def test_price_cart_uses_catalog_prices(db, make_product):
    product = await make_product(db, price="12.00")

    cart = await CatalogService(db).price_cart([(str(product.id), 3)])

    assert cart == [CartLine(product_id=product.id, quantity=3, unit_price=Decimal("12.00"))]


@pytest.mark.asyncio
async def test_price_cart_rejects_unknown_product(db):
    with pytest.raises(ValidationError):
        await CatalogService(db).price_cart([(str(uuid.uuid4()), 1)])


@pytest.mark.asyncio
async def test_price_cart_rejects_malformed_id(db):
    with pytest.raises(ValidationError):
        await CatalogService(db).price_cart([("not-a-uuid", 1)])


@pytest.mark.asyncio
async def test_create_session_persists_order_and_link(db, make_product, gateway, razorpay_client):
    first = await make_product(db, title="Print A", price="10.00")
    second = await make_product(db, title="Print B", price="2.50")
    cart = await CatalogService(db).price_cart([(first.id, 1), (second.id, 2)])

    result = await CheckoutService(db, gateway).create_session(cart, "  Buyer@Example.COM ")

    assert result.redirect_url == "https://rzp.io/i/test1"
    order = await db.get(Order, uuid.UUID(result.order_id))
    assert order.status == OrderStatus.PENDING.value
    assert order.email == "buyer@example.com"
    assert order.gateway == "razorpay"
    assert order.gateway_session_id == "plink_test1"
    assert Decimal(order.total_amount) == Decimal("15.00")
    assert Decimal(order.total_amount) == order.items_total

    request = razorpay_client.payment_link.created[0]
    assert request["amount"] == 1500
    assert request["notes"] == {"order_id": result.order_id}
    assert request["callback_url"] == f"https://shop.test/success?order_id={result.order_id}"


@pytest.mark.asyncio
async def test_invalid_email_creates_nothing(db, make_product, gateway):
    product = await make_product(db)
    cart = await CatalogService(db).price_cart([(product.id, 1)])

    with pytest.raises(ValidationError):
        await CheckoutService(db, gateway).create_session(cart, "not-an-email")

    result = await db.execute(select(Order))
    assert result.scalars().all() == []


@pytest.mark.asyncio
async def test_gateway_failure_leaves_pending_order(db, make_product, gateway, razorpay_client):
    razorpay_client.payment_link.error = RuntimeError("Razorpay unavailable")
    product = await make_product(db)
    cart = await CatalogService(db).price_cart([(product.id, 1)])

    with pytest.raises(GatewayError):
        await CheckoutService(db, gateway).create_session(cart, "buyer@example.com")

    order = (await db.execute(select(Order))).scalar_one()
    assert order.status == OrderStatus.PENDING.value
    assert order.gateway_session_id is None
    items = (await db.execute(select(OrderItem))).scalars().all()
    assert len(items) == 1


@pytest.mark.asyncio
async def test_order_total_is_immutable(db, make_product, gateway):
    product = await make_product(db)
    cart = await CatalogService(db).price_cart([(product.id, 1)])
    result = await CheckoutService(db, gateway).create_session(cart, "buyer@example.com")

    order = await db.get(Order, uuid.UUID(result.order_id))
    with pytest.raises(ValueError):
        order.total_amount = Decimal("1.00")


@pytest.mark.asyncio
async def test_sub_cent_price_creates_nothing(db, gateway):
    with pytest.raises(ValidationError):
        await CheckoutService(db, gateway).create_session([line("0.004")], "buyer@example.com")

    assert (await db.execute(select(Order))).scalars().all() == []
