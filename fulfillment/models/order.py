"""Order and OrderItem models - the purchase ledger."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from fulfillment.database import Base
from fulfillment.fsm.states import OrderStatus
from fulfillment.models.product import Product
from fulfillment.utils import utc_now


class Order(Base):
    """
    Order created PENDING at checkout.
    Status is only changed by the order state machine.
    """

    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("gateway", "gateway_session_id", name="uq_orders_gateway_session"),
        CheckConstraint("total_amount > 0", name="ck_orders_total_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # Customer e-mail (normalised lower-case)
    email: Mapped[str] = mapped_column(
        String(320),
        nullable=False,
        index=True,
    )

    # Sum of item totals, immutable once set
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        default="USD",
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=OrderStatus.PENDING.value,
        nullable=False,
        index=True,
    )

    # Payment provider that owns the session ("razorpay" / "paypal")
    gateway: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
    )

    # Payment link id / PayPal order id
    gateway_session_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )

    # Captured payment id
    gateway_payment_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
    )

    order_metadata: Mapped[Dict[str, Any]] = mapped_column(
        "metadata",
        JSON,
        default=dict,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )

    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Order {self.id} {self.total_amount} {self.status}>"

    @validates("total_amount")
    def _freeze_total(self, key: str, value: Decimal) -> Decimal:
        if self.total_amount is not None and Decimal(value) != Decimal(self.total_amount):
            raise ValueError("Order total_amount is immutable once set")
        return value

    @property
    def items_total(self) -> Decimal:
        return sum((Decimal(item.total_price) for item in self.items), Decimal("0"))

    @property
    def order_status(self) -> OrderStatus:
        return OrderStatus(self.status)


class OrderItem(Base):
    """One purchased product line."""

    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        CheckConstraint("unit_price > 0", name="ck_order_items_unit_price_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Products cannot be deleted while order items reference them
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    quantity: Mapped[int] = mapped_column(
        Integer,
        default=1,
        nullable=False,
    )

    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
    )

    total_price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
    )

    order: Mapped[Order] = relationship(back_populates="items")

    product: Mapped[Product] = relationship(lazy="selectin")

    def __repr__(self) -> str:
        return f"<OrderItem {self.product_id} x{self.quantity}>"
