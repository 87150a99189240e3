"""
FSM State Definitions.
Order lifecycle states, payment event kinds and redemption outcomes.
"""

from enum import Enum
from typing import Dict, FrozenSet


class OrderStatus(str, Enum):
    """
    All possible order states.
    Orders are created PENDING by checkout and only move forward.
    """

    PENDING = "pending"
    APPROVED = "approved"        # Wallet payer approved, capture not yet settled
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        """Payment is settled one way or the other. Only a completed order can still be refunded."""
        return self in (OrderStatus.COMPLETED, OrderStatus.FAILED, OrderStatus.REFUNDED)


ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {OrderStatus.APPROVED, OrderStatus.COMPLETED, OrderStatus.FAILED}
    ),
    OrderStatus.APPROVED: frozenset({OrderStatus.COMPLETED, OrderStatus.FAILED}),
    OrderStatus.COMPLETED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.FAILED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Check whether moving from current to target is a legal transition."""
    return target in ALLOWED_TRANSITIONS[current]


class EventKind(str, Enum):
    """
    Gateway-independent meaning of a payment event.
    Each gateway adapter maps its own event names onto these.
    """

    ORDER_APPROVED = "order_approved"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_REFUNDED = "payment_refunded"
    IGNORED = "ignored"


class PaymentProvider(str, Enum):
    """Supported payment gateways. Values double as webhook path segments."""

    RAZORPAY = "razorpay"    # Card checkout via hosted payment links
    PAYPAL = "paypal"        # Wallet checkout with payer approval


class RedemptionDenial(str, Enum):
    """Typed reasons a download redemption is refused."""

    EXPIRED = "expired"
    LIMIT_REACHED = "limit_reached"
    NOT_FOUND = "not_found"
    EMAIL_MISMATCH = "email_mismatch"

    @property
    def http_status(self) -> int:
        statuses = {
            RedemptionDenial.EXPIRED: 410,
            RedemptionDenial.LIMIT_REACHED: 429,
            RedemptionDenial.NOT_FOUND: 404,
            RedemptionDenial.EMAIL_MISMATCH: 403,
        }
        return statuses[self]


class FileType(str, Enum):
    """Kind of deliverable product file."""

    PDF = "pdf"
    IMAGE = "image"

    @classmethod
    def from_content_type(cls, content_type: str) -> "FileType":
        if content_type == "application/pdf":
            return cls.PDF
        return cls.IMAGE
