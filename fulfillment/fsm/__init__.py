"""Order state machine package."""

from fulfillment.fsm.states import (
    OrderStatus,
    EventKind,
    PaymentProvider,
    RedemptionDenial,
    FileType,
    can_transition,
)

__all__ = [
    "OrderStatus",
    "EventKind",
    "PaymentProvider",
    "RedemptionDenial",
    "FileType",
    "can_transition",
]
