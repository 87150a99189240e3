"""
Error taxonomy for checkout, webhook ingestion and fulfillment.

Routes translate these into HTTP responses; anything else reaches the
global exception handler as a 500.
"""

from typing import Optional

from fulfillment.fsm.states import RedemptionDenial


class FulfillmentError(Exception):
    """Base class for domain errors."""


class ValidationError(FulfillmentError):
    """Bad cart, price or e-mail. Never retried automatically."""


class GatewayError(FulfillmentError):
    """Payment gateway call failed. The caller may retry."""


class SignatureVerificationError(FulfillmentError):
    """Webhook signature missing or invalid."""


class OrderResolutionError(FulfillmentError):
    """A payment event references no known order."""


class StorageError(FulfillmentError):
    """Object storage read, write or delete failed."""


class NotificationError(FulfillmentError):
    """E-mail transport failed. Never fatal to order completion."""


class RedemptionError(FulfillmentError):
    """Download denied for a user-facing reason."""

    MESSAGES = {
        RedemptionDenial.EXPIRED: "Download link has expired",
        RedemptionDenial.LIMIT_REACHED: "Download limit reached",
        RedemptionDenial.NOT_FOUND: "Download not found",
        RedemptionDenial.EMAIL_MISMATCH: "Download not found for this e-mail address",
    }

    def __init__(self, reason: RedemptionDenial, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or self.MESSAGES[reason])
