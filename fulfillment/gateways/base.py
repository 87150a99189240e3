"""
Payment gateway adapter interface.

Each external payment network creates a hosted checkout session and
delivers signed, at-least-once webhook events. Adapters normalise both
into the types below.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from fulfillment.fsm.states import EventKind, PaymentProvider


@dataclass(frozen=True)
class CheckoutSession:
    """Remote checkout created by a gateway."""

    session_id: str
    redirect_url: str


@dataclass(frozen=True)
class GatewayEvent:
    """
    A verified webhook event.

    order_ref is our order id embedded in the payment's metadata;
    session_ref is the gateway's checkout id, used as a fallback lookup.
    """

    event_id: str
    event_type: str
    kind: EventKind
    order_ref: Optional[str] = None
    session_ref: Optional[str] = None
    payment_ref: Optional[str] = None
    payer_email: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


class PaymentGateway(ABC):
    """Common interface for card-style and wallet-style gateways."""

    provider: PaymentProvider

    @abstractmethod
    async def create_session(
        self,
        total: Decimal,
        currency: str,
        email: str,
        success_url: str,
        cancel_url: str,
        order_id: str,
    ) -> CheckoutSession:
        """Create a hosted checkout. Raises GatewayError on failure."""

    @abstractmethod
    async def verify_and_parse(
        self,
        body: bytes,
        headers: Mapping[str, str],
    ) -> GatewayEvent:
        """Verify the webhook signature and normalise the event.

        Raises SignatureVerificationError when the event is not authentic.
        """


def lower_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Case-insensitive header access for plain dicts and Starlette headers."""
    return {key.lower(): value for key, value in headers.items()}
