"""Payment gateway adapters, selected by provider name."""

from typing import Dict

from fulfillment.fsm.states import PaymentProvider
from fulfillment.gateways.base import CheckoutSession, GatewayEvent, PaymentGateway
from fulfillment.gateways.paypal import PayPalGateway
from fulfillment.gateways.razorpay import RazorpayGateway

GATEWAY_CLASSES = {
    PaymentProvider.RAZORPAY: RazorpayGateway,
    PaymentProvider.PAYPAL: PayPalGateway,
}


def build_gateways() -> Dict[str, PaymentGateway]:
    """One adapter per provider, keyed by its webhook path segment."""
    return {provider.value: cls() for provider, cls in GATEWAY_CLASSES.items()}


__all__ = [
    "CheckoutSession",
    "GatewayEvent",
    "PaymentGateway",
    "PayPalGateway",
    "RazorpayGateway",
    "build_gateways",
]
