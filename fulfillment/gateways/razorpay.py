"""
Razorpay Gateway - card checkout via hosted payment links.
Verifies webhook signatures and normalises payment events.
"""

import asyncio
import hashlib
import hmac
import json
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Mapping, Optional

import razorpay

from fulfillment.config import settings
from fulfillment.errors import GatewayError, SignatureVerificationError
from fulfillment.fsm.states import EventKind, PaymentProvider
from fulfillment.gateways.base import (
    CheckoutSession,
    GatewayEvent,
    PaymentGateway,
    lower_headers,
)

logger = logging.getLogger(__name__)


EVENT_KINDS: Dict[str, EventKind] = {
    "payment_link.paid": EventKind.PAYMENT_SUCCEEDED,
    "payment.captured": EventKind.PAYMENT_SUCCEEDED,
    "payment.failed": EventKind.PAYMENT_FAILED,
    "payment_link.expired": EventKind.PAYMENT_FAILED,
    "payment_link.cancelled": EventKind.PAYMENT_FAILED,
    "refund.processed": EventKind.PAYMENT_REFUNDED,
}


def verify_razorpay_signature(payload: bytes, signature: str, secret: str) -> bool:
    """
    Verify Razorpay webhook signature using HMAC SHA256.
    """
    if not secret or not signature:
        return False

    expected_signature = hmac.new(
        secret.encode(),
        payload,
        hashlib.sha256,
    ).hexdigest()

    return hmac.compare_digest(expected_signature, signature)


def _entity(payload: Dict[str, Any], name: str) -> Dict[str, Any]:
    return (payload.get("payload", {}).get(name) or {}).get("entity") or {}


def _notes(entity: Dict[str, Any]) -> Dict[str, Any]:
    # Razorpay sends an empty list instead of an empty object
    notes = entity.get("notes")
    return notes if isinstance(notes, dict) else {}


class RazorpayGateway(PaymentGateway):
    """Card-style gateway backed by Razorpay payment links."""

    provider = PaymentProvider.RAZORPAY

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[Any] = None,
    ):
        self.key_id = key_id if key_id is not None else settings.razorpay_key_id
        self.key_secret = key_secret if key_secret is not None else settings.razorpay_key_secret
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.razorpay_webhook_secret
        )
        self.timeout = timeout or settings.gateway_timeout_seconds
        self.client = client or razorpay.Client(auth=(self.key_id, self.key_secret))

    async def create_session(
        self,
        total: Decimal,
        currency: str,
        email: str,
        success_url: str,
        cancel_url: str,
        order_id: str,
    ) -> CheckoutSession:
        """Create a Razorpay payment link for the order."""
        amount_minor = int((Decimal(total) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

        # Payment links have no cancel redirect; cancel_url is unused here
        request = {
            "amount": amount_minor,
            "currency": currency,
            "accept_partial": False,
            "reference_id": order_id,
            "description": f"Digital download order {order_id[:8].upper()}",
            "customer": {"email": email},
            "notify": {
                "sms": False,
                "email": False,  # We send our own confirmation e-mail
            },
            "notes": {"order_id": order_id},
            "callback_url": success_url,
            "callback_method": "get",
        }

        try:
            payment_link = await asyncio.wait_for(
                asyncio.to_thread(self.client.payment_link.create, request),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Razorpay payment link creation timed out for order {order_id}")
            raise GatewayError("Razorpay did not respond in time") from e
        except Exception as e:
            logger.error(f"Failed to create Razorpay payment link for order {order_id}: {e}")
            raise GatewayError(f"Failed to create Razorpay payment link: {e}") from e

        link_id = payment_link.get("id")
        short_url = payment_link.get("short_url")
        if not link_id or not short_url:
            raise GatewayError("Razorpay response did not include a payment link")

        logger.info(f"Created payment link {link_id} for order {order_id}")
        return CheckoutSession(session_id=link_id, redirect_url=short_url)

    async def verify_and_parse(
        self,
        body: bytes,
        headers: Mapping[str, str],
    ) -> GatewayEvent:
        """Verify X-Razorpay-Signature and normalise the event."""
        headers = lower_headers(headers)

        if not self.webhook_secret:
            logger.error("Razorpay webhook secret not configured")
            raise SignatureVerificationError("Razorpay webhook secret not configured")

        signature = headers.get("x-razorpay-signature", "")
        if not verify_razorpay_signature(body, signature, self.webhook_secret):
            raise SignatureVerificationError("Invalid Razorpay webhook signature")

        try:
            payload = json.loads(body)
        except ValueError as e:
            raise SignatureVerificationError("Signed Razorpay payload is not valid JSON") from e

        return self.parse_event(payload, headers, body)

    def parse_event(
        self,
        payload: Dict[str, Any],
        headers: Mapping[str, str],
        body: bytes = b"",
    ) -> GatewayEvent:
        """Normalise a verified Razorpay payload."""
        event_type = payload.get("event", "")
        kind = EVENT_KINDS.get(event_type, EventKind.IGNORED)

        # The event id header is stable across Razorpay retries
        event_id = (
            headers.get("x-razorpay-event-id")
            or payload.get("event_id")
            or "sha256:" + hashlib.sha256(body).hexdigest()
        )

        payment_link = _entity(payload, "payment_link")
        payment = _entity(payload, "payment")
        refund = _entity(payload, "refund")

        order_ref = (
            _notes(payment_link).get("order_id")
            or _notes(payment).get("order_id")
            or _notes(refund).get("order_id")
            or payment_link.get("reference_id")
        )

        return GatewayEvent(
            event_id=event_id,
            event_type=event_type,
            kind=kind,
            order_ref=order_ref,
            session_ref=payment_link.get("id"),
            payment_ref=payment.get("id") or refund.get("payment_id"),
            payer_email=payment.get("email"),
            payload=payload,
        )
