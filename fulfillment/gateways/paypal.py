"""
PayPal Gateway - wallet checkout via the Orders v2 REST API.

Webhook authenticity is confirmed by PayPal itself through the
verify-webhook-signature endpoint, so verification needs network access.
"""

import hashlib
import json
import logging
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import httpx

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

PAYPAL_API_URLS = {
    "sandbox": "https://api-m.sandbox.paypal.com",
    "live": "https://api-m.paypal.com",
}

EVENT_KINDS: Dict[str, EventKind] = {
    "CHECKOUT.ORDER.APPROVED": EventKind.ORDER_APPROVED,
    "PAYMENT.CAPTURE.COMPLETED": EventKind.PAYMENT_SUCCEEDED,
    "PAYMENT.CAPTURE.DENIED": EventKind.PAYMENT_FAILED,
    "PAYMENT.CAPTURE.DECLINED": EventKind.PAYMENT_FAILED,
    "PAYMENT.CAPTURE.REFUNDED": EventKind.PAYMENT_REFUNDED,
}

# Transmission headers PayPal attaches to every webhook delivery
SIGNATURE_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


class PayPalGateway(PaymentGateway):
    """Wallet-style gateway: payer approves, then the capture settles."""

    provider = PaymentProvider.PAYPAL

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        webhook_id: Optional[str] = None,
        environment: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id if client_id is not None else settings.paypal_client_id
        self.client_secret = (
            client_secret if client_secret is not None else settings.paypal_client_secret
        )
        self.webhook_id = webhook_id if webhook_id is not None else settings.paypal_webhook_id
        self.base_url = PAYPAL_API_URLS[environment or settings.paypal_environment]
        self.timeout = timeout or settings.gateway_timeout_seconds
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        """Client-credentials OAuth token."""
        if not self.client_id or not self.client_secret:
            raise GatewayError("PayPal credentials not configured")

        response = await client.post(
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.client_secret),
            headers={"Accept": "application/json"},
        )
        if response.status_code != 200:
            logger.error(f"PayPal OAuth error {response.status_code}: {response.text}")
            raise GatewayError(f"PayPal authentication failed ({response.status_code})")

        token = _json_body(response, "OAuth").get("access_token")
        if not token:
            raise GatewayError("PayPal authentication returned no access token")
        return token

    async def create_session(
        self,
        total: Decimal,
        currency: str,
        email: str,
        success_url: str,
        cancel_url: str,
        order_id: str,
    ) -> CheckoutSession:
        """Create a PayPal order and return its approval link."""
        payload = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": order_id,
                    "custom_id": order_id,
                    "description": f"Digital download order {order_id[:8].upper()}",
                    "amount": {
                        "currency_code": currency,
                        "value": f"{Decimal(total):.2f}",
                    },
                }
            ],
            "payer": {"email_address": email},
            "application_context": {
                "return_url": success_url,
                "cancel_url": cancel_url,
                "shipping_preference": "NO_SHIPPING",
                "user_action": "PAY_NOW",
            },
        }

        try:
            async with self._client() as client:
                token = await self._access_token(client)
                response = await client.post(
                    "/v2/checkout/orders",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {token}",
                        "PayPal-Request-Id": order_id,
                    },
                )
        except httpx.TimeoutException as e:
            logger.error(f"PayPal order creation timed out for order {order_id}")
            raise GatewayError("PayPal did not respond in time") from e
        except httpx.HTTPError as e:
            logger.error(f"PayPal order creation failed for order {order_id}: {e}")
            raise GatewayError(f"PayPal request failed: {e}") from e

        if response.status_code not in (200, 201):
            logger.error(f"PayPal API Error {response.status_code}: {response.text}")
            raise GatewayError(f"PayPal order creation failed ({response.status_code})")

        data = _json_body(response, "order creation")
        approve_url = None
        for link in data.get("links", []):
            if link.get("rel") in ("approve", "payer-action"):
                approve_url = link.get("href")
                break

        if not data.get("id") or not approve_url:
            raise GatewayError("PayPal response did not include an approval link")

        logger.info(f"Created PayPal order {data['id']} for order {order_id}")
        return CheckoutSession(session_id=data["id"], redirect_url=approve_url)

    async def verify_and_parse(
        self,
        body: bytes,
        headers: Mapping[str, str],
    ) -> GatewayEvent:
        """Ask PayPal to verify the transmission, then normalise the event."""
        headers = lower_headers(headers)

        if not self.webhook_id:
            logger.error("PayPal webhook id not configured")
            raise SignatureVerificationError("PayPal webhook id not configured")

        transmission = {}
        for field_name, header in SIGNATURE_HEADERS.items():
            value = headers.get(header)
            if not value:
                raise SignatureVerificationError(f"Missing {header} header")
            transmission[field_name] = value

        try:
            payload = json.loads(body)
        except ValueError as e:
            raise SignatureVerificationError("PayPal payload is not valid JSON") from e

        verification = {
            **transmission,
            "webhook_id": self.webhook_id,
            "webhook_event": payload,
        }

        try:
            async with self._client() as client:
                token = await self._access_token(client)
                response = await client.post(
                    "/v1/notifications/verify-webhook-signature",
                    json=verification,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as e:
            logger.error(f"PayPal signature verification unreachable: {e}")
            raise GatewayError("PayPal signature verification unavailable") from e

        if response.status_code >= 500:
            raise GatewayError(f"PayPal signature verification failed ({response.status_code})")

        status = None
        if response.status_code == 200:
            status = _json_body(response, "signature verification").get("verification_status")
        if status != "SUCCESS":
            raise SignatureVerificationError(
                f"PayPal webhook verification status: {status or response.status_code}"
            )

        return self.parse_event(payload)

    def parse_event(self, payload: Dict[str, Any]) -> GatewayEvent:
        """Normalise a verified PayPal webhook payload."""
        event_type = payload.get("event_type", "")
        kind = EVENT_KINDS.get(event_type, EventKind.IGNORED)
        resource = payload.get("resource") or {}

        order_ref = None
        session_ref = None
        payment_ref = None
        payer_email = None

        if event_type.startswith("CHECKOUT.ORDER."):
            # resource is the PayPal order itself
            units = resource.get("purchase_units") or [{}]
            order_ref = units[0].get("custom_id") or units[0].get("reference_id")
            session_ref = resource.get("id")
            payer_email = (resource.get("payer") or {}).get("email_address")
        elif event_type.startswith("PAYMENT.CAPTURE."):
            # resource is the capture (or the refund, for REFUNDED)
            order_ref = resource.get("custom_id")
            related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
            session_ref = related.get("order_id")
            payment_ref = related.get("capture_id") or resource.get("id")
            if event_type == "PAYMENT.CAPTURE.REFUNDED":
                payment_ref = related.get("capture_id") or _capture_id_from_links(resource)

        return GatewayEvent(
            event_id=payload.get("id") or "sha256:" + hashlib.sha256(
                json.dumps(payload, sort_keys=True).encode()
            ).hexdigest(),
            event_type=event_type,
            kind=kind,
            order_ref=order_ref,
            session_ref=session_ref,
            payment_ref=payment_ref,
            payer_email=payer_email,
            payload=payload,
        )


def _json_body(response: httpx.Response, call: str) -> Dict[str, Any]:
    """Decode a PayPal JSON object, mapping garbage to GatewayError."""
    try:
        data = response.json()
    except ValueError as e:
        logger.error(f"PayPal {call} returned non-JSON body: {response.text[:200]}")
        raise GatewayError(f"PayPal {call} returned an unreadable response") from e
    if not isinstance(data, dict):
        raise GatewayError(f"PayPal {call} returned an unexpected response")
    return data


def _capture_id_from_links(resource: Dict[str, Any]) -> Optional[str]:
    """Refund resources link back to their capture via an 'up' link."""
    for link in resource.get("links", []):
        if link.get("rel") == "up":
            return link.get("href", "").rstrip("/").rsplit("/", 1)[-1] or None
    return None
