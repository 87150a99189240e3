"""
Post signed Razorpay webhook events to a running instance.

Usage:
    python scripts/simulate_webhook.py paid <order_id>
    python scripts/simulate_webhook.py failed <order_id>
    python scripts/simulate_webhook.py replay <order_id>   # same event twice
"""

import argparse
import hashlib
import hmac
import json
import os
import sys
import uuid

import httpx

sys.path.append(os.getcwd())

from fulfillment.config import settings


def build_event(kind: str, order_id: str) -> dict:
    link_id = f"plink_{uuid.uuid4().hex[:14]}"
    payment_id = f"pay_{uuid.uuid4().hex[:14]}"
    event_name = "payment_link.paid" if kind != "failed" else "payment.failed"
    return {
        "entity": "event",
        "event": event_name,
        "payload": {
            "payment_link": {
                "entity": {
                    "id": link_id,
                    "reference_id": order_id,
                    "notes": {"order_id": order_id},
                }
            },
            "payment": {
                "entity": {
                    "id": payment_id,
                    "email": "buyer@example.com",
                    "notes": {"order_id": order_id},
                }
            },
        },
    }


def post(url: str, body: bytes, event_id: str) -> None:
    signature = hmac.new(
        settings.razorpay_webhook_secret.encode(),
        body,
        hashlib.sha256,
    ).hexdigest()
    response = httpx.post(
        url,
        content=body,
        headers={
            "Content-Type": "application/json",
            "X-Razorpay-Signature": signature,
            "X-Razorpay-Event-Id": event_id,
        },
        timeout=30.0,
    )
    print(f"{response.status_code} {response.text}")


def main():
    parser = argparse.ArgumentParser(description="Simulate Razorpay webhooks")
    parser.add_argument("kind", choices=["paid", "failed", "replay"])
    parser.add_argument("order_id")
    parser.add_argument("--url", default=f"http://localhost:{settings.port}/webhooks/razorpay")
    args = parser.parse_args()

    if not settings.razorpay_webhook_secret:
        print("RAZORPAY_WEBHOOK_SECRET missing in .env")
        sys.exit(1)

    body = json.dumps(build_event(args.kind, args.order_id)).encode()
    event_id = f"evt_{uuid.uuid4().hex[:14]}"

    post(args.url, body, event_id)
    if args.kind == "replay":
        print("Replaying the same event...")
        post(args.url, body, event_id)


if __name__ == "__main__":
    main()
