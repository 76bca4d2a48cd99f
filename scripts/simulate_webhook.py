"""
Send a signed payment event to a running payhooks instance.

Usage:
    python scripts/simulate_webhook.py --secret whsec_test
    python scripts/simulate_webhook.py --secret whsec_test --type invoice.payment_failed
    python scripts/simulate_webhook.py --secret whsec_test --event-id evt_1 --repeat 3
    python scripts/simulate_webhook.py --secret whsec_test --tamper
"""
import argparse
import asyncio
import json
import logging
import time
import uuid

import httpx

from payhooks.utils.webhook_signatures import build_signature_header

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_URL = "http://localhost:8000"


def build_event(event_type: str, event_id: str, created: int) -> dict:
    """Minimal but well-formed event object for each supported type."""
    if event_type.startswith("payment_intent."):
        obj = {
            "id": "pi_test_123",
            "amount": 500,
            "currency": "usd",
            "receipt_email": "customer@example.com",
        }
        if event_type == "payment_intent.payment_failed":
            obj["last_payment_error"] = {"code": "card_declined", "decline_code": "insufficient_funds"}
    elif event_type.startswith("invoice."):
        obj = {
            "id": "in_test_123",
            "customer": "cus_test_123",
            "subscription": "sub_test_123",
            "customer_email": "customer@example.com",
            "amount_paid": 500 if event_type != "invoice.payment_failed" else 0,
            "amount_due": 500,
            "attempt_count": 1,
        }
    elif event_type.startswith("customer.subscription."):
        obj = {
            "id": "sub_test_123",
            "customer": "cus_test_123",
            "status": "canceled" if event_type.endswith("deleted") else "active",
            "current_period_end": created + 30 * 86400,
            "items": {"data": [{"price": {"id": "price_test_premium"}}]},
        }
    elif event_type == "checkout.session.completed":
        obj = {
            "id": "cs_test_123",
            "customer": "cus_test_123",
            "subscription": "sub_test_123",
            "customer_details": {"email": "customer@example.com"},
        }
    else:
        obj = {"id": "obj_test_123"}

    return {
        "id": event_id,
        "type": event_type,
        "created": created,
        "api_version": "2024-06-20",
        "data": {"object": obj},
    }


async def send_event(
    base_url: str,
    secret: str,
    event: dict,
    tamper: bool = False,
    header_name: str = "stripe-signature",
):
    body = json.dumps(event).encode("utf-8")
    signature = build_signature_header(body, secret)
    if tamper:
        # Flip one byte after signing
        body = body[:-2] + (b"]" if body[-2:-1] != b"]" else b"}") + body[-1:]

    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.post(
            f"{base_url}/webhooks/payment",
            content=body,
            headers={"Content-Type": "application/json", header_name: signature},
        )
    logger.info("%s %s -> %s %s", event["type"], event["id"], resp.status_code, resp.text)
    return resp


async def main():
    parser = argparse.ArgumentParser(description="Simulate signed payment webhooks")
    parser.add_argument("--secret", required=True, help="WEBHOOK_SHARED_SECRET of the target instance")
    parser.add_argument("--type", default="payment_intent.succeeded")
    parser.add_argument("--event-id", default=None)
    parser.add_argument("--age", type=int, default=0, help="Backdate the event by this many seconds")
    parser.add_argument("--repeat", type=int, default=1, help="Deliver the same event N times")
    parser.add_argument("--concurrent", action="store_true", help="Send repeats concurrently")
    parser.add_argument("--tamper", action="store_true", help="Modify the body after signing")
    parser.add_argument("--base-url", default=BASE_URL)
    parser.add_argument("--header", default="stripe-signature")
    args = parser.parse_args()

    event_id = args.event_id or f"evt_{uuid.uuid4().hex[:24]}"
    event = build_event(args.type, event_id, int(time.time()) - args.age)

    logger.info("Delivering %s (%s) x%d...", event_id, args.type, args.repeat)
    sends = [
        send_event(args.base_url, args.secret, event, args.tamper, args.header)
        for _ in range(args.repeat)
    ]
    if args.concurrent:
        await asyncio.gather(*sends)
    else:
        for send in sends:
            await send


if __name__ == "__main__":
    asyncio.run(main())
