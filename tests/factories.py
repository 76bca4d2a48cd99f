"""Builders shared by the test modules."""
import json
import time

from payhooks.utils.webhook_signatures import build_signature_header

TEST_SECRET = "whsec_test_secret"
TEST_HEALTH_TOKEN = "health-token-123"


class Clock:
    """Manually advanced clock for time-dependent components."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_event(
    event_id: str = "evt_1",
    event_type: str = "payment_intent.succeeded",
    created: int | None = None,
    obj: dict | None = None,
) -> dict:
    return {
        "id": event_id,
        "type": event_type,
        "created": int(time.time()) if created is None else created,
        "data": {"object": obj if obj is not None else {"id": "pi_123", "amount": 500, "currency": "usd"}},
    }


def signed(event: dict, secret: str = TEST_SECRET) -> tuple[bytes, str]:
    """Serialize an event and sign it; returns (raw_body, signature_header)."""
    body = json.dumps(event).encode("utf-8")
    return body, build_signature_header(body, secret)
