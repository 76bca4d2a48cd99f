"""
Webhook signature validation - verify incoming payment events are authentic.

Header format (Stripe scheme):
    t=<unix timestamp>,v1=<hex hmac>[,v1=<hex hmac>...]

The signed payload is "<t>." followed by the exact raw request body, keyed with
HMAC-SHA256 by the shared secret. Multiple v1 entries appear during secret
rotation; any one matching is enough.

Verification goes through the Stripe SDK. compute_signature and
build_signature_header produce headers the same way for the local simulator
and tests.

Freshness of the event itself is a separate check (verify_timestamp) applied
after the signature is known good.
"""
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Iterable, Optional

import stripe
from pydantic import ValidationError

from payhooks.schemas.events import InboundEvent

logger = logging.getLogger(__name__)

SIGNATURE_SCHEME = "v1"
TIMESTAMP_TOLERANCE_SECONDS = 300  # 5 minutes


@dataclass
class SignatureVerification:
    valid: bool
    event: Optional[InboundEvent] = None
    error: Optional[str] = None


def compute_signature(raw_body: bytes, secret: str, timestamp: int) -> str:
    """HMAC-SHA256 hex digest over "<timestamp>.<raw_body>"."""
    signed_payload = f"{timestamp}.".encode("utf-8") + raw_body
    return hmac.new(
        secret.encode("utf-8"),
        signed_payload,
        hashlib.sha256,
    ).hexdigest()


def build_signature_header(
    raw_body: bytes,
    secret: str,
    timestamp: Optional[int] = None,
    extra_signatures: Iterable[str] = (),
) -> str:
    """Build a signature header the way the provider would send it."""
    ts = int(time.time()) if timestamp is None else timestamp
    parts = [f"t={ts}", f"{SIGNATURE_SCHEME}={compute_signature(raw_body, secret, ts)}"]
    parts.extend(f"{SIGNATURE_SCHEME}={sig}" for sig in extra_signatures)
    return ",".join(parts)


def verify_signature(
    raw_body: bytes,
    signature_header: Optional[str],
    secret: str,
) -> SignatureVerification:
    """
    Verify the signature header against the raw body and parse the event.
    Never raises: every failure comes back as valid=False with a reason.

    Freshness is checked separately, so the SDK's header tolerance is off.
    """
    if not signature_header:
        return SignatureVerification(valid=False, error="Missing signature header")
    if not secret:
        return SignatureVerification(valid=False, error="Webhook secret not configured")

    try:
        stripe.WebhookSignature.verify_header(
            raw_body.decode("utf-8"), signature_header, secret, tolerance=None,
        )
    except stripe.SignatureVerificationError as e:
        return SignatureVerification(valid=False, error=e.user_message or str(e))
    except Exception as e:
        logger.error("Signature verification error: %s", str(e))
        return SignatureVerification(valid=False, error="Signature verification failed")

    try:
        event = InboundEvent.model_validate_json(raw_body)
    except ValidationError as e:
        # model_validate_json reports malformed JSON as a json_invalid error
        if any(err.get("type") == "json_invalid" for err in e.errors()):
            return SignatureVerification(valid=False, error="Invalid JSON payload")
        return SignatureVerification(valid=False, error="Invalid event payload")

    return SignatureVerification(valid=True, event=event)


def verify_timestamp(event_created: int, now: Optional[float] = None) -> bool:
    """
    Reject events created more than TIMESTAMP_TOLERANCE_SECONDS ago.
    Guards against replay of captured-but-stale deliveries.
    """
    current = time.time() if now is None else now
    return event_created >= current - TIMESTAMP_TOLERANCE_SECONDS
