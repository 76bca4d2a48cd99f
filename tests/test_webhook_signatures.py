"""
Webhook signature verification tests.
These protect the authentication boundary for all inbound payment events.
"""
import hashlib
import hmac
import json
import time

import pytest
import stripe
from unittest.mock import patch

from payhooks.utils.webhook_signatures import (
    TIMESTAMP_TOLERANCE_SECONDS,
    build_signature_header,
    compute_signature,
    verify_signature,
    verify_timestamp,
)
from factories import TEST_SECRET, make_event, signed


class TestComputeSignature:
    def test_matches_manual_hmac(self):
        body = b'{"id":"evt_1"}'
        expected = hmac.new(
            TEST_SECRET.encode(), b"1700000000." + body, hashlib.sha256,
        ).hexdigest()
        assert compute_signature(body, TEST_SECRET, 1700000000) == expected

    def test_header_format(self):
        header = build_signature_header(b"{}", TEST_SECRET, timestamp=123)
        assert header.startswith("t=123,v1=")
        assert len(header.split("v1=")[1]) == 64


class TestVerifySignature:
    def test_valid_signature_returns_event(self):
        body, header = signed(make_event("evt_1"))
        result = verify_signature(body, header, TEST_SECRET)
        assert result.valid is True
        assert result.error is None
        assert result.event.id == "evt_1"
        assert result.event.type == "payment_intent.succeeded"

    def test_single_byte_change_rejected(self):
        body, header = signed(make_event("evt_1"))
        tampered = body.replace(b'"amount": 500', b'"amount": 501')
        assert tampered != body
        result = verify_signature(tampered, header, TEST_SECRET)
        assert result.valid is False
        assert result.event is None
        assert "No signatures found matching the expected signature" in result.error

    def test_wrong_secret_rejected(self):
        body, header = signed(make_event(), secret="whsec_other")
        result = verify_signature(body, header, TEST_SECRET)
        assert result.valid is False

    def test_missing_header(self):
        body, _ = signed(make_event())
        for header in (None, ""):
            result = verify_signature(body, header, TEST_SECRET)
            assert result.valid is False
            assert result.error == "Missing signature header"

    def test_missing_secret(self):
        body, header = signed(make_event())
        result = verify_signature(body, header, "")
        assert result.valid is False
        assert result.error == "Webhook secret not configured"

    def test_header_without_timestamp(self):
        body, header = signed(make_event())
        v1_only = header.split(",", 1)[1]
        result = verify_signature(body, v1_only, TEST_SECRET)
        assert result.valid is False
        assert "Unable to extract timestamp" in result.error

    def test_non_numeric_timestamp(self):
        body, header = signed(make_event())
        bad = "t=abc," + header.split(",", 1)[1]
        result = verify_signature(body, bad, TEST_SECRET)
        assert result.valid is False
        assert "Unable to extract timestamp" in result.error

    def test_header_without_v1_signature(self):
        body, _ = signed(make_event())
        result = verify_signature(body, f"t={int(time.time())},v0=deadbeef", TEST_SECRET)
        assert result.valid is False
        assert "No signatures found with expected scheme" in result.error

    def test_garbage_header_does_not_raise(self):
        body, _ = signed(make_event())
        for header in ("garbage", ",,,", "t=", "=====", "t=1,v1="):
            result = verify_signature(body, header, TEST_SECRET)
            assert result.valid is False
            assert result.error

    def test_rotation_any_matching_signature_accepted(self):
        """During secret rotation the header carries one v1 per active secret."""
        body = json.dumps(make_event()).encode()
        ts = int(time.time())
        old_sig = compute_signature(body, "whsec_old", ts)
        header = build_signature_header(body, TEST_SECRET, timestamp=ts, extra_signatures=[old_sig])
        assert verify_signature(body, header, TEST_SECRET).valid is True
        assert verify_signature(body, header, "whsec_old").valid is True
        assert verify_signature(body, header, "whsec_unrelated").valid is False

    def test_unknown_header_entries_ignored(self):
        body = json.dumps(make_event()).encode()
        header = build_signature_header(body, TEST_SECRET) + ",v0=ignored,foo=bar"
        assert verify_signature(body, header, TEST_SECRET).valid is True

    def test_signed_invalid_json(self):
        body = b"not json at all"
        header = build_signature_header(body, TEST_SECRET)
        result = verify_signature(body, header, TEST_SECRET)
        assert result.valid is False
        assert result.error == "Invalid JSON payload"

    def test_signed_json_missing_required_fields(self):
        body = json.dumps({"type": "payment_intent.succeeded", "created": 1}).encode()
        header = build_signature_header(body, TEST_SECRET)
        result = verify_signature(body, header, TEST_SECRET)
        assert result.valid is False
        assert result.error == "Invalid event payload"

    def test_signed_json_empty_id_rejected(self):
        body = json.dumps(make_event(event_id="")).encode()
        header = build_signature_header(body, TEST_SECRET)
        assert verify_signature(body, header, TEST_SECRET).valid is False

    def test_non_utf8_body_does_not_raise(self):
        body = b"\xff\xfe\x00not utf8"
        header = build_signature_header(body, TEST_SECRET)
        result = verify_signature(body, header, TEST_SECRET)
        assert result.valid is False
        assert result.error == "Signature verification failed"

    def test_unexpected_sdk_error_does_not_raise(self):
        body, header = signed(make_event())
        with patch(
            "payhooks.utils.webhook_signatures.stripe.WebhookSignature.verify_header",
            side_effect=RuntimeError("boom"),
        ):
            result = verify_signature(body, header, TEST_SECRET)
        assert result.valid is False
        assert result.error == "Signature verification failed"

    def test_old_signature_timestamp_left_to_freshness_check(self):
        """Header age is not enforced here; event freshness is checked on `created`."""
        body = json.dumps(make_event()).encode()
        header = build_signature_header(body, TEST_SECRET, timestamp=int(time.time()) - 86400)
        assert verify_signature(body, header, TEST_SECRET).valid is True


class TestStripeCompatibility:
    def test_sdk_accepts_generated_header(self):
        body, header = signed(make_event("evt_sdk"))
        assert stripe.WebhookSignature.verify_header(
            body.decode(), header, TEST_SECRET, tolerance=None,
        ) is True

    def test_sdk_rejects_tampered_body(self):
        body, header = signed(make_event("evt_sdk"))
        tampered = body.replace(b'"amount": 500', b'"amount": 900')
        with pytest.raises(stripe.SignatureVerificationError):
            stripe.WebhookSignature.verify_header(
                tampered.decode(), header, TEST_SECRET, tolerance=None,
            )


class TestVerifyTimestamp:
    NOW = 1_700_000_000

    def test_current_event_is_fresh(self):
        assert verify_timestamp(self.NOW, now=self.NOW) is True

    def test_exactly_at_tolerance_is_fresh(self):
        assert verify_timestamp(self.NOW - TIMESTAMP_TOLERANCE_SECONDS, now=self.NOW) is True

    def test_one_second_inside_tolerance(self):
        assert verify_timestamp(self.NOW - 299, now=self.NOW) is True

    def test_one_second_past_tolerance_is_stale(self):
        assert verify_timestamp(self.NOW - 301, now=self.NOW) is False

    def test_future_timestamp_accepted(self):
        assert verify_timestamp(self.NOW + 3600, now=self.NOW) is True

    @pytest.mark.parametrize("age", [600, 86400])
    def test_old_events_are_stale(self, age):
        assert verify_timestamp(self.NOW - age, now=self.NOW) is False
