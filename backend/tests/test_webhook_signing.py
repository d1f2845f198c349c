"""Tests for webhook signature verification and event parsing."""

import json

import pytest

from backend.core.errors import WebhookAuthError
from backend.features.billing.signing import (
    compute_signature,
    load_event,
    parse_event,
    sign_payload,
    verify_signature,
)

SECRET = "whsec_unit"
NOW = 1_700_000_000


def test_valid_signature_passes():
    payload = b'{"id":"evt_1","type":"x"}'
    verify_signature(SECRET, payload, sign_payload(SECRET, payload, timestamp=NOW), now=NOW)


def test_any_matching_v1_signature_accepted():
    payload = b"{}"
    good = compute_signature(SECRET, NOW, payload)
    header = f"t={NOW},v1=deadbeef,v1={good}"
    verify_signature(SECRET, payload, header, now=NOW)


@pytest.mark.parametrize("header", [None, "", "garbage", "t=abc,v1=00", f"t={NOW}", "v1=00"])
def test_missing_or_malformed_header_rejected(header):
    with pytest.raises(WebhookAuthError):
        verify_signature(SECRET, b"{}", header, now=NOW)


def test_replay_window_enforced():
    header = sign_payload(SECRET, b"{}", timestamp=NOW - 301)
    with pytest.raises(WebhookAuthError, match="tolerance"):
        verify_signature(SECRET, b"{}", header, tolerance_seconds=300, now=NOW)


def test_zero_tolerance_disables_window():
    header = sign_payload(SECRET, b"{}", timestamp=NOW - 86400)
    verify_signature(SECRET, b"{}", header, tolerance_seconds=0, now=NOW)


@pytest.mark.parametrize("payload", [b"not json", b"[]", b'{"id": "evt_1"}'])
def test_load_event_rejects_unusable_payloads(payload):
    with pytest.raises(WebhookAuthError):
        load_event(payload)


def test_parse_event_prefers_amount_received_and_metadata():
    event = load_event(
        json.dumps(
            {
                "id": "evt_1",
                "type": "payment_intent.payment_failed",
                "data": {
                    "object": {
                        "id": "pi_1",
                        "amount": 900,
                        "amount_received": 500,
                        "currency": "EUR",
                        "metadata": {"user_id": "u1", "email": "meta@b.com"},
                        "receipt_email": "receipt@b.com",
                        "last_payment_error": {"message": "Insufficient funds"},
                    }
                },
            }
        ).encode()
    )

    parsed = parse_event(event)

    assert parsed.user_id == "u1"
    assert parsed.amount_minor == 500
    assert parsed.currency == "eur"
    assert parsed.email == "meta@b.com"
    assert parsed.failure_message == "Insufficient funds"


def test_parse_event_without_object():
    parsed = parse_event({"id": "evt_1", "type": "ping"})

    assert parsed.object_id is None
    assert parsed.user_id is None
    assert parsed.amount_minor is None


@pytest.mark.parametrize(
    "data",
    [
        "x",
        {"object": []},
        {"object": {"id": "pi_1", "metadata": "x"}},
        {"object": {"id": "pi_1", "last_payment_error": ["declined"]}},
        {"object": {"id": "pi_1", "amount": "500"}},
    ],
)
def test_parse_event_rejects_malformed_objects(data):
    with pytest.raises(WebhookAuthError, match="Invalid webhook payload"):
        parse_event({"id": "evt_1", "type": "payment_intent.succeeded", "data": data})
