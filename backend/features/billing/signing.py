"""Webhook signing and event normalization.

Signatures use the Stripe scheme: HMAC-SHA256 over "<timestamp>.<raw body>",
sent as `t=<timestamp>,v1=<hex digest>`. The simulated provider verifies
with this module; the Stripe provider delegates to the SDK but shares
parse_event so both produce identical ProviderEvents.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any, Dict, List, Optional, Tuple

from backend.core.errors import WebhookAuthError
from backend.features.billing.provider import ProviderEvent

DEFAULT_TOLERANCE_SECONDS = 300


def compute_signature(secret: str, timestamp: int, payload: bytes) -> str:
    signed_content = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed_content, hashlib.sha256).hexdigest()


def sign_payload(secret: str, payload: bytes, timestamp: Optional[int] = None) -> str:
    """Build a signature header for payload (used by tests and local tooling)."""
    ts = int(time.time()) if timestamp is None else timestamp
    return f"t={ts},v1={compute_signature(secret, ts, payload)}"


def _parse_header(signature_header: str) -> Tuple[Optional[int], List[str]]:
    timestamp = None
    signatures = []
    for part in signature_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None, []
        elif key == "v1" and value:
            signatures.append(value)
    return timestamp, signatures


def verify_signature(
    secret: str,
    payload: bytes,
    signature_header: Optional[str],
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[int] = None,
) -> None:
    """Raise WebhookAuthError unless the header signs payload within the replay window."""
    if not signature_header:
        raise WebhookAuthError("Missing webhook signature header")

    timestamp, signatures = _parse_header(signature_header)
    if timestamp is None or not signatures:
        raise WebhookAuthError("Malformed webhook signature header")

    current = int(time.time()) if now is None else now
    if tolerance_seconds > 0 and abs(current - timestamp) > tolerance_seconds:
        raise WebhookAuthError("Webhook timestamp outside tolerance window")

    expected = compute_signature(secret, timestamp, payload)
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise WebhookAuthError("Invalid webhook signature")


def load_event(payload: bytes) -> Dict[str, Any]:
    try:
        event = json.loads(payload)
    except (ValueError, UnicodeDecodeError) as e:
        raise WebhookAuthError(f"Invalid webhook payload: {e}")
    if not isinstance(event, dict) or "id" not in event or "type" not in event:
        raise WebhookAuthError("Invalid webhook payload: missing id or type")
    return event


def _mapping(value: Any, field: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise WebhookAuthError(f"Invalid webhook payload: {field} must be an object")
    return value


def parse_event(event: Dict[str, Any]) -> ProviderEvent:
    """Normalize a provider event dict into a ProviderEvent."""
    data = _mapping(_mapping(event.get("data"), "data").get("object"), "data.object")
    metadata = _mapping(data.get("metadata"), "metadata")
    last_error = _mapping(data.get("last_payment_error"), "last_payment_error")

    amount = data.get("amount_received") or data.get("amount")
    currency = data.get("currency")
    if amount is not None and (isinstance(amount, bool) or not isinstance(amount, int)):
        raise WebhookAuthError("Invalid webhook payload: amount must be an integer")

    return ProviderEvent(
        id=str(event["id"]),
        type=str(event["type"]),
        object_id=data.get("id"),
        user_id=metadata.get("userId") or metadata.get("user_id"),
        amount_minor=int(amount) if amount is not None else None,
        currency=currency.lower() if isinstance(currency, str) else None,
        email=metadata.get("email") or data.get("receipt_email"),
        failure_message=last_error.get("message"),
    )
