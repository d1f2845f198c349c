"""
Offline payment provider.

Used when STRIPE_SECRET_KEY is not configured. Every confirmation succeeds
and intent ids carry the `sim_` prefix so simulated payments stay
distinguishable from provider-confirmed ones downstream.
"""
import secrets
from typing import Dict, Optional

from backend.core.errors import WebhookAuthError
from backend.features.billing.provider import SUCCEEDED, ProviderEvent, ProviderIntent
from backend.features.billing.signing import (
    DEFAULT_TOLERANCE_SECONDS,
    load_event,
    parse_event,
    verify_signature,
)
from backend.models.billing import SIMULATED_PREFIX


class SimulatedPaymentProvider:
    simulated = True

    def __init__(self, webhook_secret: Optional[str] = None, tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS):
        self.webhook_secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds

    def create_intent(self, amount_minor: int, currency: str, metadata: Dict[str, str]) -> ProviderIntent:
        intent_id = f"{SIMULATED_PREFIX}{secrets.token_hex(12)}"
        return ProviderIntent(
            id=intent_id,
            status="requires_payment_method",
            client_secret=f"{intent_id}_secret_{secrets.token_hex(8)}",
        )

    def confirm(self, intent_id: str, payment_method_ref: str) -> ProviderIntent:
        return ProviderIntent(id=intent_id, status=SUCCEEDED, payment_method="Card")

    def verify_webhook(self, payload: bytes, signature_header: Optional[str]) -> ProviderEvent:
        if not self.webhook_secret:
            raise WebhookAuthError("STRIPE_WEBHOOK_SECRET not configured")
        verify_signature(self.webhook_secret, payload, signature_header, self.tolerance_seconds)
        return parse_event(load_event(payload))
