"""
Stripe payment provider implementation.

Implements the PaymentProvider protocol using the Stripe API.
Stripe exceptions never leave this module; they are translated into
PaymentProviderError / WebhookAuthError.
"""
from typing import Dict, Optional

import stripe

from backend.core.errors import PaymentProviderError, WebhookAuthError
from backend.features.billing.provider import ProviderEvent, ProviderIntent
from backend.features.billing.signing import DEFAULT_TOLERANCE_SECONDS, load_event, parse_event


class StripeProvider:
    """Stripe implementation of PaymentProvider protocol."""

    simulated = False

    def __init__(
        self,
        secret_key: Optional[str],
        webhook_secret: Optional[str] = None,
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    ):
        if not secret_key:
            raise PaymentProviderError("STRIPE_SECRET_KEY not configured")
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds
        stripe.api_key = self.secret_key

    def create_intent(self, amount_minor: int, currency: str, metadata: Dict[str, str]) -> ProviderIntent:
        """Create Stripe PaymentIntent."""
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_minor,
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
            )
        except stripe.StripeError as e:
            raise PaymentProviderError(f"Stripe intent creation failed: {e.user_message or e}")
        return ProviderIntent(id=intent.id, status=intent.status, client_secret=intent.client_secret)

    def confirm(self, intent_id: str, payment_method_ref: str) -> ProviderIntent:
        """Confirm a Stripe PaymentIntent with a payment method."""
        try:
            intent = stripe.PaymentIntent.confirm(intent_id, payment_method=payment_method_ref)
        except stripe.CardError as e:
            raise PaymentProviderError(
                f"Card declined: {e.user_message or e}",
                intent_id=intent_id,
                provider_status="failed",
            )
        except stripe.StripeError as e:
            raise PaymentProviderError(
                f"Stripe confirmation failed: {e.user_message or e}",
                intent_id=intent_id,
                provider_status="error",
            )
        return ProviderIntent(
            id=intent.id,
            status=intent.status,
            client_secret=intent.client_secret,
            payment_method=self._describe_payment_method(payment_method_ref),
        )

    def verify_webhook(self, payload: bytes, signature_header: Optional[str]) -> ProviderEvent:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise WebhookAuthError("STRIPE_WEBHOOK_SECRET not configured")
        if not signature_header:
            raise WebhookAuthError("Missing stripe-signature header")

        try:
            stripe.Webhook.construct_event(
                payload, signature_header, self.webhook_secret, tolerance=self.tolerance_seconds
            )
        except ValueError as e:
            raise WebhookAuthError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise WebhookAuthError(f"Invalid signature: {e}")

        # Signature checked against the raw bytes; parse them directly so the
        # result does not depend on the SDK's object model.
        return parse_event(load_event(payload))

    def _describe_payment_method(self, payment_method_ref: str) -> Optional[str]:
        """Best-effort display label for receipts; None when unavailable."""
        try:
            pm = stripe.PaymentMethod.retrieve(payment_method_ref)
        except stripe.StripeError:
            return None
        card = getattr(pm, "card", None)
        if card is None:
            return None
        return f"{str(card.brand).title()} ****{card.last4}"
