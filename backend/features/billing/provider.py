"""
Payment provider protocol.

Defines the interface for payment providers (Stripe, simulated offline mode).
This allows swapping providers without changing business logic.
"""
from dataclasses import dataclass
from typing import Dict, Optional, Protocol


SUCCEEDED = "succeeded"


@dataclass(frozen=True)
class ProviderIntent:
    """Provider-side payment intent as seen by the billing core."""
    id: str
    status: str
    client_secret: Optional[str] = None
    payment_method: Optional[str] = None  # display label, e.g. "visa ****4242"

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED


@dataclass(frozen=True)
class ProviderEvent:
    """Verified webhook event, normalized from the provider payload."""
    id: str
    type: str
    object_id: Optional[str]
    user_id: Optional[str]
    amount_minor: Optional[int] = None
    currency: Optional[str] = None
    email: Optional[str] = None
    failure_message: Optional[str] = None


class PaymentProvider(Protocol):
    """
    Protocol for payment providers.

    Implementations must translate their own exceptions into
    PaymentProviderError (charges) or WebhookAuthError (signatures).
    """

    simulated: bool

    def create_intent(self, amount_minor: int, currency: str, metadata: Dict[str, str]) -> ProviderIntent:
        """
        Create a payment intent.

        Args:
            amount_minor: Amount in currency minor units (cents)
            currency: Lower-case ISO currency code
            metadata: Attached to the intent; must carry userId for webhooks

        Returns:
            ProviderIntent with id and client_secret

        Raises:
            PaymentProviderError: If the provider rejects the request
        """
        ...

    def confirm(self, intent_id: str, payment_method_ref: str) -> ProviderIntent:
        """
        Confirm an intent with a payment method.

        Returns:
            ProviderIntent with the provider status (succeeded, requires_action, ...)

        Raises:
            PaymentProviderError: If the charge is declined or the call fails
        """
        ...

    def verify_webhook(self, payload: bytes, signature_header: Optional[str]) -> ProviderEvent:
        """
        Verify webhook signature and parse event.

        Raises:
            WebhookAuthError: If signature is missing/invalid or payload is malformed
        """
        ...
