"""
Payment intent manager.

Coordinates:
- Request validation (minimum amount, currency allow-list)
- Intent creation and confirmation through the PaymentProvider
- Applying confirmed payments to the ledger
- Full-record billing replace from the extension client

Provider calls always happen before the ledger lock is taken; the ledger
mutation only ever applies a result the provider has already returned.
A charge that does not succeed immediately is never written here: the
webhook reconciler is the only writer for asynchronous outcomes.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Optional, Tuple

from backend.core.errors import InvalidPaymentRequest, PaymentProviderError
from backend.core.logging import log_event
from backend.features.billing.provider import PaymentProvider
from backend.features.ledger.store import LedgerStore
from backend.features.notifications.service import NotificationDispatcher
from backend.features.notifications.templates import NotificationType
from backend.models.billing import (
    CENTS,
    PaymentRecord,
    PaymentStatus,
    UsageCounters,
    UserBillingRecord,
)

MIN_AMOUNT = Decimal("0.50")
SUPPORTED_CURRENCIES = frozenset({"usd", "eur", "gbp", "cad", "aud"})

# Outcomes of applying a completed payment to a record
RECORDED = "recorded"
TRANSITIONED = "transitioned"
DUPLICATE = "duplicate"
TERMINAL = "terminal"


@dataclass(frozen=True)
class IntentResult:
    intent_id: str
    client_secret: Optional[str]


@dataclass(frozen=True)
class PaymentResult:
    transaction_id: str
    amount: Decimal
    currency: str
    simulated: bool
    tier: str


def validate_payment_request(user_id: Optional[str], amount: Any, currency: Optional[str]) -> Tuple[Decimal, str]:
    """Return (amount, currency) normalized, or raise InvalidPaymentRequest."""
    if not user_id:
        raise InvalidPaymentRequest("Missing user id")

    try:
        value = Decimal(str(amount))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidPaymentRequest("Invalid payment amount")
    if not value.is_finite() or value < MIN_AMOUNT:
        raise InvalidPaymentRequest(f"Amount must be at least {MIN_AMOUNT}")
    if value != value.quantize(CENTS):
        raise InvalidPaymentRequest("Amount cannot include fractions of a cent")

    code = (currency or "").strip().lower()
    if code not in SUPPORTED_CURRENCIES:
        raise InvalidPaymentRequest(f"Unsupported currency: {currency}")

    return value.quantize(CENTS), code


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


def apply_completed_payment(record: UserBillingRecord, payment: PaymentRecord) -> Tuple[UserBillingRecord, str]:
    """
    Idempotently apply a completed payment keyed by its transaction id.

    Shared by the payment path and the webhook path so whichever writer
    gets the user's lock second sees the first one's effect.
    """
    existing = record.find_payment(payment.transaction_id)
    if existing is None:
        return record.with_payment(payment), RECORDED
    if existing.status is PaymentStatus.COMPLETED:
        return record, DUPLICATE
    if existing.status is PaymentStatus.PENDING:
        return record.with_payment_status(payment.transaction_id, PaymentStatus.COMPLETED), TRANSITIONED
    return record, TERMINAL


class PaymentService:
    def __init__(
        self,
        ledger: LedgerStore,
        provider: PaymentProvider,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self.ledger = ledger
        self.provider = provider
        self.dispatcher = dispatcher

    def create_intent(self, user_id: str, amount: Any, currency: str) -> IntentResult:
        """
        Create a provider payment intent. No ledger write happens here.

        Raises:
            InvalidPaymentRequest: Amount below minimum or unsupported currency
            PaymentProviderError: Provider rejected the request
        """
        value, code = validate_payment_request(user_id, amount, currency)
        intent = self.provider.create_intent(to_minor_units(value), code, {"userId": user_id})
        log_event("info", "payment.intent_created", user_id=user_id, extra={"intent_id": intent.id})
        return IntentResult(intent_id=intent.id, client_secret=intent.client_secret)

    def process_payment(
        self,
        user_id: str,
        amount: Any,
        currency: str,
        payment_method_ref: str,
        email: Optional[str] = None,
    ) -> PaymentResult:
        """
        Charge a payment method and apply the result to the ledger.

        Raises:
            InvalidPaymentRequest: Invalid amount/currency/payment method
            PaymentProviderError: Charge failed or needs further action (ledger untouched)
        """
        value, code = validate_payment_request(user_id, amount, currency)
        if not payment_method_ref:
            raise InvalidPaymentRequest("Missing payment method")

        metadata: Dict[str, str] = {"userId": user_id}
        if email:
            metadata["email"] = email
        intent = self.provider.create_intent(to_minor_units(value), code, metadata)
        confirmed = self.provider.confirm(intent.id, payment_method_ref)

        if not confirmed.succeeded:
            log_event(
                "warning",
                "payment.rejected",
                user_id=user_id,
                error_code="payment_not_completed",
                extra={"intent_id": confirmed.id, "provider_status": confirmed.status},
            )
            raise PaymentProviderError(
                f"Payment not completed (status: {confirmed.status})",
                intent_id=confirmed.id,
                provider_status=confirmed.status,
            )

        payment = PaymentRecord(
            transaction_id=confirmed.id,
            amount=value,
            currency=code,
            status=PaymentStatus.COMPLETED,
            payment_method=confirmed.payment_method,
        )

        def _apply(record: UserBillingRecord) -> Tuple[UserBillingRecord, Tuple[UserBillingRecord, str]]:
            updated, action = apply_completed_payment(record.with_email(email), payment)
            return updated, (updated, action)

        record, action = self.ledger.transact(user_id, _apply)
        log_event(
            "info",
            "payment.completed",
            user_id=user_id,
            event_type=action,
            extra={"transaction_id": payment.transaction_id, "amount": payment.amount, "simulated": payment.simulated},
        )

        if self.dispatcher is not None and action in (RECORDED, TRANSITIONED):
            self.dispatcher.notify_quietly(
                email or record.email,
                NotificationType.PAYMENT_SUCCESSFUL,
                {
                    "transactionId": payment.transaction_id,
                    "amount": payment.amount,
                    "currency": payment.currency,
                    "timestamp": payment.timestamp.isoformat(),
                    "paymentMethod": payment.payment_method,
                },
                user_id=user_id,
            )

        return PaymentResult(
            transaction_id=payment.transaction_id,
            amount=payment.amount,
            currency=payment.currency,
            simulated=payment.simulated,
            tier=record.tier.value,
        )


def replace_billing_record(
    ledger: LedgerStore,
    user_id: str,
    payments: Iterable[PaymentRecord],
    usage: UsageCounters,
    email: Optional[str] = None,
) -> UserBillingRecord:
    """
    Replace a user's billing record with client-supplied state.

    Terminal payments already in the ledger are kept and win on id clashes,
    and the tier is derived from payments, so a replace can neither erase a
    settled payment nor downgrade a paid user.
    """
    incoming = list(payments)
    record = ledger.upsert(user_id, lambda current: current.replaced_by(incoming, usage, email))
    log_event("info", "billing.replaced", user_id=user_id, extra={"payments": len(record.payments)})
    return record
