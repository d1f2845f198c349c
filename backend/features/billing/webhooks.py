"""
Webhook reconciler.

1. Verify signature (WebhookAuthError on failure, ledger untouched)
2. Classify event type (unknown types are acknowledged and ignored)
3. Apply idempotently, keyed on the payment intent id
4. Acknowledge

The only ledger effect is the monotonic pending -> completed|failed
transition (or appending a completed record the ledger has never seen),
so duplicate and reordered deliveries converge on the same state.
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

from backend.core.logging import log_event
from backend.features.billing.provider import PaymentProvider, ProviderEvent
from backend.features.billing.service import (
    DUPLICATE,
    RECORDED,
    TERMINAL,
    TRANSITIONED,
    apply_completed_payment,
)
from backend.features.ledger.store import LedgerStore
from backend.features.notifications.service import NotificationDispatcher
from backend.features.notifications.templates import NotificationType
from backend.models.billing import PaymentRecord, PaymentStatus, UserBillingRecord

IGNORED = "ignored"
UNATTRIBUTED = "unattributed"
UNMATCHED = "unmatched"
MISMATCH = "mismatch"


class WebhookEventType(str, Enum):
    PAYMENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_FAILED = "payment_intent.payment_failed"


@dataclass(frozen=True)
class WebhookOutcome:
    event_id: str
    event_type: str
    action: str
    user_id: Optional[str] = None
    transaction_id: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.action in (RECORDED, TRANSITIONED)


def _event_amount(event: ProviderEvent) -> Optional[Decimal]:
    if event.amount_minor is None:
        return None
    return (Decimal(event.amount_minor) / 100).quantize(Decimal("0.01"))


def _consistent(existing: PaymentRecord, event: ProviderEvent) -> bool:
    """Event amount/currency, when present, must match the stored payment."""
    amount = _event_amount(event)
    if amount is not None and amount != existing.amount:
        return False
    if event.currency and event.currency != existing.currency:
        return False
    return True


def apply_succeeded(record: UserBillingRecord, event: ProviderEvent) -> Tuple[UserBillingRecord, str]:
    existing = record.find_payment(event.object_id)
    if existing is not None and not _consistent(existing, event):
        return record, MISMATCH
    if existing is not None:
        return apply_completed_payment(record.with_email(event.email), existing)
    if event.amount_minor is None or not event.currency:
        # Nothing to record a new payment from
        return record, UNMATCHED
    payment = PaymentRecord(
        transaction_id=event.object_id,
        amount=_event_amount(event),
        currency=event.currency,
        status=PaymentStatus.COMPLETED,
    )
    return apply_completed_payment(record.with_email(event.email), payment)


def apply_failed(record: UserBillingRecord, event: ProviderEvent) -> Tuple[UserBillingRecord, str]:
    existing = record.find_payment(event.object_id)
    if existing is None:
        return record, UNMATCHED
    if not _consistent(existing, event):
        return record, MISMATCH
    if existing.status is PaymentStatus.FAILED:
        return record, DUPLICATE
    if existing.status is PaymentStatus.COMPLETED:
        return record, TERMINAL
    return record.with_payment_status(existing.transaction_id, PaymentStatus.FAILED), TRANSITIONED


class WebhookReconciler:
    def __init__(
        self,
        ledger: LedgerStore,
        provider: PaymentProvider,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self.ledger = ledger
        self.provider = provider
        self.dispatcher = dispatcher

    def handle(self, payload: bytes, signature_header: Optional[str]) -> WebhookOutcome:
        """
        Verify and apply one webhook delivery.

        Raises:
            WebhookAuthError: Signature invalid (delivery rejected, no ledger effect)
        """
        event = self.provider.verify_webhook(payload, signature_header)

        try:
            kind = WebhookEventType(event.type)
        except ValueError:
            log_event("info", "webhook.ignored", event_type=event.type, extra={"event_id": event.id})
            return WebhookOutcome(event.id, event.type, IGNORED)

        if not event.user_id or not event.object_id:
            log_event("warning", "webhook.unattributed", event_type=event.type, extra={"event_id": event.id})
            return WebhookOutcome(event.id, event.type, UNATTRIBUTED, transaction_id=event.object_id)

        mutation = apply_succeeded if kind is WebhookEventType.PAYMENT_SUCCEEDED else apply_failed
        record, action = self.ledger.transact(
            event.user_id,
            lambda current: self._run(mutation, current, event),
        )
        outcome = WebhookOutcome(event.id, event.type, action, event.user_id, event.object_id)

        level = "warning" if action in (MISMATCH, UNMATCHED) else "info"
        log_event(
            level,
            f"webhook.{action if action in (MISMATCH, UNMATCHED) else 'applied'}",
            user_id=event.user_id,
            event_type=event.type,
            extra={"event_id": event.id, "transaction_id": event.object_id, "action": action},
        )

        if outcome.changed:
            self._notify(kind, event, record)
        return outcome

    @staticmethod
    def _run(mutation, current: UserBillingRecord, event: ProviderEvent):
        updated, action = mutation(current, event)
        return updated, (updated, action)

    def _notify(self, kind: WebhookEventType, event: ProviderEvent, record: UserBillingRecord) -> None:
        if self.dispatcher is None:
            return
        payment = record.find_payment(event.object_id)
        data = {
            "transactionId": event.object_id,
            "amount": payment.amount if payment else _event_amount(event),
            "currency": payment.currency if payment else event.currency,
        }
        if kind is WebhookEventType.PAYMENT_SUCCEEDED:
            data["timestamp"] = payment.timestamp.isoformat() if payment else None
            self.dispatcher.notify_quietly(
                event.email or record.email, NotificationType.PAYMENT_SUCCESSFUL, data, user_id=event.user_id
            )
        else:
            data["reason"] = event.failure_message
            self.dispatcher.notify_quietly(
                event.email or record.email, NotificationType.PAYMENT_FAILED, data, user_id=event.user_id
            )
