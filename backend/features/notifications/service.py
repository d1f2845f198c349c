"""
Notification dispatcher.

Selects a template by NotificationType, renders it from request data
(optionally enriched from a read-only ledger snapshot) and hands the
result to the configured MailProvider.

Billing writers call notify_quietly after their ledger mutation has
committed: a notification failure is logged and dropped, never retried,
and never rolls back billing state.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

import pydantic

from backend.core.errors import (
    InvalidNotificationType,
    NotificationError,
    NotificationServiceUnavailable,
    ValidationError,
)
from backend.core.logging import log_event
from backend.features.ledger.store import LedgerStore
from backend.features.notifications.mail import MailMessage, MailProvider, MailUnavailableError
from backend.features.notifications.templates import TEMPLATES, NotificationType, RenderedEmail
from backend.models.billing import UserBillingRecord


@dataclass(frozen=True)
class NotificationResult:
    message_id: str


def parse_notification_type(value: Any) -> NotificationType:
    try:
        return NotificationType(value)
    except ValueError:
        raise InvalidNotificationType(f"Invalid notification type: {value}")


def _enrichment(kind: NotificationType, record: UserBillingRecord) -> Dict[str, Any]:
    """Template fields derivable from the ledger, keyed by template alias."""
    if kind is NotificationType.FREE_TIER_WARNING:
        return {"emailsClassified": record.usage.emails_classified}

    payment = record.last_payment
    if payment is None:
        return {}
    fields: Dict[str, Any] = {
        "transactionId": payment.transaction_id,
        "amount": payment.amount,
        "currency": payment.currency,
    }
    if kind is NotificationType.PAYMENT_SUCCESSFUL:
        fields["timestamp"] = payment.timestamp.isoformat()
        if payment.payment_method:
            fields["paymentMethod"] = payment.payment_method
    return fields


class NotificationDispatcher:
    def __init__(
        self,
        mail_provider: MailProvider,
        ledger: Optional[LedgerStore] = None,
        from_address: str = "Inbox Cleaner Pro <no-reply@localhost>",
        reply_to: Optional[str] = None,
        free_tier_limit: int = 1000,
    ):
        self.mail_provider = mail_provider
        self.ledger = ledger
        self.from_address = from_address
        self.reply_to = reply_to
        self.free_tier_limit = free_tier_limit

    def render(
        self,
        kind: NotificationType,
        data: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> RenderedEmail:
        """Render a template. Pure: reads the ledger, never writes it."""
        template = TEMPLATES[kind]
        merged: Dict[str, Any] = {}
        if kind is NotificationType.FREE_TIER_WARNING:
            merged["limit"] = self.free_tier_limit
        if user_id and self.ledger is not None:
            merged.update(_enrichment(kind, self.ledger.get(user_id)))
        merged.update({k: v for k, v in (data or {}).items() if v is not None})

        try:
            model = template.model.model_validate(merged)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid notification data: {e.error_count()} invalid field(s)")
        return template.render(model)

    def _send(self, to: str, subject: str, html: str) -> NotificationResult:
        message = MailMessage(
            from_address=self.from_address,
            to=to,
            subject=subject,
            html=html,
            reply_to=self.reply_to,
        )
        try:
            message_id = self.mail_provider.send(message)
        except MailUnavailableError as e:
            raise NotificationServiceUnavailable(str(e))
        except Exception as e:
            log_event("error", "notification.transport_error", error_code="mail_transport", extra={"error": e})
            raise NotificationServiceUnavailable("Failed to send email")
        return NotificationResult(message_id=message_id)

    def notify(
        self,
        to: str,
        type: Any,
        data: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> NotificationResult:
        """
        Render and send a billing notification.

        Raises:
            InvalidNotificationType: Unknown type (no provider call is made)
            ValidationError: Missing recipient or unusable template data
            NotificationServiceUnavailable: Mail capability absent or failing
        """
        kind = parse_notification_type(type)
        if not to:
            raise ValidationError("Missing notification recipient")

        rendered = self.render(kind, data, user_id=user_id)
        result = self._send(to, rendered.subject, rendered.html)
        log_event(
            "info",
            "notification.sent",
            user_id=user_id,
            event_type=kind.value,
            extra={"message_id": result.message_id},
        )
        return result

    def notify_quietly(
        self,
        to: Optional[str],
        type: NotificationType,
        data: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> Optional[NotificationResult]:
        """Fire-and-forget variant for billing writers."""
        if not to:
            return None
        try:
            return self.notify(to, type, data, user_id=user_id)
        except (NotificationError, ValidationError) as e:
            log_event("warning", "notification.failed", user_id=user_id, event_type=type.value, error_code=e.code)
        return None

    def send_usage_summary(self, to: str, subject: str, html: str) -> NotificationResult:
        """Send a caller-rendered usage summary email."""
        if not to or not subject or not html:
            raise ValidationError("Missing required email fields")
        result = self._send(to, subject, html)
        log_event("info", "notification.sent", event_type="usage_summary", extra={"message_id": result.message_id})
        return result
