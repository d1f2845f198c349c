"""
Process-wide billing components.

Capabilities are chosen once from settings: Stripe when STRIPE_SECRET_KEY
is set (otherwise the simulated provider), SMTP when Gmail credentials are
set (otherwise disabled mail). Tests replace these via
app.dependency_overrides.
"""
from functools import lru_cache

from backend.core.config import settings
from backend.features.billing.provider import PaymentProvider
from backend.features.billing.service import PaymentService
from backend.features.billing.simulated_provider import SimulatedPaymentProvider
from backend.features.billing.stripe_provider import StripeProvider
from backend.features.billing.webhooks import WebhookReconciler
from backend.features.ledger.store import LedgerStore
from backend.features.notifications.mail import (
    DisabledMailProvider,
    MailProvider,
    SmtpMailProvider,
    sender_address,
)
from backend.features.notifications.service import NotificationDispatcher
from backend.features.usage.service import UsageService


@lru_cache
def get_ledger() -> LedgerStore:
    return LedgerStore()


@lru_cache
def get_payment_provider() -> PaymentProvider:
    if settings.stripe_enabled:
        return StripeProvider(
            settings.STRIPE_SECRET_KEY,
            settings.STRIPE_WEBHOOK_SECRET,
            tolerance_seconds=settings.WEBHOOK_TOLERANCE_SECONDS,
        )
    return SimulatedPaymentProvider(
        settings.STRIPE_WEBHOOK_SECRET,
        tolerance_seconds=settings.WEBHOOK_TOLERANCE_SECONDS,
    )


@lru_cache
def get_mail_provider() -> MailProvider:
    if settings.mail_enabled:
        return SmtpMailProvider(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.GMAIL_USER,
            password=settings.GMAIL_APP_PASSWORD,
            use_tls=settings.SMTP_USE_TLS,
        )
    return DisabledMailProvider()


@lru_cache
def get_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(
        get_mail_provider(),
        ledger=get_ledger(),
        from_address=sender_address(settings.MAIL_FROM_NAME, settings.GMAIL_USER),
        reply_to=settings.MAIL_REPLY_TO,
        free_tier_limit=settings.FREE_TIER_EMAIL_LIMIT,
    )


@lru_cache
def get_payment_service() -> PaymentService:
    return PaymentService(get_ledger(), get_payment_provider(), get_dispatcher())


@lru_cache
def get_webhook_reconciler() -> WebhookReconciler:
    return WebhookReconciler(get_ledger(), get_payment_provider(), get_dispatcher())


@lru_cache
def get_usage_service() -> UsageService:
    return UsageService(
        get_ledger(),
        get_dispatcher(),
        free_tier_limit=settings.FREE_TIER_EMAIL_LIMIT,
        warning_ratio=settings.FREE_TIER_WARNING_RATIO,
        cost_per_email=settings.COST_PER_EMAIL,
    )
