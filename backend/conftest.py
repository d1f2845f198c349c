# backend/conftest.py
import json
import smtplib
import sys
import uuid
from decimal import Decimal
from pathlib import Path

import pytest

# Add repo root to PYTHONPATH so `backend.*` imports work without install
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from backend.features.billing.service import PaymentService  # noqa: E402
from backend.features.billing.signing import sign_payload  # noqa: E402
from backend.features.billing.simulated_provider import SimulatedPaymentProvider  # noqa: E402
from backend.features.billing.webhooks import WebhookReconciler  # noqa: E402
from backend.features.ledger.store import LedgerStore  # noqa: E402
from backend.features.notifications.service import NotificationDispatcher  # noqa: E402
from backend.features.usage.service import UsageService  # noqa: E402

WEBHOOK_SECRET = "whsec_test_secret"


class RecordingMailProvider:
    """Mail provider that keeps sent messages in memory."""

    def __init__(self):
        self.sent = []

    def send(self, message):
        self.sent.append(message)
        return f"<msg-{len(self.sent)}@test.local>"


class FailingMailProvider:
    def __init__(self):
        self.attempts = 0

    def send(self, message):
        self.attempts += 1
        raise smtplib.SMTPServerDisconnected("connection dropped")


@pytest.fixture
def ledger():
    return LedgerStore()


@pytest.fixture
def mailer():
    return RecordingMailProvider()


@pytest.fixture
def failing_mailer():
    return FailingMailProvider()


@pytest.fixture
def provider():
    return SimulatedPaymentProvider(WEBHOOK_SECRET)


@pytest.fixture
def dispatcher(mailer, ledger):
    return NotificationDispatcher(
        mailer,
        ledger=ledger,
        from_address='"Inbox Cleaner Pro" <billing@test.local>',
        free_tier_limit=100,
    )


@pytest.fixture
def payment_service(ledger, provider, dispatcher):
    return PaymentService(ledger, provider, dispatcher)


@pytest.fixture
def reconciler(ledger, provider, dispatcher):
    return WebhookReconciler(ledger, provider, dispatcher)


@pytest.fixture
def usage_service(ledger, dispatcher):
    return UsageService(
        ledger,
        dispatcher,
        free_tier_limit=100,
        warning_ratio=0.8,
        cost_per_email=Decimal("0.01"),
    )


@pytest.fixture
def webhook_event():
    """
    Factory for signed provider events.

    Returns (payload_bytes, signature_header).
    """

    def _build(
        event_type,
        object_id="pi_1",
        user_id="u2",
        amount_minor=500,
        currency="usd",
        email=None,
        event_id=None,
        secret=WEBHOOK_SECRET,
        failure_message=None,
    ):
        metadata = {}
        if user_id is not None:
            metadata["userId"] = user_id
        if email is not None:
            metadata["email"] = email
        obj = {
            "id": object_id,
            "object": "payment_intent",
            "amount": amount_minor,
            "currency": currency,
            "metadata": metadata,
        }
        if failure_message:
            obj["last_payment_error"] = {"message": failure_message}
        event = {
            "id": event_id or f"evt_{uuid.uuid4().hex[:12]}",
            "type": event_type,
            "data": {"object": obj},
        }
        payload = json.dumps(event).encode()
        return payload, sign_payload(secret, payload)

    return _build


@pytest.fixture
def client(ledger, provider, dispatcher, payment_service, reconciler, usage_service):
    """TestClient with billing dependencies swapped for per-test instances."""
    from fastapi.testclient import TestClient

    from backend.api import dependencies as deps
    from backend.main import app

    app.dependency_overrides[deps.get_ledger] = lambda: ledger
    app.dependency_overrides[deps.get_payment_provider] = lambda: provider
    app.dependency_overrides[deps.get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[deps.get_payment_service] = lambda: payment_service
    app.dependency_overrides[deps.get_webhook_reconciler] = lambda: reconciler
    app.dependency_overrides[deps.get_usage_service] = lambda: usage_service
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
