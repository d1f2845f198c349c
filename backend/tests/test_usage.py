"""
Test usage accounting and the free tier warning trigger.
"""
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from backend.core.errors import ValidationError
from backend.models.billing import PaymentRecord, PaymentStatus, Tier


def _make_paid(ledger, user_id):
    payment = PaymentRecord(
        transaction_id="sim_paid",
        amount=Decimal("5.00"),
        currency="usd",
        status=PaymentStatus.COMPLETED,
    )
    ledger.upsert(user_id, lambda r: r.with_payment(payment))


def test_usage_accumulates_counts_and_cost(usage_service, ledger):
    usage_service.record_usage("u1", 10)
    result = usage_service.record_usage("u1", 5)

    assert result.usage.emails_classified == 15
    assert result.usage.total_cost == Decimal("0.15")
    assert result.tier is Tier.FREE
    assert result.free_tier_limit == 100
    assert result.free_tier_remaining == 85
    assert ledger.get("u1").usage.emails_classified == 15


def test_zero_usage_does_not_materialize_record(usage_service, ledger):
    result = usage_service.record_usage("u1", 0)

    assert result.usage.emails_classified == 0
    assert ledger.exists("u1") is False


def test_negative_usage_rejected(usage_service, ledger):
    with pytest.raises(ValidationError):
        usage_service.record_usage("u1", -1)
    assert ledger.exists("u1") is False


def test_remaining_never_negative(usage_service):
    result = usage_service.record_usage("u1", 150)
    assert result.free_tier_remaining == 0


def test_warning_sent_once_when_threshold_crossed(usage_service, mailer):
    first = usage_service.record_usage("u1", 70, email="a@b.com")
    crossing = usage_service.record_usage("u1", 15)
    after = usage_service.record_usage("u1", 10)

    assert first.warning_sent is False
    assert crossing.warning_sent is True
    assert after.warning_sent is False
    assert len(mailer.sent) == 1
    assert mailer.sent[0].to == "a@b.com"
    assert "85 of 100" in mailer.sent[0].html


def test_warning_fires_when_landing_exactly_on_threshold(usage_service, mailer):
    result = usage_service.record_usage("u1", 80, email="a@b.com")

    assert result.warning_sent is True
    assert len(mailer.sent) == 1


def test_no_warning_without_known_email(usage_service, mailer):
    result = usage_service.record_usage("u1", 90)

    assert result.warning_sent is False
    assert mailer.sent == []


def test_no_warning_for_paid_users(usage_service, ledger, mailer):
    _make_paid(ledger, "u1")

    result = usage_service.record_usage("u1", 90, email="a@b.com")

    assert result.warning_sent is False
    assert result.tier is Tier.PAID
    assert result.free_tier_limit is None
    assert result.free_tier_remaining is None
    assert mailer.sent == []


def test_mail_failure_does_not_block_usage(ledger, failing_mailer):
    from backend.features.notifications.service import NotificationDispatcher
    from backend.features.usage.service import UsageService

    service = UsageService(ledger, NotificationDispatcher(failing_mailer, ledger=ledger), free_tier_limit=10)

    result = service.record_usage("u1", 9, email="a@b.com")

    assert failing_mailer.attempts == 1
    assert result.warning_sent is False
    assert ledger.get("u1").usage.emails_classified == 9


def test_concurrent_usage_updates_are_not_lost(usage_service, ledger):
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _: usage_service.record_usage("u1", 1), range(40)))

    usage = ledger.get("u1").usage
    assert usage.emails_classified == 40
    assert usage.total_cost == Decimal("0.40")


def test_get_usage_for_unknown_user(usage_service, ledger):
    result = usage_service.get_usage("nobody")

    assert result.to_dict() == {
        "usage": {"emailsClassified": 0, "totalCost": 0.0},
        "tier": "free",
        "freeTierLimit": 100,
        "freeTierRemaining": 100,
    }
    assert ledger.exists("nobody") is False
