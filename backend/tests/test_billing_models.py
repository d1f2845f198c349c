"""Test billing record transitions and serialization."""
from decimal import Decimal

from backend.models.billing import (
    PaymentRecord,
    PaymentStatus,
    Tier,
    UsageCounters,
    UserBillingRecord,
    to_money,
)


def _payment(tx_id, status=PaymentStatus.COMPLETED, amount="5.00"):
    return PaymentRecord(transaction_id=tx_id, amount=Decimal(amount), currency="usd", status=status)


def test_pending_payment_keeps_free_tier():
    record = UserBillingRecord().with_payment(_payment("pi_1", PaymentStatus.PENDING))
    assert record.tier is Tier.FREE
    assert record.last_payment.status is PaymentStatus.PENDING


def test_completing_pending_payment_upgrades_tier():
    record = UserBillingRecord().with_payment(_payment("pi_1", PaymentStatus.PENDING))
    record = record.with_payment_status("pi_1", PaymentStatus.COMPLETED)

    assert record.tier is Tier.PAID
    assert record.last_payment.status is PaymentStatus.COMPLETED
    assert len(record.payments) == 1


def test_simulated_flag_follows_id_prefix():
    assert _payment("sim_abc").simulated is True
    assert _payment("pi_abc").simulated is False


def test_replace_keeps_terminal_payments_and_paid_tier():
    record = UserBillingRecord().with_payment(_payment("pi_paid"))

    replaced = record.replaced_by([], UsageCounters(emails_classified=3))

    assert replaced.tier is Tier.PAID
    assert [p.transaction_id for p in replaced.payments] == ["pi_paid"]
    assert replaced.usage.emails_classified == 3


def test_replace_cannot_rewrite_terminal_payment():
    record = UserBillingRecord().with_payment(_payment("pi_paid"))
    tampered = _payment("pi_paid", PaymentStatus.FAILED, amount="1.00")

    replaced = record.replaced_by([tampered], UsageCounters())

    assert replaced.find_payment("pi_paid").status is PaymentStatus.COMPLETED
    assert replaced.find_payment("pi_paid").amount == Decimal("5.00")


def test_replace_accepts_new_pending_payments():
    replaced = UserBillingRecord().replaced_by(
        [_payment("pi_new", PaymentStatus.PENDING)], UsageCounters(), email="a@b.com"
    )

    assert replaced.tier is Tier.FREE
    assert replaced.last_payment.transaction_id == "pi_new"
    assert replaced.email == "a@b.com"


def test_to_dict_uses_client_keys():
    record = UserBillingRecord().with_payment(_payment("sim_1")).with_usage(2, Decimal("0.02"))
    data = record.to_dict()

    assert data["tier"] == "paid"
    assert data["lastPayment"]["transactionId"] == "sim_1"
    assert data["payments"][0]["status"] == "completed"
    assert data["payments"][0]["amount"] == 5.0
    assert data["usage"] == {"emailsClassified": 2, "totalCost": 0.02}


def test_to_money_rounds_to_cents():
    assert to_money("5") == Decimal("5.00")
    assert to_money(0.505) == Decimal("0.51")


def test_replace_cannot_settle_stored_pending_payment():
    record = UserBillingRecord().with_payment(_payment("pi_p", PaymentStatus.PENDING))

    replaced = record.replaced_by([_payment("pi_p", PaymentStatus.COMPLETED)], UsageCounters())

    assert replaced.find_payment("pi_p").status is PaymentStatus.PENDING
    assert replaced.tier is Tier.FREE


def test_replace_may_drop_pending_payment():
    record = UserBillingRecord().with_payment(_payment("pi_p", PaymentStatus.PENDING))

    replaced = record.replaced_by([], UsageCounters())

    assert replaced.payments == ()
    assert replaced.last_payment is None


def test_replace_collapses_duplicate_transaction_ids():
    first = _payment("pi_dup", PaymentStatus.PENDING, amount="1.00")
    second = _payment("pi_dup", PaymentStatus.PENDING, amount="2.00")

    replaced = UserBillingRecord().replaced_by([first, second, _payment("pi_other", PaymentStatus.PENDING)], UsageCounters())

    ids = [p.transaction_id for p in replaced.payments]
    assert ids == ["pi_dup", "pi_other"]
    assert replaced.find_payment("pi_dup").amount == Decimal("2.00")


def test_replace_with_duplicates_of_terminal_payment_keeps_one():
    record = UserBillingRecord().with_payment(_payment("pi_paid"))

    replaced = record.replaced_by([_payment("pi_paid"), _payment("pi_paid")], UsageCounters())

    assert [p.transaction_id for p in replaced.payments] == ["pi_paid"]
