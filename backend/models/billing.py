"""
Billing ledger models.

Every value here is immutable: the ledger store hands these out directly
and replaces whole records on write, so readers never see partial updates.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

SIMULATED_PREFIX = "sim_"

CENTS = Decimal("0.01")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_money(value: Any) -> Decimal:
    """Coerce a JSON number/string to a Decimal quantized to cents."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


class Tier(str, Enum):
    FREE = "free"
    PAID = "paid"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


@dataclass(frozen=True)
class PaymentRecord:
    """A single payment applied to a user's ledger."""
    transaction_id: str
    amount: Decimal
    currency: str
    status: PaymentStatus
    timestamp: datetime = field(default_factory=utc_now)
    payment_method: Optional[str] = None

    @property
    def simulated(self) -> bool:
        return self.transaction_id.startswith(SIMULATED_PREFIX)

    def with_status(self, status: PaymentStatus) -> "PaymentRecord":
        return replace(self, status=status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transactionId": self.transaction_id,
            "amount": float(self.amount),
            "currency": self.currency,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "paymentMethod": self.payment_method,
            "simulated": self.simulated,
        }


@dataclass(frozen=True)
class UsageCounters:
    emails_classified: int = 0
    total_cost: Decimal = Decimal("0")

    def add(self, emails_classified: int, cost: Decimal) -> "UsageCounters":
        return UsageCounters(
            emails_classified=self.emails_classified + emails_classified,
            total_cost=self.total_cost + cost,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "emailsClassified": self.emails_classified,
            "totalCost": float(self.total_cost),
        }


@dataclass(frozen=True)
class UserBillingRecord:
    """Per-user billing state. Build new versions with the with_* helpers."""
    tier: Tier = Tier.FREE
    payments: Tuple[PaymentRecord, ...] = ()
    last_payment_id: Optional[str] = None
    usage: UsageCounters = field(default_factory=UsageCounters)
    email: Optional[str] = None

    @property
    def last_payment(self) -> Optional[PaymentRecord]:
        if self.last_payment_id is None:
            return None
        return self.find_payment(self.last_payment_id)

    @property
    def has_completed_payment(self) -> bool:
        return any(p.status is PaymentStatus.COMPLETED for p in self.payments)

    def find_payment(self, transaction_id: str) -> Optional[PaymentRecord]:
        for payment in self.payments:
            if payment.transaction_id == transaction_id:
                return payment
        return None

    def _derive_tier(self, payments: Iterable[PaymentRecord]) -> Tier:
        # Tier only ever moves up; downgrades are handled outside this service.
        if self.tier is Tier.PAID:
            return Tier.PAID
        if any(p.status is PaymentStatus.COMPLETED for p in payments):
            return Tier.PAID
        return Tier.FREE

    def with_payment(self, payment: PaymentRecord) -> "UserBillingRecord":
        payments = self.payments + (payment,)
        return replace(
            self,
            payments=payments,
            tier=self._derive_tier(payments),
            last_payment_id=payment.transaction_id,
        )

    def with_payment_status(self, transaction_id: str, status: PaymentStatus) -> "UserBillingRecord":
        payments = tuple(
            p.with_status(status) if p.transaction_id == transaction_id else p
            for p in self.payments
        )
        return replace(
            self,
            payments=payments,
            tier=self._derive_tier(payments),
            last_payment_id=transaction_id,
        )

    def with_usage(self, emails_classified: int, cost: Decimal) -> "UserBillingRecord":
        return replace(self, usage=self.usage.add(emails_classified, cost))

    def with_email(self, email: Optional[str]) -> "UserBillingRecord":
        if not email or email == self.email:
            return self
        return replace(self, email=email)

    def replaced_by(
        self,
        payments: Iterable[PaymentRecord],
        usage: UsageCounters,
        email: Optional[str] = None,
    ) -> "UserBillingRecord":
        """
        Full-record replace from client state.

        Incoming payments are collapsed by transaction id (last entry wins).
        Any id the ledger already tracks keeps its stored record, so a
        replace can add unknown payments or drop pending ones but never
        settle or rewrite a stored payment, nor remove a terminal one.
        """
        incoming: Dict[str, PaymentRecord] = {}
        for payment in payments:
            incoming[payment.transaction_id] = payment

        stored = {p.transaction_id: p for p in self.payments}
        merged = [stored.get(tx_id, p) for tx_id, p in incoming.items()]
        merged.extend(p for p in self.payments if p.status.is_terminal and p.transaction_id not in incoming)
        merged_payments = tuple(merged)

        last_payment_id = merged_payments[-1].transaction_id if merged_payments else None
        return UserBillingRecord(
            tier=self._derive_tier(merged_payments),
            payments=merged_payments,
            last_payment_id=last_payment_id,
            usage=usage,
            email=email if email is not None else self.email,
        )

    def to_dict(self) -> Dict[str, Any]:
        last = self.last_payment
        return {
            "tier": self.tier.value,
            "payments": [p.to_dict() for p in self.payments],
            "lastPayment": last.to_dict() if last else None,
            "usage": self.usage.to_dict(),
            "email": self.email,
        }
