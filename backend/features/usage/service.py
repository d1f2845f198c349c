"""
backend/features/usage/service.py

Usage accounting against the metered free tier.

Handles:
- Counter accumulation (emails classified, total cost)
- Free tier threshold detection
- free_tier_warning notification trigger (fire-and-forget)
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from backend.core.errors import ValidationError
from backend.core.logging import log_event
from backend.features.ledger.store import LedgerStore
from backend.features.notifications.service import NotificationDispatcher
from backend.features.notifications.templates import NotificationType
from backend.models.billing import Tier, UsageCounters, UserBillingRecord


@dataclass(frozen=True)
class UsageResult:
    usage: UsageCounters
    tier: Tier
    free_tier_limit: Optional[int]
    free_tier_remaining: Optional[int]
    warning_sent: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "usage": self.usage.to_dict(),
            "tier": self.tier.value,
            "freeTierLimit": self.free_tier_limit,
            "freeTierRemaining": self.free_tier_remaining,
        }


class UsageService:
    def __init__(
        self,
        ledger: LedgerStore,
        dispatcher: Optional[NotificationDispatcher] = None,
        free_tier_limit: int = 1000,
        warning_ratio: float = 0.8,
        cost_per_email: Decimal = Decimal("0.001"),
    ):
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.free_tier_limit = free_tier_limit
        self.warning_threshold = int(free_tier_limit * warning_ratio)
        self.cost_per_email = cost_per_email

    def _crossed_warning(self, before: UserBillingRecord, after: UserBillingRecord) -> bool:
        if after.tier is not Tier.FREE:
            return False
        return before.usage.emails_classified < self.warning_threshold <= after.usage.emails_classified

    def record_usage(
        self,
        user_id: str,
        emails_classified: int,
        actions: Any = None,
        timestamp: Optional[datetime] = None,
        email: Optional[str] = None,
    ) -> UsageResult:
        """
        Accumulate usage counters for a user.

        Raises:
            ValidationError: Negative counts
        """
        if emails_classified < 0:
            raise ValidationError("emailsClassified must be non-negative")

        cost = self.cost_per_email * emails_classified

        def _apply(record: UserBillingRecord) -> Tuple[UserBillingRecord, Tuple[UserBillingRecord, UserBillingRecord]]:
            updated = record.with_email(email)
            if emails_classified:
                updated = updated.with_usage(emails_classified, cost)
            return updated, (record, updated)

        before, after = self.ledger.transact(user_id, _apply)
        log_event(
            "info",
            "usage.tracked",
            user_id=user_id,
            extra={
                "emails_classified": emails_classified,
                "actions": actions,
                "timestamp": timestamp.isoformat() if timestamp else None,
            },
        )

        warning_sent = False
        if self.dispatcher is not None and self._crossed_warning(before, after):
            result = self.dispatcher.notify_quietly(
                after.email,
                NotificationType.FREE_TIER_WARNING,
                {"emailsClassified": after.usage.emails_classified, "limit": self.free_tier_limit},
                user_id=user_id,
            )
            warning_sent = result is not None

        return self._result(after, warning_sent)

    def get_usage(self, user_id: str) -> UsageResult:
        return self._result(self.ledger.get(user_id))

    def _result(self, record: UserBillingRecord, warning_sent: bool = False) -> UsageResult:
        if record.tier is Tier.FREE:
            limit: Optional[int] = self.free_tier_limit
            remaining: Optional[int] = max(self.free_tier_limit - record.usage.emails_classified, 0)
        else:
            limit = remaining = None
        return UsageResult(
            usage=record.usage,
            tier=record.tier,
            free_tier_limit=limit,
            free_tier_remaining=remaining,
            warning_sent=warning_sent,
        )
