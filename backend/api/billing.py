"""
Billing API routes.

- POST /api/create-intent: Create a payment intent (no ledger write)
- POST /api/process-payment: Charge and record a payment
- POST /api/webhook: Handle Stripe webhooks
- GET  /api/user/{user_id}/billing: Read a user's billing record
- POST /api/user/{user_id}/billing: Replace a user's billing record
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, ConfigDict, Field, field_validator
from starlette.concurrency import run_in_threadpool

from backend.api.dependencies import (
    get_ledger,
    get_payment_service,
    get_webhook_reconciler,
)
from backend.core.errors import ValidationError
from backend.features.billing.service import PaymentService, replace_billing_record
from backend.features.billing.webhooks import WebhookReconciler
from backend.features.ledger.store import LedgerStore
from backend.models.billing import PaymentRecord, PaymentStatus, UsageCounters, to_money, utc_now

MIN_USER_ID_LENGTH = 3

router = APIRouter(tags=["billing"])


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CreateIntentRequest(CamelModel):
    """Request to create a payment intent."""
    amount: Decimal
    currency: str = "usd"
    user_id: str = Field(alias="userId", min_length=MIN_USER_ID_LENGTH)


class ProcessPaymentRequest(CamelModel):
    """Request to charge a payment method."""
    amount: Decimal
    currency: str = "usd"
    user_id: str = Field(alias="userId", min_length=MIN_USER_ID_LENGTH)
    payment_method_ref: str = Field(alias="paymentMethodRef", min_length=1)
    email: Optional[str] = None


class PaymentIn(CamelModel):
    transaction_id: str = Field(alias="transactionId", min_length=1)
    amount: Decimal
    currency: str = "usd"
    status: PaymentStatus = PaymentStatus.PENDING
    timestamp: Optional[datetime] = None
    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")

    @field_validator("currency")
    @classmethod
    def _lower_currency(cls, value: str) -> str:
        return value.lower()

    def to_record(self) -> PaymentRecord:
        return PaymentRecord(
            transaction_id=self.transaction_id,
            amount=to_money(self.amount),
            currency=self.currency,
            status=self.status,
            timestamp=self.timestamp or utc_now(),
            payment_method=self.payment_method,
        )


class UsageIn(CamelModel):
    emails_classified: int = Field(default=0, alias="emailsClassified", ge=0)
    total_cost: Decimal = Field(default=Decimal("0"), alias="totalCost", ge=0)


class ReplaceBillingRequest(CamelModel):
    """Full billing record from the extension. `tier` is derived, not accepted."""
    payments: List[PaymentIn] = Field(default_factory=list)
    usage: UsageIn = Field(default_factory=UsageIn)
    email: Optional[str] = None


def _check_user_id(user_id: str) -> str:
    if not user_id or len(user_id) < MIN_USER_ID_LENGTH:
        raise ValidationError("Invalid user ID")
    return user_id


@router.post("/create-intent")
def create_intent(
    request: CreateIntentRequest,
    service: PaymentService = Depends(get_payment_service),
):
    """
    Create a payment intent for the client to confirm.

    Returns:
        {"success": true, "intentId": "...", "clientSecret": "..."}

    Errors:
        400: Amount below 0.50, unsupported currency or bad user id
        402: Provider rejected the request
    """
    result = service.create_intent(request.user_id, request.amount, request.currency)
    return {"success": True, "intentId": result.intent_id, "clientSecret": result.client_secret}


@router.post("/process-payment")
def process_payment(
    request: ProcessPaymentRequest,
    service: PaymentService = Depends(get_payment_service),
):
    """
    Charge a payment method and record the payment.

    Returns:
        {"success": true, "transactionId": "...", "amount": 5.0, "simulated": bool}

    Errors:
        400: Invalid payment data
        402: Charge failed or requires further action (includes intentId/status)
    """
    result = service.process_payment(
        request.user_id,
        request.amount,
        request.currency,
        request.payment_method_ref,
        email=request.email,
    )
    return {
        "success": True,
        "transactionId": result.transaction_id,
        "amount": float(result.amount),
        "currency": result.currency,
        "tier": result.tier,
        "simulated": result.simulated,
    }


@router.post("/webhook")
async def handle_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
):
    """
    Handle Stripe webhook events.

    Verifies the signature against the raw body, then applies the event
    idempotently. Every verified event is acknowledged, including ones
    that are ignored, so the provider does not retry them.

    Errors:
        400: Invalid signature or payload
    """
    # Read raw body (required for signature verification)
    body = await request.body()
    # Ledger lock and mail delivery block; keep them off the event loop
    outcome = await run_in_threadpool(reconciler.handle, body, stripe_signature)
    return {
        "success": True,
        "received": True,
        "eventId": outcome.event_id,
        "action": outcome.action,
    }


@router.get("/user/{user_id}/billing")
def get_billing(user_id: str, ledger: LedgerStore = Depends(get_ledger)):
    """Get a user's billing record (default free record if none exists)."""
    record = ledger.get(_check_user_id(user_id))
    return {"success": True, "data": record.to_dict()}


@router.post("/user/{user_id}/billing")
def update_billing(
    user_id: str,
    request: ReplaceBillingRequest,
    ledger: LedgerStore = Depends(get_ledger),
):
    """Replace a user's billing record."""
    record = replace_billing_record(
        ledger,
        _check_user_id(user_id),
        [p.to_record() for p in request.payments],
        UsageCounters(
            emails_classified=request.usage.emails_classified,
            total_cost=request.usage.total_cost,
        ),
        email=request.email,
    )
    return {"success": True, "message": "Billing data updated", "data": record.to_dict()}
