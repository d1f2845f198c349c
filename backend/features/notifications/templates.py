"""Notification templates.

Each NotificationType maps to a data model and a pure render function.
Data models accept the extension's camelCase keys, ignore unknown keys and
fill defaults for anything missing, so a sparse payload still renders.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from html import escape
from typing import Callable, Dict, Optional, Type

from pydantic import BaseModel, ConfigDict, Field

PRODUCT_NAME = "Inbox Cleaner Pro"

CURRENCY_SYMBOLS = {"usd": "$", "eur": "€", "gbp": "£", "cad": "CA$", "aud": "A$"}


class NotificationType(str, Enum):
    PAYMENT_SUCCESSFUL = "payment_successful"
    FREE_TIER_WARNING = "free_tier_warning"
    PAYMENT_FAILED = "payment_failed"


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str


class TemplateData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class PaymentSuccessfulData(TemplateData):
    transaction_id: str = Field(default="N/A", alias="transactionId")
    amount: Optional[Decimal] = None
    currency: str = "usd"
    timestamp: Optional[str] = None
    payment_method: str = Field(default="Card", alias="paymentMethod")


class FreeTierWarningData(TemplateData):
    emails_classified: int = Field(default=0, alias="emailsClassified")
    limit: int = 1000
    upgrade_url: Optional[str] = Field(default=None, alias="upgradeUrl")


class PaymentFailedData(TemplateData):
    transaction_id: Optional[str] = Field(default=None, alias="transactionId")
    amount: Optional[Decimal] = None
    currency: str = "usd"
    reason: str = "Your payment could not be processed."
    retry_url: Optional[str] = Field(default=None, alias="retryUrl")


def format_money(amount: Optional[Decimal], currency: str) -> str:
    if amount is None:
        return "your payment"
    code = currency.lower()
    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol:
        return f"{symbol}{amount:.2f}"
    return f"{amount:.2f} {code.upper()}"


def _layout(heading: str, body: str) -> str:
    return (
        "<html><body>"
        f"<h2>{escape(heading)}</h2>"
        f"{body}"
        f"<p>Thanks for using {PRODUCT_NAME}.</p>"
        "</body></html>"
    )


def _link(url: Optional[str], label: str) -> str:
    if not url:
        return ""
    return f'<p><a href="{escape(url, quote=True)}">{escape(label)}</a></p>'


def render_payment_successful(data: PaymentSuccessfulData) -> RenderedEmail:
    rows = [
        ("Amount", format_money(data.amount, data.currency)),
        ("Transaction ID", data.transaction_id),
        ("Payment method", data.payment_method or "Card"),
        ("Date", data.timestamp or "Unknown"),
    ]
    table = "".join(f"<tr><td>{escape(k)}</td><td>{escape(str(v))}</td></tr>" for k, v in rows)
    body = (
        "<p>Your payment was successful and your account has been upgraded.</p>"
        f"<table>{table}</table>"
    )
    return RenderedEmail(
        subject=f"Payment confirmed - {PRODUCT_NAME}",
        html=_layout("Payment successful", body),
    )


def render_free_tier_warning(data: FreeTierWarningData) -> RenderedEmail:
    remaining = max(data.limit - data.emails_classified, 0)
    percent = int(data.emails_classified * 100 / data.limit) if data.limit > 0 else 100
    body = (
        f"<p>You have used {data.emails_classified} of {data.limit} free email "
        f"classifications ({percent}%).</p>"
        f"<p>{remaining} classifications remain this period.</p>"
        + _link(data.upgrade_url, "Upgrade to keep cleaning")
    )
    return RenderedEmail(
        subject=f"You're close to your free tier limit - {PRODUCT_NAME}",
        html=_layout("Free tier almost used up", body),
    )


def render_payment_failed(data: PaymentFailedData) -> RenderedEmail:
    body = f"<p>We could not process {escape(format_money(data.amount, data.currency))}.</p>"
    body += f"<p>Reason: {escape(data.reason)}</p>"
    if data.transaction_id:
        body += f"<p>Reference: {escape(data.transaction_id)}</p>"
    body += _link(data.retry_url, "Update your payment details")
    return RenderedEmail(
        subject=f"Payment failed - {PRODUCT_NAME}",
        html=_layout("Payment failed", body),
    )


@dataclass(frozen=True)
class Template:
    model: Type[TemplateData]
    render: Callable[..., RenderedEmail]


TEMPLATES: Dict[NotificationType, Template] = {
    NotificationType.PAYMENT_SUCCESSFUL: Template(PaymentSuccessfulData, render_payment_successful),
    NotificationType.FREE_TIER_WARNING: Template(FreeTierWarningData, render_free_tier_warning),
    NotificationType.PAYMENT_FAILED: Template(PaymentFailedData, render_payment_failed),
}
