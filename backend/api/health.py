"""
Health and service info routes.

Reports which external capabilities are configured without exposing secrets.
"""

from datetime import datetime, timezone

from fastapi import APIRouter

from backend.core.config import settings

SERVICE_NAME = "Inbox Cleaner Pro API"
SERVICE_VERSION = "1.0.0"

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    """Liveness check with capability status (no external calls)."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {
            "stripe": settings.stripe_enabled,
            "email": settings.mail_enabled,
        },
    }


@router.get("/")
def root():
    return {"name": SERVICE_NAME, "version": SERVICE_VERSION, "status": "running"}
