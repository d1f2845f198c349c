"""
Usage analytics routes.

- POST /api/analytics/usage: Accumulate usage counters for a user
"""
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from backend.api.dependencies import get_usage_service
from backend.features.usage.service import UsageService

router = APIRouter(prefix="/analytics", tags=["analytics"])


class UsageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_id: str = Field(alias="userId", min_length=3)
    emails_classified: int = Field(default=0, alias="emailsClassified", ge=0)
    actions: Any = None
    timestamp: Optional[datetime] = None
    email: Optional[str] = None


@router.post("/usage")
def track_usage(request: UsageRequest, service: UsageService = Depends(get_usage_service)):
    """Track classified emails against the free tier."""
    result = service.record_usage(
        request.user_id,
        request.emails_classified,
        actions=request.actions,
        timestamp=request.timestamp,
        email=request.email,
    )
    return {"success": True, **result.to_dict()}
