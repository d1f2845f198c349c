"""
Notification API routes.

- POST /api/notify: Send a templated billing notification
- POST /api/send-usage-summary: Send a caller-rendered usage summary
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from backend.api.dependencies import get_dispatcher
from backend.features.notifications.service import NotificationDispatcher

router = APIRouter(tags=["notifications"])


class NotifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    to: str = Field(min_length=3)
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = Field(default=None, alias="userId")


class UsageSummaryRequest(BaseModel):
    to: Optional[str] = None
    subject: Optional[str] = None
    html: Optional[str] = None


@router.post("/notify")
def notify(request: NotifyRequest, dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    """
    Send a notification email.

    Errors:
        400: Unknown notification type
        503: Email service not configured or failing
    """
    user_id = request.user_id or request.data.get("userId")
    result = dispatcher.notify(request.to, request.type, request.data, user_id=user_id)
    return {"success": True, "messageId": result.message_id}


@router.post("/send-usage-summary")
def send_usage_summary(request: UsageSummaryRequest, dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    """Send a usage summary email rendered by the extension."""
    result = dispatcher.send_usage_summary(request.to, request.subject, request.html)
    return {"success": True, "messageId": result.message_id}
