"""Pydantic schemas for the in-app inbox and the push channel."""

from pydantic import BaseModel, ConfigDict
from typing import Optional, List
from datetime import datetime


class NotificationOut(BaseModel):
    id: str
    message: str
    link: Optional[str] = None
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NotificationListOut(BaseModel):
    items: List[NotificationOut]
    unread_count: int


class NotificationPreferencesIn(BaseModel):
    """Opt-outs for the email/push channels; in-app entries are always created."""
    assignment_submitted: Optional[bool] = None
    assignment_graded: Optional[bool] = None


class NotificationPreferencesOut(BaseModel):
    assignment_submitted: bool
    assignment_graded: bool


class FlushResultOut(BaseModel):
    processed: int
    sent: int
    skipped: int
    failed: int


class PushNotificationPayload(BaseModel):
    """Internal model for push notification content."""
    title: str
    body: str
    data: Optional[dict] = None
    image_url: Optional[str] = None
    # iOS specific
    badge: Optional[int] = None
    sound: Optional[str] = "default"
    # Android specific
    click_action: Optional[str] = None
    channel_id: Optional[str] = "default"
