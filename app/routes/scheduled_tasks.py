"""Scheduled tasks endpoint for cron jobs (Cloud Scheduler).

Notification delivery is also kicked off as a background task after each
submit/grade request; this endpoint retries whatever those left behind.
"""

from fastapi import APIRouter, Depends, Header, Query
from typing import Optional
import logging

from app.core.settings import settings
from app.exceptions import ForbiddenException
from app.routes.assignments import get_notification_gateway
from app.schemas.notification import FlushResultOut
from app.services.assignment_notifications import AssignmentNotificationGateway

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/scheduled", tags=["Scheduled"])


def verify_cron_secret(x_cron_secret: Optional[str] = Header(None)):
    """Verify the cron secret header for scheduled job authentication."""
    if x_cron_secret != settings.cron_secret:
        raise ForbiddenException("Invalid cron secret")
    return True


@router.post("/notifications/flush", response_model=FlushResultOut)
def flush_notifications(
    limit: Optional[int] = Query(None, ge=1, le=1000),
    gateway: AssignmentNotificationGateway = Depends(get_notification_gateway),
    _verified: bool = Depends(verify_cron_secret),
):
    """Deliver pending and retryable notification events.

    Example Cloud Scheduler config:
    - Schedule: */5 * * * *
    - Target: POST https://api.example.com/scheduled/notifications/flush
    - Headers: X-Cron-Secret: <your-secret>
    """
    result = gateway.flush(limit)
    logger.info(f"Scheduled notification flush: {result}")
    return result
