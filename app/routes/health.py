"""
Health check and monitoring endpoints.
"""
import time
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from app.db import get_db, check_database_health
from app.models.notification import NotificationEvent, NotificationEventStatus
from app.services.email import get_sendgrid_client
from app.services.push_notification import _is_fcm_available
from app.core.settings import settings

logger = logging.getLogger("app.health")
router = APIRouter()

@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "environment": settings.environment,
        "version": "1.0.0"
    }

@router.get("/health/detailed")
async def detailed_health_check(db: Session = Depends(get_db)):
    """Detailed health check with service status."""
    start_time = time.time()

    health_status = {
        "status": "healthy",
        "timestamp": time.time(),
        "environment": settings.environment,
        "services": {}
    }

    # Check database
    try:
        db_health = await check_database_health()
        health_status["services"]["database"] = db_health
        if db_health.get("status") != "healthy":
            health_status["status"] = "degraded"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health_status["services"]["database"] = {
            "status": "unhealthy",
            "error": str(e)
        }
        health_status["status"] = "degraded"

    # Check SendGrid
    try:
        if get_sendgrid_client():
            health_status["services"]["email"] = {"status": "configured", "provider": "sendgrid"}
        else:
            health_status["services"]["email"] = {
                "status": "not_configured",
                "note": "Email delivery disabled; events will be skipped or fail"
            }
    except Exception as e:
        health_status["services"]["email"] = {"status": "error", "error": str(e)}

    health_status["services"]["push"] = {
        "status": "configured" if _is_fcm_available() else "not_configured",
        "provider": "fcm",
    }

    # Outbox backlog
    try:
        backlog = db.query(NotificationEvent).filter(
            NotificationEvent.status.in_([
                NotificationEventStatus.pending.value,
                NotificationEventStatus.failed.value,
            ])
        ).count()
        health_status["services"]["notification_outbox"] = {
            "status": "enabled" if settings.notifications_enabled else "disabled",
            "undelivered": backlog,
        }
    except Exception as e:
        health_status["services"]["notification_outbox"] = {"status": "error", "error": str(e)}

    response_time = (time.time() - start_time) * 1000
    health_status["response_time_ms"] = round(response_time, 2)

    return health_status
