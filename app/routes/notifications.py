from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db import get_db
from app.exceptions import NotFoundException
from app.models.notification import Notification, NotificationPreference
from app.models.user import User
from app.schemas.notification import (
    NotificationListOut,
    NotificationOut,
    NotificationPreferencesIn,
    NotificationPreferencesOut,
)
from app.services.auth import get_current_user

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("", response_model=NotificationListOut)
def list_notifications(
    include_read: bool = Query(False, description="Include dismissed notifications"),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Return the caller's in-app notifications, newest first."""
    query = db.query(Notification).filter(Notification.user_id == current_user.id)
    if not include_read:
        query = query.filter(Notification.is_read.is_(False))
    items = query.order_by(Notification.created_at.desc()).limit(limit).all()
    unread = (
        db.query(Notification)
        .filter(Notification.user_id == current_user.id, Notification.is_read.is_(False))
        .count()
    )
    return {"items": [NotificationOut.model_validate(n) for n in items], "unread_count": unread}


@router.post("/{notification_id}/dismiss", response_model=NotificationOut)
def dismiss_notification(
    notification_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Mark a single notification as read (dismiss)."""
    notif = db.query(Notification).filter_by(id=notification_id, user_id=current_user.id).first()
    if not notif:
        raise NotFoundException("Notification not found")
    if not notif.is_read:
        notif.is_read = True
        db.commit()
        db.refresh(notif)
    return notif


def _preferences_out(pref) -> dict:
    if pref is None:
        return {"assignment_submitted": True, "assignment_graded": True}
    return {"assignment_submitted": pref.assignment_submitted, "assignment_graded": pref.assignment_graded}


@router.get("/preferences", response_model=NotificationPreferencesOut)
def get_preferences(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _preferences_out(db.get(NotificationPreference, current_user.id))


@router.put("/preferences", response_model=NotificationPreferencesOut)
def update_preferences(
    payload: NotificationPreferencesIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Opt in/out of email and push for each event; the inbox entry is always kept."""
    pref = db.get(NotificationPreference, current_user.id)
    if pref is None:
        pref = NotificationPreference(user_id=current_user.id, assignment_submitted=True, assignment_graded=True)
        db.add(pref)
    for key, value in payload.model_dump(exclude_none=True).items():
        setattr(pref, key, value)
    db.commit()
    db.refresh(pref)
    return _preferences_out(pref)
