from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Text, Integer, JSON
from sqlalchemy.orm import relationship
from datetime import datetime, UTC
from app.db import Base
import enum
import uuid


class NotificationEventType(str, enum.Enum):
    assignment_submitted = "assignment_submitted"
    assignment_graded = "assignment_graded"


class NotificationEventStatus(str, enum.Enum):
    pending = "pending"
    sent = "sent"
    skipped = "skipped"
    failed = "failed"


class Notification(Base):
    """In-app inbox entry."""
    __tablename__ = "notifications"

    # use a callable for default so new UUIDs are generated per-row
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    message = Column(Text, nullable=False)
    link = Column(String, nullable=True)  # URL or route path
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC))

    user = relationship("User", back_populates="notifications")


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"

    user_id = Column(String, ForeignKey("users.id"), primary_key=True)
    assignment_submitted = Column(Boolean, nullable=False, default=True)
    assignment_graded = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC))


class NotificationEvent(Base):
    """Outbox row: one delivery intent for one recipient.

    ``dedupe_key`` is unique, so re-dispatching the same transition for the
    same recipient never creates a second intent.
    """
    __tablename__ = "notification_events"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    event_type = Column(String, nullable=False)
    recipient_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    assignment_id = Column(String, ForeignKey("module_assignments.id"), nullable=True, index=True)
    dedupe_key = Column(String, nullable=False, unique=True)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(String, nullable=False, default=NotificationEventStatus.pending.value, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)
    sent_at = Column(DateTime, nullable=True)
