from sqlalchemy import Column, String, DateTime, Enum
from sqlalchemy.orm import relationship
import enum
from datetime import datetime, UTC
from app.db import Base
import uuid

class UserRole(enum.Enum):
    client = "client"
    instructor = "instructor"
    coach = "coach"
    admin = "admin"


# Roles allowed to grade assignments
STAFF_ROLES = frozenset({UserRole.instructor.value, UserRole.coach.value, UserRole.admin.value})


class User(Base):
    __tablename__ = "users"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    role = Column(Enum(UserRole), nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC))

    # In-app notifications for this user
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")
    # Registered push devices
    device_tokens = relationship("DeviceToken", back_populates="user", cascade="all, delete-orphan")
