from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime, Text, ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from app.db import Base
from datetime import datetime, UTC
import enum
import uuid


class PassFailMode(str, enum.Enum):
    overall = "overall"
    per_domain = "per_domain"


class SnapshotStatus(str, enum.Enum):
    draft = "draft"
    completed = "completed"


# --- Rubric (read-only configuration) ----------------------------------------

class CapabilityAssessment(Base):
    __tablename__ = "capability_assessments"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    rating_scale = Column(Integer, nullable=False, default=5)
    pass_fail_enabled = Column(Boolean, nullable=False, default=False)
    # percentage 0-100; null means "no threshold configured"
    pass_fail_threshold = Column(Float, nullable=True)
    pass_fail_mode = Column(String, nullable=True, default=PassFailMode.overall.value)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC))

    domains = relationship(
        "CapabilityDomain",
        back_populates="assessment",
        order_by="CapabilityDomain.order_index",
    )


class CapabilityDomain(Base):
    __tablename__ = "capability_domains"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    assessment_id = Column(String, ForeignKey("capability_assessments.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    order_index = Column(Integer, nullable=False, default=0)

    assessment = relationship("CapabilityAssessment", back_populates="domains")
    questions = relationship(
        "CapabilityDomainQuestion",
        back_populates="domain",
        order_by="CapabilityDomainQuestion.order_index",
    )


class CapabilityDomainQuestion(Base):
    __tablename__ = "capability_domain_questions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    domain_id = Column(String, ForeignKey("capability_domains.id"), nullable=False, index=True)
    question_text = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    order_index = Column(Integer, nullable=False, default=0)

    domain = relationship("CapabilityDomain", back_populates="questions")


# --- Snapshots (owned by the assignment lifecycle) ----------------------------

class CapabilitySnapshot(Base):
    """One evaluator-authored scoring event against an assessment."""
    __tablename__ = "capability_snapshots"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    assessment_id = Column(String, ForeignKey("capability_assessments.id"), nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    enrollment_id = Column(String, ForeignKey("client_enrollments.id"), nullable=True)
    evaluator_id = Column(String, ForeignKey("users.id"), nullable=True)
    is_self_assessment = Column(Boolean, nullable=False, default=False)
    status = Column(String, nullable=False, default=SnapshotStatus.draft.value)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC))
    updated_at = Column(DateTime, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC))

    ratings = relationship("CapabilitySnapshotRating", cascade="all, delete-orphan")
    question_notes = relationship("CapabilityQuestionNote", cascade="all, delete-orphan")
    domain_notes = relationship("CapabilityDomainNote", cascade="all, delete-orphan")


class CapabilitySnapshotRating(Base):
    __tablename__ = "capability_snapshot_ratings"
    __table_args__ = (
        UniqueConstraint("snapshot_id", "question_id", name="uq_snapshot_rating_question"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    snapshot_id = Column(String, ForeignKey("capability_snapshots.id", ondelete="CASCADE"), nullable=False)
    question_id = Column(String, ForeignKey("capability_domain_questions.id"), nullable=False)
    rating = Column(Integer, nullable=False)


class CapabilityQuestionNote(Base):
    __tablename__ = "capability_question_notes"
    __table_args__ = (
        UniqueConstraint("snapshot_id", "question_id", name="uq_snapshot_question_note"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    snapshot_id = Column(String, ForeignKey("capability_snapshots.id", ondelete="CASCADE"), nullable=False)
    question_id = Column(String, ForeignKey("capability_domain_questions.id"), nullable=False)
    content = Column(Text, nullable=False)


class CapabilityDomainNote(Base):
    __tablename__ = "capability_domain_notes"
    __table_args__ = (
        UniqueConstraint("snapshot_id", "domain_id", name="uq_snapshot_domain_note"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    snapshot_id = Column(String, ForeignKey("capability_snapshots.id", ondelete="CASCADE"), nullable=False)
    domain_id = Column(String, ForeignKey("capability_domains.id"), nullable=False)
    content = Column(Text, nullable=False)
