from sqlalchemy import Column, String, DateTime, Boolean, Float, Text, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from app.db import Base
from datetime import datetime, UTC
import enum
import uuid


class AssignmentStatus(str, enum.Enum):
    draft = "draft"
    submitted = "submitted"
    reviewed = "reviewed"
    # legacy/administrative terminal state; read side treats it as ``reviewed``
    completed = "completed"


LOCKED_STATUSES = frozenset({
    AssignmentStatus.submitted.value,
    AssignmentStatus.reviewed.value,
    AssignmentStatus.completed.value,
})
REVIEWED_STATUSES = frozenset({AssignmentStatus.reviewed.value, AssignmentStatus.completed.value})


class AssignmentType(Base):
    """Platform-configured assignment definition.

    ``structure`` is the field schema the client fills in, a list of
    ``{"id", "label", "type", "required", "options", "min", "max"}`` dicts.
    """
    __tablename__ = "module_assignment_types"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    structure = Column(JSON, nullable=False, default=list)
    scoring_assessment_id = Column(String, ForeignKey("capability_assessments.id"), nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC))


class ModuleAssignmentConfig(Base):
    """Per-module override of which rubric scores an assignment type."""
    __tablename__ = "module_assignment_configs"
    __table_args__ = (
        UniqueConstraint("module_id", "assignment_type_id", name="uq_module_assignment_config"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    module_id = Column(String, ForeignKey("program_modules.id"), nullable=False)
    assignment_type_id = Column(String, ForeignKey("module_assignment_types.id"), nullable=False)
    linked_capability_assessment_id = Column(String, ForeignKey("capability_assessments.id"), nullable=True)


class ModuleAssignment(Base):
    __tablename__ = "module_assignments"
    __table_args__ = (
        UniqueConstraint("module_progress_id", "assignment_type_id", name="uq_module_assignment_progress_type"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    module_progress_id = Column(String, ForeignKey("module_progress.id"), nullable=False, index=True)
    assignment_type_id = Column(String, ForeignKey("module_assignment_types.id"), nullable=False)
    assessor_id = Column(String, ForeignKey("users.id"), nullable=False)
    responses = Column(JSON, nullable=False, default=dict)
    overall_score = Column(Float, nullable=True)
    overall_comments = Column(Text, nullable=True)
    status = Column(String, nullable=False, default=AssignmentStatus.draft.value, index=True)
    completed_at = Column(DateTime, nullable=True)
    is_private = Column(Boolean, nullable=False, default=False)
    scoring_snapshot_id = Column(String, ForeignKey("capability_snapshots.id"), nullable=True)
    scored_by = Column(String, ForeignKey("users.id"), nullable=True)
    scored_at = Column(DateTime, nullable=True)
    instructor_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC))
    updated_at = Column(DateTime, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC))

    assignment_type = relationship("AssignmentType")
    module_progress = relationship("ModuleProgress")
    scoring_snapshot = relationship("CapabilitySnapshot")
