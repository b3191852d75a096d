"""Program/module context the assignment core reads but never writes.

Programs contain modules; a client enrollment in a program gets one
``ModuleProgress`` row per module. Staff are attached to either a module or a
whole program, as instructors or as coaches.
"""
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from app.db import Base
from datetime import datetime, UTC
import uuid


class Program(Base):
    __tablename__ = "programs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC))

    modules = relationship("ProgramModule", back_populates="program")


class ProgramModule(Base):
    __tablename__ = "program_modules"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    program_id = Column(String, ForeignKey("programs.id"), nullable=True)
    title = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    program = relationship("Program", back_populates="modules")


class ClientEnrollment(Base):
    __tablename__ = "client_enrollments"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    client_user_id = Column(String, ForeignKey("users.id"), nullable=False)
    # may be null for legacy enrollments; the module's program is used instead
    program_id = Column(String, ForeignKey("programs.id"), nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC))


class ModuleProgress(Base):
    __tablename__ = "module_progress"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    module_id = Column(String, ForeignKey("program_modules.id"), nullable=False)
    enrollment_id = Column(String, ForeignKey("client_enrollments.id"), nullable=False)

    module = relationship("ProgramModule")
    enrollment = relationship("ClientEnrollment")


class ModuleInstructor(Base):
    __tablename__ = "module_instructors"
    __table_args__ = (UniqueConstraint("module_id", "instructor_id", name="uq_module_instructor"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    module_id = Column(String, ForeignKey("program_modules.id"), nullable=False, index=True)
    instructor_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)


class ModuleCoach(Base):
    __tablename__ = "module_coaches"
    __table_args__ = (UniqueConstraint("module_id", "coach_id", name="uq_module_coach"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    module_id = Column(String, ForeignKey("program_modules.id"), nullable=False, index=True)
    coach_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)


class ProgramInstructor(Base):
    __tablename__ = "program_instructors"
    __table_args__ = (UniqueConstraint("program_id", "instructor_id", name="uq_program_instructor"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    program_id = Column(String, ForeignKey("programs.id"), nullable=False, index=True)
    instructor_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)


class ProgramCoach(Base):
    __tablename__ = "program_coaches"
    __table_args__ = (UniqueConstraint("program_id", "coach_id", name="uq_program_coach"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    program_id = Column(String, ForeignKey("programs.id"), nullable=False, index=True)
    coach_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
