"""Read-only access to capability rubrics.

Rubrics are platform configuration: this module only ever reads them. Results
are returned as frozen dataclasses so the scoring code can't accidentally
mutate ORM rows.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from app.models.assignment import ModuleAssignment, ModuleAssignmentConfig, AssignmentType
from app.models.capability import (
    CapabilityAssessment, CapabilityDomain, CapabilityDomainQuestion, PassFailMode,
)
from app.models.program import ModuleProgress

logger = logging.getLogger("app.rubric")


@dataclass(frozen=True)
class RubricQuestion:
    id: str
    text: str
    order_index: int
    description: Optional[str] = None


@dataclass(frozen=True)
class RubricDomain:
    id: str
    name: str
    order_index: int
    questions: Tuple[RubricQuestion, ...] = ()
    description: Optional[str] = None


@dataclass(frozen=True)
class RubricAssessment:
    id: str
    name: str
    rating_scale: int
    pass_fail_enabled: bool
    pass_fail_threshold: Optional[float]
    pass_fail_mode: str


@dataclass(frozen=True)
class Rubric:
    assessment: RubricAssessment
    domains: Tuple[RubricDomain, ...]

    @property
    def question_ids(self) -> List[str]:
        return [q.id for d in self.domains for q in d.questions]

    @property
    def domain_ids(self) -> List[str]:
        return [d.id for d in self.domains]


class RubricProvider:
    def __init__(self, db: Session, default_rating_scale: int = 5):
        self.db = db
        self.default_rating_scale = default_rating_scale

    def get_assessment(self, assessment_id: str) -> Optional[RubricAssessment]:
        row = self.db.query(CapabilityAssessment).filter_by(id=assessment_id).first()
        if not row:
            return None
        return RubricAssessment(
            id=row.id,
            name=row.name,
            rating_scale=row.rating_scale or self.default_rating_scale,
            pass_fail_enabled=bool(row.pass_fail_enabled),
            pass_fail_threshold=row.pass_fail_threshold,
            pass_fail_mode=row.pass_fail_mode or PassFailMode.overall.value,
        )

    def get_questions(self, domain_id: str) -> List[RubricQuestion]:
        rows = (
            self.db.query(CapabilityDomainQuestion)
            .filter(CapabilityDomainQuestion.domain_id == domain_id)
            .order_by(CapabilityDomainQuestion.order_index, CapabilityDomainQuestion.id)
            .all()
        )
        return [
            RubricQuestion(id=q.id, text=q.question_text, order_index=q.order_index, description=q.description)
            for q in rows
        ]

    def get_domains(self, assessment_id: str) -> List[RubricDomain]:
        rows = (
            self.db.query(CapabilityDomain)
            .filter(CapabilityDomain.assessment_id == assessment_id)
            .order_by(CapabilityDomain.order_index, CapabilityDomain.id)
            .all()
        )
        return [
            RubricDomain(
                id=d.id,
                name=d.name,
                order_index=d.order_index,
                questions=tuple(self.get_questions(d.id)),
                description=d.description,
            )
            for d in rows
        ]

    def load_rubric(self, assessment_id: str) -> Optional[Rubric]:
        assessment = self.get_assessment(assessment_id)
        if not assessment:
            return None
        return Rubric(assessment=assessment, domains=tuple(self.get_domains(assessment_id)))

    def resolve_assessment_id(self, assignment: ModuleAssignment) -> Optional[str]:
        """Which rubric scores this assignment.

        A module-level config link takes priority over the assignment type's
        own ``scoring_assessment_id``.
        """
        progress = self.db.query(ModuleProgress).filter_by(id=assignment.module_progress_id).first()
        if progress:
            config = (
                self.db.query(ModuleAssignmentConfig)
                .filter_by(module_id=progress.module_id, assignment_type_id=assignment.assignment_type_id)
                .first()
            )
            if config and config.linked_capability_assessment_id:
                return config.linked_capability_assessment_id
        assignment_type = self.db.query(AssignmentType).filter_by(id=assignment.assignment_type_id).first()
        if assignment_type and assignment_type.scoring_assessment_id:
            return assignment_type.scoring_assessment_id
        return None

    def rubric_for_assignment(self, assignment: ModuleAssignment) -> Optional[Rubric]:
        assessment_id = self.resolve_assessment_id(assignment)
        if not assessment_id:
            return None
        rubric = self.load_rubric(assessment_id)
        if rubric is None:
            logger.warning(
                "Assignment %s points at missing assessment %s", assignment.id, assessment_id
            )
        return rubric
