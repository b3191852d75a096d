from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import datetime

from app.schemas.assignment import AssignmentOut


class ScoringPayload(BaseModel):
    """Staff grading form: ratings and notes keyed by rubric ids."""
    ratings: Dict[str, int] = Field(default_factory=dict)
    question_notes: Dict[str, str] = Field(default_factory=dict)
    domain_notes: Dict[str, str] = Field(default_factory=dict)
    instructor_notes: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "ratings": {"question-1": 4, "question-2": 3},
                "question_notes": {"question-1": "Clear structure"},
                "domain_notes": {"domain-1": "Solid overall"},
                "instructor_notes": "<p>Great progress this module.</p>",
            }
        }
    }


# --- Rubric ------------------------------------------------------------------

class QuestionOut(BaseModel):
    id: str
    text: str
    description: Optional[str] = None
    order_index: int


class DomainOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    order_index: int
    questions: List[QuestionOut] = []


class AssessmentOut(BaseModel):
    id: str
    name: str
    rating_scale: int
    pass_fail_enabled: bool
    pass_fail_threshold: Optional[float] = None
    pass_fail_mode: str


# --- Scores ------------------------------------------------------------------

class PassFailOut(BaseModel):
    passed: bool
    label: str


class DomainScoreOut(BaseModel):
    domain_id: str
    name: str
    average: Optional[float] = None
    # rounded to one decimal for display
    display_average: Optional[float] = None
    rated_count: int
    pass_fail: Optional[PassFailOut] = None


class ScoreSummaryOut(BaseModel):
    rating_scale: int
    overall_average: Optional[float] = None
    display_overall_average: Optional[float] = None
    pass_fail: Optional[PassFailOut] = None
    domains: List[DomainScoreOut] = []


class SnapshotOut(BaseModel):
    id: str
    assessment_id: str
    user_id: str
    evaluator_id: Optional[str] = None
    status: str
    completed_at: Optional[datetime] = None
    ratings: Dict[str, int] = {}
    question_notes: Dict[str, str] = {}
    domain_notes: Dict[str, str] = {}


class ScoringStateOut(BaseModel):
    assignment: AssignmentOut
    assessment: Optional[AssessmentOut] = None
    domains: List[DomainOut] = []
    snapshot: Optional[SnapshotOut] = None
    summary: Optional[ScoreSummaryOut] = None
    instructor_notes: Optional[str] = None


class ScoringResultOut(BaseModel):
    assignment: AssignmentOut
    snapshot: Optional[SnapshotOut] = None
    summary: Optional[ScoreSummaryOut] = None


class FeedbackOut(BaseModel):
    assignment_id: str
    status: str
    scored_by: Optional[str] = None
    scored_by_name: Optional[str] = None
    scored_at: Optional[datetime] = None
    instructor_notes: Optional[str] = None
    assessment: Optional[AssessmentOut] = None
    domains: List[DomainOut] = []
    snapshot: Optional[SnapshotOut] = None
    summary: Optional[ScoreSummaryOut] = None
