from pydantic import BaseModel, Field
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from datetime import datetime


# --- Field schema (assignment type structure) ---------------------------------

FieldType = Literal["text", "textarea", "number", "rating", "checkbox", "select"]


class AssignmentField(BaseModel):
    id: str
    label: str
    type: FieldType
    required: bool = False
    options: Optional[List[str]] = None
    min: Optional[float] = None
    max: Optional[float] = None


# --- Response values: one variant per field type --------------------------------

class TextValue(BaseModel):
    kind: Literal["text"] = "text"
    value: str


class NumberValue(BaseModel):
    kind: Literal["number"] = "number"
    value: float


class RatingValue(BaseModel):
    kind: Literal["rating"] = "rating"
    value: int


class CheckboxValue(BaseModel):
    kind: Literal["checkbox"] = "checkbox"
    value: bool


class SelectValue(BaseModel):
    kind: Literal["select"] = "select"
    value: str


ResponseValue = Annotated[
    Union[TextValue, NumberValue, RatingValue, CheckboxValue, SelectValue],
    Field(discriminator="kind"),
]


# --- Client requests ----------------------------------------------------------

class AssignmentDraftSave(BaseModel):
    module_progress_id: str
    assignment_type_id: str
    # raw field_id -> value map as sent by the form; typed against the schema server-side
    responses: Dict[str, Any] = Field(default_factory=dict)
    overall_comments: Optional[str] = None
    overall_score: Optional[float] = None
    is_private: bool = False


class AssignmentSubmit(BaseModel):
    responses: Dict[str, Any] = Field(default_factory=dict)
    overall_comments: Optional[str] = None
    is_private: bool = False


class AssignmentOut(BaseModel):
    id: str
    module_progress_id: str
    assignment_type_id: str
    assessor_id: str
    responses: Dict[str, Any]
    overall_score: Optional[float] = None
    overall_comments: Optional[str] = None
    status: str
    is_locked: bool = False
    completed_at: Optional[datetime] = None
    is_private: bool
    scoring_snapshot_id: Optional[str] = None
    scored_by: Optional[str] = None
    scored_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = {'from_attributes': True}


class PendingAssignmentOut(BaseModel):
    id: str
    module_progress_id: str
    assignment_type_id: str
    assignment_type_name: Optional[str] = None
    client_user_id: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
