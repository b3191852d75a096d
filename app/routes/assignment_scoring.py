"""Staff grading endpoints."""
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel

from app.routes.assignments import get_lifecycle, get_notification_gateway
from app.schemas.assignment import AssignmentOut, PendingAssignmentOut
from app.schemas.scoring import ScoringPayload, ScoringResultOut, ScoringStateOut
from app.services.assignment_lifecycle import AssignmentLifecycle, assignment_to_dict
from app.services.assignment_notifications import AssignmentNotificationGateway
from app.services.auth import Caller, require_staff

router = APIRouter(prefix="/staff/assignments", tags=["Assignment Scoring"])


class MarkReviewedIn(BaseModel):
    instructor_notes: Optional[str] = None


@router.get("/pending", response_model=List[PendingAssignmentOut])
def list_pending_assignments(
    caller: Caller = Depends(require_staff),
    lifecycle: AssignmentLifecycle = Depends(get_lifecycle),
):
    """Submitted assignments waiting in modules the caller staffs."""
    return lifecycle.list_pending_for_staff(caller)


@router.get("/{assignment_id}/scoring", response_model=ScoringStateOut)
def get_scoring_state(
    assignment_id: str,
    caller: Caller = Depends(require_staff),
    lifecycle: AssignmentLifecycle = Depends(get_lifecycle),
):
    return lifecycle.get_scoring_state(caller, assignment_id)


@router.put("/{assignment_id}/scoring/draft", response_model=ScoringResultOut)
def save_scoring_draft(
    assignment_id: str,
    payload: ScoringPayload,
    caller: Caller = Depends(require_staff),
    lifecycle: AssignmentLifecycle = Depends(get_lifecycle),
):
    """Save ratings/notes without finishing; the client is not notified."""
    return lifecycle.save_scoring_draft(
        caller,
        assignment_id,
        ratings=payload.ratings,
        question_notes=payload.question_notes,
        domain_notes=payload.domain_notes,
        instructor_notes=payload.instructor_notes,
    )


@router.post("/{assignment_id}/scoring/complete", response_model=ScoringResultOut)
def complete_scoring(
    assignment_id: str,
    payload: ScoringPayload,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(require_staff),
    lifecycle: AssignmentLifecycle = Depends(get_lifecycle),
    gateway: AssignmentNotificationGateway = Depends(get_notification_gateway),
):
    result = lifecycle.complete_scoring(
        caller,
        assignment_id,
        ratings=payload.ratings,
        question_notes=payload.question_notes,
        domain_notes=payload.domain_notes,
        instructor_notes=payload.instructor_notes,
    )
    background_tasks.add_task(gateway.flush)
    return result


@router.post("/{assignment_id}/mark-reviewed", response_model=AssignmentOut)
def mark_reviewed(
    assignment_id: str,
    background_tasks: BackgroundTasks,
    payload: Optional[MarkReviewedIn] = None,
    caller: Caller = Depends(require_staff),
    lifecycle: AssignmentLifecycle = Depends(get_lifecycle),
    gateway: AssignmentNotificationGateway = Depends(get_notification_gateway),
):
    """Close out an assignment type that has no scoring rubric."""
    assignment = lifecycle.mark_reviewed_without_rubric(
        caller,
        assignment_id,
        instructor_notes=payload.instructor_notes if payload else None,
    )
    background_tasks.add_task(gateway.flush)
    return assignment_to_dict(assignment)
