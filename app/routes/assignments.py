"""Client-facing assignment endpoints: save, submit, read back feedback."""
from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from app.db import SessionLocal, get_db
from app.schemas.assignment import AssignmentDraftSave, AssignmentOut, AssignmentSubmit
from app.schemas.scoring import FeedbackOut
from app.services.assignment_lifecycle import AssignmentLifecycle, assignment_to_dict
from app.services.assignment_notifications import AssignmentNotificationGateway
from app.services.auth import Caller, get_caller

router = APIRouter(prefix="/assignments", tags=["Assignments"])


def get_notification_gateway() -> AssignmentNotificationGateway:
    return AssignmentNotificationGateway(SessionLocal)


def get_lifecycle(
    db: Session = Depends(get_db),
    gateway: AssignmentNotificationGateway = Depends(get_notification_gateway),
) -> AssignmentLifecycle:
    return AssignmentLifecycle(db, gateway)


@router.put("/draft", response_model=AssignmentOut)
def save_assignment_draft(
    payload: AssignmentDraftSave,
    caller: Caller = Depends(get_caller),
    lifecycle: AssignmentLifecycle = Depends(get_lifecycle),
):
    """Create or update the caller's draft for a module progress + assignment type."""
    assignment = lifecycle.save_draft(
        caller,
        module_progress_id=payload.module_progress_id,
        assignment_type_id=payload.assignment_type_id,
        responses=payload.responses,
        overall_comments=payload.overall_comments,
        overall_score=payload.overall_score,
        is_private=payload.is_private,
    )
    return assignment_to_dict(assignment)


@router.get("/{assignment_id}", response_model=AssignmentOut)
def get_assignment(
    assignment_id: str,
    caller: Caller = Depends(get_caller),
    lifecycle: AssignmentLifecycle = Depends(get_lifecycle),
):
    return assignment_to_dict(lifecycle.get_assignment(caller, assignment_id))


@router.post("/{assignment_id}/submit", response_model=AssignmentOut)
def submit_assignment(
    assignment_id: str,
    payload: AssignmentSubmit,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(get_caller),
    lifecycle: AssignmentLifecycle = Depends(get_lifecycle),
    gateway: AssignmentNotificationGateway = Depends(get_notification_gateway),
):
    """Submit for review. Responses sent here replace the saved draft's."""
    assignment = lifecycle.submit_assignment(
        caller,
        assignment_id,
        responses=payload.responses if payload.responses else None,
        overall_comments=payload.overall_comments,
        is_private=payload.is_private,
    )
    background_tasks.add_task(gateway.flush)
    return assignment_to_dict(assignment)


@router.get("/{assignment_id}/feedback", response_model=FeedbackOut)
def get_assignment_feedback(
    assignment_id: str,
    caller: Caller = Depends(get_caller),
    lifecycle: AssignmentLifecycle = Depends(get_lifecycle),
):
    return lifecycle.get_feedback(caller, assignment_id)
