"""Assignment lifecycle: draft -> submitted -> reviewed.

Every operation takes an explicit :class:`~app.services.auth.Caller`.
Status changes are conditional updates (see ``AssignmentStore.transition``);
when one loses, the current status decides which error the caller sees.
Notifications go out only after the transaction that caused them has
committed, and a notification failure never fails the operation.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.settings import settings
from app.exceptions import (
    AlreadyReviewed,
    InvalidTransition,
    MissingRubric,
    NotFound,
    NotSubmitted,
    PermissionDenied,
    ValidationError,
)
from app.models.assignment import (
    AssignmentStatus,
    AssignmentType,
    LOCKED_STATUSES,
    ModuleAssignment,
    REVIEWED_STATUSES,
)
from app.models.capability import SnapshotStatus
from app.models.notification import NotificationEventType
from app.models.program import ClientEnrollment, ModuleProgress, ProgramModule
from app.models.user import User, UserRole
from app.services import audit
from app.services.assignment_notifications import NotificationGateway, StaffDirectory
from app.services.assignment_responses import load_field_schema, to_storage, validate_responses
from app.services.assignment_store import AssignmentStore
from app.services.auth import Caller
from app.services.capability_scoring import ScoreSummary, summarize, validate_ratings
from app.services.rubric_provider import Rubric, RubricProvider
from app.services.snapshot_store import SnapshotStore
from app.utils.datetime import isoformat_utc, utc_now

logger = logging.getLogger("app.lifecycle")

FEEDBACK_NOT_READY = "Feedback is not available until the assignment has been reviewed"


def is_locked(status: Optional[str]) -> bool:
    """The client form is read-only once the assignment leaves ``draft``."""
    return status in LOCKED_STATUSES


# --- serializers -----------------------------------------------------------

def assignment_to_dict(assignment: ModuleAssignment) -> Dict[str, Any]:
    return {
        "id": assignment.id,
        "module_progress_id": assignment.module_progress_id,
        "assignment_type_id": assignment.assignment_type_id,
        "assessor_id": assignment.assessor_id,
        "responses": assignment.responses or {},
        "overall_score": assignment.overall_score,
        "overall_comments": assignment.overall_comments,
        "status": assignment.status,
        "is_locked": is_locked(assignment.status),
        "completed_at": assignment.completed_at,
        "is_private": bool(assignment.is_private),
        "scoring_snapshot_id": assignment.scoring_snapshot_id,
        "scored_by": assignment.scored_by,
        "scored_at": assignment.scored_at,
        "created_at": assignment.created_at,
        "updated_at": assignment.updated_at,
    }


def rubric_to_dict(rubric: Optional[Rubric]) -> Dict[str, Any]:
    if rubric is None:
        return {"assessment": None, "domains": []}
    a = rubric.assessment
    return {
        "assessment": {
            "id": a.id,
            "name": a.name,
            "rating_scale": a.rating_scale,
            "pass_fail_enabled": a.pass_fail_enabled,
            "pass_fail_threshold": a.pass_fail_threshold,
            "pass_fail_mode": a.pass_fail_mode,
        },
        "domains": [
            {
                "id": d.id,
                "name": d.name,
                "description": d.description,
                "order_index": d.order_index,
                "questions": [
                    {"id": q.id, "text": q.text, "description": q.description, "order_index": q.order_index}
                    for q in d.questions
                ],
            }
            for d in rubric.domains
        ],
    }


def _pass_fail_dict(result) -> Optional[Dict[str, Any]]:
    if result is None:
        return None
    return {"passed": result.passed, "label": result.label}


def summary_to_dict(summary: Optional[ScoreSummary]) -> Optional[Dict[str, Any]]:
    if summary is None:
        return None
    return {
        "rating_scale": summary.rating_scale,
        "overall_average": summary.overall_average,
        "display_overall_average": summary.display_overall_average,
        "pass_fail": _pass_fail_dict(summary.pass_fail),
        "domains": [
            {
                "domain_id": d.domain_id,
                "name": d.name,
                "average": d.average,
                "display_average": d.display_average,
                "rated_count": d.rated_count,
                "pass_fail": _pass_fail_dict(d.pass_fail),
            }
            for d in summary.domains
        ],
    }


class AssignmentLifecycle:
    def __init__(
        self,
        db: Session,
        notifier: NotificationGateway,
        rubric_provider: Optional[RubricProvider] = None,
        staff_directory: Optional[StaffDirectory] = None,
    ):
        self.db = db
        self.notifier = notifier
        self.assignments = AssignmentStore(db)
        self.snapshots = SnapshotStore(db)
        self.rubrics = rubric_provider or RubricProvider(db, settings.default_rating_scale)
        self.staff = staff_directory or StaffDirectory(db)

    # --- access ------------------------------------------------------------

    def _load(self, assignment_id: str) -> ModuleAssignment:
        assignment = self.assignments.get(assignment_id)
        if assignment is None:
            raise NotFound("Assignment not found")
        return assignment

    def _progress(self, module_progress_id: str) -> ModuleProgress:
        progress = self.db.get(ModuleProgress, module_progress_id)
        if progress is None:
            raise NotFound("Module progress not found")
        return progress

    def _can_grade(self, caller: Caller, assignment: ModuleAssignment) -> bool:
        if not caller.is_staff:
            return False
        if caller.has_role(UserRole.admin.value):
            return True
        progress = self.db.get(ModuleProgress, assignment.module_progress_id)
        return progress is not None and progress.module_id in self.staff.staffed_module_ids(caller.id)

    def _require_grader(self, caller: Caller, assignment: ModuleAssignment) -> None:
        if not self._can_grade(caller, assignment):
            raise PermissionDenied("Only staff assigned to this module can score this assignment")

    def _require_owner(self, caller: Caller, assignment: ModuleAssignment) -> None:
        if assignment.assessor_id != caller.id:
            raise PermissionDenied("You can only modify your own assignments")

    def _require_reader(self, caller: Caller, assignment: ModuleAssignment) -> None:
        if assignment.assessor_id != caller.id and not self._can_grade(caller, assignment):
            raise PermissionDenied("You do not have access to this assignment")

    # --- guards ------------------------------------------------------------

    def _scoring_guard_error(self, assignment_id: str, status: Optional[str] = None) -> InvalidTransition:
        if status is None:
            status = self.assignments.current_status(assignment_id)
        if status in REVIEWED_STATUSES:
            return AlreadyReviewed()
        return NotSubmitted()

    def _check_scorable(self, assignment: ModuleAssignment) -> None:
        if assignment.status != AssignmentStatus.submitted.value:
            raise self._scoring_guard_error(assignment.id, assignment.status)

    def _validate_scoring(
        self,
        rubric: Rubric,
        ratings: Mapping[str, int],
        question_notes: Mapping[str, Optional[str]],
        domain_notes: Mapping[str, Optional[str]],
    ) -> None:
        errors = validate_ratings(ratings, rubric.question_ids, rubric.assessment.rating_scale)
        question_ids = set(rubric.question_ids)
        domain_ids = set(rubric.domain_ids)
        bad_q = sorted(k for k in question_notes if k not in question_ids)
        if bad_q:
            errors.append(f"Notes for unknown questions: {', '.join(bad_q)}")
        bad_d = sorted(k for k in domain_notes if k not in domain_ids)
        if bad_d:
            errors.append(f"Notes for unknown domains: {', '.join(bad_d)}")
        if errors:
            raise ValidationError(errors)

    def _rubric_or_raise(self, assignment: ModuleAssignment) -> Rubric:
        rubric = self.rubrics.rubric_for_assignment(assignment)
        if rubric is None:
            raise MissingRubric()
        return rubric

    def _dispatch(self, event_type: str, recipients: Iterable[str], metadata: Mapping[str, Any]) -> None:
        try:
            self.notifier.notify(event_type, recipients, metadata)
        except Exception as e:
            logger.error("Notification %s for assignment %s failed: %s",
                         event_type, metadata.get("assignment_id"), e, exc_info=True)

    # --- client operations -------------------------------------------------

    def save_draft(
        self,
        caller: Caller,
        module_progress_id: str,
        assignment_type_id: str,
        responses: Mapping[str, Any],
        overall_comments: Optional[str] = None,
        overall_score: Optional[float] = None,
        is_private: bool = False,
    ) -> ModuleAssignment:
        progress = self._progress(module_progress_id)
        if self.staff.client_id_for_progress(progress) != caller.id:
            raise PermissionDenied("You can only save assignments for your own module progress")
        assignment_type = self.db.get(AssignmentType, assignment_type_id)
        if assignment_type is None:
            raise NotFound("Assignment type not found")

        values, errors = validate_responses(
            load_field_schema(assignment_type.structure), responses, require_complete=False
        )
        if errors:
            raise ValidationError(errors)
        fields = {
            "responses": to_storage(values),
            "overall_comments": overall_comments,
            "overall_score": overall_score,
            "is_private": is_private,
        }

        created = False
        try:
            existing = self.assignments.get_for_progress(module_progress_id, assignment_type_id)
            if existing is None:
                try:
                    existing = self.assignments.create(
                        id=str(uuid.uuid4()),
                        module_progress_id=module_progress_id,
                        assignment_type_id=assignment_type_id,
                        assessor_id=caller.id,
                        **fields,
                    )
                    created = True
                except IntegrityError:
                    # a concurrent first save won; update its row instead
                    self.db.rollback()
                    existing = self.assignments.get_for_progress(module_progress_id, assignment_type_id)
                    if existing is None:
                        raise
            if not created:
                if existing.assessor_id != caller.id:
                    raise PermissionDenied("You can only modify your own assignments")
                won = self.assignments.transition(
                    existing.id, [AssignmentStatus.draft.value], AssignmentStatus.draft.value, **fields
                )
                if not won:
                    raise InvalidTransition("This assignment has been submitted and can no longer be edited")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(existing)
        audit.log_assignment_draft_saved(caller.id, existing.id, created)
        return existing

    def submit_assignment(
        self,
        caller: Caller,
        assignment_id: str,
        responses: Optional[Mapping[str, Any]] = None,
        overall_comments: Optional[str] = None,
        is_private: Optional[bool] = None,
    ) -> ModuleAssignment:
        assignment = self._load(assignment_id)
        self._require_owner(caller, assignment)
        if assignment.status != AssignmentStatus.draft.value:
            raise InvalidTransition("This assignment has already been submitted")

        raw = (assignment.responses or {}) if responses is None else responses
        assignment_type = self.db.get(AssignmentType, assignment.assignment_type_id)
        fields = load_field_schema(assignment_type.structure if assignment_type else [])
        values, errors = validate_responses(fields, raw, require_complete=True)
        if errors:
            raise ValidationError(errors)

        changes: Dict[str, Any] = {"responses": to_storage(values)}
        if overall_comments is not None:
            changes["overall_comments"] = overall_comments
        if is_private is not None:
            changes["is_private"] = is_private

        try:
            won = self.assignments.transition(
                assignment_id, [AssignmentStatus.draft.value], AssignmentStatus.submitted.value, **changes
            )
            if not won:
                raise InvalidTransition("This assignment has already been submitted")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(assignment)

        recipients: set = set()
        try:
            progress = self.db.get(ModuleProgress, assignment.module_progress_id)
            recipients = self.staff.submission_recipients(progress) if progress else set()
            metadata = self._event_metadata(assignment, assignment_type, progress)
            metadata["submitted_at"] = isoformat_utc(assignment.updated_at)
            metadata["link"] = f"/staff/assignments/{assignment.id}/scoring"
        except Exception as e:
            logger.error("Could not resolve submission recipients for %s: %s", assignment.id, e, exc_info=True)
            metadata = None
        if metadata is not None:
            if not recipients:
                logger.info("Assignment %s submitted but no staff are assigned to its module", assignment.id)
            self._dispatch(NotificationEventType.assignment_submitted.value, recipients, metadata)

        audit.log_assignment_submit(caller.id, assignment.id, assignment.assignment_type_id, len(recipients))
        return assignment

    def _event_metadata(self, assignment, assignment_type, progress) -> Dict[str, Any]:
        client = self.db.get(User, assignment.assessor_id)
        module = self.db.get(ProgramModule, progress.module_id) if progress else None
        return {
            "assignment_id": assignment.id,
            "assignment_type_id": assignment.assignment_type_id,
            "assignment_name": assignment_type.name if assignment_type else "Assignment",
            "client_id": assignment.assessor_id,
            "client_name": client.name if client else None,
            "module_id": module.id if module else None,
            "module_title": module.title if module else None,
        }

    # --- staff operations --------------------------------------------------

    def _ensure_snapshot(self, caller: Caller, assignment: ModuleAssignment, rubric: Rubric):
        if assignment.scoring_snapshot_id:
            snapshot = self.snapshots.get(assignment.scoring_snapshot_id)
            if snapshot is not None:
                return snapshot

        progress = self.db.get(ModuleProgress, assignment.module_progress_id)
        snapshot = self.snapshots.create(
            assessment_id=rubric.assessment.id,
            user_id=assignment.assessor_id,
            evaluator_id=caller.id,
            enrollment_id=progress.enrollment_id if progress else None,
        )
        if self.assignments.attach_snapshot(assignment.id, snapshot.id):
            return snapshot

        # another grader attached first; keep theirs
        self.snapshots.discard(snapshot)
        self.db.refresh(assignment)
        logger.info("Assignment %s already had snapshot %s attached", assignment.id, assignment.scoring_snapshot_id)
        return self.snapshots.get(assignment.scoring_snapshot_id)

    def _write_scores(self, snapshot, ratings, question_notes, domain_notes) -> None:
        if snapshot.status == SnapshotStatus.completed.value:
            raise AlreadyReviewed()
        self.snapshots.upsert_ratings(snapshot.id, ratings)
        self.snapshots.upsert_question_notes(snapshot.id, question_notes)
        self.snapshots.upsert_domain_notes(snapshot.id, domain_notes)

    def _summary(self, rubric: Optional[Rubric], snapshot_id: Optional[str]) -> Optional[ScoreSummary]:
        if rubric is None:
            return None
        ratings = self.snapshots.ratings(snapshot_id) if snapshot_id else {}
        return summarize(rubric.assessment, rubric.domains, ratings)

    def _scoring_result(self, assignment, snapshot, rubric) -> Dict[str, Any]:
        return {
            "assignment": assignment_to_dict(assignment),
            "snapshot": self.snapshots.to_dict(snapshot) if snapshot is not None else None,
            "summary": summary_to_dict(self._summary(rubric, snapshot.id if snapshot is not None else None)),
        }

    def save_scoring_draft(
        self,
        caller: Caller,
        assignment_id: str,
        ratings: Mapping[str, int],
        question_notes: Optional[Mapping[str, Optional[str]]] = None,
        domain_notes: Optional[Mapping[str, Optional[str]]] = None,
        instructor_notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        assignment = self._load(assignment_id)
        self._require_grader(caller, assignment)
        self._check_scorable(assignment)
        rubric = self._rubric_or_raise(assignment)
        ratings = dict(ratings or {})
        question_notes = dict(question_notes or {})
        domain_notes = dict(domain_notes or {})
        self._validate_scoring(rubric, ratings, question_notes, domain_notes)

        try:
            snapshot = self._ensure_snapshot(caller, assignment, rubric)
            self._write_scores(snapshot, ratings, question_notes, domain_notes)
            extra = {"instructor_notes": instructor_notes} if instructor_notes is not None else {}
            # same-status move: re-checks nobody completed it meanwhile
            won = self.assignments.transition(
                assignment_id, [AssignmentStatus.submitted.value], AssignmentStatus.submitted.value, **extra
            )
            if not won:
                raise self._scoring_guard_error(assignment_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(assignment)
        self.db.refresh(snapshot)
        audit.log_scoring_draft(caller.id, assignment_id, snapshot.id, len(ratings))
        return self._scoring_result(assignment, snapshot, rubric)

    def complete_scoring(
        self,
        caller: Caller,
        assignment_id: str,
        ratings: Mapping[str, int],
        question_notes: Optional[Mapping[str, Optional[str]]] = None,
        domain_notes: Optional[Mapping[str, Optional[str]]] = None,
        instructor_notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        assignment = self._load(assignment_id)
        self._require_grader(caller, assignment)
        self._check_scorable(assignment)
        rubric = self._rubric_or_raise(assignment)
        ratings = dict(ratings or {})
        question_notes = dict(question_notes or {})
        domain_notes = dict(domain_notes or {})
        self._validate_scoring(rubric, ratings, question_notes, domain_notes)

        try:
            snapshot = self._ensure_snapshot(caller, assignment, rubric)
            self._write_scores(snapshot, ratings, question_notes, domain_notes)
            self.snapshots.set_status(snapshot, SnapshotStatus.completed.value)
            changes: Dict[str, Any] = {"scored_by": caller.id, "scored_at": utc_now()}
            if instructor_notes is not None:
                changes["instructor_notes"] = instructor_notes
            won = self.assignments.transition(
                assignment_id, [AssignmentStatus.submitted.value], AssignmentStatus.reviewed.value, **changes
            )
            if not won:
                raise self._scoring_guard_error(assignment_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(assignment)
        self.db.refresh(snapshot)
        result = self._scoring_result(assignment, snapshot, rubric)
        summary = result["summary"] or {}
        pass_fail = summary.get("pass_fail")

        self._notify_graded(assignment, snapshot.id, pass_fail, summary.get("display_overall_average"))
        audit.log_assignment_reviewed(
            caller.id, assignment_id, snapshot.id,
            pass_fail["passed"] if pass_fail else None, summary.get("overall_average"),
        )
        return result

    def mark_reviewed_without_rubric(
        self,
        caller: Caller,
        assignment_id: str,
        instructor_notes: Optional[str] = None,
    ) -> ModuleAssignment:
        assignment = self._load(assignment_id)
        self._require_grader(caller, assignment)
        if self.rubrics.resolve_assessment_id(assignment):
            raise InvalidTransition("This assignment is scored with a rubric; complete the scoring instead")
        self._check_scorable(assignment)

        changes: Dict[str, Any] = {"scored_by": caller.id, "scored_at": utc_now()}
        if instructor_notes is not None:
            changes["instructor_notes"] = instructor_notes
        try:
            won = self.assignments.transition(
                assignment_id, [AssignmentStatus.submitted.value], AssignmentStatus.reviewed.value, **changes
            )
            if not won:
                raise self._scoring_guard_error(assignment_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(assignment)
        self._notify_graded(assignment, None, None, None)
        audit.log_assignment_reviewed(caller.id, assignment_id, None, None, None)
        return assignment

    def _notify_graded(self, assignment, snapshot_id, pass_fail, display_overall) -> None:
        try:
            assignment_type = self.db.get(AssignmentType, assignment.assignment_type_id)
            progress = self.db.get(ModuleProgress, assignment.module_progress_id)
            metadata = self._event_metadata(assignment, assignment_type, progress)
        except Exception as e:
            logger.error("Could not build graded notification for %s: %s", assignment.id, e, exc_info=True)
            return
        metadata.update({
            "snapshot_id": snapshot_id,
            "result_label": pass_fail["label"] if pass_fail else None,
            "overall_average": display_overall,
            "has_feedback": bool(assignment.instructor_notes),
            "link": f"/assignments/{assignment.id}/feedback",
        })
        self._dispatch(NotificationEventType.assignment_graded.value, [assignment.assessor_id], metadata)

    # --- reads -------------------------------------------------------------

    def get_assignment(self, caller: Caller, assignment_id: str) -> ModuleAssignment:
        assignment = self._load(assignment_id)
        self._require_reader(caller, assignment)
        return assignment

    def get_scoring_state(self, caller: Caller, assignment_id: str) -> Dict[str, Any]:
        assignment = self._load(assignment_id)
        self._require_grader(caller, assignment)
        rubric = self.rubrics.rubric_for_assignment(assignment)
        snapshot = self.snapshots.get(assignment.scoring_snapshot_id) if assignment.scoring_snapshot_id else None
        return {
            "assignment": assignment_to_dict(assignment),
            **rubric_to_dict(rubric),
            "snapshot": self.snapshots.to_dict(snapshot) if snapshot is not None else None,
            "summary": summary_to_dict(self._summary(rubric, snapshot.id if snapshot is not None else None)),
            "instructor_notes": assignment.instructor_notes,
        }

    def get_feedback(self, caller: Caller, assignment_id: str) -> Dict[str, Any]:
        assignment = self._load(assignment_id)
        self._require_reader(caller, assignment)
        if assignment.status not in REVIEWED_STATUSES:
            raise InvalidTransition(FEEDBACK_NOT_READY)

        snapshot = self.snapshots.get(assignment.scoring_snapshot_id) if assignment.scoring_snapshot_id else None
        rubric = None
        if snapshot is not None:
            rubric = self.rubrics.load_rubric(snapshot.assessment_id)
        scorer = self.db.get(User, assignment.scored_by) if assignment.scored_by else None
        return {
            "assignment_id": assignment.id,
            "status": assignment.status,
            "scored_by": assignment.scored_by,
            "scored_by_name": scorer.name if scorer else None,
            "scored_at": assignment.scored_at,
            "instructor_notes": assignment.instructor_notes,
            **rubric_to_dict(rubric),
            "snapshot": self.snapshots.to_dict(snapshot) if snapshot is not None else None,
            "summary": summary_to_dict(self._summary(rubric, snapshot.id if snapshot is not None else None)),
        }

    def list_pending_for_staff(self, caller: Caller) -> List[Dict[str, Any]]:
        if not caller.is_staff:
            raise PermissionDenied("Instructor, coach or admin access required")

        query = (
            self.db.query(ModuleAssignment, AssignmentType.name, ClientEnrollment.client_user_id)
            .join(ModuleProgress, ModuleProgress.id == ModuleAssignment.module_progress_id)
            .join(ClientEnrollment, ClientEnrollment.id == ModuleProgress.enrollment_id)
            .join(AssignmentType, AssignmentType.id == ModuleAssignment.assignment_type_id)
            .filter(ModuleAssignment.status == AssignmentStatus.submitted.value)
        )
        if not caller.has_role(UserRole.admin.value):
            module_ids = self.staff.staffed_module_ids(caller.id)
            if not module_ids:
                return []
            query = query.filter(ModuleProgress.module_id.in_(module_ids))

        rows = query.order_by(ModuleAssignment.updated_at.asc()).all()
        return [
            {
                "id": a.id,
                "module_progress_id": a.module_progress_id,
                "assignment_type_id": a.assignment_type_id,
                "assignment_type_name": type_name,
                "client_user_id": client_id,
                "status": a.status,
                "created_at": a.created_at,
                "updated_at": a.updated_at,
            }
            for a, type_name, client_id in rows
        ]
