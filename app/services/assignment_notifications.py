"""Assignment notifications: who gets told, and the outbox that tells them.

``notify`` records intent: one ``notification_events`` row per recipient,
keyed by a dedupe key so retrying the same transition is a no-op, plus the
in-app inbox entry. ``flush`` does the slow part (SendGrid email, FCM push)
and can be re-run safely; events that fail are retried by later flushes
until ``NOTIFICATION_MAX_ATTEMPTS``.

Neither path raises into the request that triggered it.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Iterable, Mapping, Optional, Protocol, Set

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from app.core.settings import settings
from app.db import SessionLocal, dialect_insert
from app.models.notification import (
    Notification,
    NotificationEvent,
    NotificationEventStatus,
    NotificationEventType,
    NotificationPreference,
)
from app.models.program import (
    ClientEnrollment,
    ModuleCoach,
    ModuleInstructor,
    ModuleProgress,
    ProgramCoach,
    ProgramInstructor,
    ProgramModule,
)
from app.models.user import User
from app.services import email as email_service
from app.services import push_notification as push_service
from app.services.audit import log_notification_dispatch
from app.utils.datetime import utc_now

logger = logging.getLogger("app.notifications")


class NotificationGateway(Protocol):
    def notify(self, event_type: str, recipients: Iterable[str], metadata: Mapping[str, Any]) -> int:
        ...


def resolve_submission_recipients(
    module_instructors: Iterable[str],
    module_coaches: Iterable[str],
    program_instructors: Iterable[str],
    program_coaches: Iterable[str],
) -> Set[str]:
    """Union of everyone staffing the module, directly or via its program."""
    recipients: Set[str] = set()
    for group in (module_instructors, module_coaches, program_instructors, program_coaches):
        recipients.update(uid for uid in group if uid)
    return recipients


class StaffDirectory:
    """Reads the staffing tables for a client's module progress."""

    def __init__(self, db: Session):
        self.db = db

    def program_id_for_progress(self, progress: ModuleProgress) -> Optional[str]:
        enrollment = self.db.get(ClientEnrollment, progress.enrollment_id)
        if enrollment is not None and enrollment.program_id:
            return enrollment.program_id
        module = self.db.get(ProgramModule, progress.module_id)
        return module.program_id if module is not None else None

    def client_id_for_progress(self, progress: ModuleProgress) -> Optional[str]:
        enrollment = self.db.get(ClientEnrollment, progress.enrollment_id)
        return enrollment.client_user_id if enrollment is not None else None

    def submission_recipients(self, progress: ModuleProgress) -> Set[str]:
        module_id = progress.module_id
        program_id = self.program_id_for_progress(progress)

        module_instructors = [r[0] for r in self.db.query(ModuleInstructor.instructor_id).filter_by(module_id=module_id)]
        module_coaches = [r[0] for r in self.db.query(ModuleCoach.coach_id).filter_by(module_id=module_id)]
        program_instructors: list = []
        program_coaches: list = []
        if program_id:
            program_instructors = [r[0] for r in self.db.query(ProgramInstructor.instructor_id).filter_by(program_id=program_id)]
            program_coaches = [r[0] for r in self.db.query(ProgramCoach.coach_id).filter_by(program_id=program_id)]

        return resolve_submission_recipients(module_instructors, module_coaches, program_instructors, program_coaches)

    def staffed_module_ids(self, user_id: str) -> Set[str]:
        """Modules the user staffs directly, or through any program they staff."""
        module_ids = {r[0] for r in self.db.query(ModuleInstructor.module_id).filter_by(instructor_id=user_id)}
        module_ids |= {r[0] for r in self.db.query(ModuleCoach.module_id).filter_by(coach_id=user_id)}

        program_ids = {r[0] for r in self.db.query(ProgramInstructor.program_id).filter_by(instructor_id=user_id)}
        program_ids |= {r[0] for r in self.db.query(ProgramCoach.program_id).filter_by(coach_id=user_id)}
        if program_ids:
            module_ids |= {
                r[0] for r in self.db.query(ProgramModule.id).filter(ProgramModule.program_id.in_(program_ids))
            }
        return module_ids

    def staffed_program_ids(self, user_id: str) -> Set[str]:
        program_ids = {r[0] for r in self.db.query(ProgramInstructor.program_id).filter_by(instructor_id=user_id)}
        program_ids |= {r[0] for r in self.db.query(ProgramCoach.program_id).filter_by(coach_id=user_id)}
        return program_ids


def dedupe_key(event_type: str, metadata: Mapping[str, Any], recipient_id: str) -> str:
    assignment_id = metadata.get("assignment_id")
    if event_type == NotificationEventType.assignment_graded.value:
        return f"{event_type}:{assignment_id}:{metadata.get('snapshot_id') or 'no-rubric'}:{recipient_id}"
    return f"{event_type}:{assignment_id}:{recipient_id}"


def inbox_message(event_type: str, metadata: Mapping[str, Any]) -> str:
    assignment_name = metadata.get("assignment_name") or "an assignment"
    if event_type == NotificationEventType.assignment_submitted.value:
        return f"{metadata.get('client_name') or 'A client'} submitted {assignment_name} for review"
    message = f"Your {assignment_name} has been reviewed"
    if metadata.get("result_label"):
        message += f" ({metadata['result_label']})"
    return message


class AssignmentNotificationGateway:
    """Outbox-backed gateway. Uses its own sessions, never the caller's."""

    def __init__(self, session_factory=SessionLocal, max_attempts: Optional[int] = None):
        self.session_factory = session_factory
        self.max_attempts = max_attempts or settings.notification_max_attempts

    # --- intent ------------------------------------------------------------

    def notify(self, event_type: str, recipients: Iterable[str], metadata: Mapping[str, Any]) -> int:
        """Enqueue one event per recipient; returns how many were new."""
        event_type = getattr(event_type, "value", event_type)
        unique = sorted({r for r in recipients if r})
        assignment_id = metadata.get("assignment_id")
        if not unique:
            logger.info("No recipients for %s on assignment %s; skipping", event_type, assignment_id)
            log_notification_dispatch(event_type, assignment_id, 0, 0, ok=True)
            return 0

        enqueued = 0
        try:
            db = self.session_factory()
            try:
                for recipient_id in unique:
                    stmt = dialect_insert(db, NotificationEvent).values(
                        id=str(uuid.uuid4()),
                        event_type=event_type,
                        recipient_id=recipient_id,
                        assignment_id=assignment_id,
                        dedupe_key=dedupe_key(event_type, metadata, recipient_id),
                        payload=dict(metadata),
                        status=NotificationEventStatus.pending.value,
                        attempts=0,
                        created_at=utc_now(),
                    ).on_conflict_do_nothing(index_elements=["dedupe_key"])
                    if db.execute(stmt).rowcount == 1:
                        db.add(Notification(
                            user_id=recipient_id,
                            message=inbox_message(event_type, metadata),
                            link=metadata.get("link"),
                        ))
                        enqueued += 1
                db.commit()
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()
        except Exception as e:
            logger.error("Failed to enqueue %s for assignment %s: %s", event_type, assignment_id, e, exc_info=True)
            log_notification_dispatch(event_type, assignment_id, len(unique), 0, ok=False)
            return 0

        if enqueued < len(unique):
            logger.info("%s for assignment %s: %d of %d recipients already notified",
                        event_type, assignment_id, len(unique) - enqueued, len(unique))
        log_notification_dispatch(event_type, assignment_id, len(unique), enqueued, ok=True)
        return enqueued

    # --- delivery ----------------------------------------------------------

    def flush(self, limit: Optional[int] = None) -> Dict[str, int]:
        """Deliver pending (and retryable failed) events. Never raises."""
        counts = {"processed": 0, "sent": 0, "skipped": 0, "failed": 0}
        limit = limit or settings.notification_flush_batch
        try:
            db = self.session_factory()
        except Exception as e:
            logger.error("Notification flush could not open a session: %s", e, exc_info=True)
            return counts

        try:
            events = (
                db.query(NotificationEvent)
                .filter(
                    or_(
                        NotificationEvent.status == NotificationEventStatus.pending.value,
                        NotificationEvent.status == NotificationEventStatus.failed.value,
                    ),
                    NotificationEvent.attempts < self.max_attempts,
                )
                .order_by(NotificationEvent.created_at.asc())
                .limit(limit)
                .all()
            )
            for event in events:
                if not self._claim(db, event):
                    continue
                try:
                    outcome, error = self._deliver(db, event)
                except Exception as e:
                    logger.error("Delivery of event %s raised: %s", event.id, e, exc_info=True)
                    outcome, error = NotificationEventStatus.failed.value, str(e)[:500]
                self._finish(db, event, outcome, error)
                counts["processed"] += 1
                counts[outcome] += 1
        except Exception as e:
            db.rollback()
            logger.error("Notification flush aborted: %s", e, exc_info=True)
        finally:
            db.close()

        if counts["processed"]:
            logger.info("Notification flush: %s", counts)
        return counts

    def _claim(self, db: Session, event: NotificationEvent) -> bool:
        """Bump attempts only if nobody else did since we read the row."""
        seen = event.attempts
        stmt = (
            update(NotificationEvent)
            .where(NotificationEvent.id == event.id, NotificationEvent.attempts == seen)
            .values(attempts=seen + 1)
            .execution_options(synchronize_session="fetch")
        )
        claimed = db.execute(stmt).rowcount == 1
        db.commit()
        if not claimed:
            logger.debug("Event %s claimed by another flush", event.id)
        return claimed

    def _finish(self, db: Session, event: NotificationEvent, outcome: str, error: Optional[str]) -> None:
        event.status = outcome
        event.last_error = error
        if outcome == NotificationEventStatus.sent.value:
            event.sent_at = utc_now()
        db.commit()

    def _deliver(self, db: Session, event: NotificationEvent):
        skipped = NotificationEventStatus.skipped.value
        if not settings.notifications_enabled:
            return skipped, "notifications disabled"

        user = db.get(User, event.recipient_id)
        if user is None:
            return skipped, "recipient not found"

        preference = db.get(NotificationPreference, user.id)
        if preference is not None and not getattr(preference, event.event_type, True):
            return skipped, "recipient opted out"

        context = {**(event.payload or {}), "recipient_name": user.name}
        if context.get("link") and not context.get("action_url"):
            context["action_url"] = f"{settings.app_url.rstrip('/')}{context['link']}"

        email_sent = None
        if user.email:
            email_sent = email_service.send_assignment_email(event.event_type, user.email, context)

        push_result = push_service.PushNotificationService.send_to_user(
            db, user.id, self._push_payload(event.event_type, context)
        )
        push_sent = push_result.get("success_count", 0) > 0
        push_failed = push_result.get("failure_count", 0) > 0

        if email_sent or push_sent:
            return NotificationEventStatus.sent.value, None
        if email_sent is None and not push_failed:
            return skipped, "no email address or registered device"
        return NotificationEventStatus.failed.value, "email and push delivery failed"

    @staticmethod
    def _push_payload(event_type: str, context: Mapping[str, Any]):
        assignment_name = context.get("assignment_name") or "assignment"
        assignment_id = context.get("assignment_id") or ""
        if event_type == NotificationEventType.assignment_submitted.value:
            return push_service.assignment_submitted_payload(
                context.get("client_name") or "A client", assignment_name, assignment_id
            )
        return push_service.assignment_graded_payload(assignment_name, assignment_id, context.get("result_label"))
