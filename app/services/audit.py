"""Audit logging helper functions for assignment lifecycle events.

Standard JSON-ish single-line logs so they are easy to index.
"""
from __future__ import annotations
import logging
from typing import Optional, Any

from app.utils.datetime import utc_now

_logger = logging.getLogger("app.audit")


def _emit(event: str, user_id: Optional[str] = None, **data: Any):
    payload = {"ts": utc_now().isoformat(), "event": event}
    if user_id:
        payload["user_id"] = user_id
    payload.update(data)
    parts = [f"{k}={repr(v)}" for k, v in payload.items()]
    _logger.info("AUDIT " + " ".join(parts))

# Public convenience wrappers

def log_assignment_draft_saved(user_id: str, assignment_id: str, created: bool):
    _emit("assignment.draft_save", user_id=user_id, assignment_id=assignment_id, created=created)

def log_assignment_submit(user_id: str, assignment_id: str, assignment_type_id: str, recipient_count: int):
    _emit("assignment.submit", user_id=user_id, assignment_id=assignment_id,
          assignment_type_id=assignment_type_id, recipient_count=recipient_count)

def log_scoring_draft(user_id: str, assignment_id: str, snapshot_id: str, rating_count: int):
    _emit("assignment.score_draft", user_id=user_id, assignment_id=assignment_id,
          snapshot_id=snapshot_id, rating_count=rating_count)

def log_assignment_reviewed(user_id: str, assignment_id: str, snapshot_id: Optional[str],
                            passed: Optional[bool], overall_average: Optional[float]):
    _emit("assignment.reviewed", user_id=user_id, assignment_id=assignment_id,
          snapshot_id=snapshot_id, passed=passed, overall_average=overall_average)

def log_notification_dispatch(event_type: str, assignment_id: Optional[str], recipient_count: int,
                              enqueued: int, ok: bool):
    _emit("notification.dispatch", event_type=event_type, assignment_id=assignment_id,
          recipient_count=recipient_count, enqueued=enqueued, ok=ok)
