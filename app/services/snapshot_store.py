"""Persistence for capability snapshots, their ratings and notes.

Ratings and notes are written with ``INSERT ... ON CONFLICT DO UPDATE`` on
their (snapshot, question|domain) unique constraints: saving the same key
twice leaves one row holding the latest value. The dialect-specific
``insert`` comes from ``app.db.dialect_insert`` (PostgreSQL in production,
SQLite under tests).
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.orm import Session

from app.db import dialect_insert
from app.models.capability import (
    CapabilitySnapshot,
    CapabilitySnapshotRating,
    CapabilityQuestionNote,
    CapabilityDomainNote,
    SnapshotStatus,
)
from app.utils.datetime import utc_now

logger = logging.getLogger("app.snapshot_store")


def clean_notes(notes: Mapping[str, Optional[str]]) -> Dict[str, str]:
    """Drop blank notes and trim the rest; a blank note means "no note"."""
    return {key: text.strip() for key, text in notes.items() if text and text.strip()}


class SnapshotStore:
    def __init__(self, db: Session):
        self.db = db

    # --- snapshots ---------------------------------------------------------

    def get(self, snapshot_id: str) -> Optional[CapabilitySnapshot]:
        return self.db.query(CapabilitySnapshot).filter_by(id=snapshot_id).first()

    def create(
        self,
        assessment_id: str,
        user_id: str,
        evaluator_id: str,
        enrollment_id: Optional[str] = None,
        status: str = SnapshotStatus.draft.value,
    ) -> CapabilitySnapshot:
        snapshot = CapabilitySnapshot(
            id=str(uuid.uuid4()),
            assessment_id=assessment_id,
            user_id=user_id,
            enrollment_id=enrollment_id,
            evaluator_id=evaluator_id,
            is_self_assessment=False,
            status=status,
            completed_at=utc_now() if status == SnapshotStatus.completed.value else None,
        )
        self.db.add(snapshot)
        self.db.flush()
        logger.info("Created snapshot %s for user %s (assessment %s)", snapshot.id, user_id, assessment_id)
        return snapshot

    def discard(self, snapshot: CapabilitySnapshot) -> None:
        """Remove a freshly created snapshot that lost the attach race."""
        self.db.delete(snapshot)
        self.db.flush()

    def set_status(self, snapshot: CapabilitySnapshot, status: str) -> CapabilitySnapshot:
        snapshot.status = status
        snapshot.completed_at = utc_now() if status == SnapshotStatus.completed.value else None
        self.db.flush()
        return snapshot

    # --- ratings & notes ---------------------------------------------------

    def upsert_ratings(self, snapshot_id: str, ratings: Mapping[str, int]) -> int:
        if not ratings:
            return 0
        rows = [
            {"id": str(uuid.uuid4()), "snapshot_id": snapshot_id, "question_id": qid, "rating": int(value)}
            for qid, value in ratings.items()
        ]
        stmt = dialect_insert(self.db, CapabilitySnapshotRating).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["snapshot_id", "question_id"],
            set_={"rating": stmt.excluded.rating},
        )
        self.db.execute(stmt)
        return len(rows)

    def _upsert_notes(self, model, key_column: str, snapshot_id: str, notes: Mapping[str, Optional[str]]) -> int:
        cleaned = clean_notes(notes)
        if not cleaned:
            return 0
        rows = [
            {"id": str(uuid.uuid4()), "snapshot_id": snapshot_id, key_column: key, "content": content}
            for key, content in cleaned.items()
        ]
        stmt = dialect_insert(self.db, model).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["snapshot_id", key_column],
            set_={"content": stmt.excluded.content},
        )
        self.db.execute(stmt)
        return len(rows)

    def upsert_question_notes(self, snapshot_id: str, notes: Mapping[str, Optional[str]]) -> int:
        return self._upsert_notes(CapabilityQuestionNote, "question_id", snapshot_id, notes)

    def upsert_domain_notes(self, snapshot_id: str, notes: Mapping[str, Optional[str]]) -> int:
        return self._upsert_notes(CapabilityDomainNote, "domain_id", snapshot_id, notes)

    # --- reads -------------------------------------------------------------

    def ratings(self, snapshot_id: str) -> Dict[str, int]:
        rows = self.db.query(CapabilitySnapshotRating).filter_by(snapshot_id=snapshot_id).all()
        return {r.question_id: r.rating for r in rows}

    def question_notes(self, snapshot_id: str) -> Dict[str, str]:
        rows = self.db.query(CapabilityQuestionNote).filter_by(snapshot_id=snapshot_id).all()
        return {n.question_id: n.content for n in rows}

    def domain_notes(self, snapshot_id: str) -> Dict[str, str]:
        rows = self.db.query(CapabilityDomainNote).filter_by(snapshot_id=snapshot_id).all()
        return {n.domain_id: n.content for n in rows}

    def rating_row_count(self, snapshot_id: str, question_id: Optional[str] = None) -> int:
        query = self.db.query(CapabilitySnapshotRating).filter_by(snapshot_id=snapshot_id)
        if question_id is not None:
            query = query.filter_by(question_id=question_id)
        return query.count()

    def to_dict(self, snapshot: CapabilitySnapshot) -> Dict[str, Any]:
        return {
            "id": snapshot.id,
            "assessment_id": snapshot.assessment_id,
            "user_id": snapshot.user_id,
            "evaluator_id": snapshot.evaluator_id,
            "status": snapshot.status,
            "completed_at": snapshot.completed_at,
            "ratings": self.ratings(snapshot.id),
            "question_notes": self.question_notes(snapshot.id),
            "domain_notes": self.domain_notes(snapshot.id),
        }
