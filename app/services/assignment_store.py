"""Persistence for module assignments.

Status changes go through :meth:`AssignmentStore.transition`, a conditional
``UPDATE ... WHERE id = ? AND status IN (...)``. The row count tells the
caller whether it won; no in-process locking is involved, so two requests
racing to grade the same assignment can't both succeed.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.assignment import ModuleAssignment, AssignmentStatus
from app.utils.datetime import utc_now

logger = logging.getLogger("app.assignment_store")


class AssignmentStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, assignment_id: str) -> Optional[ModuleAssignment]:
        return self.db.query(ModuleAssignment).filter_by(id=assignment_id).first()

    def get_for_progress(self, module_progress_id: str, assignment_type_id: str) -> Optional[ModuleAssignment]:
        return (
            self.db.query(ModuleAssignment)
            .filter_by(module_progress_id=module_progress_id, assignment_type_id=assignment_type_id)
            .first()
        )

    def create(self, **fields: Any) -> ModuleAssignment:
        fields.setdefault("status", AssignmentStatus.draft.value)
        fields.setdefault("responses", {})
        assignment = ModuleAssignment(**fields)
        self.db.add(assignment)
        self.db.flush()
        logger.debug("Created assignment %s status=%s", assignment.id, assignment.status)
        return assignment

    def transition(
        self,
        assignment_id: str,
        from_statuses: Iterable[str],
        to_status: str,
        **values: Any,
    ) -> bool:
        """Atomically move ``assignment_id`` to ``to_status``.

        Returns False (and changes nothing) when the row isn't currently in
        one of ``from_statuses``.
        """
        allowed = list(from_statuses)
        stmt = (
            update(ModuleAssignment)
            .where(ModuleAssignment.id == assignment_id, ModuleAssignment.status.in_(allowed))
            .values(status=to_status, updated_at=utc_now(), **values)
            .execution_options(synchronize_session="fetch")
        )
        result = self.db.execute(stmt)
        won = result.rowcount == 1
        if won:
            logger.info("Assignment %s: %s -> %s", assignment_id, "|".join(allowed), to_status)
        else:
            logger.info("Assignment %s: conditional move to %s rejected", assignment_id, to_status)
        return won

    def attach_snapshot(self, assignment_id: str, snapshot_id: str) -> bool:
        """Link a snapshot only if none is linked yet; never re-points an existing link."""
        stmt = (
            update(ModuleAssignment)
            .where(ModuleAssignment.id == assignment_id, ModuleAssignment.scoring_snapshot_id.is_(None))
            .values(scoring_snapshot_id=snapshot_id)
            .execution_options(synchronize_session="fetch")
        )
        return self.db.execute(stmt).rowcount == 1

    def current_status(self, assignment_id: str) -> Optional[str]:
        row = (
            self.db.query(ModuleAssignment.status)
            .filter(ModuleAssignment.id == assignment_id)
            .first()
        )
        return row[0] if row else None

