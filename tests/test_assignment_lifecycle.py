import pytest
from sqlalchemy import update

from app.exceptions import (
    AlreadyReviewed,
    InvalidTransition,
    MissingRubric,
    NotFound,
    NotSubmitted,
    PermissionDenied,
    ValidationError,
)
from app.models.assignment import AssignmentStatus, ModuleAssignment
from app.models.capability import (
    CapabilityAssessment,
    CapabilityDomain,
    CapabilityDomainQuestion,
    CapabilitySnapshot,
    SnapshotStatus,
)
from app.services.assignment_lifecycle import (
    FEEDBACK_NOT_READY,
    AssignmentLifecycle,
    is_locked,
)
from app.services.snapshot_store import SnapshotStore


@pytest.fixture
def save_draft(lifecycle, caller_for, graph):
    """Save a draft as the enrolled client."""
    def _save(type_id=None, responses=None):
        return lifecycle.save_draft(
            caller_for("client"),
            graph.progress_id,
            type_id or graph.rubric_type_id,
            responses if responses is not None else {"reflection": "work in progress"},
        )
    return _save


@pytest.fixture
def submit(lifecycle, caller_for, save_draft, full_responses):
    """Draft then submit a complete reflection as the enrolled client."""
    def _submit(**overrides):
        draft = save_draft()
        return lifecycle.submit_assignment(caller_for("client"), draft.id, responses=full_responses(**overrides))
    return _submit


@pytest.fixture
def failing_lifecycle(db_session, failing_recorder):
    return AssignmentLifecycle(db_session, failing_recorder)


def _ratings(graph, q1=4, q2=3, q3=2):
    return {graph.q1: q1, graph.q2: q2, graph.q3: q3}


class TestDrafts:
    def test_first_save_creates_then_updates_same_row(self, save_draft, graph):
        first = save_draft()
        assert first.status == "draft"
        assert first.assessor_id == graph.users["client"].id
        assert first.responses == {"reflection": "work in progress"}

        second = save_draft(responses={"reflection": "better", "confidence": 3})
        assert second.id == first.id
        assert second.responses == {"reflection": "better", "confidence": 3}

    def test_draft_save_type_checks_values(self, save_draft):
        with pytest.raises(ValidationError) as exc:
            save_draft(responses={"confidence": 11})
        assert "Confidence: rating must be between 1 and 5" in exc.value.errors

    def test_only_the_enrolled_client_can_save(self, lifecycle, caller_for, graph):
        with pytest.raises(PermissionDenied):
            lifecycle.save_draft(caller_for("other_client"), graph.progress_id, graph.rubric_type_id, {})

    def test_unknown_progress_or_type(self, lifecycle, caller_for, graph):
        with pytest.raises(NotFound):
            lifecycle.save_draft(caller_for("client"), "missing", graph.rubric_type_id, {})
        with pytest.raises(NotFound):
            lifecycle.save_draft(caller_for("client"), graph.progress_id, "missing", {})

    def test_draft_cannot_be_edited_after_submit(self, save_draft, submit):
        submit()
        with pytest.raises(InvalidTransition) as exc:
            save_draft()
        assert exc.value.message == "This assignment has been submitted and can no longer be edited"


class TestSubmit:
    def test_submit_locks_and_notifies_deduped_staff(self, submit, recorder, graph):
        assignment = submit()

        assert assignment.status == "submitted"
        assert assignment.completed_at is None
        assert is_locked(assignment.status)

        assert len(recorder.calls) == 1
        event_type, recipients, metadata = recorder.calls[0]
        assert event_type == "assignment_submitted"
        users = graph.users
        # the module instructor is also a program instructor: still one entry
        assert recipients == {
            users["instructor"].id, users["coach"].id,
            users["program_instructor"].id, users["program_coach"].id,
        }
        assert metadata["assignment_id"] == assignment.id
        assert metadata["client_name"] == users["client"].name
        assert metadata["assignment_name"] == "Listening Reflection"
        assert metadata["link"] == f"/staff/assignments/{assignment.id}/scoring"
        assert metadata["submitted_at"] is not None

    def test_submit_uses_saved_responses_when_none_sent(self, lifecycle, caller_for, save_draft, full_responses):
        draft = save_draft(responses=full_responses())
        assignment = lifecycle.submit_assignment(caller_for("client"), draft.id)
        assert assignment.status == "submitted"
        assert assignment.responses["confidence"] == 4

    def test_submit_requires_required_fields(self, lifecycle, recorder, caller_for, save_draft):
        draft = save_draft()
        with pytest.raises(ValidationError) as exc:
            lifecycle.submit_assignment(caller_for("client"), draft.id)
        assert exc.value.errors == ["Missing required fields: Confidence, I completed the module"]
        assert lifecycle.get_assignment(caller_for("client"), draft.id).status == "draft"
        assert recorder.calls == []

    def test_unticked_required_checkbox_blocks_submit(self, submit):
        with pytest.raises(ValidationError) as exc:
            submit(agree=False)
        assert exc.value.errors == ["Missing required fields: I completed the module"]

    def test_second_submit_is_rejected(self, lifecycle, recorder, caller_for, submit, full_responses):
        assignment = submit()
        with pytest.raises(InvalidTransition):
            lifecycle.submit_assignment(caller_for("client"), assignment.id, responses=full_responses())
        assert len(recorder.calls) == 1

    def test_only_owner_submits(self, lifecycle, caller_for, save_draft, full_responses):
        draft = save_draft()
        with pytest.raises(PermissionDenied):
            lifecycle.submit_assignment(caller_for("instructor"), draft.id, responses=full_responses())

    def test_notifier_failure_does_not_fail_submit(self, db_session, failing_recorder, caller_for, graph, full_responses):
        lifecycle = AssignmentLifecycle(db_session, failing_recorder)
        draft = lifecycle.save_draft(caller_for("client"), graph.progress_id, graph.rubric_type_id, {})
        assignment = lifecycle.submit_assignment(caller_for("client"), draft.id, responses=full_responses())
        assert assignment.status == "submitted"
        assert len(failing_recorder.calls) == 1

    def test_submit_missing_assignment(self, lifecycle, caller_for, graph, full_responses):
        with pytest.raises(NotFound):
            lifecycle.submit_assignment(caller_for("client"), "missing", responses=full_responses())


class TestScoring:
    def test_scoring_before_submit_is_not_submitted(self, lifecycle, caller_for, save_draft, graph):
        draft = save_draft()
        with pytest.raises(NotSubmitted) as exc:
            lifecycle.save_scoring_draft(caller_for("instructor"), draft.id, _ratings(graph))
        assert exc.value.message == "This assignment has not been submitted yet"
        assert exc.value.code == "not_submitted"

    def test_end_to_end_grade(self, lifecycle, recorder, caller_for, submit, graph):
        assignment = submit()
        instructor = caller_for("instructor")

        draft = lifecycle.save_scoring_draft(
            instructor, assignment.id, {graph.q1: 2},
            question_notes={graph.q1: "Interrupted twice", graph.q2: "  "},
        )
        snapshot_id = draft["snapshot"]["id"]
        assert draft["assignment"]["status"] == "submitted"
        assert draft["snapshot"]["status"] == "draft"
        assert draft["snapshot"]["question_notes"] == {graph.q1: "Interrupted twice"}
        # scoring drafts don't notify the client
        assert [c[0] for c in recorder.calls] == ["assignment_submitted"]

        redraft = lifecycle.save_scoring_draft(instructor, assignment.id, {graph.q1: 3})
        assert redraft["snapshot"]["id"] == snapshot_id
        assert redraft["snapshot"]["status"] == "draft"
        assert redraft["snapshot"]["ratings"] == {graph.q1: 3}
        assert SnapshotStore(lifecycle.db).ratings(snapshot_id) == {graph.q1: 3}

        result = lifecycle.complete_scoring(
            instructor, assignment.id, _ratings(graph),
            domain_notes={graph.domain_b: "Practise open questions"},
            instructor_notes="<p>Solid start</p>",
        )
        assert result["assignment"]["status"] == "reviewed"
        assert result["assignment"]["scored_by"] == instructor.id
        assert result["snapshot"]["id"] == snapshot_id
        assert result["snapshot"]["status"] == "completed"
        assert result["snapshot"]["ratings"] == _ratings(graph)
        assert result["snapshot"]["domain_notes"] == {graph.domain_b: "Practise open questions"}

        summary = result["summary"]
        assert summary["overall_average"] == 3.0
        assert summary["pass_fail"] == {"passed": True, "label": "Pass"}
        domain_a, domain_b = summary["domains"]
        assert domain_a["average"] == 3.5
        assert domain_b["pass_fail"] == {"passed": False, "label": "Needs Improvement"}

        # one rating row per question even though q1 was saved twice
        assert SnapshotStore(lifecycle.db).rating_row_count(snapshot_id, graph.q1) == 1

        event_type, recipients, metadata = recorder.calls[-1]
        assert event_type == "assignment_graded"
        assert recipients == {graph.users["client"].id}
        assert metadata["snapshot_id"] == snapshot_id
        assert metadata["result_label"] == "Pass"
        assert metadata["overall_average"] == 3.0
        assert metadata["has_feedback"] is True
        assert metadata["link"] == f"/assignments/{assignment.id}/feedback"

    def test_scoring_after_review_is_already_reviewed(self, lifecycle, caller_for, submit, graph):
        assignment = submit()
        lifecycle.complete_scoring(caller_for("instructor"), assignment.id, _ratings(graph))

        with pytest.raises(AlreadyReviewed) as exc:
            lifecycle.save_scoring_draft(caller_for("coach"), assignment.id, _ratings(graph, q1=1))
        assert exc.value.message == "This assignment has already been reviewed"
        with pytest.raises(AlreadyReviewed):
            lifecycle.complete_scoring(caller_for("coach"), assignment.id, _ratings(graph, q1=1))

        reviewed = lifecycle.get_assignment(caller_for("client"), assignment.id)
        assert SnapshotStore(lifecycle.db).ratings(reviewed.scoring_snapshot_id)[graph.q1] == 4

    def test_legacy_completed_status_counts_as_reviewed(self, db_session, lifecycle, caller_for, submit, graph):
        assignment = submit()
        db_session.execute(
            update(ModuleAssignment)
            .where(ModuleAssignment.id == assignment.id)
            .values(status=AssignmentStatus.completed.value)
        )
        db_session.commit()

        with pytest.raises(AlreadyReviewed):
            lifecycle.save_scoring_draft(caller_for("instructor"), assignment.id, _ratings(graph))
        feedback = lifecycle.get_feedback(caller_for("client"), assignment.id)
        assert feedback["status"] == "completed"
        assert feedback["snapshot"] is None

    def test_invalid_ratings_rejected(self, lifecycle, caller_for, submit, graph):
        assignment = submit()
        with pytest.raises(ValidationError) as exc:
            lifecycle.save_scoring_draft(
                caller_for("instructor"), assignment.id, {graph.q1: 6, "nope": 3},
                domain_notes={"ghost": "x"},
            )
        assert exc.value.errors == [
            "Unknown questions: nope",
            f"Out-of-range (1-5) ratings: {graph.q1}",
            "Notes for unknown domains: ghost",
        ]
        assert lifecycle.get_assignment(caller_for("client"), assignment.id).scoring_snapshot_id is None

    @pytest.mark.parametrize("grader", ["instructor", "coach", "program_instructor", "program_coach", "admin"])
    def test_staff_of_module_or_program_can_grade(self, lifecycle, caller_for, submit, graph, grader):
        assignment = submit()
        result = lifecycle.save_scoring_draft(caller_for(grader), assignment.id, {graph.q1: 5})
        assert result["snapshot"]["evaluator_id"] == graph.users[grader].id

    @pytest.mark.parametrize("caller_key", ["outsider", "client", "other_client"])
    def test_unrelated_callers_cannot_grade(self, lifecycle, caller_for, submit, graph, caller_key):
        assignment = submit()
        with pytest.raises(PermissionDenied):
            lifecycle.complete_scoring(caller_for(caller_key), assignment.id, _ratings(graph))
        with pytest.raises(PermissionDenied):
            lifecycle.get_scoring_state(caller_for(caller_key), assignment.id)

    def test_losing_snapshot_attach_reuses_winner(self, db_session, lifecycle, caller_for, submit, graph):
        assignment = submit()
        winner = SnapshotStore(db_session).create(
            graph.assessment_id, graph.users["client"].id, graph.users["coach"].id
        )
        # another grader links it without our in-memory row noticing
        db_session.execute(
            update(ModuleAssignment)
            .where(ModuleAssignment.id == assignment.id)
            .values(scoring_snapshot_id=winner.id)
            .execution_options(synchronize_session=False)
        )
        assert assignment.scoring_snapshot_id is None

        rubric = lifecycle.rubrics.rubric_for_assignment(assignment)
        snapshot = lifecycle._ensure_snapshot(caller_for("instructor"), assignment, rubric)
        db_session.commit()

        assert snapshot.id == winner.id
        assert assignment.scoring_snapshot_id == winner.id
        assert db_session.query(CapabilitySnapshot).count() == 1

    def test_module_config_rubric_overrides_type(self, db_session, lifecycle, caller_for, submit, module_config):
        db_session.add_all([
            CapabilityAssessment(id="override", name="Override", rating_scale=4,
                                 pass_fail_enabled=True, pass_fail_threshold=50.0),
            CapabilityDomain(id="override-d", assessment_id="override", name="Only", order_index=0),
            CapabilityDomainQuestion(id="override-q", domain_id="override-d", question_text="Q", order_index=0),
        ])
        db_session.commit()
        module_config("override")

        assignment = submit()
        state = lifecycle.get_scoring_state(caller_for("instructor"), assignment.id)
        assert state["assessment"]["id"] == "override"
        assert [q["id"] for q in state["domains"][0]["questions"]] == ["override-q"]

        result = lifecycle.complete_scoring(caller_for("instructor"), assignment.id, {"override-q": 2})
        assert result["summary"]["rating_scale"] == 4
        assert result["summary"]["pass_fail"]["passed"] is True

    def test_notifier_failure_does_not_undo_grading(self, failing_lifecycle, failing_recorder, caller_for, graph,
                                                   full_responses):
        client = caller_for("client")
        draft = failing_lifecycle.save_draft(client, graph.progress_id, graph.rubric_type_id, {})
        failing_lifecycle.submit_assignment(client, draft.id, responses=full_responses())

        result = failing_lifecycle.complete_scoring(caller_for("instructor"), draft.id, _ratings(graph))
        assert result["assignment"]["status"] == "reviewed"
        assert result["snapshot"]["status"] == "completed"
        assert [c[0] for c in failing_recorder.calls] == ["assignment_submitted", "assignment_graded"]

        stored = failing_lifecycle.get_assignment(client, draft.id)
        assert stored.status == "reviewed"
        assert SnapshotStore(failing_lifecycle.db).get(stored.scoring_snapshot_id).status == "completed"


class TestNoRubric:
    @pytest.fixture
    def journal(self, lifecycle, caller_for, save_draft, graph):
        draft = save_draft(type_id=graph.journal_type_id, responses={})
        return lifecycle.submit_assignment(caller_for("client"), draft.id, responses={"entry": "Week one notes"})

    def test_mark_reviewed_without_rubric(self, lifecycle, recorder, caller_for, journal, graph):
        reviewed = lifecycle.mark_reviewed_without_rubric(
            caller_for("coach"), journal.id, instructor_notes="Thanks for sharing"
        )
        assert reviewed.status == "reviewed"
        assert reviewed.scored_by == graph.users["coach"].id
        assert reviewed.scoring_snapshot_id is None

        event_type, recipients, metadata = recorder.calls[-1]
        assert event_type == "assignment_graded"
        assert recipients == {graph.users["client"].id}
        assert metadata["snapshot_id"] is None
        assert metadata["result_label"] is None

        feedback = lifecycle.get_feedback(caller_for("client"), journal.id)
        assert feedback["instructor_notes"] == "Thanks for sharing"
        assert feedback["assessment"] is None
        assert feedback["summary"] is None

        with pytest.raises(AlreadyReviewed):
            lifecycle.mark_reviewed_without_rubric(caller_for("coach"), journal.id)

    def test_scoring_without_rubric_is_missing_rubric(self, lifecycle, caller_for, journal):
        with pytest.raises(MissingRubric) as exc:
            lifecycle.complete_scoring(caller_for("instructor"), journal.id, {})
        assert exc.value.status_code == 422

        state = lifecycle.get_scoring_state(caller_for("instructor"), journal.id)
        assert state["assessment"] is None
        assert state["domains"] == []

    def test_mark_reviewed_refused_when_rubric_exists(self, lifecycle, caller_for, submit):
        assignment = submit()
        with pytest.raises(InvalidTransition):
            lifecycle.mark_reviewed_without_rubric(caller_for("instructor"), assignment.id)

    def test_notifier_failure_does_not_undo_review(self, failing_lifecycle, failing_recorder, caller_for, graph):
        client = caller_for("client")
        draft = failing_lifecycle.save_draft(client, graph.progress_id, graph.journal_type_id, {})
        failing_lifecycle.submit_assignment(client, draft.id, responses={"entry": "Week one notes"})

        reviewed = failing_lifecycle.mark_reviewed_without_rubric(caller_for("coach"), draft.id)
        assert reviewed.status == "reviewed"
        assert reviewed.scoring_snapshot_id is None
        assert [c[0] for c in failing_recorder.calls] == ["assignment_submitted", "assignment_graded"]
        assert failing_lifecycle.get_assignment(client, draft.id).status == "reviewed"


class TestReads:
    def test_feedback_only_after_review(self, lifecycle, caller_for, submit, graph):
        assignment = submit()
        with pytest.raises(InvalidTransition) as exc:
            lifecycle.get_feedback(caller_for("client"), assignment.id)
        assert exc.value.message == FEEDBACK_NOT_READY

        lifecycle.complete_scoring(caller_for("instructor"), assignment.id, _ratings(graph),
                                   question_notes={graph.q3: "Try 'what else?'"})
        feedback = lifecycle.get_feedback(caller_for("client"), assignment.id)
        assert feedback["scored_by_name"] == graph.users["instructor"].name
        assert feedback["snapshot"]["status"] == SnapshotStatus.completed.value
        assert feedback["snapshot"]["question_notes"] == {graph.q3: "Try 'what else?'"}
        assert feedback["summary"]["display_overall_average"] == 3.0
        assert [d["id"] for d in feedback["domains"]] == [graph.domain_a, graph.domain_b]

    def test_other_client_cannot_read(self, lifecycle, caller_for, submit):
        assignment = submit()
        with pytest.raises(PermissionDenied):
            lifecycle.get_assignment(caller_for("other_client"), assignment.id)
        with pytest.raises(PermissionDenied):
            lifecycle.get_assignment(caller_for("outsider"), assignment.id)
        assert lifecycle.get_assignment(caller_for("program_coach"), assignment.id).id == assignment.id

    def test_pending_queue_per_staff_member(self, lifecycle, caller_for, save_draft, submit, graph):
        draft_only = save_draft(type_id=graph.journal_type_id, responses={})
        assignment = submit()

        pending = lifecycle.list_pending_for_staff(caller_for("program_instructor"))
        assert [p["id"] for p in pending] == [assignment.id]
        assert pending[0]["assignment_type_name"] == "Listening Reflection"
        assert pending[0]["client_user_id"] == graph.users["client"].id
        assert draft_only.id not in {p["id"] for p in pending}

        assert lifecycle.list_pending_for_staff(caller_for("outsider")) == []
        assert len(lifecycle.list_pending_for_staff(caller_for("admin"))) == 1
        with pytest.raises(PermissionDenied):
            lifecycle.list_pending_for_staff(caller_for("client"))

        lifecycle.complete_scoring(caller_for("instructor"), assignment.id, _ratings(graph))
        assert lifecycle.list_pending_for_staff(caller_for("instructor")) == []


@pytest.mark.parametrize("status,locked", [
    ("draft", False), ("submitted", True), ("reviewed", True), ("completed", True), (None, False),
])
def test_is_locked(status, locked):
    assert is_locked(status) is locked
