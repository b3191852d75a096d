import os

# Must be set before the app (and app.db's engine) is imported
os.environ["ENV"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import uuid
from datetime import datetime, UTC
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.db import Base, get_db
from app.models.assignment import AssignmentType, ModuleAssignmentConfig
from app.models.capability import (
    CapabilityAssessment, CapabilityDomain, CapabilityDomainQuestion, PassFailMode,
)
from app.models.program import (
    ClientEnrollment, ModuleCoach, ModuleInstructor, ModuleProgress,
    Program, ProgramCoach, ProgramInstructor, ProgramModule,
)
from app.models.user import User, UserRole
from app.routes.assignments import get_notification_gateway
from app.services import email as email_mod
from app.services.assignment_lifecycle import AssignmentLifecycle
from app.services.assignment_notifications import AssignmentNotificationGateway
from app.services.auth import Caller, get_current_user
from app.services.push_notification import PushNotificationService

# Use SQLite in-memory for test DB
TEST_DATABASE_URL = "sqlite+pysqlite:///:memory:"
# For in-memory SQLite we must use a StaticPool so multiple connections share the
# same in-memory database during the test run (TestClient requests, the
# notification gateway's own sessions and test setup all see one database).
engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# Dependency override
def override_get_db():
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db
app.dependency_overrides[get_notification_gateway] = lambda: AssignmentNotificationGateway(TestingSessionLocal)


@pytest.fixture(autouse=True)
def setup_test_db():
    # recreate schema for each test to ensure isolation
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    app.dependency_overrides.pop(get_current_user, None)


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def db_session():
    # use the testing session factory bound to the in-memory SQLite engine
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        db.close()


# --- Outbound email / push (autouse) ---
@pytest.fixture(autouse=True)
def outbound(monkeypatch):
    """Capture SendGrid and FCM traffic instead of sending it."""
    sent = SimpleNamespace(emails=[], pushes=[], email_ok=True)

    def _fake_send_email(to_email, subject, html_content, plain_content, from_email=None):
        sent.emails.append({"to": to_email, "subject": subject, "html": html_content, "plain": plain_content})
        return sent.email_ok

    def _fake_send_to_user(db, user_id, payload):
        sent.pushes.append({"user_id": user_id, "title": payload.title, "body": payload.body, "data": payload.data})
        return {"success_count": 0, "failure_count": 0, "configured": False}

    monkeypatch.setattr(email_mod, "send_email", _fake_send_email)
    monkeypatch.setattr(PushNotificationService, "send_to_user", staticmethod(_fake_send_to_user))
    return sent


# --- Seeded program / rubric graph ---

class MockUser:
    def __init__(self, id, name, email, role):
        self.id = id
        self.name = name
        self.email = email
        self.role = role


REFLECTION_STRUCTURE = [
    {"id": "reflection", "label": "Reflection", "type": "textarea", "required": True},
    {"id": "confidence", "label": "Confidence", "type": "rating", "required": True, "min": 1, "max": 5},
    {"id": "agree", "label": "I completed the module", "type": "checkbox", "required": True},
    {"id": "hours", "label": "Hours spent", "type": "number", "min": 0},
    {"id": "track", "label": "Track", "type": "select", "options": ["foundations", "advanced"]},
]

JOURNAL_STRUCTURE = [
    {"id": "entry", "label": "Journal entry", "type": "text", "required": True},
]


def _user(db, key, role):
    user = User(
        id=f"{key}-{uuid.uuid4().hex[:6]}",
        name=key.replace("_", " ").title(),
        email=f"{key}+{uuid.uuid4().hex[:6]}@example.com",
        role=role,
        created_at=datetime.now(UTC),
    )
    db.add(user)
    return user


@pytest.fixture
def graph(db_session):
    """Program with one module, one enrolled client, staff at both levels and a 2-domain rubric.

    The module instructor is also a program instructor, so the submission
    recipient union has to dedupe them.
    """
    db = db_session
    users = {
        "client": _user(db, "client", UserRole.client),
        "other_client": _user(db, "other_client", UserRole.client),
        "instructor": _user(db, "instructor", UserRole.instructor),
        "coach": _user(db, "coach", UserRole.coach),
        "program_instructor": _user(db, "program_instructor", UserRole.instructor),
        "program_coach": _user(db, "program_coach", UserRole.coach),
        "outsider": _user(db, "outsider", UserRole.instructor),
        "admin": _user(db, "admin", UserRole.admin),
    }
    db.flush()

    program = Program(id=str(uuid.uuid4()), name="Leadership Program")
    module = ProgramModule(id=str(uuid.uuid4()), program_id=program.id, title="Module 1: Listening")
    other_module = ProgramModule(id=str(uuid.uuid4()), program_id=None, title="Standalone Module")
    enrollment = ClientEnrollment(id=str(uuid.uuid4()), client_user_id=users["client"].id, program_id=program.id)
    progress = ModuleProgress(id=str(uuid.uuid4()), module_id=module.id, enrollment_id=enrollment.id)
    db.add_all([program, module, other_module, enrollment, progress])

    db.add_all([
        ModuleInstructor(id=str(uuid.uuid4()), module_id=module.id, instructor_id=users["instructor"].id),
        ModuleCoach(id=str(uuid.uuid4()), module_id=module.id, coach_id=users["coach"].id),
        ProgramInstructor(id=str(uuid.uuid4()), program_id=program.id, instructor_id=users["program_instructor"].id),
        ProgramInstructor(id=str(uuid.uuid4()), program_id=program.id, instructor_id=users["instructor"].id),
        ProgramCoach(id=str(uuid.uuid4()), program_id=program.id, coach_id=users["program_coach"].id),
        ModuleInstructor(id=str(uuid.uuid4()), module_id=other_module.id, instructor_id=users["outsider"].id),
    ])

    assessment = CapabilityAssessment(
        id=str(uuid.uuid4()),
        name="Listening Capability",
        rating_scale=5,
        pass_fail_enabled=True,
        pass_fail_threshold=60.0,
        pass_fail_mode=PassFailMode.overall.value,
    )
    domain_a = CapabilityDomain(id=str(uuid.uuid4()), assessment_id=assessment.id, name="Presence", order_index=0)
    domain_b = CapabilityDomain(id=str(uuid.uuid4()), assessment_id=assessment.id, name="Curiosity", order_index=1)
    q1 = CapabilityDomainQuestion(id=str(uuid.uuid4()), domain_id=domain_a.id, question_text="Maintains focus", order_index=0)
    q2 = CapabilityDomainQuestion(id=str(uuid.uuid4()), domain_id=domain_a.id, question_text="Reflects back", order_index=1)
    q3 = CapabilityDomainQuestion(id=str(uuid.uuid4()), domain_id=domain_b.id, question_text="Asks open questions", order_index=0)
    db.add_all([assessment, domain_a, domain_b, q1, q2, q3])

    rubric_type = AssignmentType(
        id=str(uuid.uuid4()),
        name="Listening Reflection",
        structure=REFLECTION_STRUCTURE,
        scoring_assessment_id=assessment.id,
    )
    journal_type = AssignmentType(
        id=str(uuid.uuid4()),
        name="Weekly Journal",
        structure=JOURNAL_STRUCTURE,
        scoring_assessment_id=None,
    )
    db.add_all([rubric_type, journal_type])
    db.commit()

    return SimpleNamespace(
        users={k: MockUser(u.id, u.name, u.email, u.role) for k, u in users.items()},
        program_id=program.id,
        module_id=module.id,
        other_module_id=other_module.id,
        enrollment_id=enrollment.id,
        progress_id=progress.id,
        assessment_id=assessment.id,
        domain_a=domain_a.id,
        domain_b=domain_b.id,
        q1=q1.id,
        q2=q2.id,
        q3=q3.id,
        rubric_type_id=rubric_type.id,
        journal_type_id=journal_type.id,
    )


def complete_responses(**overrides):
    responses = {
        "reflection": "I practised summarising before replying.",
        "confidence": 4,
        "agree": True,
        "hours": 3.5,
        "track": "foundations",
    }
    responses.update(overrides)
    return responses


@pytest.fixture
def caller_for(graph):
    def _make(key: str) -> Caller:
        user = graph.users[key]
        return Caller(id=user.id, roles=frozenset({user.role.value}))
    return _make


@pytest.fixture
def login(graph):
    """Make subsequent requests authenticate as ``graph.users[key]``."""
    def _login(key: str):
        user = graph.users[key]
        app.dependency_overrides[get_current_user] = lambda: user
        return user
    return _login


class RecordingGateway:
    def __init__(self, fail: bool = False):
        self.calls = []
        self.fail = fail

    def notify(self, event_type, recipients, metadata):
        self.calls.append((event_type, set(recipients), dict(metadata)))
        if self.fail:
            raise RuntimeError("queue unavailable")
        return len(set(recipients))


@pytest.fixture
def recorder():
    return RecordingGateway()


@pytest.fixture
def lifecycle(db_session, recorder):
    return AssignmentLifecycle(db_session, recorder)


@pytest.fixture
def gateway():
    return AssignmentNotificationGateway(TestingSessionLocal)


@pytest.fixture
def module_config(db_session, graph):
    """Factory linking a module/type pair to a specific rubric."""
    def _link(assessment_id):
        cfg = ModuleAssignmentConfig(
            id=str(uuid.uuid4()),
            module_id=graph.module_id,
            assignment_type_id=graph.rubric_type_id,
            linked_capability_assessment_id=assessment_id,
        )
        db_session.add(cfg)
        db_session.commit()
        return cfg
    return _link


@pytest.fixture
def full_responses():
    return complete_responses


@pytest.fixture
def failing_recorder():
    return RecordingGateway(fail=True)
