from datetime import date

from fastapi.testclient import TestClient

from crewboard.api.app import create_app
from crewboard.core.evaluations import EvaluationRecorder
from crewboard.core.generator import SessionGenerator
from crewboard.core.lifecycle import LifecycleService
from crewboard.core.progress import ProgressTracker
from crewboard.core.templates import TemplateService
from crewboard.db.models import Evaluation
from crewboard.db.repositories import Repository
from crewboard.db.session import SessionLocal
from crewboard.types import Actor, TemplateCreate

EMPLOYER = Actor(id=1, role="employer")
EMPLOYEE = Actor(id=10, role="employee")
CUSTOMER = Actor(id=100, role="customer")


def _template() -> TemplateCreate:
    return TemplateCreate.model_validate(
        {
            "client_code": "ABC",
            "title": "Weekly office clean",
            "customer_id": CUSTOMER.id,
            "price_per_hour": 28.0,
            "available_days": ["MON", "WED"],
            "status": "ACTIVE",
            "steps": [{"title": "Dust"}, {"title": "Mop"}, {"title": "Bins"}],
        }
    )


def test_template_to_evaluation_through_services() -> None:
    with SessionLocal() as db:
        template = TemplateService(db).create_template(EMPLOYER, _template())
        sessions = SessionGenerator(db).generate(template.id, 14, start=date(2026, 3, 2))
        assert [row.scheduled_date for row in sessions] == [
            date(2026, 3, 2),
            date(2026, 3, 4),
            date(2026, 3, 9),
            date(2026, 3, 11),
        ]
        assert {row.status for row in sessions} == {"OFFERED"}
        other_ids = [row.id for row in sessions[1:]]

        session_id = sessions[0].id
        lifecycle = LifecycleService(db)
        lifecycle.claim_session(session_id, EMPLOYEE)
        lifecycle.approve_claim(session_id, EMPLOYER)
        lifecycle.start_session(session_id, EMPLOYEE)

        tracker = ProgressTracker(db)
        summary = tracker.compute_completion(session_id)
        assert (summary.steps_completed, summary.steps_total) == (0, 3)
        for step in summary.steps:
            summary = tracker.toggle_step(session_id, step.step_id, True, EMPLOYEE)
        assert summary.percentage == 100

        completed = lifecycle.complete_session(session_id, EMPLOYEE)
        assert completed.status == "COMPLETED"

        evaluation = EvaluationRecorder(db).submit(session_id, CUSTOMER, 5, "Spotless")
        assert evaluation.employee_id == EMPLOYEE.id

    with SessionLocal() as db:
        repo = Repository(db)
        assert repo.get_session(session_id).status == "EVALUATED"
        rows = db.query(Evaluation).filter(Evaluation.session_id == session_id).all()
        assert len(rows) == 1
        assert rows[0].rating == 5
        others = [repo.get_session(other_id).status for other_id in other_ids]
        assert others == ["OFFERED", "OFFERED", "OFFERED"]


def test_marketplace_shrinks_as_sessions_are_claimed_over_http() -> None:
    with SessionLocal() as db:
        template = TemplateService(db).create_template(EMPLOYER, _template())
        session_ids = [row.id for row in SessionGenerator(db).generate(template.id, 14, start=date(2026, 3, 2))]

    client = TestClient(create_app())
    employee = {"X-Actor-Id": "10", "X-Actor-Role": "employee"}

    assert len(client.get("/api/marketplace").json()) == 4
    for session_id in session_ids[:2]:
        assert client.post(f"/api/sessions/{session_id}/claim", headers=employee).status_code == 200

    offered = [row["id"] for row in client.get("/api/marketplace").json()]
    assert offered == session_ids[2:]

    schedule = client.get("/api/me/sessions", headers=employee).json()
    assert [row["status"] for row in schedule] == ["CLAIMED", "CLAIMED"]
