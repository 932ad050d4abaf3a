from __future__ import annotations

import os
import tempfile
from collections.abc import Callable
from datetime import date
from pathlib import Path
from types import SimpleNamespace

_TEST_DIR = Path(tempfile.mkdtemp(prefix="crewboard-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DIR / 'crewboard-test.db'}"
os.environ["DATA_DIR"] = str(_TEST_DIR)
os.environ["APP_ENV"] = "test"
os.environ["IMMEDIATE_START"] = "true"

import pytest  # noqa: E402

from crewboard.core.evaluations import EvaluationRecorder  # noqa: E402
from crewboard.core.generator import SessionGenerator  # noqa: E402
from crewboard.core.lifecycle import LifecycleService  # noqa: E402
from crewboard.core.progress import ProgressTracker  # noqa: E402
from crewboard.core.templates import TemplateService  # noqa: E402
from crewboard.db.base import Base  # noqa: E402
from crewboard.db.session import SessionLocal, engine  # noqa: E402
from crewboard.types import Actor, TemplateCreate  # noqa: E402

# A Monday; with MON/WED templates the first generated session falls on it.
WINDOW_START = date(2026, 3, 2)


@pytest.fixture(autouse=True)
def reset_db() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def actors() -> SimpleNamespace:
    return SimpleNamespace(
        employer=Actor(id=1, role="employer"),
        other_employer=Actor(id=2, role="employer"),
        employee=Actor(id=10, role="employee"),
        other_employee=Actor(id=11, role="employee"),
        blocked_employee=Actor(id=12, role="employee", status="BLOCKED"),
        customer=Actor(id=100, role="customer"),
        other_customer=Actor(id=101, role="customer"),
    )


def template_payload(*, steps: int = 3, items_per_step: int = 2, **overrides) -> dict:
    payload = {
        "client_code": "abc",
        "title": "Office cleaning",
        "address": "12 King St W",
        "customer_id": 100,
        "duration_minutes": 120,
        "price_per_hour": 32.5,
        "available_days": ["MON", "WED"],
        "time_window_start": "08:00",
        "time_window_end": "12:00",
        "status": "ACTIVE",
        "steps": [
            {
                "title": f"Step {index}",
                "products_needed": "cloths",
                "checklist": [{"item_text": f"Item {index}.{item}"} for item in range(1, items_per_step + 1)],
            }
            for index in range(1, steps + 1)
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_template(actors: SimpleNamespace) -> Callable[..., int]:
    def _make(**kwargs) -> int:
        with SessionLocal() as db:
            template = TemplateService(db).create_template(
                actors.employer, TemplateCreate.model_validate(template_payload(**kwargs))
            )
            return template.id

    return _make


@pytest.fixture
def make_session(actors: SimpleNamespace, make_template: Callable[..., int]) -> Callable[..., int]:
    """Create a session and walk it forward to ``status`` along the legal path."""

    def _make(status: str = "OFFERED", **template_kwargs) -> int:
        template_id = make_template(**template_kwargs)
        with SessionLocal() as db:
            session_id = SessionGenerator(db).generate(template_id, 7, start=WINDOW_START)[0].id
            if status == "OFFERED":
                return session_id

            lifecycle = LifecycleService(db)
            if status == "CANCELLED":
                lifecycle.cancel_session(session_id, actors.employer, "no longer needed")
                return session_id

            lifecycle.claim_session(session_id, actors.employee)
            if status == "CLAIMED":
                return session_id
            if status == "REFUSED":
                lifecycle.refuse_claim(session_id, actors.employer, "not available")
                return session_id

            lifecycle.approve_claim(session_id, actors.employer)
            if status == "APPROVED":
                return session_id

            lifecycle.start_session(session_id, actors.employee)
            if status == "IN_PROGRESS":
                return session_id

            tracker = ProgressTracker(db)
            for step in tracker.compute_completion(session_id).steps:
                tracker.toggle_step(session_id, step.step_id, True, actors.employee)
            lifecycle.complete_session(session_id, actors.employee)
            if status == "COMPLETED":
                return session_id

            EvaluationRecorder(db).submit(session_id, actors.customer, 4, "fine")
            if status == "EVALUATED":
                return session_id
        raise ValueError(f"unknown status {status}")

    return _make
