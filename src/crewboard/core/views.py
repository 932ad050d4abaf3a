from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from typing import Any

from crewboard.core.events import serialize_event
from crewboard.core.progress import ProgressTracker
from crewboard.core.service import ServiceBase
from crewboard.core.templates import serialize_template
from crewboard.db.models import Evaluation, JobSession, JobTemplate
from crewboard.types import CompletionSummary


def effective_price(job_session: JobSession, template: JobTemplate) -> float | None:
    if job_session.price_override is not None:
        return job_session.price_override
    return template.price_per_hour


def serialize_completion(summary: CompletionSummary) -> dict[str, Any]:
    data = summary.model_dump()
    data["percentage"] = summary.percentage
    data["items_percentage"] = summary.items_percentage
    data["remaining_steps"] = summary.remaining_steps
    return data


def serialize_session(
    job_session: JobSession,
    template: JobTemplate,
    completion: CompletionSummary | None = None,
) -> dict[str, Any]:
    data = {
        "id": job_session.id,
        "template_id": job_session.template_id,
        "session_code": job_session.session_code,
        "title": template.title,
        "address": template.address,
        "employer_id": template.employer_id,
        "customer_id": template.customer_id,
        "scheduled_date": job_session.scheduled_date.isoformat(),
        "scheduled_time": job_session.scheduled_time.isoformat() if job_session.scheduled_time else None,
        "assigned_to": job_session.assigned_to,
        "status": job_session.status,
        "price_override": job_session.price_override,
        "effective_price": effective_price(job_session, template),
        "refusal_reason": job_session.refusal_reason or None,
        "claimed_at": job_session.claimed_at.isoformat() if job_session.claimed_at else None,
        "started_at": job_session.started_at.isoformat() if job_session.started_at else None,
        "completed_at": job_session.completed_at.isoformat() if job_session.completed_at else None,
        "completion": None,
    }
    if completion is not None:
        data["completion"] = serialize_completion(completion)
    return data


class SessionViews(ServiceBase):
    """Read-only projections over sessions; nothing here mutates state."""

    def session_detail(self, session_id: int) -> dict[str, Any]:
        job_session = self._load_session(session_id)
        template = self._load_template(job_session.template_id)
        completion = ProgressTracker(self.session, settings=self.settings, event_bus=self.event_bus).compute_completion(
            session_id
        )
        data = serialize_session(job_session, template, completion)
        data["template"] = serialize_template(template)
        evaluation = self.repo.get_evaluation_for_session(session_id)
        data["evaluation"] = serialize_evaluation(evaluation) if evaluation else None
        return data

    def marketplace(
        self,
        *,
        date_from: date | None = None,
        date_to: date | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        rows = self.repo.list_sessions(
            statuses=["OFFERED"],
            template_status="ACTIVE",
            date_from=date_from,
            date_to=date_to,
            limit=limit,
        )
        return self._serialize_many(rows)

    def employee_schedule(
        self,
        employee_id: int,
        *,
        statuses: Iterable[str] | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        return self._serialize_many(self.repo.list_sessions(assigned_to=employee_id, statuses=statuses, limit=limit))

    def employer_board(
        self,
        employer_id: int,
        *,
        statuses: Iterable[str] | None = None,
        template_id: int | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        rows = self.repo.list_sessions(
            employer_id=employer_id,
            template_id=template_id,
            statuses=statuses,
            limit=limit,
        )
        return self._serialize_many(rows)

    def customer_sessions(
        self,
        customer_id: int,
        *,
        statuses: Iterable[str] | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        return self._serialize_many(self.repo.list_sessions(customer_id=customer_id, statuses=statuses, limit=limit))

    def event_log(self, session_id: int, limit: int = 200) -> list[dict[str, Any]]:
        self._load_session(session_id)
        return [serialize_event(row) for row in self.repo.list_events(session_id=session_id, limit=limit)]

    def template_event_log(self, template_id: int, limit: int = 200) -> list[dict[str, Any]]:
        self._load_template(template_id)
        return [serialize_event(row) for row in self.repo.list_events(template_id=template_id, limit=limit)]

    def _serialize_many(self, rows: list[JobSession]) -> list[dict[str, Any]]:
        templates: dict[int, JobTemplate] = {}
        result = []
        for row in rows:
            if row.template_id not in templates:
                templates[row.template_id] = self._load_template(row.template_id)
            result.append(serialize_session(row, templates[row.template_id]))
        return result


def serialize_evaluation(evaluation: Evaluation) -> dict[str, Any]:
    return {
        "id": evaluation.id,
        "session_id": evaluation.session_id,
        "customer_id": evaluation.customer_id,
        "employee_id": evaluation.employee_id,
        "rating": evaluation.rating,
        "comment": evaluation.comment,
        "submitted_at": evaluation.submitted_at.isoformat() if evaluation.submitted_at else None,
    }
