from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime
from typing import Any

from sqlalchemy import and_, delete, exists, func, select, update
from sqlalchemy.orm import Session

from crewboard.db.base import utc_now
from crewboard.db.models import (
    DomainEvent,
    Evaluation,
    JobExchange,
    JobSession,
    JobSessionChecklistProgress,
    JobSessionStepProgress,
    JobStep,
    JobStepChecklistItem,
    JobTemplate,
)
from crewboard.types import StepSpec


class Repository:
    """Query and write helpers for the session engine.

    Writes only stage changes on the unit of work; callers own the
    transaction boundary through ``commit``/``rollback`` so that a status
    change and its event row always land together.
    """

    def __init__(self, session: Session):
        self.session = session

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    # Templates

    def get_template(self, template_id: int) -> JobTemplate | None:
        return self.session.get(JobTemplate, template_id)

    def list_templates(
        self,
        *,
        employer_id: int | None = None,
        status: str | None = None,
        limit: int = 100,
    ) -> list[JobTemplate]:
        statement = select(JobTemplate)
        if employer_id is not None:
            statement = statement.where(JobTemplate.employer_id == employer_id)
        if status is not None:
            statement = statement.where(JobTemplate.status == status)
        statement = statement.order_by(JobTemplate.id.asc()).limit(limit)
        return list(self.session.scalars(statement).all())

    def max_template_number(self, client_code: str) -> int:
        numbers = self.session.scalars(
            select(JobTemplate.template_number).where(JobTemplate.client_code == client_code)
        ).all()
        return max((int(number) for number in numbers), default=0)

    def add_template(self, **values: Any) -> JobTemplate:
        template = JobTemplate(**values)
        self.session.add(template)
        self.session.flush()
        return template

    def add_steps(self, template_id: int, steps: Iterable[StepSpec]) -> list[JobStep]:
        created: list[JobStep] = []
        for step_spec in steps:
            step = JobStep(
                template_id=template_id,
                step_order=step_spec.step_order,
                title=step_spec.title,
                description=step_spec.description,
                products_needed=step_spec.products_needed,
            )
            self.session.add(step)
            self.session.flush()
            for item in step_spec.checklist:
                self.session.add(
                    JobStepChecklistItem(step_id=step.id, item_text=item.item_text, item_order=item.item_order)
                )
            created.append(step)
        self.session.flush()
        return created

    def delete_steps(self, template_id: int) -> None:
        step_ids = select(JobStep.id).where(JobStep.template_id == template_id)
        self.session.execute(delete(JobStepChecklistItem).where(JobStepChecklistItem.step_id.in_(step_ids)))
        self.session.execute(delete(JobStep).where(JobStep.template_id == template_id))

    def list_steps(self, template_id: int) -> list[JobStep]:
        statement = select(JobStep).where(JobStep.template_id == template_id).order_by(JobStep.step_order.asc())
        return list(self.session.scalars(statement).all())

    def list_checklist_items(self, template_id: int) -> list[JobStepChecklistItem]:
        statement = (
            select(JobStepChecklistItem)
            .join(JobStep, JobStep.id == JobStepChecklistItem.step_id)
            .where(JobStep.template_id == template_id)
            .order_by(JobStep.step_order.asc(), JobStepChecklistItem.item_order.asc())
        )
        return list(self.session.scalars(statement).all())

    def get_step(self, step_id: int) -> JobStep | None:
        return self.session.get(JobStep, step_id)

    def get_checklist_item(self, item_id: int) -> JobStepChecklistItem | None:
        return self.session.get(JobStepChecklistItem, item_id)

    def count_steps(self, template_id: int) -> int:
        return self.session.scalar(select(func.count(JobStep.id)).where(JobStep.template_id == template_id)) or 0

    # Sessions

    def get_session(self, session_id: int) -> JobSession | None:
        return self.session.get(JobSession, session_id)

    def reload_session(self, session_id: int) -> JobSession | None:
        statement = select(JobSession).where(JobSession.id == session_id).execution_options(populate_existing=True)
        return self.session.scalar(statement)

    def max_session_sequence(self, template_id: int) -> int:
        value = self.session.scalar(select(func.max(JobSession.sequence)).where(JobSession.template_id == template_id))
        return value or 0

    def covered_dates(self, template_id: int, start: date, end: date) -> set[date]:
        statement = select(JobSession.scheduled_date).where(
            and_(
                JobSession.template_id == template_id,
                JobSession.scheduled_date >= start,
                JobSession.scheduled_date <= end,
                JobSession.status != "CANCELLED",
            )
        )
        return set(self.session.scalars(statement).all())

    def find_live_session_on(self, template_id: int, scheduled_date: date) -> JobSession | None:
        statement = select(JobSession).where(
            and_(
                JobSession.template_id == template_id,
                JobSession.scheduled_date == scheduled_date,
                JobSession.status != "CANCELLED",
            )
        )
        return self.session.scalar(statement)

    def add_session(self, **values: Any) -> JobSession:
        job_session = JobSession(**values)
        self.session.add(job_session)
        self.session.flush()
        return job_session

    def compare_and_set_status(
        self,
        session_id: int,
        *,
        expected: str,
        to_status: str,
        conditions: Iterable[Any] = (),
        **values: Any,
    ) -> bool:
        """Move a session from ``expected`` to ``to_status`` in one guarded UPDATE.

        Returns False, without touching the row, when the stored status is no
        longer ``expected`` (or an extra condition fails).
        """
        statement = (
            update(JobSession)
            .where(JobSession.id == session_id, JobSession.status == expected, *conditions)
            .values(status=to_status, updated_at=utc_now(), **values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(statement)
        return result.rowcount == 1

    def update_session_fields(self, session_id: int, *, allowed_statuses: Iterable[str], **values: Any) -> bool:
        statement = (
            update(JobSession)
            .where(JobSession.id == session_id, JobSession.status.in_(list(allowed_statuses)))
            .values(updated_at=utc_now(), **values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(statement)
        return result.rowcount == 1

    def list_sessions(
        self,
        *,
        template_id: int | None = None,
        employer_id: int | None = None,
        customer_id: int | None = None,
        assigned_to: int | None = None,
        statuses: Iterable[str] | None = None,
        template_status: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        limit: int = 100,
    ) -> list[JobSession]:
        statement = select(JobSession).join(JobTemplate, JobTemplate.id == JobSession.template_id)
        if template_id is not None:
            statement = statement.where(JobSession.template_id == template_id)
        if employer_id is not None:
            statement = statement.where(JobTemplate.employer_id == employer_id)
        if customer_id is not None:
            statement = statement.where(JobTemplate.customer_id == customer_id)
        if assigned_to is not None:
            statement = statement.where(JobSession.assigned_to == assigned_to)
        if statuses is not None:
            statement = statement.where(JobSession.status.in_(list(statuses)))
        if template_status is not None:
            statement = statement.where(JobTemplate.status == template_status)
        if date_from is not None:
            statement = statement.where(JobSession.scheduled_date >= date_from)
        if date_to is not None:
            statement = statement.where(JobSession.scheduled_date <= date_to)
        statement = statement.order_by(JobSession.scheduled_date.asc(), JobSession.id.asc()).limit(limit)
        return list(self.session.scalars(statement).all())

    # Progress

    def ensure_progress_rows(self, session_id: int, template_id: int) -> int:
        existing_steps = set(
            self.session.scalars(
                select(JobSessionStepProgress.step_id).where(JobSessionStepProgress.session_id == session_id)
            ).all()
        )
        existing_items = set(
            self.session.scalars(
                select(JobSessionChecklistProgress.item_id).where(JobSessionChecklistProgress.session_id == session_id)
            ).all()
        )
        created = 0
        for step in self.list_steps(template_id):
            if step.id not in existing_steps:
                self.session.add(JobSessionStepProgress(session_id=session_id, step_id=step.id))
                created += 1
        for item in self.list_checklist_items(template_id):
            if item.id not in existing_items:
                self.session.add(JobSessionChecklistProgress(session_id=session_id, item_id=item.id))
                created += 1
        self.session.flush()
        return created

    def get_step_progress(self, session_id: int, step_id: int) -> JobSessionStepProgress | None:
        statement = select(JobSessionStepProgress).where(
            JobSessionStepProgress.session_id == session_id,
            JobSessionStepProgress.step_id == step_id,
        )
        return self.session.scalar(statement.execution_options(populate_existing=True))

    def get_checklist_progress(self, session_id: int, item_id: int) -> JobSessionChecklistProgress | None:
        statement = select(JobSessionChecklistProgress).where(
            JobSessionChecklistProgress.session_id == session_id,
            JobSessionChecklistProgress.item_id == item_id,
        )
        return self.session.scalar(statement.execution_options(populate_existing=True))

    def _session_in_progress(self, session_id: int) -> Any:
        return exists(select(JobSession.id).where(JobSession.id == session_id, JobSession.status == "IN_PROGRESS"))

    def set_step_progress(self, session_id: int, step_id: int, *, completed: bool, at: datetime) -> bool:
        statement = (
            update(JobSessionStepProgress)
            .where(
                JobSessionStepProgress.session_id == session_id,
                JobSessionStepProgress.step_id == step_id,
                self._session_in_progress(session_id),
            )
            .values(is_completed=completed, completed_at=at if completed else None, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(statement).rowcount == 1

    def set_checklist_progress(self, session_id: int, item_id: int, *, checked: bool, at: datetime) -> bool:
        statement = (
            update(JobSessionChecklistProgress)
            .where(
                JobSessionChecklistProgress.session_id == session_id,
                JobSessionChecklistProgress.item_id == item_id,
                self._session_in_progress(session_id),
            )
            .values(is_checked=checked, checked_at=at if checked else None, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(statement).rowcount == 1

    def add_step_progress(self, session_id: int, step_id: int, *, completed: bool, at: datetime) -> None:
        self.session.add(
            JobSessionStepProgress(
                session_id=session_id,
                step_id=step_id,
                is_completed=completed,
                completed_at=at if completed else None,
            )
        )
        self.session.flush()

    def add_checklist_progress(self, session_id: int, item_id: int, *, checked: bool, at: datetime) -> None:
        self.session.add(
            JobSessionChecklistProgress(
                session_id=session_id,
                item_id=item_id,
                is_checked=checked,
                checked_at=at if checked else None,
            )
        )
        self.session.flush()

    def completed_step_ids(self, session_id: int, template_id: int) -> set[int]:
        statement = (
            select(JobSessionStepProgress.step_id)
            .join(JobStep, JobStep.id == JobSessionStepProgress.step_id)
            .where(
                JobSessionStepProgress.session_id == session_id,
                JobSessionStepProgress.is_completed.is_(True),
                JobStep.template_id == template_id,
            )
        )
        return set(self.session.scalars(statement).all())

    def checked_item_ids(self, session_id: int, template_id: int) -> set[int]:
        statement = (
            select(JobSessionChecklistProgress.item_id)
            .join(JobStepChecklistItem, JobStepChecklistItem.id == JobSessionChecklistProgress.item_id)
            .join(JobStep, JobStep.id == JobStepChecklistItem.step_id)
            .where(
                JobSessionChecklistProgress.session_id == session_id,
                JobSessionChecklistProgress.is_checked.is_(True),
                JobStep.template_id == template_id,
            )
        )
        return set(self.session.scalars(statement).all())

    # Exchanges

    def add_exchange(self, **values: Any) -> JobExchange:
        exchange = JobExchange(**values)
        self.session.add(exchange)
        self.session.flush()
        return exchange

    def get_exchange(self, exchange_id: int) -> JobExchange | None:
        return self.session.get(JobExchange, exchange_id)

    def reload_exchange(self, exchange_id: int) -> JobExchange | None:
        statement = select(JobExchange).where(JobExchange.id == exchange_id).execution_options(populate_existing=True)
        return self.session.scalar(statement)

    def find_open_exchange(self, session_id: int) -> JobExchange | None:
        statement = select(JobExchange).where(JobExchange.session_id == session_id, JobExchange.status == "PENDING")
        return self.session.scalar(statement)

    def set_exchange_requester(self, exchange_id: int, employee_id: int, *, at: datetime) -> bool:
        """Record ``employee_id`` as the taker only while nobody else has asked."""
        statement = (
            update(JobExchange)
            .where(
                JobExchange.id == exchange_id,
                JobExchange.status == "PENDING",
                JobExchange.to_employee_id.is_(None),
            )
            .values(to_employee_id=employee_id, asked_at=at, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(statement).rowcount == 1

    def close_exchange(self, exchange_id: int, *, status: str, decided_by: int, at: datetime) -> bool:
        statement = (
            update(JobExchange)
            .where(JobExchange.id == exchange_id, JobExchange.status == "PENDING")
            .values(status=status, decided_by=decided_by, decided_at=at, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(statement).rowcount == 1

    def reassign_session(self, session_id: int, *, from_employee_id: int, to_employee_id: int) -> bool:
        """Hand an APPROVED session over, provided it still belongs to ``from_employee_id``."""
        statement = (
            update(JobSession)
            .where(
                JobSession.id == session_id,
                JobSession.status == "APPROVED",
                JobSession.assigned_to == from_employee_id,
            )
            .values(assigned_to=to_employee_id, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(statement).rowcount == 1

    def list_exchanges(
        self,
        *,
        statuses: Iterable[str] | None = None,
        employee_id: int | None = None,
        exclude_employee_id: int | None = None,
        open_to_requests: bool | None = None,
        employer_id: int | None = None,
        session_status: str | None = None,
        limit: int = 100,
    ) -> list[JobExchange]:
        statement = select(JobExchange)
        if statuses is not None:
            statement = statement.where(JobExchange.status.in_(list(statuses)))
        if employee_id is not None:
            statement = statement.where(
                (JobExchange.from_employee_id == employee_id) | (JobExchange.to_employee_id == employee_id)
            )
        if exclude_employee_id is not None:
            statement = statement.where(JobExchange.from_employee_id != exclude_employee_id)
        if open_to_requests is True:
            statement = statement.where(JobExchange.to_employee_id.is_(None))
        elif open_to_requests is False:
            statement = statement.where(JobExchange.to_employee_id.is_not(None))
        if employer_id is not None or session_status is not None:
            statement = statement.join(JobSession, JobSession.id == JobExchange.session_id)
            if session_status is not None:
                statement = statement.where(JobSession.status == session_status)
            if employer_id is not None:
                statement = statement.join(JobTemplate, JobTemplate.id == JobSession.template_id).where(
                    JobTemplate.employer_id == employer_id
                )
        statement = statement.order_by(JobExchange.requested_at.desc(), JobExchange.id.desc()).limit(limit)
        return list(self.session.scalars(statement).all())


    # Evaluations

    def get_evaluation_for_session(self, session_id: int) -> Evaluation | None:
        return self.session.scalar(select(Evaluation).where(Evaluation.session_id == session_id))

    def add_evaluation(self, **values: Any) -> Evaluation:
        evaluation = Evaluation(**values)
        self.session.add(evaluation)
        self.session.flush()
        return evaluation

    def list_evaluations(
        self,
        *,
        employee_id: int | None = None,
        customer_id: int | None = None,
        limit: int = 100,
    ) -> list[Evaluation]:
        statement = select(Evaluation)
        if employee_id is not None:
            statement = statement.where(Evaluation.employee_id == employee_id)
        if customer_id is not None:
            statement = statement.where(Evaluation.customer_id == customer_id)
        statement = statement.order_by(Evaluation.submitted_at.desc(), Evaluation.id.desc()).limit(limit)
        return list(self.session.scalars(statement).all())

    def rating_summary(self, employee_id: int) -> tuple[int, float | None]:
        row = self.session.execute(
            select(func.count(Evaluation.id), func.avg(Evaluation.rating)).where(Evaluation.employee_id == employee_id)
        ).one()
        count, average = row
        return int(count or 0), (float(average) if average is not None else None)

    # Events

    def add_event(
        self,
        *,
        kind: str,
        session_id: int | None = None,
        template_id: int | None = None,
        actor_id: int | None = None,
        actor_role: str = "system",
        from_status: str = "",
        to_status: str = "",
        payload_json: dict | None = None,
    ) -> DomainEvent:
        event = DomainEvent(
            kind=kind,
            session_id=session_id,
            template_id=template_id,
            actor_id=actor_id,
            actor_role=actor_role,
            from_status=from_status,
            to_status=to_status,
            payload_json=payload_json or {},
        )
        self.session.add(event)
        self.session.flush()
        return event

    def list_events(
        self,
        *,
        session_id: int | None = None,
        template_id: int | None = None,
        limit: int = 200,
    ) -> list[DomainEvent]:
        statement = select(DomainEvent)
        if session_id is not None:
            statement = statement.where(DomainEvent.session_id == session_id)
        if template_id is not None:
            statement = statement.where(DomainEvent.template_id == template_id)
        statement = statement.order_by(DomainEvent.id.asc()).limit(limit)
        return list(self.session.scalars(statement).all())
