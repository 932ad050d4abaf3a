from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy.orm import Session

from crewboard.config import Settings, get_settings
from crewboard.core.events import EventBus, serialize_event
from crewboard.core.runtime import get_event_bus
from crewboard.db.models import DomainEvent, JobSession, JobTemplate
from crewboard.db.repositories import Repository
from crewboard.errors import NotAuthorized, SessionNotFound, TemplateNotFound
from crewboard.types import Actor

logger = logging.getLogger(__name__)


class ServiceBase:
    def __init__(
        self,
        session: Session,
        *,
        settings: Settings | None = None,
        event_bus: EventBus | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.repo = Repository(session)
        self.event_bus = event_bus or get_event_bus()

    def _load_session(self, session_id: int) -> JobSession:
        job_session = self.repo.get_session(session_id)
        if job_session is None:
            raise SessionNotFound(session_id)
        return job_session

    def _load_template(self, template_id: int) -> JobTemplate:
        template = self.repo.get_template(template_id)
        if template is None:
            raise TemplateNotFound(template_id)
        return template

    def _require_employer_owner(self, actor: Actor, template: JobTemplate, session_id: int | None = None) -> None:
        if actor.role != "employer" or template.employer_id != actor.id:
            raise NotAuthorized(
                f"employer {actor.id} does not own template {template.id}",
                session_id=session_id,
                actor_id=actor.id,
            )

    def _require_assignee(self, actor: Actor, job_session: JobSession) -> None:
        if actor.role != "employee" or job_session.assigned_to != actor.id:
            raise NotAuthorized(
                f"actor {actor.id} is not the employee assigned to session {job_session.id}",
                session_id=job_session.id,
                actor_id=actor.id,
            )

    def _record(
        self,
        kind: str,
        *,
        actor: Actor | None,
        session_id: int | None = None,
        template_id: int | None = None,
        from_status: str = "",
        to_status: str = "",
        payload: dict | None = None,
    ) -> DomainEvent:
        return self.repo.add_event(
            kind=kind,
            session_id=session_id,
            template_id=template_id,
            actor_id=actor.id if actor else None,
            actor_role=actor.role if actor else "system",
            from_status=from_status,
            to_status=to_status,
            payload_json=payload,
        )

    def _publish(self, events: Iterable[DomainEvent]) -> None:
        for event in events:
            delivered = self.event_bus.publish(event.session_id, serialize_event(event))
            logger.debug("Published %s event_id=%s subscribers=%s", event.kind, event.id, delivered)
