from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, time
from typing import Any

from sqlalchemy.exc import IntegrityError

from crewboard.core.claims import ClaimArbitrator
from crewboard.core.generator import local_today
from crewboard.core.service import ServiceBase
from crewboard.db.base import utc_now
from crewboard.db.models import JobSession
from crewboard.errors import (
    IllegalTransition,
    IncompleteSteps,
    SessionNotEditable,
    SlotTaken,
    StartTooEarly,
    ValidationError,
)
from crewboard.types import Actor

logger = logging.getLogger(__name__)

# (from, to) -> role allowed to drive the transition
LEGAL_TRANSITIONS: dict[tuple[str, str], str] = {
    ("OFFERED", "CLAIMED"): "employee",
    ("CLAIMED", "APPROVED"): "employer",
    ("CLAIMED", "REFUSED"): "employer",
    ("APPROVED", "IN_PROGRESS"): "employee",
    ("IN_PROGRESS", "COMPLETED"): "employee",
    ("COMPLETED", "EVALUATED"): "customer",
    ("OFFERED", "CANCELLED"): "employer",
    ("CLAIMED", "CANCELLED"): "employer",
    ("APPROVED", "CANCELLED"): "employer",
}

EVENT_KINDS: dict[str, str] = {
    "CLAIMED": "SessionClaimed",
    "APPROVED": "SessionApproved",
    "REFUSED": "SessionRefused",
    "IN_PROGRESS": "SessionStarted",
    "COMPLETED": "SessionCompleted",
    "EVALUATED": "EvaluationSubmitted",
    "CANCELLED": "SessionCancelled",
}

ALL_STATUSES: tuple[str, ...] = (
    "OFFERED",
    "CLAIMED",
    "APPROVED",
    "IN_PROGRESS",
    "COMPLETED",
    "EVALUATED",
    "REFUSED",
    "CANCELLED",
)
EDITABLE_STATUSES: frozenset[str] = frozenset({"OFFERED", "CLAIMED", "APPROVED"})
PRICEABLE_STATUSES: frozenset[str] = frozenset({"OFFERED", "CLAIMED", "APPROVED", "IN_PROGRESS"})

_MAX_CAS_ATTEMPTS = 3


def is_legal(from_status: str, to_status: str) -> bool:
    return (from_status, to_status) in LEGAL_TRANSITIONS


def check_transition(from_status: str, to_status: str, *, session_id: int | None = None) -> bool:
    """Return False for a same-state re-entry, True for a legal move, raise otherwise."""
    if from_status == to_status:
        return False
    if not is_legal(from_status, to_status):
        raise IllegalTransition(from_status, to_status, session_id=session_id)
    return True


class LifecycleService(ServiceBase):
    def claim_session(self, session_id: int, actor: Actor) -> JobSession:
        arbitrator = ClaimArbitrator(self.session, settings=self.settings, event_bus=self.event_bus)
        return arbitrator.claim(session_id, actor)

    def approve_claim(self, session_id: int, actor: Actor) -> JobSession:
        job_session = self._load_session(session_id)
        template = self._load_template(job_session.template_id)
        self._require_employer_owner(actor, template, session_id)
        return self._apply(job_session, "APPROVED", actor, payload={"employee_id": job_session.assigned_to})

    def refuse_claim(self, session_id: int, actor: Actor, reason: str = "") -> JobSession:
        job_session = self._load_session(session_id)
        template = self._load_template(job_session.template_id)
        self._require_employer_owner(actor, template, session_id)
        reason = reason.strip()
        return self._apply(
            job_session,
            "REFUSED",
            actor,
            values={"refusal_reason": reason},
            payload={"employee_id": job_session.assigned_to, "reason": reason},
        )

    def start_session(self, session_id: int, actor: Actor) -> JobSession:
        job_session = self._load_session(session_id)
        self._require_assignee(actor, job_session)
        if not check_transition(job_session.status, "IN_PROGRESS", session_id=session_id):
            return job_session

        if not self.settings.immediate_start:
            template = self._load_template(job_session.template_id)
            today = local_today(template.timezone)
            if job_session.scheduled_date > today:
                raise StartTooEarly(
                    session_id=session_id,
                    scheduled_date=job_session.scheduled_date.isoformat(),
                    today=today.isoformat(),
                )

        template_id = job_session.template_id
        return self._apply(
            job_session,
            "IN_PROGRESS",
            actor,
            values={"started_at": utc_now()},
            prepare=lambda: self.repo.ensure_progress_rows(session_id, template_id),
        )

    def complete_session(self, session_id: int, actor: Actor) -> JobSession:
        job_session = self._load_session(session_id)
        self._require_assignee(actor, job_session)
        if not check_transition(job_session.status, "COMPLETED", session_id=session_id):
            return job_session

        steps_total = self.repo.count_steps(job_session.template_id)
        steps_done = len(self.repo.completed_step_ids(session_id, job_session.template_id))
        remaining = steps_total - steps_done
        if remaining > 0:
            raise IncompleteSteps(remaining, session_id=session_id, steps_total=steps_total)

        return self._apply(
            job_session,
            "COMPLETED",
            actor,
            values={"completed_at": utc_now()},
            payload={"steps_total": steps_total},
        )

    def cancel_session(self, session_id: int, actor: Actor, reason: str = "") -> JobSession:
        job_session = self._load_session(session_id)
        template = self._load_template(job_session.template_id)
        self._require_employer_owner(actor, template, session_id)
        return self._apply(job_session, "CANCELLED", actor, payload={"reason": reason.strip()})

    def transition(self, session_id: int, to_status: str, actor: Actor, **options: Any) -> JobSession:
        """Drive a session toward ``to_status`` through the matching operation."""
        if to_status not in ALL_STATUSES:
            raise ValidationError(f"unknown session status {to_status!r}", session_id=session_id)

        job_session = self._load_session(session_id)
        # Same-state requests are dispatched too; each handler checks the actor.
        check_transition(job_session.status, to_status, session_id=session_id)

        handlers: dict[str, Callable[..., JobSession]] = {
            "CLAIMED": self.claim_session,
            "APPROVED": self.approve_claim,
            "REFUSED": self.refuse_claim,
            "IN_PROGRESS": self.start_session,
            "COMPLETED": self.complete_session,
            "CANCELLED": self.cancel_session,
        }
        if to_status == "EVALUATED":
            raise ValidationError(
                "evaluations are recorded with a rating through submit_evaluation",
                session_id=session_id,
            )
        if to_status not in handlers:
            raise ValidationError("OFFERED is only set by session generation", session_id=session_id)
        return handlers[to_status](session_id, actor, **options)

    def reschedule_session(
        self,
        session_id: int,
        actor: Actor,
        scheduled_date: date,
        scheduled_time: time | None = None,
    ) -> JobSession:
        job_session = self._load_session(session_id)
        template = self._load_template(job_session.template_id)
        self._require_employer_owner(actor, template, session_id)
        if job_session.status not in EDITABLE_STATUSES:
            raise SessionNotEditable(session_id=session_id, status=job_session.status, action="reschedule")

        clash = self.repo.find_live_session_on(template.id, scheduled_date)
        if clash is not None and clash.id != session_id:
            raise SlotTaken(session_id=session_id, template_id=template.id, scheduled_date=scheduled_date.isoformat())

        previous = {
            "scheduled_date": job_session.scheduled_date.isoformat(),
            "scheduled_time": job_session.scheduled_time.isoformat() if job_session.scheduled_time else None,
        }
        new_time = scheduled_time if scheduled_time is not None else job_session.scheduled_time
        try:
            updated = self.repo.update_session_fields(
                session_id,
                allowed_statuses=EDITABLE_STATUSES,
                scheduled_date=scheduled_date,
                scheduled_time=new_time,
            )
        except IntegrityError as exc:
            self.repo.rollback()
            raise SlotTaken(
                session_id=session_id, template_id=template.id, scheduled_date=scheduled_date.isoformat()
            ) from exc
        if not updated:
            self.repo.rollback()
            current = self.repo.reload_session(session_id)
            raise SessionNotEditable(session_id=session_id, status=current.status, action="reschedule")

        event = self._record(
            "SessionRescheduled",
            actor=actor,
            session_id=session_id,
            template_id=template.id,
            from_status=job_session.status,
            to_status=job_session.status,
            payload={
                "previous": previous,
                "scheduled_date": scheduled_date.isoformat(),
                "scheduled_time": new_time.isoformat() if new_time else None,
            },
        )
        self.repo.commit()
        self._publish([event])
        logger.info("Session rescheduled session_id=%s date=%s", session_id, scheduled_date)
        return self.repo.reload_session(session_id)

    def set_price_override(self, session_id: int, actor: Actor, price: float | None) -> JobSession:
        if price is not None and price <= 0:
            raise ValidationError("price override must be positive", session_id=session_id, details={"price": price})

        job_session = self._load_session(session_id)
        template = self._load_template(job_session.template_id)
        self._require_employer_owner(actor, template, session_id)
        previous = job_session.price_override
        if not self.repo.update_session_fields(session_id, allowed_statuses=PRICEABLE_STATUSES, price_override=price):
            self.repo.rollback()
            current = self.repo.reload_session(session_id)
            raise SessionNotEditable(session_id=session_id, status=current.status, action="change its price")

        event = self._record(
            "SessionRepriced",
            actor=actor,
            session_id=session_id,
            template_id=template.id,
            payload={"previous": previous, "price_override": price},
        )
        self.repo.commit()
        self._publish([event])
        return self.repo.reload_session(session_id)

    def _apply(
        self,
        job_session: JobSession,
        to_status: str,
        actor: Actor,
        *,
        values: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
        prepare: Callable[[], Any] | None = None,
    ) -> JobSession:
        session_id = job_session.id
        template_id = job_session.template_id
        current = job_session.status

        for _ in range(_MAX_CAS_ATTEMPTS):
            if not check_transition(current, to_status, session_id=session_id):
                return job_session
            if self.repo.compare_and_set_status(session_id, expected=current, to_status=to_status, **(values or {})):
                break
            # Someone else moved the row; re-read and re-validate against the fresh status.
            self.repo.rollback()
            job_session = self.repo.reload_session(session_id)
            current = job_session.status
        else:
            raise IllegalTransition(current, to_status, session_id=session_id)

        if prepare is not None:
            prepare()
        event = self._record(
            EVENT_KINDS[to_status],
            actor=actor,
            session_id=session_id,
            template_id=template_id,
            from_status=current,
            to_status=to_status,
            payload=payload,
        )
        self.repo.commit()
        self._publish([event])
        logger.info(
            "Session transition session_id=%s %s->%s actor=%s:%s",
            session_id,
            current,
            to_status,
            actor.role,
            actor.id,
        )
        return self.repo.reload_session(session_id)
