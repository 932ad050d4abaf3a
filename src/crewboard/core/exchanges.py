from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from crewboard.core.locks import SESSION_LOCKS
from crewboard.core.service import ServiceBase
from crewboard.db.base import utc_now
from crewboard.db.models import JobExchange
from crewboard.errors import (
    EmployeeNotEligible,
    ExchangeAlreadyOpen,
    ExchangeNotFound,
    ExchangeNotPending,
    ExchangeTaken,
    NotAuthorized,
    SessionNotEditable,
    ValidationError,
)
from crewboard.types import Actor

logger = logging.getLogger(__name__)

EXCHANGE_STATUSES: tuple[str, ...] = ("PENDING", "APPROVED", "DENIED")


def serialize_exchange(exchange: JobExchange) -> dict[str, Any]:
    return {
        "id": exchange.id,
        "session_id": exchange.session_id,
        "from_employee_id": exchange.from_employee_id,
        "to_employee_id": exchange.to_employee_id,
        "reason": exchange.reason or None,
        "status": exchange.status,
        "requested_at": exchange.requested_at.isoformat() if exchange.requested_at else None,
        "asked_at": exchange.asked_at.isoformat() if exchange.asked_at else None,
        "decided_at": exchange.decided_at.isoformat() if exchange.decided_at else None,
        "decided_by": exchange.decided_by,
    }


class ExchangeService(ServiceBase):
    """Hands an APPROVED session from its assignee to a colleague.

    The assignee posts the session, the first colleague to ask becomes the
    taker, and the owning employer approves or denies the swap. Asking and
    deciding are conditional UPDATEs, so only one colleague can become the
    taker and a session that has started can no longer change hands.
    """

    def post_exchange(self, session_id: int, actor: Actor, reason: str = "") -> JobExchange:
        job_session = self._load_session(session_id)
        self._require_assignee(actor, job_session)
        if job_session.status != "APPROVED":
            raise SessionNotEditable(session_id=session_id, status=job_session.status, action="post it for exchange")

        existing = self.repo.find_open_exchange(session_id)
        if existing is not None:
            raise ExchangeAlreadyOpen(session_id=session_id, exchange_id=existing.id)

        reason = reason.strip()
        try:
            exchange = self.repo.add_exchange(
                session_id=session_id,
                from_employee_id=actor.id,
                reason=reason,
                status="PENDING",
                requested_at=utc_now(),
            )
        except IntegrityError:
            self.repo.rollback()
            raise ExchangeAlreadyOpen(session_id=session_id) from None

        event = self._record(
            "ExchangePosted",
            actor=actor,
            session_id=session_id,
            template_id=job_session.template_id,
            payload={"exchange_id": exchange.id, "from_employee_id": actor.id, "reason": reason},
        )
        self.repo.commit()
        self._publish([event])
        logger.info("Exchange posted exchange_id=%s session_id=%s", exchange.id, session_id)
        return self.repo.reload_exchange(exchange.id)

    def ask_for_exchange(self, exchange_id: int, actor: Actor) -> JobExchange:
        exchange = self._load_exchange(exchange_id)
        session_id = exchange.session_id
        if actor.role != "employee":
            raise NotAuthorized("only employees can ask for an exchange", session_id=session_id, actor_id=actor.id)
        if actor.id == exchange.from_employee_id:
            raise NotAuthorized(
                f"employee {actor.id} posted exchange {exchange_id}",
                session_id=session_id,
                actor_id=actor.id,
            )
        if actor.status != "ACTIVE":
            raise EmployeeNotEligible(session_id=session_id, employee_id=actor.id, status=actor.status)

        with SESSION_LOCKS.hold(("exchange", exchange_id)):
            try:
                won = self.repo.set_exchange_requester(exchange_id, actor.id, at=utc_now())
                if not won:
                    self.repo.rollback()
                    return self._resolve_lost_ask(exchange_id, actor)

                job_session = self.repo.reload_session(session_id)
                if job_session.status != "APPROVED":
                    self.repo.rollback()
                    raise SessionNotEditable(session_id=session_id, status=job_session.status, action="be exchanged")

                event = self._record(
                    "ExchangeRequested",
                    actor=actor,
                    session_id=session_id,
                    template_id=job_session.template_id,
                    payload={"exchange_id": exchange_id, "to_employee_id": actor.id},
                )
                self.repo.commit()
            except SQLAlchemyError:
                self.repo.rollback()
                logger.exception("Exchange ask failed exchange_id=%s employee_id=%s", exchange_id, actor.id)
                raise

        self._publish([event])
        logger.info("Exchange requested exchange_id=%s employee_id=%s", exchange_id, actor.id)
        return self.repo.reload_exchange(exchange_id)

    def decide_exchange(self, exchange_id: int, actor: Actor, approve: bool) -> JobExchange:
        exchange = self._load_exchange(exchange_id)
        session_id = exchange.session_id
        job_session = self._load_session(session_id)
        template = self._load_template(job_session.template_id)
        self._require_employer_owner(actor, template, session_id)
        if exchange.status != "PENDING":
            raise ExchangeNotPending(exchange_id=exchange_id, session_id=session_id, status=exchange.status)
        if approve and exchange.to_employee_id is None:
            raise ValidationError(
                f"exchange {exchange_id} has no employee asking for it",
                session_id=session_id,
                details={"exchange_id": exchange_id},
            )

        status = "APPROVED" if approve else "DENIED"
        from_employee_id = exchange.from_employee_id
        to_employee_id = exchange.to_employee_id
        if not self.repo.close_exchange(exchange_id, status=status, decided_by=actor.id, at=utc_now()):
            self.repo.rollback()
            current = self.repo.reload_exchange(exchange_id)
            raise ExchangeNotPending(exchange_id=exchange_id, session_id=session_id, status=current.status)

        if approve and not self.repo.reassign_session(
            session_id, from_employee_id=from_employee_id, to_employee_id=to_employee_id
        ):
            self.repo.rollback()
            current_session = self.repo.reload_session(session_id)
            raise SessionNotEditable(session_id=session_id, status=current_session.status, action="reassign it")

        event = self._record(
            "ExchangeApproved" if approve else "ExchangeDenied",
            actor=actor,
            session_id=session_id,
            template_id=template.id,
            payload={
                "exchange_id": exchange_id,
                "from_employee_id": from_employee_id,
                "to_employee_id": to_employee_id,
            },
        )
        self.repo.commit()
        self._publish([event])
        logger.info("Exchange %s exchange_id=%s session_id=%s", status.lower(), exchange_id, session_id)
        return self.repo.reload_exchange(exchange_id)

    # Views

    def exchange_board(self, employee_id: int, limit: int = 100) -> list[dict[str, Any]]:
        """Open exchanges another employee could still ask for."""
        rows = self.repo.list_exchanges(
            statuses=["PENDING"],
            exclude_employee_id=employee_id,
            open_to_requests=True,
            session_status="APPROVED",
            limit=limit,
        )
        return [serialize_exchange(row) for row in rows]

    def employee_exchanges(self, employee_id: int, limit: int = 100) -> list[dict[str, Any]]:
        rows = self.repo.list_exchanges(employee_id=employee_id, limit=limit)
        return [serialize_exchange(row) for row in rows]

    def employer_requests(self, employer_id: int, limit: int = 100) -> list[dict[str, Any]]:
        rows = self.repo.list_exchanges(
            statuses=["PENDING"],
            open_to_requests=False,
            employer_id=employer_id,
            limit=limit,
        )
        return [serialize_exchange(row) for row in rows]

    def _load_exchange(self, exchange_id: int) -> JobExchange:
        exchange = self.repo.get_exchange(exchange_id)
        if exchange is None:
            raise ExchangeNotFound(exchange_id)
        return exchange

    def _resolve_lost_ask(self, exchange_id: int, actor: Actor) -> JobExchange:
        current = self.repo.reload_exchange(exchange_id)
        if current.status == "PENDING" and current.to_employee_id == actor.id:
            return current
        if current.status != "PENDING":
            raise ExchangeNotPending(exchange_id=exchange_id, session_id=current.session_id, status=current.status)
        logger.info(
            "Exchange ask lost exchange_id=%s employee_id=%s taker=%s",
            exchange_id,
            actor.id,
            current.to_employee_id,
        )
        raise ExchangeTaken(
            exchange_id=exchange_id,
            session_id=current.session_id,
            employee_id=actor.id,
            to_employee_id=current.to_employee_id,
        )
