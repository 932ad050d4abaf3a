from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from crewboard.core.locks import SESSION_LOCKS
from crewboard.core.service import ServiceBase
from crewboard.db.base import utc_now
from crewboard.db.models import JobSession
from crewboard.errors import ClaimConflict, EmployeeNotEligible, NotAuthorized, SessionNotOffered
from crewboard.types import Actor

logger = logging.getLogger(__name__)

# Statuses in which a session belongs to the employee who won its claim.
TAKEN_STATUSES: frozenset[str] = frozenset({"CLAIMED", "APPROVED", "IN_PROGRESS", "COMPLETED", "EVALUATED"})


class ClaimArbitrator(ServiceBase):
    """Resolves competing claims on an OFFERED session to a single winner.

    Claims for the same session are serialized in-process by a per-session
    lock, and the write itself is a conditional UPDATE that only matches while
    the row is still OFFERED and unassigned, so separate processes sharing the
    database also see exactly one winner.
    """

    def claim(self, session_id: int, actor: Actor) -> JobSession:
        if actor.role != "employee":
            raise NotAuthorized("only employees can claim sessions", session_id=session_id, actor_id=actor.id)

        self._load_session(session_id)
        if actor.status != "ACTIVE":
            raise EmployeeNotEligible(session_id=session_id, employee_id=actor.id, status=actor.status)

        with SESSION_LOCKS.hold(session_id):
            try:
                won = self.repo.compare_and_set_status(
                    session_id,
                    expected="OFFERED",
                    to_status="CLAIMED",
                    conditions=[JobSession.assigned_to.is_(None)],
                    assigned_to=actor.id,
                    claimed_at=utc_now(),
                )
                if not won:
                    self.repo.rollback()
                    return self._resolve_lost_claim(session_id, actor)

                event = self._record(
                    "SessionClaimed",
                    actor=actor,
                    session_id=session_id,
                    template_id=self.repo.get_session(session_id).template_id,
                    from_status="OFFERED",
                    to_status="CLAIMED",
                    payload={"employee_id": actor.id},
                )
                self.repo.commit()
            except SQLAlchemyError:
                self.repo.rollback()
                logger.exception("Claim failed session_id=%s employee_id=%s", session_id, actor.id)
                raise

        self._publish([event])
        logger.info("Session claimed session_id=%s employee_id=%s", session_id, actor.id)
        return self.repo.reload_session(session_id)

    def _resolve_lost_claim(self, session_id: int, actor: Actor) -> JobSession:
        current = self.repo.reload_session(session_id)
        if current.status == "CLAIMED" and current.assigned_to == actor.id:
            return current
        if current.status in TAKEN_STATUSES and current.assigned_to not in (None, actor.id):
            logger.info(
                "Claim lost session_id=%s employee_id=%s winner=%s",
                session_id,
                actor.id,
                current.assigned_to,
            )
            raise ClaimConflict(session_id=session_id, employee_id=actor.id, assigned_to=current.assigned_to)
        raise SessionNotOffered(session_id=session_id, status=current.status)
