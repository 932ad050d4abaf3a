from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from crewboard.core.service import ServiceBase
from crewboard.db.base import utc_now
from crewboard.db.models import Evaluation
from crewboard.errors import (
    DuplicateEvaluation,
    InvalidRating,
    NotAuthorized,
    SessionNotCompleted,
)
from crewboard.types import Actor

logger = logging.getLogger(__name__)


class EvaluationRecorder(ServiceBase):
    def submit(self, session_id: int, actor: Actor, rating: int, comment: str | None = None) -> Evaluation:
        """Record the customer's rating and move the session to EVALUATED.

        The evaluation insert and the COMPLETED -> EVALUATED update share one
        transaction; if either fails neither is kept.
        """
        if not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 5:
            raise InvalidRating(rating, session_id=session_id)

        job_session = self._load_session(session_id)
        template = self._load_template(job_session.template_id)
        if actor.role != "customer" or template.customer_id is None or template.customer_id != actor.id:
            raise NotAuthorized(
                f"customer {actor.id} is not linked to session {session_id}",
                session_id=session_id,
                actor_id=actor.id,
            )
        self._check_evaluable(session_id, job_session.status)

        comment = comment.strip() if comment else None
        try:
            evaluation = self.repo.add_evaluation(
                session_id=session_id,
                customer_id=actor.id,
                employee_id=job_session.assigned_to,
                rating=rating,
                comment=comment or None,
                submitted_at=utc_now(),
            )
            moved = self.repo.compare_and_set_status(session_id, expected="COMPLETED", to_status="EVALUATED")
        except IntegrityError:
            self.repo.rollback()
            logger.info("Evaluation lost a race session_id=%s", session_id)
            raise DuplicateEvaluation(session_id=session_id) from None
        if not moved:
            self.repo.rollback()
            current = self.repo.reload_session(session_id)
            self._check_evaluable(session_id, current.status)
            raise SessionNotCompleted(session_id=session_id, status=current.status)

        event = self._record(
            "EvaluationSubmitted",
            actor=actor,
            session_id=session_id,
            template_id=template.id,
            from_status="COMPLETED",
            to_status="EVALUATED",
            payload={"evaluation_id": evaluation.id, "rating": rating, "employee_id": job_session.assigned_to},
        )
        self.repo.commit()
        self._publish([event])
        logger.info("Session evaluated session_id=%s rating=%s customer_id=%s", session_id, rating, actor.id)
        return evaluation

    def _check_evaluable(self, session_id: int, status: str) -> None:
        if status == "EVALUATED" or self.repo.get_evaluation_for_session(session_id) is not None:
            raise DuplicateEvaluation(session_id=session_id)
        if status != "COMPLETED":
            raise SessionNotCompleted(session_id=session_id, status=status)

    def list_for_employee(self, employee_id: int, limit: int = 100) -> list[Evaluation]:
        return self.repo.list_evaluations(employee_id=employee_id, limit=limit)

    def list_for_customer(self, customer_id: int, limit: int = 100) -> list[Evaluation]:
        return self.repo.list_evaluations(customer_id=customer_id, limit=limit)

    def rating_summary(self, employee_id: int) -> dict[str, float | int | None]:
        count, average = self.repo.rating_summary(employee_id)
        return {
            "employee_id": employee_id,
            "count": count,
            "average_rating": round(average, 2) if average is not None else None,
        }
