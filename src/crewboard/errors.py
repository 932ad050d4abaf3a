from __future__ import annotations

from typing import Any


class CrewboardError(Exception):
    category = "error"

    def __init__(
        self,
        message: str,
        *,
        session_id: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.session_id = session_id
        self.details = details or {}

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "category": self.category,
            "message": self.message,
            "session_id": self.session_id,
            "details": self.details,
        }


class ValidationError(CrewboardError):
    category = "validation"


class ConflictError(CrewboardError):
    category = "conflict"


class StateViolation(CrewboardError):
    category = "state"


class AuthorizationViolation(CrewboardError):
    category = "authorization"


class NotFoundError(CrewboardError):
    category = "not_found"


# Validation


class InvalidRating(ValidationError):
    def __init__(self, rating: int, *, session_id: int | None = None):
        super().__init__(
            f"rating must be between 1 and 5, got {rating}",
            session_id=session_id,
            details={"rating": rating},
        )


class InvalidHorizon(ValidationError):
    def __init__(self, horizon_days: int, maximum: int):
        super().__init__(
            f"horizon must be between 1 and {maximum} days, got {horizon_days}",
            details={"horizon_days": horizon_days, "max_horizon_days": maximum},
        )


class InvalidJobCode(ValidationError):
    pass


class StepNotInTemplate(ValidationError):
    def __init__(self, *, session_id: int, template_id: int, step_id: int | None = None, item_id: int | None = None):
        target = f"step {step_id}" if step_id is not None else f"checklist item {item_id}"
        super().__init__(
            f"{target} does not belong to template {template_id}",
            session_id=session_id,
            details={"template_id": template_id, "step_id": step_id, "item_id": item_id},
        )


# Conflict


class ClaimConflict(ConflictError):
    def __init__(self, *, session_id: int, employee_id: int, assigned_to: int | None):
        super().__init__(
            f"session {session_id} was already claimed",
            session_id=session_id,
            details={"employee_id": employee_id, "assigned_to": assigned_to},
        )


class DuplicateEvaluation(ConflictError):
    def __init__(self, *, session_id: int):
        super().__init__(f"session {session_id} has already been evaluated", session_id=session_id)


class SlotTaken(ConflictError):
    def __init__(self, *, session_id: int | None, template_id: int, scheduled_date: str):
        super().__init__(
            f"template {template_id} already has a session on {scheduled_date}",
            session_id=session_id,
            details={"template_id": template_id, "scheduled_date": scheduled_date},
        )


class JobCodeConflict(ConflictError):
    pass


class ExchangeAlreadyOpen(ConflictError):
    def __init__(self, *, session_id: int, exchange_id: int | None = None):
        super().__init__(
            f"session {session_id} already has an open exchange",
            session_id=session_id,
            details={"exchange_id": exchange_id},
        )


class ExchangeTaken(ConflictError):
    def __init__(self, *, exchange_id: int, session_id: int, employee_id: int, to_employee_id: int | None):
        super().__init__(
            f"exchange {exchange_id} already has a taker",
            session_id=session_id,
            details={"exchange_id": exchange_id, "employee_id": employee_id, "to_employee_id": to_employee_id},
        )


# State


class IllegalTransition(StateViolation):
    def __init__(self, from_status: str, to_status: str, *, session_id: int | None = None, subject: str = "session"):
        super().__init__(
            f"illegal {subject} transition {from_status} -> {to_status}",
            session_id=session_id,
            details={"from": from_status, "to": to_status, "subject": subject},
        )
        self.from_status = from_status
        self.to_status = to_status


class IncompleteSteps(StateViolation):
    def __init__(self, remaining: int, *, session_id: int, steps_total: int):
        super().__init__(
            f"{remaining} of {steps_total} steps are not completed",
            session_id=session_id,
            details={"remaining": remaining, "steps_total": steps_total},
        )
        self.remaining = remaining


class SessionNotActive(StateViolation):
    def __init__(self, *, session_id: int, status: str):
        super().__init__(
            f"session {session_id} is {status}, progress requires IN_PROGRESS",
            session_id=session_id,
            details={"status": status},
        )


class SessionLocked(StateViolation):
    def __init__(self, *, session_id: int, status: str):
        super().__init__(
            f"session {session_id} is {status}; progress can no longer change",
            session_id=session_id,
            details={"status": status},
        )


class SessionNotOffered(StateViolation):
    def __init__(self, *, session_id: int, status: str):
        super().__init__(
            f"session {session_id} is {status}, not OFFERED",
            session_id=session_id,
            details={"status": status},
        )


class SessionNotCompleted(StateViolation):
    def __init__(self, *, session_id: int, status: str):
        super().__init__(
            f"session {session_id} is {status}, not COMPLETED",
            session_id=session_id,
            details={"status": status},
        )


class TemplateNotActive(StateViolation):
    def __init__(self, *, template_id: int, status: str):
        super().__init__(
            f"template {template_id} is {status}, not ACTIVE",
            details={"template_id": template_id, "status": status},
        )


class TemplateNotEditable(StateViolation):
    def __init__(self, *, template_id: int, status: str, action: str = "change its steps"):
        super().__init__(
            f"template {template_id} is {status}; cannot {action}",
            details={"template_id": template_id, "status": status, "action": action},
        )


class NoEligibleDays(StateViolation):
    def __init__(self, *, template_id: int):
        super().__init__(
            f"recurring template {template_id} has no eligible weekdays",
            details={"template_id": template_id},
        )


class StartTooEarly(StateViolation):
    def __init__(self, *, session_id: int, scheduled_date: str, today: str):
        super().__init__(
            f"session {session_id} is scheduled for {scheduled_date}",
            session_id=session_id,
            details={"scheduled_date": scheduled_date, "today": today},
        )


class SessionNotEditable(StateViolation):
    def __init__(self, *, session_id: int, status: str, action: str):
        super().__init__(
            f"session {session_id} is {status}; cannot {action}",
            session_id=session_id,
            details={"status": status, "action": action},
        )


class StepLocked(StateViolation):
    def __init__(self, *, session_id: int, step_id: int):
        super().__init__(
            f"step {step_id} is completed; reopen it before changing its checklist",
            session_id=session_id,
            details={"step_id": step_id},
        )


class ExchangeNotPending(StateViolation):
    def __init__(self, *, exchange_id: int, session_id: int, status: str):
        super().__init__(
            f"exchange {exchange_id} is {status}, not PENDING",
            session_id=session_id,
            details={"exchange_id": exchange_id, "status": status},
        )


# Authorization


class NotAuthorized(AuthorizationViolation):
    def __init__(self, message: str, *, session_id: int | None = None, actor_id: int | None = None):
        super().__init__(message, session_id=session_id, details={"actor_id": actor_id})


class EmployeeNotEligible(AuthorizationViolation):
    def __init__(self, *, session_id: int, employee_id: int, status: str):
        super().__init__(
            f"employee {employee_id} is {status}, not ACTIVE",
            session_id=session_id,
            details={"employee_id": employee_id, "status": status},
        )


# Not found


class SessionNotFound(NotFoundError):
    def __init__(self, session_id: int):
        super().__init__(f"session {session_id} not found", session_id=session_id)


class TemplateNotFound(NotFoundError):
    def __init__(self, template_id: int):
        super().__init__(f"template {template_id} not found", details={"template_id": template_id})


class StepNotFound(NotFoundError):
    def __init__(self, step_id: int, *, session_id: int | None = None):
        super().__init__(f"step {step_id} not found", session_id=session_id, details={"step_id": step_id})


class ChecklistItemNotFound(NotFoundError):
    def __init__(self, item_id: int, *, session_id: int | None = None):
        super().__init__(
            f"checklist item {item_id} not found",
            session_id=session_id,
            details={"item_id": item_id},
        )


class ExchangeNotFound(NotFoundError):
    def __init__(self, exchange_id: int):
        super().__init__(f"exchange {exchange_id} not found", details={"exchange_id": exchange_id})
