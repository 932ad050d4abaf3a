import pytest

import crewboard.errors
from crewboard.api.errors import STATUS_BY_CATEGORY
from crewboard.errors import (
    AuthorizationViolation,
    ClaimConflict,
    ConflictError,
    CrewboardError,
    DuplicateEvaluation,
    EmployeeNotEligible,
    ExchangeAlreadyOpen,
    ExchangeNotFound,
    ExchangeNotPending,
    ExchangeTaken,
    IllegalTransition,
    IncompleteSteps,
    InvalidRating,
    NotAuthorized,
    NotFoundError,
    SessionLocked,
    SessionNotActive,
    SessionNotFound,
    StateViolation,
    ValidationError,
)


@pytest.mark.parametrize(
    "error,base,category",
    [
        (InvalidRating(9, session_id=1), ValidationError, "validation"),
        (ClaimConflict(session_id=1, employee_id=2, assigned_to=3), ConflictError, "conflict"),
        (DuplicateEvaluation(session_id=1), ConflictError, "conflict"),
        (IllegalTransition("OFFERED", "COMPLETED", session_id=1), StateViolation, "state"),
        (IncompleteSteps(2, session_id=1, steps_total=3), StateViolation, "state"),
        (SessionNotActive(session_id=1, status="APPROVED"), StateViolation, "state"),
        (SessionLocked(session_id=1, status="COMPLETED"), StateViolation, "state"),
        (NotAuthorized("nope", session_id=1, actor_id=5), AuthorizationViolation, "authorization"),
        (EmployeeNotEligible(session_id=1, employee_id=5, status="BLOCKED"), AuthorizationViolation, "authorization"),
        (SessionNotFound(1), NotFoundError, "not_found"),
        (ExchangeAlreadyOpen(session_id=1, exchange_id=2), ConflictError, "conflict"),
        (ExchangeTaken(exchange_id=2, session_id=1, employee_id=13, to_employee_id=11), ConflictError, "conflict"),
        (ExchangeNotPending(exchange_id=2, session_id=1, status="DENIED"), StateViolation, "state"),
        (ExchangeNotFound(2), NotFoundError, "not_found"),
    ],
)
def test_error_taxonomy(error: CrewboardError, base: type, category: str) -> None:
    assert isinstance(error, base)
    assert error.category == category
    assert category in STATUS_BY_CATEGORY


def test_error_renders_kind_session_and_counts() -> None:
    error = IncompleteSteps(2, session_id=8, steps_total=5)
    assert error.remaining == 2
    assert error.to_dict() == {
        "kind": "IncompleteSteps",
        "category": "state",
        "message": "2 of 5 steps are not completed",
        "session_id": 8,
        "details": {"remaining": 2, "steps_total": 5},
    }


def test_claim_conflict_names_the_winner() -> None:
    error = ClaimConflict(session_id=4, employee_id=11, assigned_to=10)
    assert error.kind == "ClaimConflict"
    assert error.details == {"employee_id": 11, "assigned_to": 10}


def test_status_codes_per_category() -> None:
    assert STATUS_BY_CATEGORY == {
        "validation": 422,
        "not_found": 404,
        "conflict": 409,
        "state": 409,
        "authorization": 403,
    }


def test_exchange_taken_names_the_taker() -> None:
    error = ExchangeTaken(exchange_id=2, session_id=4, employee_id=13, to_employee_id=11)
    assert error.session_id == 4
    assert error.details == {"exchange_id": 2, "employee_id": 13, "to_employee_id": 11}


def test_errors_module_carries_no_module_docstring() -> None:
    assert crewboard.errors.__doc__ is None
