import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from crewboard.core.exchanges import ExchangeService
from crewboard.core.lifecycle import LifecycleService
from crewboard.db.base import utc_now
from crewboard.db.repositories import Repository
from crewboard.db.session import SessionLocal
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


def _posted(actors, make_session) -> tuple[int, int]:
    session_id = make_session("APPROVED")
    with SessionLocal() as db:
        exchange = ExchangeService(db).post_exchange(session_id, actors.employee, "  family matter ")
        return session_id, exchange.id


def test_assignee_posts_approved_session(actors, make_session) -> None:
    session_id, exchange_id = _posted(actors, make_session)

    with SessionLocal() as db:
        exchange = Repository(db).get_exchange(exchange_id)
        assert exchange.session_id == session_id
        assert exchange.from_employee_id == actors.employee.id
        assert exchange.to_employee_id is None
        assert exchange.reason == "family matter"
        assert exchange.status == "PENDING"
        kinds = [event.kind for event in Repository(db).list_events(session_id=session_id)]
        assert "ExchangePosted" in kinds


@pytest.mark.parametrize("status", ["CLAIMED", "IN_PROGRESS", "COMPLETED"])
def test_only_approved_sessions_can_be_posted(actors, make_session, status: str) -> None:
    session_id = make_session(status)

    with SessionLocal() as db:
        with pytest.raises(SessionNotEditable):
            ExchangeService(db).post_exchange(session_id, actors.employee)


def test_only_the_assignee_can_post(actors, make_session) -> None:
    session_id = make_session("APPROVED")

    with SessionLocal() as db:
        service = ExchangeService(db)
        for actor in (actors.other_employee, actors.employer, actors.customer):
            with pytest.raises(NotAuthorized):
                service.post_exchange(session_id, actor)


def test_second_open_exchange_is_rejected(actors, make_session) -> None:
    session_id, exchange_id = _posted(actors, make_session)

    with SessionLocal() as db:
        with pytest.raises(ExchangeAlreadyOpen) as exc_info:
            ExchangeService(db).post_exchange(session_id, actors.employee)
        assert exc_info.value.details["exchange_id"] == exchange_id


def test_open_exchange_index_rejects_a_second_pending_row(actors, make_session) -> None:
    session_id, _ = _posted(actors, make_session)

    with SessionLocal() as db:
        service = ExchangeService(db)
        service.repo.find_open_exchange = lambda _session_id: None
        with pytest.raises(ExchangeAlreadyOpen):
            service.post_exchange(session_id, actors.employee)

    with SessionLocal() as db:
        assert len(Repository(db).list_exchanges(statuses=["PENDING"])) == 1


def test_colleague_asks_and_repeat_ask_is_idempotent(actors, make_session) -> None:
    session_id, exchange_id = _posted(actors, make_session)

    with SessionLocal() as db:
        service = ExchangeService(db)
        first = service.ask_for_exchange(exchange_id, actors.other_employee)
        assert first.to_employee_id == actors.other_employee.id
        assert first.asked_at is not None
        again = service.ask_for_exchange(exchange_id, actors.other_employee)
        assert again.to_employee_id == actors.other_employee.id
        requested = [e for e in Repository(db).list_events(session_id=session_id) if e.kind == "ExchangeRequested"]
        assert len(requested) == 1


def test_second_colleague_gets_taken(actors, make_session) -> None:
    _, exchange_id = _posted(actors, make_session)

    with SessionLocal() as db:
        service = ExchangeService(db)
        service.ask_for_exchange(exchange_id, actors.other_employee)
        with pytest.raises(ExchangeTaken) as exc_info:
            service.ask_for_exchange(exchange_id, Actor(id=13, role="employee"))
        assert exc_info.value.details["to_employee_id"] == actors.other_employee.id


def test_ask_rejects_poster_blocked_employee_and_other_roles(actors, make_session) -> None:
    _, exchange_id = _posted(actors, make_session)

    with SessionLocal() as db:
        service = ExchangeService(db)
        with pytest.raises(NotAuthorized):
            service.ask_for_exchange(exchange_id, actors.employee)
        with pytest.raises(NotAuthorized):
            service.ask_for_exchange(exchange_id, actors.employer)
        with pytest.raises(EmployeeNotEligible):
            service.ask_for_exchange(exchange_id, actors.blocked_employee)
        with pytest.raises(ExchangeNotFound):
            service.ask_for_exchange(exchange_id + 999, actors.other_employee)
        assert Repository(db).reload_exchange(exchange_id).to_employee_id is None


def test_ask_on_cancelled_session_leaves_exchange_untaken(actors, make_session) -> None:
    session_id, exchange_id = _posted(actors, make_session)

    with SessionLocal() as db:
        LifecycleService(db).cancel_session(session_id, actors.employer, "client closed")
        with pytest.raises(SessionNotEditable):
            ExchangeService(db).ask_for_exchange(exchange_id, actors.other_employee)
        assert Repository(db).reload_exchange(exchange_id).to_employee_id is None


@pytest.mark.parametrize("contenders", [2, 8])
def test_concurrent_asks_have_exactly_one_taker(actors, make_session, contenders: int) -> None:
    _, exchange_id = _posted(actors, make_session)
    barrier = threading.Barrier(contenders)

    def attempt(employee_id: int) -> tuple[str, int]:
        barrier.wait()
        with SessionLocal() as db:
            try:
                ExchangeService(db).ask_for_exchange(exchange_id, Actor(id=employee_id, role="employee"))
            except ExchangeTaken:
                return "taken", employee_id
            return "won", employee_id

    with ThreadPoolExecutor(max_workers=contenders) as pool:
        outcomes = list(pool.map(attempt, range(2000, 2000 + contenders)))

    winners = [employee_id for outcome, employee_id in outcomes if outcome == "won"]
    assert len(winners) == 1
    assert sum(1 for outcome, _ in outcomes if outcome == "taken") == contenders - 1
    with SessionLocal() as db:
        assert Repository(db).get_exchange(exchange_id).to_employee_id == winners[0]


def test_guarded_requester_update_rejects_second_writer(actors, make_session) -> None:
    _, exchange_id = _posted(actors, make_session)

    with SessionLocal() as first, SessionLocal() as second:
        assert Repository(first).set_exchange_requester(exchange_id, 11, at=utc_now())
        first.commit()
        assert not Repository(second).set_exchange_requester(exchange_id, 13, at=utc_now())
        second.rollback()

    with SessionLocal() as db:
        assert Repository(db).get_exchange(exchange_id).to_employee_id == 11


def test_approval_reassigns_the_session(actors, make_session) -> None:
    session_id, exchange_id = _posted(actors, make_session)

    with SessionLocal() as db:
        service = ExchangeService(db)
        service.ask_for_exchange(exchange_id, actors.other_employee)
        decided = service.decide_exchange(exchange_id, actors.employer, approve=True)
        assert decided.status == "APPROVED"
        assert decided.decided_by == actors.employer.id
        assert decided.decided_at is not None

        job_session = Repository(db).reload_session(session_id)
        assert job_session.status == "APPROVED"
        assert job_session.assigned_to == actors.other_employee.id

        lifecycle = LifecycleService(db)
        with pytest.raises(NotAuthorized):
            lifecycle.start_session(session_id, actors.employee)
        assert lifecycle.start_session(session_id, actors.other_employee).status == "IN_PROGRESS"

        kinds = [event.kind for event in Repository(db).list_events(session_id=session_id)]
        assert "ExchangeApproved" in kinds


def test_denial_keeps_the_assignee_and_allows_a_new_post(actors, make_session) -> None:
    session_id, exchange_id = _posted(actors, make_session)

    with SessionLocal() as db:
        service = ExchangeService(db)
        service.ask_for_exchange(exchange_id, actors.other_employee)
        assert service.decide_exchange(exchange_id, actors.employer, approve=False).status == "DENIED"
        assert Repository(db).reload_session(session_id).assigned_to == actors.employee.id

        with pytest.raises(ExchangeNotPending):
            service.decide_exchange(exchange_id, actors.employer, approve=True)
        with pytest.raises(ExchangeNotPending):
            service.ask_for_exchange(exchange_id, Actor(id=13, role="employee"))

        reposted = service.post_exchange(session_id, actors.employee)
        assert reposted.id != exchange_id


def test_only_the_owning_employer_decides(actors, make_session) -> None:
    _, exchange_id = _posted(actors, make_session)

    with SessionLocal() as db:
        service = ExchangeService(db)
        service.ask_for_exchange(exchange_id, actors.other_employee)
        for actor in (actors.other_employer, actors.employee, actors.customer):
            with pytest.raises(NotAuthorized):
                service.decide_exchange(exchange_id, actor, approve=True)
        assert Repository(db).reload_exchange(exchange_id).status == "PENDING"


def test_approval_needs_a_taker(actors, make_session) -> None:
    _, exchange_id = _posted(actors, make_session)

    with SessionLocal() as db:
        with pytest.raises(ValidationError):
            ExchangeService(db).decide_exchange(exchange_id, actors.employer, approve=True)


def test_approval_fails_once_the_session_has_started(actors, make_session) -> None:
    session_id, exchange_id = _posted(actors, make_session)

    with SessionLocal() as db:
        service = ExchangeService(db)
        service.ask_for_exchange(exchange_id, actors.other_employee)
        LifecycleService(db).start_session(session_id, actors.employee)

        with pytest.raises(SessionNotEditable):
            service.decide_exchange(exchange_id, actors.employer, approve=True)

        repo = Repository(db)
        assert repo.reload_exchange(exchange_id).status == "PENDING"
        job_session = repo.reload_session(session_id)
        assert job_session.status == "IN_PROGRESS"
        assert job_session.assigned_to == actors.employee.id


def test_board_and_personal_views(actors, make_session) -> None:
    _, exchange_id = _posted(actors, make_session)

    with SessionLocal() as db:
        service = ExchangeService(db)
        assert [row["id"] for row in service.exchange_board(actors.other_employee.id)] == [exchange_id]
        assert service.exchange_board(actors.employee.id) == []
        assert service.employer_requests(actors.employer.id) == []

        service.ask_for_exchange(exchange_id, actors.other_employee)
        assert service.exchange_board(13) == []
        assert [row["id"] for row in service.employee_exchanges(actors.other_employee.id)] == [exchange_id]
        assert [row["id"] for row in service.employee_exchanges(actors.employee.id)] == [exchange_id]
        requests = service.employer_requests(actors.employer.id)
        assert [row["id"] for row in requests] == [exchange_id]
        assert requests[0]["to_employee_id"] == actors.other_employee.id
        assert service.employer_requests(actors.other_employer.id) == []
