from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from crewboard.api.deps import get_actor, get_db
from crewboard.api.schemas import (
    ChecklistToggleRequest,
    CompletionResponse,
    EvaluationRequest,
    EvaluationResponse,
    EventResponse,
    ExchangeResponse,
    GenerateRequest,
    PriceOverrideRequest,
    RatingSummaryResponse,
    ReasonRequest,
    RescheduleRequest,
    SessionResponse,
    StepsReplaceRequest,
    StepToggleRequest,
    TemplateDetailResponse,
    TemplateResponse,
    TransitionRequest,
)
from crewboard.config import get_settings
from crewboard.core.evaluations import EvaluationRecorder
from crewboard.core.events import ALL_SESSIONS
from crewboard.core.exchanges import ExchangeService, serialize_exchange
from crewboard.core.generator import SessionGenerator
from crewboard.core.lifecycle import LifecycleService
from crewboard.core.progress import ProgressTracker
from crewboard.core.runtime import get_event_bus
from crewboard.core.templates import TemplateService, serialize_template
from crewboard.core.views import SessionViews, serialize_completion, serialize_evaluation
from crewboard.errors import NotAuthorized
from crewboard.types import Actor, SessionStatus, TemplateCreate, TemplateUpdate

router = APIRouter(prefix="/api", tags=["api"])


def _session_response(db: Session, session_id: int) -> SessionResponse:
    return SessionResponse.model_validate(SessionViews(db).session_detail(session_id))


# Templates


@router.post("/templates", response_model=TemplateDetailResponse)
def create_template(
    payload: TemplateCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> TemplateDetailResponse:
    service = TemplateService(db)
    template = service.create_template(actor, payload)
    return TemplateDetailResponse.model_validate(service.get_template_detail(template.id))


@router.get("/templates", response_model=list[TemplateResponse])
def list_templates(
    employer_id: int | None = Query(default=None),
    status: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[TemplateResponse]:
    rows = TemplateService(db).list_templates(employer_id=employer_id, status=status)
    return [TemplateResponse.model_validate(serialize_template(row)) for row in rows]


@router.get("/templates/{template_id}", response_model=TemplateDetailResponse)
def get_template(template_id: int, db: Session = Depends(get_db)) -> TemplateDetailResponse:
    return TemplateDetailResponse.model_validate(TemplateService(db).get_template_detail(template_id))


@router.patch("/templates/{template_id}", response_model=TemplateDetailResponse)
def update_template(
    template_id: int,
    payload: TemplateUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> TemplateDetailResponse:
    service = TemplateService(db)
    service.update_template(template_id, actor, payload)
    return TemplateDetailResponse.model_validate(service.get_template_detail(template_id))


@router.put("/templates/{template_id}/steps", response_model=TemplateDetailResponse)
def replace_steps(
    template_id: int,
    payload: StepsReplaceRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> TemplateDetailResponse:
    service = TemplateService(db)
    service.replace_steps(template_id, actor, payload.steps)
    return TemplateDetailResponse.model_validate(service.get_template_detail(template_id))


@router.post("/templates/{template_id}/activate", response_model=TemplateResponse)
def activate_template(
    template_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> TemplateResponse:
    template = TemplateService(db).activate_template(template_id, actor)
    return TemplateResponse.model_validate(serialize_template(template))


@router.post("/templates/{template_id}/archive", response_model=TemplateResponse)
def archive_template(
    template_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> TemplateResponse:
    template = TemplateService(db).archive_template(template_id, actor)
    return TemplateResponse.model_validate(serialize_template(template))


@router.post("/templates/{template_id}/generate", response_model=list[SessionResponse])
def generate_sessions(
    template_id: int,
    payload: GenerateRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[SessionResponse]:
    created = SessionGenerator(db).generate(template_id, payload.horizon_days, start=payload.start, actor=actor)
    views = SessionViews(db)
    return [SessionResponse.model_validate(views.session_detail(row.id)) for row in created]


@router.get("/templates/{template_id}/events", response_model=list[EventResponse])
def get_template_events(template_id: int, db: Session = Depends(get_db)) -> list[EventResponse]:
    return [EventResponse.model_validate(row) for row in SessionViews(db).template_event_log(template_id)]


# Session queries


@router.get("/marketplace", response_model=list[SessionResponse])
def marketplace(
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[SessionResponse]:
    rows = SessionViews(db).marketplace(date_from=date_from, date_to=date_to)
    return [SessionResponse.model_validate(row) for row in rows]


@router.get("/me/sessions", response_model=list[SessionResponse])
def my_sessions(
    status: list[SessionStatus] | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[SessionResponse]:
    views = SessionViews(db)
    if actor.role == "employee":
        rows = views.employee_schedule(actor.id, statuses=status)
    elif actor.role == "employer":
        rows = views.employer_board(actor.id, statuses=status)
    else:
        rows = views.customer_sessions(actor.id, statuses=status)
    return [SessionResponse.model_validate(row) for row in rows]


@router.get("/sessions/{session_id}", response_model=SessionResponse)
def get_session(session_id: int, db: Session = Depends(get_db)) -> SessionResponse:
    return _session_response(db, session_id)


@router.get("/sessions/{session_id}/completion", response_model=CompletionResponse)
def get_completion(session_id: int, db: Session = Depends(get_db)) -> CompletionResponse:
    summary = ProgressTracker(db).compute_completion(session_id)
    return CompletionResponse.model_validate(serialize_completion(summary))


@router.get("/sessions/{session_id}/events", response_model=list[EventResponse])
def get_session_events(session_id: int, db: Session = Depends(get_db)) -> list[EventResponse]:
    return [EventResponse.model_validate(row) for row in SessionViews(db).event_log(session_id)]


# Session lifecycle


@router.post("/sessions/{session_id}/claim", response_model=SessionResponse)
def claim_session(
    session_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> SessionResponse:
    LifecycleService(db).claim_session(session_id, actor)
    return _session_response(db, session_id)


@router.post("/sessions/{session_id}/approve", response_model=SessionResponse)
def approve_claim(
    session_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> SessionResponse:
    LifecycleService(db).approve_claim(session_id, actor)
    return _session_response(db, session_id)


@router.post("/sessions/{session_id}/refuse", response_model=SessionResponse)
def refuse_claim(
    session_id: int,
    payload: ReasonRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> SessionResponse:
    LifecycleService(db).refuse_claim(session_id, actor, payload.reason)
    return _session_response(db, session_id)


@router.post("/sessions/{session_id}/start", response_model=SessionResponse)
def start_session(
    session_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> SessionResponse:
    LifecycleService(db).start_session(session_id, actor)
    return _session_response(db, session_id)


@router.post("/sessions/{session_id}/complete", response_model=SessionResponse)
def complete_session(
    session_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> SessionResponse:
    LifecycleService(db).complete_session(session_id, actor)
    return _session_response(db, session_id)


@router.post("/sessions/{session_id}/cancel", response_model=SessionResponse)
def cancel_session(
    session_id: int,
    payload: ReasonRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> SessionResponse:
    LifecycleService(db).cancel_session(session_id, actor, payload.reason)
    return _session_response(db, session_id)


@router.post("/sessions/{session_id}/transition", response_model=SessionResponse)
def transition_session(
    session_id: int,
    payload: TransitionRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> SessionResponse:
    options = {}
    if payload.reason is not None and payload.to_status in {"REFUSED", "CANCELLED"}:
        options["reason"] = payload.reason
    LifecycleService(db).transition(session_id, payload.to_status, actor, **options)
    return _session_response(db, session_id)


@router.post("/sessions/{session_id}/reschedule", response_model=SessionResponse)
def reschedule_session(
    session_id: int,
    payload: RescheduleRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> SessionResponse:
    LifecycleService(db).reschedule_session(session_id, actor, payload.scheduled_date, payload.scheduled_time)
    return _session_response(db, session_id)


@router.post("/sessions/{session_id}/price", response_model=SessionResponse)
def set_price_override(
    session_id: int,
    payload: PriceOverrideRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> SessionResponse:
    LifecycleService(db).set_price_override(session_id, actor, payload.price)
    return _session_response(db, session_id)


# Progress


@router.post("/sessions/{session_id}/steps/{step_id}", response_model=CompletionResponse)
def toggle_step(
    session_id: int,
    step_id: int,
    payload: StepToggleRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> CompletionResponse:
    summary = ProgressTracker(db).toggle_step(session_id, step_id, payload.completed, actor)
    return CompletionResponse.model_validate(serialize_completion(summary))


@router.post("/sessions/{session_id}/checklist/{item_id}", response_model=CompletionResponse)
def toggle_checklist_item(
    session_id: int,
    item_id: int,
    payload: ChecklistToggleRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> CompletionResponse:
    summary = ProgressTracker(db).toggle_checklist_item(session_id, item_id, payload.checked, actor)
    return CompletionResponse.model_validate(serialize_completion(summary))


# Evaluations


@router.post("/sessions/{session_id}/evaluation", response_model=EvaluationResponse)
def submit_evaluation(
    session_id: int,
    payload: EvaluationRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> EvaluationResponse:
    evaluation = EvaluationRecorder(db).submit(session_id, actor, payload.rating, payload.comment)
    return EvaluationResponse.model_validate(serialize_evaluation(evaluation))


@router.get("/employees/{employee_id}/evaluations", response_model=RatingSummaryResponse)
def employee_evaluations(employee_id: int, db: Session = Depends(get_db)) -> RatingSummaryResponse:
    recorder = EvaluationRecorder(db)
    summary = recorder.rating_summary(employee_id)
    summary["evaluations"] = [serialize_evaluation(row) for row in recorder.list_for_employee(employee_id)]
    return RatingSummaryResponse.model_validate(summary)


# Exchanges


@router.post("/sessions/{session_id}/exchange", response_model=ExchangeResponse)
def post_exchange(
    session_id: int,
    payload: ReasonRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> ExchangeResponse:
    exchange = ExchangeService(db).post_exchange(session_id, actor, payload.reason)
    return ExchangeResponse.model_validate(serialize_exchange(exchange))


@router.get("/exchanges/board", response_model=list[ExchangeResponse])
def exchange_board(db: Session = Depends(get_db), actor: Actor = Depends(get_actor)) -> list[ExchangeResponse]:
    if actor.role != "employee":
        raise NotAuthorized("only employees can browse the exchange board", actor_id=actor.id)
    return [ExchangeResponse.model_validate(row) for row in ExchangeService(db).exchange_board(actor.id)]


@router.get("/me/exchanges", response_model=list[ExchangeResponse])
def my_exchanges(db: Session = Depends(get_db), actor: Actor = Depends(get_actor)) -> list[ExchangeResponse]:
    service = ExchangeService(db)
    if actor.role == "employee":
        rows = service.employee_exchanges(actor.id)
    elif actor.role == "employer":
        rows = service.employer_requests(actor.id)
    else:
        raise NotAuthorized("customers take no part in exchanges", actor_id=actor.id)
    return [ExchangeResponse.model_validate(row) for row in rows]


@router.post("/exchanges/{exchange_id}/ask", response_model=ExchangeResponse)
def ask_for_exchange(
    exchange_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> ExchangeResponse:
    exchange = ExchangeService(db).ask_for_exchange(exchange_id, actor)
    return ExchangeResponse.model_validate(serialize_exchange(exchange))


@router.post("/exchanges/{exchange_id}/approve", response_model=ExchangeResponse)
def approve_exchange(
    exchange_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> ExchangeResponse:
    exchange = ExchangeService(db).decide_exchange(exchange_id, actor, approve=True)
    return ExchangeResponse.model_validate(serialize_exchange(exchange))


@router.post("/exchanges/{exchange_id}/deny", response_model=ExchangeResponse)
def deny_exchange(
    exchange_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> ExchangeResponse:
    exchange = ExchangeService(db).decide_exchange(exchange_id, actor, approve=False)
    return ExchangeResponse.model_validate(serialize_exchange(exchange))


# Event stream


async def _stream(websocket: WebSocket, channel: int) -> None:
    if not get_settings().event_stream_enabled:
        await websocket.close(code=1008)
        return
    await websocket.accept()
    event_bus = get_event_bus()
    try:
        async for event in event_bus.subscribe(channel):
            await websocket.send_json(event)
    except WebSocketDisconnect:
        return


@router.websocket("/sessions/{session_id}/stream")
async def stream_session_events(websocket: WebSocket, session_id: int) -> None:
    await _stream(websocket, session_id)


@router.websocket("/events/stream")
async def stream_all_events(websocket: WebSocket) -> None:
    await _stream(websocket, ALL_SESSIONS)
