from __future__ import annotations

from datetime import date, time
from typing import Any

from pydantic import BaseModel, Field

from crewboard.types import SessionStatus, StepCompletion, StepSpec


class ChecklistItemResponse(BaseModel):
    id: int
    item_text: str
    item_order: int


class StepResponse(BaseModel):
    id: int
    step_order: int
    title: str
    description: str
    products_needed: str
    checklist: list[ChecklistItemResponse] = Field(default_factory=list)


class TemplateResponse(BaseModel):
    id: int
    employer_id: int
    customer_id: int | None
    job_code: str
    client_code: str
    title: str
    description: str
    address: str
    duration_minutes: int | None
    price_per_hour: float | None
    notes: str
    timezone: str
    available_days: list[str]
    time_window_start: str | None
    time_window_end: str | None
    is_recurring: bool
    frequency_per_week: int | None
    one_off_date: str | None
    status: str


class TemplateDetailResponse(TemplateResponse):
    steps: list[StepResponse] = Field(default_factory=list)


class StepsReplaceRequest(BaseModel):
    steps: list[StepSpec]


class GenerateRequest(BaseModel):
    horizon_days: int | None = None
    start: date | None = None


class CompletionResponse(BaseModel):
    session_id: int
    steps_completed: int
    steps_total: int
    items_checked: int
    items_total: int
    percentage: int
    items_percentage: int
    remaining_steps: int
    steps: list[StepCompletion] = Field(default_factory=list)


class EvaluationResponse(BaseModel):
    id: int
    session_id: int
    customer_id: int
    employee_id: int | None
    rating: int
    comment: str | None
    submitted_at: str | None


class SessionResponse(BaseModel):
    id: int
    template_id: int
    session_code: str
    title: str
    address: str
    employer_id: int
    customer_id: int | None
    scheduled_date: str
    scheduled_time: str | None
    assigned_to: int | None
    status: str
    price_override: float | None
    effective_price: float | None
    refusal_reason: str | None
    claimed_at: str | None
    started_at: str | None
    completed_at: str | None
    completion: CompletionResponse | None = None
    template: TemplateResponse | None = None
    evaluation: EvaluationResponse | None = None


class ReasonRequest(BaseModel):
    reason: str = ""


class TransitionRequest(BaseModel):
    to_status: SessionStatus
    reason: str | None = None


class RescheduleRequest(BaseModel):
    scheduled_date: date
    scheduled_time: time | None = None


class PriceOverrideRequest(BaseModel):
    price: float | None


class StepToggleRequest(BaseModel):
    completed: bool


class ChecklistToggleRequest(BaseModel):
    checked: bool


class EvaluationRequest(BaseModel):
    rating: int
    comment: str | None = None


class RatingSummaryResponse(BaseModel):
    employee_id: int
    count: int
    average_rating: float | None
    evaluations: list[EvaluationResponse] = Field(default_factory=list)


class EventResponse(BaseModel):
    event_id: int
    kind: str
    session_id: int | None
    template_id: int | None
    actor_id: int | None
    actor_role: str
    from_status: str
    to_status: str
    payload: dict[str, Any]
    created_at: str | None


class ExchangeResponse(BaseModel):
    id: int
    session_id: int
    from_employee_id: int
    to_employee_id: int | None
    reason: str | None
    status: str
    requested_at: str | None
    asked_at: str | None
    decided_at: str | None
    decided_by: int | None
