from __future__ import annotations

import re
from datetime import date, time
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

TemplateStatus = Literal["DRAFT", "ACTIVE", "ARCHIVED"]
SessionStatus = Literal[
    "OFFERED",
    "CLAIMED",
    "APPROVED",
    "IN_PROGRESS",
    "COMPLETED",
    "EVALUATED",
    "REFUSED",
    "CANCELLED",
]
ActorRole = Literal["employer", "employee", "customer"]
AccountStatus = Literal["PENDING", "ACTIVE", "INACTIVE", "BLOCKED"]
DayOfWeek = Literal["MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN"]

WEEKDAYS: tuple[DayOfWeek, ...] = ("MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")
TERMINAL_STATUSES: frozenset[str] = frozenset({"REFUSED", "CANCELLED", "EVALUATED"})
LOCKED_STATUSES: frozenset[str] = frozenset({"COMPLETED", "EVALUATED"})

_CLIENT_CODE_RE = re.compile(r"^[A-Za-z]{3}$")


class Actor(BaseModel):
    """Verified caller descriptor handed in by the identity collaborator."""

    id: int
    role: ActorRole
    status: AccountStatus = "ACTIVE"


class ChecklistItemSpec(BaseModel):
    item_text: str = Field(min_length=1)
    item_order: int | None = None


class StepSpec(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    products_needed: str = ""
    step_order: int | None = None
    checklist: list[ChecklistItemSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_checklist_order(self) -> StepSpec:
        orders = [item.item_order for item in self.checklist if item.item_order is not None]
        if len(orders) != len(set(orders)):
            raise ValueError("checklist item_order values must be unique within a step")
        return self


def normalize_steps(steps: list[StepSpec]) -> list[StepSpec]:
    """Fill in missing step/item orders and reject duplicates."""
    orders = [step.step_order for step in steps if step.step_order is not None]
    if len(orders) != len(set(orders)):
        raise ValueError("step_order values must be unique within a template")

    next_order = max(orders, default=0) + 1
    normalized: list[StepSpec] = []
    for step in steps:
        step_order = step.step_order
        if step_order is None:
            step_order = next_order
            next_order += 1
        items: list[ChecklistItemSpec] = []
        item_orders = [item.item_order for item in step.checklist if item.item_order is not None]
        next_item = max(item_orders, default=0) + 1
        for item in step.checklist:
            item_order = item.item_order
            if item_order is None:
                item_order = next_item
                next_item += 1
            items.append(ChecklistItemSpec(item_text=item.item_text, item_order=item_order))
        normalized.append(step.model_copy(update={"step_order": step_order, "checklist": items}))
    return sorted(normalized, key=lambda item: item.step_order or 0)


class TemplateCreate(BaseModel):
    client_code: str
    title: str = Field(min_length=1, max_length=255)
    description: str = ""
    address: str = ""
    customer_id: int | None = None
    duration_minutes: int | None = Field(default=None, gt=0)
    price_per_hour: float | None = Field(default=None, gt=0)
    notes: str = ""
    timezone: str = "America/Toronto"
    available_days: list[DayOfWeek] = Field(default_factory=list)
    time_window_start: time | None = None
    time_window_end: time | None = None
    is_recurring: bool = True
    frequency_per_week: int | None = Field(default=None, ge=1, le=7)
    one_off_date: date | None = None
    status: Literal["DRAFT", "ACTIVE"] = "DRAFT"
    steps: list[StepSpec] = Field(default_factory=list)

    @field_validator("client_code")
    @classmethod
    def validate_client_code(cls, value: str) -> str:
        if not _CLIENT_CODE_RE.match(value.strip()):
            raise ValueError("client_code must be exactly three letters")
        return value.strip().upper()

    @field_validator("available_days")
    @classmethod
    def dedupe_days(cls, value: list[DayOfWeek]) -> list[DayOfWeek]:
        return [day for day in WEEKDAYS if day in set(value)]

    @model_validator(mode="after")
    def validate_window(self) -> TemplateCreate:
        if self.time_window_start and self.time_window_end and self.time_window_end <= self.time_window_start:
            raise ValueError("time_window_end must be after time_window_start")
        return self


class TemplateUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    address: str | None = None
    customer_id: int | None = None
    duration_minutes: int | None = Field(default=None, gt=0)
    price_per_hour: float | None = Field(default=None, gt=0)
    notes: str | None = None
    timezone: str | None = None
    available_days: list[DayOfWeek] | None = None
    time_window_start: time | None = None
    time_window_end: time | None = None
    is_recurring: bool | None = None
    frequency_per_week: int | None = Field(default=None, ge=1, le=7)
    one_off_date: date | None = None

    @field_validator("available_days")
    @classmethod
    def dedupe_days(cls, value: list[DayOfWeek] | None) -> list[DayOfWeek] | None:
        if value is None:
            return None
        return [day for day in WEEKDAYS if day in set(value)]


def percent(part: int, total: int) -> int:
    """Whole-number percentage, halves rounded up (1 of 8 is 13)."""
    if total <= 0:
        return 0
    return (part * 200 + total) // (total * 2)


class StepCompletion(BaseModel):
    step_id: int
    step_order: int
    title: str
    is_completed: bool
    items_checked: int
    items_total: int


class CompletionSummary(BaseModel):
    session_id: int
    steps_completed: int
    steps_total: int
    items_checked: int
    items_total: int
    steps: list[StepCompletion] = Field(default_factory=list)

    @property
    def percentage(self) -> int:
        return percent(self.steps_completed, self.steps_total)

    @property
    def items_percentage(self) -> int:
        return percent(self.items_checked, self.items_total)

    @property
    def remaining_steps(self) -> int:
        return self.steps_total - self.steps_completed
