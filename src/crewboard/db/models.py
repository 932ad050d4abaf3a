from __future__ import annotations

from datetime import date, datetime, time
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from crewboard.db.base import Base, TimestampMixin


class JobTemplate(TimestampMixin, Base):
    __tablename__ = "job_templates"
    __table_args__ = (
        UniqueConstraint("client_code", "template_number", "version_letter", name="uq_template_code_parts"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employer_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    customer_id: Mapped[int | None] = mapped_column(Integer, index=True, nullable=True)
    client_code: Mapped[str] = mapped_column(String(3), nullable=False)
    template_number: Mapped[str] = mapped_column(String(2), nullable=False)
    version_letter: Mapped[str] = mapped_column(String(1), default="A", nullable=False)
    job_code: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    address: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    price_per_hour: Mapped[float | None] = mapped_column(Float, nullable=True)
    notes: Mapped[str] = mapped_column(Text, default="", nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default="America/Toronto", nullable=False)
    available_days_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    time_window_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    time_window_end: Mapped[time | None] = mapped_column(Time, nullable=True)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    frequency_per_week: Mapped[int | None] = mapped_column(Integer, nullable=True)
    one_off_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="DRAFT", index=True, nullable=False)


class JobStep(TimestampMixin, Base):
    __tablename__ = "job_steps"
    __table_args__ = (UniqueConstraint("template_id", "step_order", name="uq_step_order"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[int] = mapped_column(ForeignKey("job_templates.id", ondelete="CASCADE"), index=True)
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    products_needed: Mapped[str] = mapped_column(Text, default="", nullable=False)


class JobStepChecklistItem(TimestampMixin, Base):
    __tablename__ = "job_step_checklist_items"
    __table_args__ = (UniqueConstraint("step_id", "item_order", name="uq_checklist_item_order"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    step_id: Mapped[int] = mapped_column(ForeignKey("job_steps.id", ondelete="CASCADE"), index=True)
    item_text: Mapped[str] = mapped_column(Text, nullable=False)
    item_order: Mapped[int] = mapped_column(Integer, nullable=False)


class JobSession(TimestampMixin, Base):
    __tablename__ = "job_sessions"
    __table_args__ = (
        UniqueConstraint("template_id", "sequence", name="uq_session_sequence"),
        # One live session per (template, date); cancelled rows free the slot.
        Index(
            "uq_session_open_slot",
            "template_id",
            "scheduled_date",
            unique=True,
            sqlite_where=text("status != 'CANCELLED'"),
            postgresql_where=text("status != 'CANCELLED'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[int] = mapped_column(ForeignKey("job_templates.id"), index=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    session_code: Mapped[str] = mapped_column(String(40), unique=True, index=True, nullable=False)
    scheduled_date: Mapped[date] = mapped_column(Date, index=True, nullable=False)
    scheduled_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    assigned_to: Mapped[int | None] = mapped_column(Integer, index=True, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="OFFERED", index=True, nullable=False)
    price_override: Mapped[float | None] = mapped_column(Float, nullable=True)
    refusal_reason: Mapped[str] = mapped_column(Text, default="", nullable=False)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class JobSessionStepProgress(TimestampMixin, Base):
    __tablename__ = "job_session_step_progress"
    __table_args__ = (UniqueConstraint("session_id", "step_id", name="uq_step_progress"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("job_sessions.id", ondelete="CASCADE"), index=True)
    step_id: Mapped[int] = mapped_column(ForeignKey("job_steps.id", ondelete="CASCADE"), index=True)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class JobSessionChecklistProgress(TimestampMixin, Base):
    __tablename__ = "job_session_checklist_progress"
    __table_args__ = (UniqueConstraint("session_id", "item_id", name="uq_checklist_progress"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("job_sessions.id", ondelete="CASCADE"), index=True)
    item_id: Mapped[int] = mapped_column(
        ForeignKey("job_step_checklist_items.id", ondelete="CASCADE"), index=True
    )
    is_checked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    checked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Evaluation(TimestampMixin, Base):
    __tablename__ = "evaluations"
    __table_args__ = (CheckConstraint("rating BETWEEN 1 AND 5", name="ck_evaluation_rating"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("job_sessions.id"), unique=True, index=True)
    customer_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    employee_id: Mapped[int | None] = mapped_column(Integer, index=True, nullable=True)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class DomainEvent(TimestampMixin, Base):
    __tablename__ = "domain_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    session_id: Mapped[int | None] = mapped_column(
        ForeignKey("job_sessions.id", ondelete="CASCADE"), index=True, nullable=True
    )
    template_id: Mapped[int | None] = mapped_column(ForeignKey("job_templates.id"), index=True, nullable=True)
    kind: Mapped[str] = mapped_column(String(60), nullable=False)
    actor_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actor_role: Mapped[str] = mapped_column(String(20), default="system", nullable=False)
    from_status: Mapped[str] = mapped_column(String(20), default="", nullable=False)
    to_status: Mapped[str] = mapped_column(String(20), default="", nullable=False)
    payload_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)


class JobExchange(TimestampMixin, Base):
    __tablename__ = "job_exchanges"
    __table_args__ = (
        # At most one open exchange per session.
        Index(
            "uq_exchange_open_session",
            "session_id",
            unique=True,
            sqlite_where=text("status = 'PENDING'"),
            postgresql_where=text("status = 'PENDING'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("job_sessions.id", ondelete="CASCADE"), index=True)
    from_employee_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    to_employee_id: Mapped[int | None] = mapped_column(Integer, index=True, nullable=True)
    reason: Mapped[str] = mapped_column(Text, default="", nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="PENDING", index=True, nullable=False)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    asked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decided_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
