"""Job templates, sessions, progress, evaluations and domain events

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "job_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("employer_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("client_code", sa.String(3), nullable=False),
        sa.Column("template_number", sa.String(2), nullable=False),
        sa.Column("version_letter", sa.String(1), nullable=False),
        sa.Column("job_code", sa.String(20), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("address", sa.String(500), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("price_per_hour", sa.Float(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False),
        sa.Column("available_days_json", sa.JSON(), nullable=False),
        sa.Column("time_window_start", sa.Time(), nullable=True),
        sa.Column("time_window_end", sa.Time(), nullable=True),
        sa.Column("is_recurring", sa.Boolean(), nullable=False),
        sa.Column("frequency_per_week", sa.Integer(), nullable=True),
        sa.Column("one_off_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("client_code", "template_number", "version_letter", name="uq_template_code_parts"),
    )
    op.create_index("ix_job_templates_employer_id", "job_templates", ["employer_id"])
    op.create_index("ix_job_templates_customer_id", "job_templates", ["customer_id"])
    op.create_index("ix_job_templates_job_code", "job_templates", ["job_code"], unique=True)
    op.create_index("ix_job_templates_status", "job_templates", ["status"])

    op.create_table(
        "job_steps",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("template_id", sa.Integer(), sa.ForeignKey("job_templates.id", ondelete="CASCADE"), nullable=False),
        sa.Column("step_order", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("products_needed", sa.Text(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("template_id", "step_order", name="uq_step_order"),
    )
    op.create_index("ix_job_steps_template_id", "job_steps", ["template_id"])

    op.create_table(
        "job_step_checklist_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("step_id", sa.Integer(), sa.ForeignKey("job_steps.id", ondelete="CASCADE"), nullable=False),
        sa.Column("item_text", sa.Text(), nullable=False),
        sa.Column("item_order", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("step_id", "item_order", name="uq_checklist_item_order"),
    )
    op.create_index("ix_job_step_checklist_items_step_id", "job_step_checklist_items", ["step_id"])

    op.create_table(
        "job_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("template_id", sa.Integer(), sa.ForeignKey("job_templates.id"), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("session_code", sa.String(40), nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("scheduled_time", sa.Time(), nullable=True),
        sa.Column("assigned_to", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("price_override", sa.Float(), nullable=True),
        sa.Column("refusal_reason", sa.Text(), nullable=False),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("template_id", "sequence", name="uq_session_sequence"),
    )
    op.create_index("ix_job_sessions_template_id", "job_sessions", ["template_id"])
    op.create_index("ix_job_sessions_session_code", "job_sessions", ["session_code"], unique=True)
    op.create_index("ix_job_sessions_scheduled_date", "job_sessions", ["scheduled_date"])
    op.create_index("ix_job_sessions_assigned_to", "job_sessions", ["assigned_to"])
    op.create_index("ix_job_sessions_status", "job_sessions", ["status"])
    op.create_index(
        "uq_session_open_slot",
        "job_sessions",
        ["template_id", "scheduled_date"],
        unique=True,
        sqlite_where=sa.text("status != 'CANCELLED'"),
        postgresql_where=sa.text("status != 'CANCELLED'"),
    )

    op.create_table(
        "job_session_step_progress",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("job_sessions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("step_id", sa.Integer(), sa.ForeignKey("job_steps.id", ondelete="CASCADE"), nullable=False),
        sa.Column("is_completed", sa.Boolean(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("session_id", "step_id", name="uq_step_progress"),
    )
    op.create_index("ix_job_session_step_progress_session_id", "job_session_step_progress", ["session_id"])
    op.create_index("ix_job_session_step_progress_step_id", "job_session_step_progress", ["step_id"])

    op.create_table(
        "job_session_checklist_progress",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("job_sessions.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "item_id",
            sa.Integer(),
            sa.ForeignKey("job_step_checklist_items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("is_checked", sa.Boolean(), nullable=False),
        sa.Column("checked_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("session_id", "item_id", name="uq_checklist_progress"),
    )
    op.create_index(
        "ix_job_session_checklist_progress_session_id", "job_session_checklist_progress", ["session_id"]
    )
    op.create_index("ix_job_session_checklist_progress_item_id", "job_session_checklist_progress", ["item_id"])

    op.create_table(
        "evaluations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("job_sessions.id"), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_evaluation_rating"),
    )
    op.create_index("ix_evaluations_session_id", "evaluations", ["session_id"], unique=True)
    op.create_index("ix_evaluations_customer_id", "evaluations", ["customer_id"])
    op.create_index("ix_evaluations_employee_id", "evaluations", ["employee_id"])

    op.create_table(
        "domain_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("job_sessions.id", ondelete="CASCADE"), nullable=True),
        sa.Column("template_id", sa.Integer(), sa.ForeignKey("job_templates.id"), nullable=True),
        sa.Column("kind", sa.String(60), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("actor_role", sa.String(20), nullable=False),
        sa.Column("from_status", sa.String(20), nullable=False),
        sa.Column("to_status", sa.String(20), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_domain_events_session_id", "domain_events", ["session_id"])
    op.create_index("ix_domain_events_template_id", "domain_events", ["template_id"])


def downgrade() -> None:
    op.drop_table("domain_events")
    op.drop_table("evaluations")
    op.drop_table("job_session_checklist_progress")
    op.drop_table("job_session_step_progress")
    op.drop_table("job_sessions")
    op.drop_table("job_step_checklist_items")
    op.drop_table("job_steps")
    op.drop_table("job_templates")
