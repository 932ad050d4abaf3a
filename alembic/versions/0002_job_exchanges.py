"""Job exchanges between employees

Revision ID: 0002_job_exchanges
Revises: 0001_initial_schema
Create Date: 2026-10-19

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0002_job_exchanges"
down_revision = "0001_initial_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "job_exchanges",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("job_sessions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("from_employee_id", sa.Integer(), nullable=False),
        sa.Column("to_employee_id", sa.Integer(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("asked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decided_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_job_exchanges_session_id", "job_exchanges", ["session_id"])
    op.create_index("ix_job_exchanges_from_employee_id", "job_exchanges", ["from_employee_id"])
    op.create_index("ix_job_exchanges_to_employee_id", "job_exchanges", ["to_employee_id"])
    op.create_index("ix_job_exchanges_status", "job_exchanges", ["status"])
    op.create_index(
        "uq_exchange_open_session",
        "job_exchanges",
        ["session_id"],
        unique=True,
        sqlite_where=sa.text("status = 'PENDING'"),
        postgresql_where=sa.text("status = 'PENDING'"),
    )


def downgrade() -> None:
    op.drop_index("uq_exchange_open_session", table_name="job_exchanges")
    op.drop_index("ix_job_exchanges_status", table_name="job_exchanges")
    op.drop_index("ix_job_exchanges_to_employee_id", table_name="job_exchanges")
    op.drop_index("ix_job_exchanges_from_employee_id", table_name="job_exchanges")
    op.drop_index("ix_job_exchanges_session_id", table_name="job_exchanges")
    op.drop_table("job_exchanges")
