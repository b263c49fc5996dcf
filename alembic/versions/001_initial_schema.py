"""initial schema - companies, decision makers, signals, mining progress, api usage

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-17
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "companies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("company_name", sa.String(255), nullable=False),
        sa.Column("website", sa.String(500)),
        sa.Column("industry", sa.String(255)),
        sa.Column("employee_size", sa.String(50)),
        sa.Column("employee_size_numeric", sa.Integer()),
        sa.Column("founded", sa.Integer()),
        sa.Column("description", sa.Text()),
        sa.Column("public_email", sa.String(255)),
        sa.Column("public_phone", sa.String(100)),
        sa.Column("linkedin_profile", sa.String(500)),
        sa.Column("location", sa.String(255)),
        sa.Column("ai_score", sa.Integer()),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending_review"),
        sa.Column("source", sa.String(20), nullable=False, server_default="manual"),
        sa.Column("enrichment_data", sa.JSON()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    )
    op.create_index("ix_companies_owner", "companies", ["owner_id"])
    op.create_index("ix_companies_owner_status", "companies", ["owner_id", "status"])

    op.create_table(
        "decision_makers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("first_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("designation", sa.String(255)),
        sa.Column("email", sa.String(255)),
        sa.Column("email_status", sa.String(20)),
        sa.Column("phone", sa.String(100)),
        sa.Column("linkedin_profile", sa.String(500)),
        sa.Column("facebook_profile", sa.String(500)),
        sa.Column("contact_type", sa.String(20)),
        sa.Column("confidence_score", sa.Integer()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    )
    op.create_index("ix_decision_makers_company", "decision_makers", ["company_id"])
    op.create_index("ix_decision_makers_email", "decision_makers", ["email"])

    op.create_table(
        "signals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("signal_type", sa.String(50), nullable=False),
        sa.Column("signal_title", sa.String(500), nullable=False),
        sa.Column("signal_description", sa.Text()),
        sa.Column("signal_url", sa.String(1000)),
        sa.Column("priority", sa.String(10), nullable=False, server_default="medium"),
        sa.Column("detected_at", sa.DateTime()),
        sa.Column("processed", sa.Boolean(), server_default=sa.false()),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_index("ix_signals_company_type", "signals", ["company_id", "signal_type"])

    op.create_table(
        "mining_progress",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.String(64), nullable=False),
        sa.Column("operation_type", sa.String(50), nullable=False),
        sa.Column("owner_id", sa.String(64)),
        sa.Column("status", sa.String(20), nullable=False, server_default="running"),
        sa.Column("current_step", sa.String(500)),
        sa.Column("progress_percentage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("results_so_far", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text()),
        sa.Column("started_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
        sa.Column("completed_at", sa.DateTime()),
        sa.UniqueConstraint("session_id", "operation_type", name="uq_mining_progress_session_op"),
    )
    op.create_index("ix_mining_progress_owner_started", "mining_progress", ["owner_id", "started_at"])

    op.create_table(
        "api_usage",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("api_name", sa.String(50), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("daily_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_operation", sa.String(100)),
        sa.Column("updated_at", sa.DateTime()),
        sa.UniqueConstraint("owner_id", "api_name", "date", name="uq_api_usage_owner_api_date"),
    )


def downgrade() -> None:
    """Drop all tables. Destructive; dev/test only."""
    op.drop_table("api_usage")
    op.drop_index("ix_mining_progress_owner_started", table_name="mining_progress")
    op.drop_table("mining_progress")
    op.drop_index("ix_signals_company_type", table_name="signals")
    op.drop_table("signals")
    op.drop_index("ix_decision_makers_email", table_name="decision_makers")
    op.drop_index("ix_decision_makers_company", table_name="decision_makers")
    op.drop_table("decision_makers")
    op.drop_index("ix_companies_owner_status", table_name="companies")
    op.drop_index("ix_companies_owner", table_name="companies")
    op.drop_table("companies")
