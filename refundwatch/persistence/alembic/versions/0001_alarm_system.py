"""create tax cases, alarm thresholds and alarm history

Revision ID: 0001_alarm_system
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_alarm_system"
down_revision = None
branch_labels = None
depends_on = None


_OPEN_ALARM_PREDICATE = "resolution IN ('active', 'acknowledged')"


def upgrade() -> None:
    # Track statuses live on the case row so eligibility scans stay single-table.
    op.create_table(
        "tax_cases",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("client_user_id", sa.String(), nullable=True),
        sa.Column("client_name", sa.String(), nullable=True),
        sa.Column("client_email", sa.String(), nullable=True),
        sa.Column("case_status", sa.String(), nullable=True),
        sa.Column("case_status_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("federal_status", sa.String(), nullable=True),
        sa.Column("federal_status_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("state_status", sa.String(), nullable=True),
        sa.Column("state_status_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_tax_cases_client_user_id", "tax_cases", ["client_user_id"])
    op.create_index("ix_tax_cases_track_statuses", "tax_cases", ["federal_status", "state_status"])

    op.create_table(
        "alarm_thresholds",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "tax_case_id",
            sa.String(),
            sa.ForeignKey("tax_cases.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("federal_in_process_days", sa.Integer(), nullable=True),
        sa.Column("state_in_process_days", sa.Integer(), nullable=True),
        sa.Column("verification_timeout_days", sa.Integer(), nullable=True),
        sa.Column("letter_sent_timeout_days", sa.Integer(), nullable=True),
        sa.Column("disable_federal_alarms", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("disable_state_alarms", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_by_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("tax_case_id", name="uq_alarm_thresholds_tax_case_id"),
    )

    op.create_table(
        "alarm_history",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "tax_case_id",
            sa.String(),
            sa.ForeignKey("tax_cases.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("alarm_type", sa.String(), nullable=False),
        sa.Column("alarm_level", sa.String(), nullable=False),
        sa.Column("track", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("threshold_days", sa.Integer(), nullable=False),
        sa.Column("actual_days", sa.Integer(), nullable=False),
        sa.Column("status_at_trigger", sa.String(), nullable=False),
        sa.Column("status_changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolution", sa.String(), nullable=False, server_default="active"),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by_id", sa.String(), nullable=True),
        sa.Column("resolved_note", sa.Text(), nullable=True),
        sa.Column("auto_resolve_reason", sa.Text(), nullable=True),
        sa.Column("triggered_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_alarm_history_tax_case_id", "alarm_history", ["tax_case_id"])
    op.create_index("ix_alarm_history_alarm_type", "alarm_history", ["alarm_type"])
    op.create_index("ix_alarm_history_alarm_level", "alarm_history", ["alarm_level"])
    op.create_index("ix_alarm_history_resolution", "alarm_history", ["resolution"])
    op.create_index("ix_alarm_history_triggered_at", "alarm_history", ["triggered_at"])
    op.create_index("ix_alarm_history_case_resolution", "alarm_history", ["tax_case_id", "resolution"])
    op.create_index(
        "ix_alarm_history_resolution_triggered_at",
        "alarm_history",
        ["resolution", "triggered_at"],
    )
    # Reject a second open alarm for one case/type/track even under concurrent writers.
    op.create_index(
        "uq_alarm_history_open_case_type_track",
        "alarm_history",
        ["tax_case_id", "alarm_type", "track"],
        unique=True,
        postgresql_where=sa.text(_OPEN_ALARM_PREDICATE),
    )


def downgrade() -> None:
    op.drop_index("uq_alarm_history_open_case_type_track", table_name="alarm_history")
    op.drop_index("ix_alarm_history_resolution_triggered_at", table_name="alarm_history")
    op.drop_index("ix_alarm_history_case_resolution", table_name="alarm_history")
    op.drop_index("ix_alarm_history_triggered_at", table_name="alarm_history")
    op.drop_index("ix_alarm_history_resolution", table_name="alarm_history")
    op.drop_index("ix_alarm_history_alarm_level", table_name="alarm_history")
    op.drop_index("ix_alarm_history_alarm_type", table_name="alarm_history")
    op.drop_index("ix_alarm_history_tax_case_id", table_name="alarm_history")
    op.drop_table("alarm_history")
    op.drop_table("alarm_thresholds")
    op.drop_index("ix_tax_cases_track_statuses", table_name="tax_cases")
    op.drop_index("ix_tax_cases_client_user_id", table_name="tax_cases")
    op.drop_table("tax_cases")
