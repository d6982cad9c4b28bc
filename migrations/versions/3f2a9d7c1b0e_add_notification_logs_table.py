"""add notification_logs table

Revision ID: 3f2a9d7c1b0e
Revises:
Create Date: 2026-10-19

This migration creates the notification_logs table, the audit trail of lead
submission push notifications. One row per automatic delivery chain, plus one
row per operator retry or test send.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3f2a9d7c1b0e"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create notification_logs table."""
    op.create_table(
        "notification_logs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("lead_id", sa.String(length=36), nullable=True),
        sa.Column("lead_email", sa.String(length=255), nullable=False),
        sa.Column("notification_type", sa.String(length=50), nullable=False, server_default="lead_submission"),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("additional_data", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("attempt_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("attempted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notification_id", sa.String(length=255), nullable=True),
        sa.Column("recipients", sa.JSON(), nullable=True),
        sa.Column("error_code", sa.String(length=100), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_details", sa.JSON(), nullable=True),
        sa.Column("response_time_ms", sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column("processing_time_ms", sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column("raw_response", sa.JSON(), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index(op.f("ix_notification_logs_id"), "notification_logs", ["id"], unique=False)
    op.create_index(op.f("ix_notification_logs_lead_id"), "notification_logs", ["lead_id"], unique=False)
    op.create_index(op.f("ix_notification_logs_lead_email"), "notification_logs", ["lead_email"], unique=False)
    op.create_index(op.f("ix_notification_logs_status"), "notification_logs", ["status"], unique=False)
    op.create_index(op.f("ix_notification_logs_attempted_at"), "notification_logs", ["attempted_at"], unique=False)
    op.create_index(
        "ix_notification_logs_status_created_at",
        "notification_logs",
        ["status", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_notification_logs_type_created_at",
        "notification_logs",
        ["notification_type", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    """Drop notification_logs table."""
    op.drop_index("ix_notification_logs_type_created_at", table_name="notification_logs")
    op.drop_index("ix_notification_logs_status_created_at", table_name="notification_logs")
    op.drop_index(op.f("ix_notification_logs_attempted_at"), table_name="notification_logs")
    op.drop_index(op.f("ix_notification_logs_status"), table_name="notification_logs")
    op.drop_index(op.f("ix_notification_logs_lead_email"), table_name="notification_logs")
    op.drop_index(op.f("ix_notification_logs_lead_id"), table_name="notification_logs")
    op.drop_index(op.f("ix_notification_logs_id"), table_name="notification_logs")
    op.drop_table("notification_logs")
