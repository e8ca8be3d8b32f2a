"""Reminders schema (users, reminder_deliveries).

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from typing import Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, None] = None
depends_on: Union[str, None] = None


def upgrade() -> None:
    # users: one row per Telegram user, with reminder settings and delivery bookkeeping
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("recipient_id", sa.BigInteger(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=True),
        sa.Column("notifications_enabled", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("notification_time_utc", sa.String(5), nullable=True),
        sa.Column("utc_offset", sa.String(6), nullable=False, server_default="+0"),
        sa.Column("last_notification_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_notification_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_notification_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_users_recipient_id", "users", ["recipient_id"], unique=True)
    # Serves the per-tick eligibility query
    op.create_index(
        "ix_users_enabled_time",
        "users",
        ["notifications_enabled", "notification_time_utc"],
    )

    # reminder_deliveries: append-only delivery log
    op.create_table(
        "reminder_deliveries",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("recipient_id", sa.BigInteger(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_reminder_deliveries_recipient_id", "reminder_deliveries", ["recipient_id"])


def downgrade() -> None:
    op.drop_index("ix_reminder_deliveries_recipient_id", table_name="reminder_deliveries")
    op.drop_table("reminder_deliveries")
    op.drop_index("ix_users_enabled_time", table_name="users")
    op.drop_index("ix_users_recipient_id", table_name="users")
    op.drop_table("users")
