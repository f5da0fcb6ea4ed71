"""Initial database schema for the submission vault.

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create users table
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("first_name", sa.String(255), nullable=True),
        sa.Column("roles", sa.JSON(), nullable=False),
        sa.Column("capabilities", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # Create submissions table
    # Plaintext PII columns carry no index so they can be dropped later
    op.create_table(
        "submissions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("form_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("data", sa.Text(), nullable=True),
        sa.Column("data_encrypted", sa.Text(), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("email_encrypted", sa.Text(), nullable=True),
        sa.Column("email_hash", sa.String(64), nullable=True),
        sa.Column("cpf_rf", sa.String(20), nullable=True),
        sa.Column("cpf_rf_encrypted", sa.Text(), nullable=True),
        sa.Column("cpf_rf_hash", sa.String(64), nullable=True),
        sa.Column("user_ip", sa.String(45), nullable=True),
        sa.Column("user_ip_encrypted", sa.Text(), nullable=True),
        sa.Column("auth_code", sa.String(32), nullable=True),
        sa.Column("magic_token", sa.String(32), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="publish"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_submissions_form_id", "submissions", ["form_id"])
    op.create_index("ix_submissions_user_id", "submissions", ["user_id"])
    op.create_index("ix_submissions_email_hash", "submissions", ["email_hash"])
    op.create_index("ix_submissions_cpf_rf_hash", "submissions", ["cpf_rf_hash"])
    op.create_index("ix_submissions_auth_code", "submissions", ["auth_code"])
    op.create_index("ix_submissions_magic_token", "submissions", ["magic_token"])
    op.create_index("ix_submissions_created_at", "submissions", ["created_at"])
    op.create_index("ix_submissions_cpf_hash_user", "submissions", ["cpf_rf_hash", "user_id"])

    # Create appointments table
    op.create_table(
        "appointments",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("calendar_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="confirmed"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_appointments_calendar_id", "appointments", ["calendar_id"])
    op.create_index("ix_appointments_user_id", "appointments", ["user_id"])

    # Create migration_options table
    op.create_table(
        "migration_options",
        sa.Column("key", sa.String(191), nullable=False),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )

    # Create activity_logs table
    op.create_table(
        "activity_logs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False, server_default="info"),
        sa.Column("migration_key", sa.String(100), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_activity_logs_action", "activity_logs", ["action"])
    op.create_index("ix_activity_logs_severity", "activity_logs", ["severity"])
    op.create_index("ix_activity_logs_migration_key", "activity_logs", ["migration_key"])
    op.create_index("ix_activity_logs_key_created", "activity_logs", ["migration_key", "created_at"])


def downgrade() -> None:
    op.drop_table("activity_logs")
    op.drop_table("migration_options")
    op.drop_table("appointments")
    op.drop_table("submissions")
    op.drop_table("users")
