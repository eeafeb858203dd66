"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=128), nullable=False),
        sa.Column("nickname", sa.String(length=64)),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )

    op.create_table(
        "sessions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("difficulty", sa.String(length=16), nullable=False),
        sa.Column("turn_limit", sa.Integer, nullable=False),
        sa.Column("turns_used", sa.Integer, nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("seed", sa.String(length=80), nullable=False),
        sa.Column("worldview_text", sa.Text, nullable=False, server_default=""),
        sa.Column("attribute_text", sa.Text, nullable=False, server_default=""),
        sa.Column("prompt_version_init", sa.String(length=32), nullable=False),
        sa.Column("prompt_version_chat", sa.String(length=32), nullable=False),
        sa.Column("prompt_version_score", sa.String(length=32), nullable=False),
        sa.Column("intro_image_url", sa.Text, nullable=False, server_default=""),
        sa.Column("truth_table_json", JSON_TYPE, nullable=False),
        sa.Column("public_state_json", JSON_TYPE, nullable=False),
        sa.Column("abuse_score", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.CheckConstraint(
            "status IN ('active','submitted','scored')",
            name="ck_sessions_status_valid",
        ),
        sa.CheckConstraint(
            "turns_used >= 0 AND turns_used <= turn_limit",
            name="ck_sessions_turn_budget",
        ),
    )
    op.create_index(
        "ix_sessions_user_created",
        "sessions",
        ["user_id", sa.text("created_at DESC")],
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "session_id", sa.String(length=36), sa.ForeignKey("sessions.id"), nullable=False
        ),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="assistant"),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("input_hash", sa.String(length=32)),
        sa.Column("abuse_flags_json", JSON_TYPE),
    )
    op.create_index(
        "ix_messages_session_created",
        "messages",
        ["session_id", sa.text("created_at DESC")],
    )

    op.create_table(
        "submissions",
        sa.Column(
            "session_id", sa.String(length=36), sa.ForeignKey("sessions.id"), primary_key=True
        ),
        sa.Column("culprit", sa.String(length=200), nullable=False),
        sa.Column("logic_text", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )

    op.create_table(
        "results",
        sa.Column(
            "session_id", sa.String(length=36), sa.ForeignKey("sessions.id"), primary_key=True
        ),
        sa.Column("score_total", sa.Integer, nullable=False),
        sa.Column("breakdown_json", JSON_TYPE),
        sa.Column("grade", sa.String(length=16), nullable=False),
        sa.Column("result_text", sa.Text, nullable=False),
        sa.Column("share_image_url", sa.Text, nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )

    op.create_table(
        "idempotency",
        sa.Column("user_id", sa.String(length=360), primary_key=True),
        sa.Column("endpoint", sa.String(length=200), primary_key=True),
        sa.Column("key", sa.String(length=200), primary_key=True),
        sa.Column("response_json", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )


def downgrade() -> None:
    op.drop_table("idempotency")
    op.drop_table("results")
    op.drop_table("submissions")
    op.drop_index("ix_messages_session_created", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_sessions_user_created", table_name="sessions")
    op.drop_table("sessions")
    op.drop_table("users")
