from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")

SESSION_STATUSES = ("active", "submitted", "scored")


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    nickname: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class Session(Base):
    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False)
    turn_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    turns_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    seed: Mapped[str] = mapped_column(String(80), nullable=False)
    worldview_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    attribute_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    prompt_version_init: Mapped[str] = mapped_column(String(32), nullable=False)
    prompt_version_chat: Mapped[str] = mapped_column(String(32), nullable=False)
    prompt_version_score: Mapped[str] = mapped_column(String(32), nullable=False)
    intro_image_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    truth_table_json: Mapped[dict] = mapped_column(JSONType, nullable=False)
    public_state_json: Mapped[dict] = mapped_column(JSONType, nullable=False)
    abuse_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN (" + ",".join(f"'{status}'" for status in SESSION_STATUSES) + ")",
            name="ck_sessions_status_valid",
        ),
        CheckConstraint(
            "turns_used >= 0 AND turns_used <= turn_limit",
            name="ck_sessions_turn_budget",
        ),
    )


Index("ix_sessions_user_created", Session.user_id, Session.created_at.desc())


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    session_id: Mapped[str] = mapped_column(ForeignKey("sessions.id"), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="assistant")
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    input_hash: Mapped[str | None] = mapped_column(String(32))
    abuse_flags_json: Mapped[dict | None] = mapped_column(JSONType)


Index("ix_messages_session_created", Message.session_id, Message.created_at.desc())


class Submission(Base):
    __tablename__ = "submissions"

    session_id: Mapped[str] = mapped_column(ForeignKey("sessions.id"), primary_key=True)
    culprit: Mapped[str] = mapped_column(String(200), nullable=False)
    logic_text: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class Result(Base):
    __tablename__ = "results"

    session_id: Mapped[str] = mapped_column(ForeignKey("sessions.id"), primary_key=True)
    score_total: Mapped[int] = mapped_column(Integer, nullable=False)
    breakdown_json: Mapped[dict | None] = mapped_column(JSONType)
    grade: Mapped[str] = mapped_column(String(16), nullable=False)
    result_text: Mapped[str] = mapped_column(Text, nullable=False)
    share_image_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class IdempotencyRecord(Base):
    __tablename__ = "idempotency"

    user_id: Mapped[str] = mapped_column(String(360), primary_key=True)
    endpoint: Mapped[str] = mapped_column(String(200), primary_key=True)
    key: Mapped[str] = mapped_column(String(200), primary_key=True)
    response_json: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
