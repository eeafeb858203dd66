from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from models import Message, Result, Session as SessionModel, Submission, User


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class UserRepo:
    def __init__(self, session: Session, clock: Callable[[], datetime]):
        self.session = session
        self.clock = clock

    def get(self, user_id: str) -> User | None:
        return self.session.get(User, user_id)

    def get_by_email(self, email: str) -> User | None:
        stmt = select(User).where(User.email == email).limit(1)
        return self.session.execute(stmt).scalar_one_or_none()

    def create(self, email: str, password_hash: str) -> User:
        now = self.clock()
        row = User(
            id=new_id(),
            email=email,
            password_hash=password_hash,
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        self.session.flush()
        return row

    def set_nickname(self, user_id: str, nickname: str) -> bool:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(nickname=nickname, updated_at=self.clock())
        )
        return (self.session.execute(stmt).rowcount or 0) == 1


class SessionRepo:
    def __init__(self, session: Session, clock: Callable[[], datetime]):
        self.session = session
        self.clock = clock

    def create(self, **values: Any) -> SessionModel:
        now = self.clock()
        values.setdefault("id", new_id())
        row = SessionModel(
            turns_used=0,
            abuse_score=0,
            status="active",
            created_at=now,
            updated_at=now,
            **values,
        )
        self.session.add(row)
        self.session.flush()
        return row

    def get_owned(self, session_id: str, user_id: str) -> SessionModel | None:
        row = self.session.get(SessionModel, session_id)
        if row is None or row.user_id != user_id:
            return None
        return row

    def add_abuse_score(self, session_id: str, delta: int) -> int:
        if delta > 0:
            stmt = (
                update(SessionModel)
                .where(SessionModel.id == session_id)
                .values(
                    abuse_score=SessionModel.abuse_score + delta,
                    updated_at=self.clock(),
                )
                .execution_options(synchronize_session="fetch")
            )
            self.session.execute(stmt)
        stmt = select(SessionModel.abuse_score).where(SessionModel.id == session_id)
        return int(self.session.execute(stmt).scalar_one())

    def force_exhaust(self, session_id: str) -> bool:
        stmt = (
            update(SessionModel)
            .where(SessionModel.id == session_id)
            .where(SessionModel.status == "active")
            .values(turns_used=SessionModel.turn_limit, updated_at=self.clock())
            .execution_options(synchronize_session="fetch")
        )
        return (self.session.execute(stmt).rowcount or 0) == 1

    def consume_turn(self, session_id: str) -> bool:
        stmt = (
            update(SessionModel)
            .where(SessionModel.id == session_id)
            .where(SessionModel.status == "active")
            .where(SessionModel.turns_used < SessionModel.turn_limit)
            .values(turns_used=SessionModel.turns_used + 1, updated_at=self.clock())
            .execution_options(synchronize_session="fetch")
        )
        return (self.session.execute(stmt).rowcount or 0) == 1

    def transition_status(self, session_id: str, from_status: str, to_status: str) -> bool:
        stmt = (
            update(SessionModel)
            .where(SessionModel.id == session_id)
            .where(SessionModel.status == from_status)
            .values(status=to_status, updated_at=self.clock())
            .execution_options(synchronize_session="fetch")
        )
        return (self.session.execute(stmt).rowcount or 0) == 1

    def set_intro_image(self, session_id: str, url: str) -> bool:
        stmt = (
            update(SessionModel)
            .where(SessionModel.id == session_id)
            .where(SessionModel.intro_image_url == "")
            .values(intro_image_url=url, updated_at=self.clock())
            .execution_options(synchronize_session="fetch")
        )
        return (self.session.execute(stmt).rowcount or 0) == 1

    def history(self, user_id: str) -> list[dict[str, Any]]:
        stmt = (
            select(
                SessionModel.id,
                SessionModel.difficulty,
                SessionModel.status,
                SessionModel.created_at,
                Result.score_total,
                Result.grade,
                Result.share_image_url,
            )
            .outerjoin(Result, Result.session_id == SessionModel.id)
            .where(SessionModel.user_id == user_id)
            .order_by(SessionModel.created_at.desc())
        )
        return [
            {
                "session_id": row.id,
                "difficulty": row.difficulty,
                "status": row.status,
                "score_total": row.score_total,
                "grade": row.grade,
                "share_image_url": row.share_image_url,
                "created_at": row.created_at.isoformat() if row.created_at else None,
            }
            for row in self.session.execute(stmt)
        ]


class MessageRepo:
    def __init__(self, session: Session, clock: Callable[[], datetime]):
        self.session = session
        self.clock = clock

    def add(
        self,
        session_id: str,
        content: str,
        input_hash: str | None,
        abuse_flags: dict[str, bool] | None,
        role: str = "assistant",
    ) -> Message:
        row = Message(
            id=new_id(),
            session_id=session_id,
            role=role,
            content=content,
            created_at=self.clock(),
            input_hash=input_hash,
            abuse_flags_json=abuse_flags,
        )
        self.session.add(row)
        self.session.flush()
        return row

    def latest(self, session_id: str) -> Message | None:
        stmt = (
            select(Message)
            .where(Message.session_id == session_id)
            .order_by(Message.created_at.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def recent_contents(self, session_id: str, limit: int) -> list[str]:
        stmt = (
            select(Message.content)
            .where(Message.session_id == session_id)
            .order_by(Message.created_at.desc())
            .limit(limit)
        )
        rows = list(self.session.execute(stmt).scalars().all())
        rows.reverse()
        return rows


class SubmissionRepo:
    def __init__(self, session: Session, clock: Callable[[], datetime]):
        self.session = session
        self.clock = clock

    def get(self, session_id: str) -> Submission | None:
        return self.session.get(Submission, session_id)

    def add(self, session_id: str, culprit: str, logic_text: str) -> Submission:
        row = Submission(
            session_id=session_id,
            culprit=culprit,
            logic_text=logic_text,
            created_at=self.clock(),
        )
        self.session.add(row)
        self.session.flush()
        return row


class ResultRepo:
    def __init__(self, session: Session, clock: Callable[[], datetime]):
        self.session = session
        self.clock = clock

    def get(self, session_id: str) -> Result | None:
        return self.session.get(Result, session_id)

    def add(
        self,
        session_id: str,
        score_total: int,
        breakdown: dict[str, Any],
        grade: str,
        result_text: str,
        share_image_url: str,
    ) -> Result:
        row = Result(
            session_id=session_id,
            score_total=score_total,
            breakdown_json=breakdown,
            grade=grade,
            result_text=result_text,
            share_image_url=share_image_url,
            created_at=self.clock(),
        )
        self.session.add(row)
        self.session.flush()
        return row


class SessionStore:
    def __init__(self, session: Session, clock: Callable[[], datetime] | None = None):
        self.session = session
        self.clock = clock or utc_now
        self.users = UserRepo(session, self.clock)
        self.sessions = SessionRepo(session, self.clock)
        self.messages = MessageRepo(session, self.clock)
        self.submissions = SubmissionRepo(session, self.clock)
        self.results = ResultRepo(session, self.clock)
