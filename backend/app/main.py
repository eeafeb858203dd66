from __future__ import annotations

from typing import Any, Literal

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.auth import (
    MIN_PASSWORD_LENGTH,
    create_token,
    hash_password,
    parse_bearer,
    verify_password,
    verify_token,
)
from app.config import get_settings
from app.logging_config import get_logger, setup_logging
from db import SessionLocal, check_db_connection
from llm.client import GeminiImageClient, OpenAIChatClient
from llm.pipeline import PipelineModels, PromptPipeline
from rules.context import GameContext
from rules.difficulty import Difficulty
from rules.errors import AuthError, GameError, InvalidStateError, ValidationError
from rules.session import create_game_session, get_session_view, score_session, submit_answer
from rules.turn import execute_turn
from store.artifacts import LocalArtifactStore
from store.idempotency import require_idempotency_key, run_idempotent
from store.repos import SessionStore

setup_logging(get_settings().log_level)
logger = get_logger(__name__)

app = FastAPI(
    title="mystery-sessions API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


class SignupRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=128)


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=128)


class NicknameRequest(BaseModel):
    nickname: str = Field(min_length=1, max_length=32)


class SessionCreate(BaseModel):
    worldview: str = Field(min_length=1, max_length=2000)
    attribute: str = Field(min_length=1, max_length=500)
    difficulty: Difficulty
    image_tags: list[str] = Field(default_factory=list, max_length=20)
    image_keyword: str | None = None


class TurnRequest(BaseModel):
    mode: Literal["free", "choice"] = "free"
    input_text: str = ""


class SubmitRequest(BaseModel):
    culprit: str = Field(min_length=1, max_length=200)
    logic_text: str = Field(min_length=1, max_length=4000)


@app.exception_handler(GameError)
def handle_game_error(_request: Request, exc: GameError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed", reason=exc.reason, detail=exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.reason})


@app.exception_handler(RequestValidationError)
def handle_validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "invalid_request"})


@app.exception_handler(SQLAlchemyError)
def handle_storage_error(_request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("storage_error", error=str(exc))
    return JSONResponse(status_code=500, content={"error": "storage_error"})


@app.exception_handler(Exception)
def handle_unexpected_error(_request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_error", error=str(exc), exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "internal_error"})


def build_context(db: Session) -> GameContext:
    settings = get_settings()
    return GameContext(
        db=db,
        pipeline=PromptPipeline(
            OpenAIChatClient.from_settings(settings),
            models=PipelineModels.from_settings(settings),
        ),
        images=GeminiImageClient.from_settings(settings),
        artifacts=LocalArtifactStore(settings.artifact_dir, settings.artifact_base_url),
        settings=settings,
    )


def current_user_id(authorization: str | None = Header(default=None)) -> str:
    return verify_token(get_settings().token_secret, parse_bearer(authorization))


def _json(body: str) -> Response:
    return Response(content=body, media_type="application/json")


def _issue_token(user_id: str) -> dict[str, Any]:
    settings = get_settings()
    return {"token": create_token(settings.token_secret, user_id, settings.token_ttl_seconds)}


@app.get("/health")
def health() -> JSONResponse:
    try:
        check_db_connection()
    except SQLAlchemyError as exc:
        logger.error("health_check_failed", error=str(exc))
        return JSONResponse(status_code=503, content={"error": "database_unavailable"})
    return JSONResponse(content={"status": "ok"})


@app.post("/auth/signup")
def signup(
    payload: SignupRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None),
) -> Response:
    email = payload.email.strip().lower()
    with SessionLocal() as db:
        store = SessionStore(db)

        def operation() -> dict[str, Any]:
            if store.users.get_by_email(email) is not None:
                raise InvalidStateError("email_taken")
            user = store.users.create(email, hash_password(payload.password))
            logger.info("user_signed_up", user_id=user.id)
            return _issue_token(user.id)

        try:
            body = run_idempotent(
                db, f"email:{email}", request.url.path, idempotency_key, operation
            )
        except IntegrityError as exc:
            # Another signup for the same email committed first.
            if store.users.get_by_email(email) is None:
                raise
            raise InvalidStateError("email_taken") from exc
    return _json(body)


@app.post("/auth/login")
def login(
    payload: LoginRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None),
) -> Response:
    idempotency_key = require_idempotency_key(idempotency_key)
    email = payload.email.strip().lower()
    with SessionLocal() as db:
        user = SessionStore(db).users.get_by_email(email)
        if user is None or not verify_password(payload.password, user.password_hash):
            raise AuthError("invalid_credentials")
        user_id = user.id
        body = run_idempotent(
            db, user_id, request.url.path, idempotency_key, lambda: _issue_token(user_id)
        )
    return _json(body)


@app.get("/me")
def me(user_id: str = Depends(current_user_id)) -> dict:
    with SessionLocal() as db:
        user = SessionStore(db).users.get(user_id)
        if user is None:
            raise AuthError()
        return {"id": user.id, "email": user.email, "nickname": user.nickname}


@app.put("/me/nickname")
def set_nickname(
    payload: NicknameRequest,
    request: Request,
    user_id: str = Depends(current_user_id),
    idempotency_key: str | None = Header(default=None),
) -> Response:
    nickname = payload.nickname.strip()
    with SessionLocal() as db:
        store = SessionStore(db)

        def operation() -> dict[str, Any]:
            if not nickname:
                raise ValidationError("invalid_nickname")
            if not store.users.set_nickname(user_id, nickname):
                raise AuthError()
            return {"ok": True}

        body = run_idempotent(db, user_id, request.url.path, idempotency_key, operation)
    return _json(body)


@app.post("/sessions")
def create_session(
    payload: SessionCreate,
    request: Request,
    user_id: str = Depends(current_user_id),
    idempotency_key: str | None = Header(default=None),
) -> Response:
    with SessionLocal() as db:
        ctx = build_context(db)
        body = run_idempotent(
            db,
            user_id,
            request.url.path,
            idempotency_key,
            lambda: create_game_session(
                ctx,
                user_id,
                worldview=payload.worldview,
                attribute=payload.attribute,
                difficulty=payload.difficulty,
                image_tags=payload.image_tags,
                image_keyword=payload.image_keyword,
            ),
            clock=ctx.clock,
        )
    return _json(body)


@app.get("/sessions/{session_id}")
def get_session(session_id: str, user_id: str = Depends(current_user_id)) -> dict:
    with SessionLocal() as db:
        return get_session_view(build_context(db), user_id, session_id)


@app.post("/sessions/{session_id}/turn")
def take_turn(
    session_id: str,
    payload: TurnRequest,
    request: Request,
    user_id: str = Depends(current_user_id),
    idempotency_key: str | None = Header(default=None),
) -> Response:
    with SessionLocal() as db:
        ctx = build_context(db)
        body = run_idempotent(
            db,
            user_id,
            request.url.path,
            idempotency_key,
            lambda: execute_turn(ctx, user_id, session_id, payload.input_text),
            clock=ctx.clock,
        )
    return _json(body)


@app.post("/sessions/{session_id}/submit")
def submit(
    session_id: str,
    payload: SubmitRequest,
    request: Request,
    user_id: str = Depends(current_user_id),
    idempotency_key: str | None = Header(default=None),
) -> Response:
    with SessionLocal() as db:
        ctx = build_context(db)
        body = run_idempotent(
            db,
            user_id,
            request.url.path,
            idempotency_key,
            lambda: submit_answer(
                ctx,
                user_id,
                session_id,
                culprit=payload.culprit,
                logic_text=payload.logic_text,
            ),
            clock=ctx.clock,
        )
    return _json(body)


@app.post("/sessions/{session_id}/score")
def score(
    session_id: str,
    request: Request,
    user_id: str = Depends(current_user_id),
    idempotency_key: str | None = Header(default=None),
) -> Response:
    with SessionLocal() as db:
        ctx = build_context(db)
        body = run_idempotent(
            db,
            user_id,
            request.url.path,
            idempotency_key,
            lambda: score_session(ctx, user_id, session_id),
            clock=ctx.clock,
        )
    return _json(body)


@app.get("/history")
def history(user_id: str = Depends(current_user_id)) -> dict:
    with SessionLocal() as db:
        return {"history": SessionStore(db).sessions.history(user_id)}
