from __future__ import annotations

import time
import uuid
from typing import Any

from app.logging_config import get_logger
from llm.client import LLMClientError
from llm.pipeline import InitVariables
from llm.prompts import PROMPT_VERSIONS
from models import Session as SessionModel
from rules.context import GameContext
from rules.difficulty import Difficulty, difficulty_config, sanitize_keyword, world_explain_needed
from rules.errors import InvalidStateError, NotFoundError, UpstreamError
from store.artifacts import artifact_key

logger = get_logger(__name__)


def new_seed() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4()}"


def create_game_session(
    ctx: GameContext,
    user_id: str,
    *,
    worldview: str,
    attribute: str,
    difficulty: Difficulty,
    image_tags: list[str],
    image_keyword: str | None = None,
) -> dict[str, Any]:
    config = difficulty_config(difficulty)
    keyword = sanitize_keyword(image_keyword)
    user = ctx.store.users.get(user_id)

    setup = ctx.pipeline.initialize(
        InitVariables(
            nickname=(user.nickname if user is not None and user.nickname else "Player"),
            worldview=worldview,
            player_attribute=attribute,
            difficulty=difficulty.value,
            suspect_count=config.suspect_count,
            world_explain_needed=world_explain_needed(worldview),
            image_tags=list(image_tags),
            image_keyword=keyword,
        )
    )
    public_state = setup.public_state.model_dump()
    session = ctx.store.sessions.create(
        user_id=user_id,
        difficulty=difficulty.value,
        turn_limit=config.turn_limit,
        seed=new_seed(),
        worldview_text=worldview,
        attribute_text=attribute,
        prompt_version_init=PROMPT_VERSIONS["init"],
        prompt_version_chat=PROMPT_VERSIONS["chat"],
        prompt_version_score=PROMPT_VERSIONS["score"],
        intro_image_url="",
        truth_table_json=setup.truth_table,
        public_state_json=public_state,
    )

    hints = setup.image_hints
    tags = list(hints.tags_suggested) if hints and hints.tags_suggested else list(image_tags)
    hint_keyword = sanitize_keyword(hints.keyword_suggested) if hints else ""
    try:
        artifact = ctx.images.generate(tags, hint_keyword or keyword)
    except LLMClientError as exc:
        logger.error("intro_image_failed", session_id=session.id, error=str(exc))
        raise UpstreamError("image_upstream") from exc
    try:
        intro_image_url = ctx.artifacts.put(
            artifact_key("intro", session.id, artifact.content_type),
            artifact.data,
            artifact.content_type,
        )
    except (OSError, ValueError) as exc:
        logger.error("intro_image_store_failed", session_id=session.id, error=str(exc))
        raise UpstreamError("artifact_store") from exc
    ctx.store.sessions.set_intro_image(session.id, intro_image_url)
    logger.info("session_created", session_id=session.id, difficulty=difficulty.value)

    return {
        "session_id": session.id,
        "intro_text": setup.intro_text,
        "intro_image_url": intro_image_url,
        "public_state": public_state,
        "turn_limit": config.turn_limit,
        "turns_left": config.turn_limit,
    }


def get_session_view(ctx: GameContext, user_id: str, session_id: str) -> dict[str, Any]:
    session = _owned_session(ctx, user_id, session_id)
    return {
        "session_id": session.id,
        "status": session.status,
        "difficulty": session.difficulty,
        "public_state": session.public_state_json,
        "turn_limit": session.turn_limit,
        "turns_left": max(session.turn_limit - session.turns_used, 0),
        "intro_image_url": session.intro_image_url,
    }


def submit_answer(
    ctx: GameContext,
    user_id: str,
    session_id: str,
    *,
    culprit: str,
    logic_text: str,
) -> dict[str, Any]:
    session = _owned_session(ctx, user_id, session_id)
    if session.status != "active":
        raise InvalidStateError()
    if not ctx.store.sessions.transition_status(session_id, "active", "submitted"):
        raise InvalidStateError()
    ctx.store.submissions.add(session_id, culprit=culprit, logic_text=logic_text)
    logger.info("session_submitted", session_id=session_id)
    return {"ok": True}


def score_session(ctx: GameContext, user_id: str, session_id: str) -> dict[str, Any]:
    session = _owned_session(ctx, user_id, session_id)
    submission = ctx.store.submissions.get(session_id)
    if submission is None:
        raise NotFoundError("submission_not_found")
    if session.status != "submitted":
        raise InvalidStateError()

    output = ctx.pipeline.score(
        session.truth_table_json,
        {"culprit": submission.culprit, "logic_text": submission.logic_text},
    )
    share_image_url = session.intro_image_url
    ctx.store.results.add(
        session_id,
        score_total=output.score_total,
        breakdown=output.breakdown,
        grade=output.grade,
        result_text=output.result_text,
        share_image_url=share_image_url,
    )
    if not ctx.store.sessions.transition_status(session_id, "submitted", "scored"):
        raise InvalidStateError()
    logger.info("session_scored", session_id=session_id, grade=output.grade)

    return {
        "score_total": output.score_total,
        "breakdown": output.breakdown,
        "grade": output.grade,
        "result_text": output.result_text,
        "share_image_url": share_image_url,
    }


def _owned_session(ctx: GameContext, user_id: str, session_id: str) -> SessionModel:
    session = ctx.store.sessions.get_owned(session_id, user_id)
    if session is None:
        raise NotFoundError()
    return session
