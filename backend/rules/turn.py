from __future__ import annotations

from datetime import timedelta
from typing import Any

from app.logging_config import get_logger
from llm.pipeline import ChatVariables
from rules.abuse import detect_abuse
from rules.context import GameContext
from rules.errors import InvalidStateError, NotFoundError, RateLimitedError

logger = get_logger(__name__)

EXHAUSTED_REPLY = (
    "Investigation time has run out. Show me the truth with the clues you have."
)
ABUSE_THRESHOLD = 3
RATE_LIMIT_SECONDS = 1.5
RECENT_REPLY_COUNT = 3
RECENT_REPLY_CHARS = 120
SUBMIT_PHASE = "submit"


def execute_turn(
    ctx: GameContext,
    user_id: str,
    session_id: str,
    player_input: str,
) -> dict[str, Any]:
    store = ctx.store
    session = store.sessions.get_owned(session_id, user_id)
    if session is None:
        raise NotFoundError()
    if session.status != "active":
        raise InvalidStateError()

    # Snapshot values; turns_left in the response is derived from these.
    turns_left = session.turn_limit - session.turns_used
    public_state = dict(session.public_state_json or {})
    if turns_left <= 0:
        return _exhausted_response(public_state)

    last_message = store.messages.latest(session_id)
    if last_message is not None:
        elapsed = ctx.clock() - last_message.created_at
        if elapsed < timedelta(seconds=RATE_LIMIT_SECONDS):
            logger.info("turn_rate_limited", session_id=session_id)
            raise RateLimitedError()

    abuse = detect_abuse(
        player_input,
        last_message.input_hash if last_message is not None else None,
    )
    flagged = abuse.flags.count()
    abuse_score = store.sessions.add_abuse_score(session_id, flagged)
    if flagged:
        logger.warning(
            "abuse_flags_raised",
            session_id=session_id,
            flags=abuse.flags.as_dict(),
            abuse_score=abuse_score,
        )

    if abuse_score >= ABUSE_THRESHOLD:
        store.sessions.force_exhaust(session_id)
        logger.warning("abuse_forced_exhaustion", session_id=session_id)
        return _exhausted_response(public_state)

    user = store.users.get(user_id)
    variables = ChatVariables(
        nickname=(user.nickname if user is not None and user.nickname else "Player"),
        worldview_short=session.worldview_text,
        player_attribute_short=session.attribute_text,
        difficulty=session.difficulty,
        turns_left=turns_left,
        abuse_flags=abuse.flags.as_dict(),
        public_state=public_state,
        player_input=player_input,
        last_messages=[
            _shorten(text)
            for text in store.messages.recent_contents(session_id, RECENT_REPLY_COUNT)
        ],
    )
    outcome = ctx.pipeline.reply(variables)

    store.messages.add(
        session_id=session_id,
        content=outcome.reply_text,
        input_hash=abuse.fingerprint,
        abuse_flags=abuse.flags.as_dict(),
    )
    if not store.sessions.consume_turn(session_id):
        raise InvalidStateError("turn_conflict")

    remaining = turns_left - 1
    return {
        "reply_text": outcome.reply_text,
        "public_state": public_state,
        "turns_left": remaining,
        "force_submit": False,
        "phase_hint": SUBMIT_PHASE if remaining <= 0 else None,
    }


def _exhausted_response(public_state: dict[str, Any]) -> dict[str, Any]:
    return {
        "reply_text": EXHAUSTED_REPLY,
        "public_state": public_state,
        "turns_left": 0,
        "force_submit": True,
        "phase_hint": SUBMIT_PHASE,
    }


def _shorten(text: str, limit: int = RECENT_REPLY_CHARS) -> str:
    trimmed = " ".join((text or "").split())
    if len(trimmed) <= limit:
        return trimmed
    return trimmed[: limit - 3].rstrip() + "..."
