from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.logging_config import get_logger
from models import IdempotencyRecord
from rules.errors import ValidationError
from store.repos import utc_now

logger = get_logger(__name__)

MAX_KEY_LENGTH = 200


def dump_response(data: dict[str, Any]) -> str:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def require_idempotency_key(key: str | None) -> str:
    cleaned = (key or "").strip()
    if not cleaned:
        raise ValidationError("idempotency_required")
    if len(cleaned) > MAX_KEY_LENGTH:
        raise ValidationError("idempotency_key_too_long")
    return cleaned


class IdempotencyCache:
    def __init__(self, session: Session, clock: Callable[[], datetime] | None = None):
        self.session = session
        self.clock = clock or utc_now

    def lookup(self, owner_id: str, endpoint: str, key: str) -> str | None:
        row = self.session.get(IdempotencyRecord, (owner_id, endpoint, key))
        return row.response_json if row is not None else None

    def store(self, owner_id: str, endpoint: str, key: str, response_json: str) -> None:
        row = IdempotencyRecord(
            user_id=owner_id,
            endpoint=endpoint,
            key=key,
            response_json=response_json,
            created_at=self.clock(),
        )
        self.session.add(row)
        self.session.flush()


def run_idempotent(
    session: Session,
    owner_id: str,
    endpoint: str,
    key: str | None,
    operation: Callable[[], dict[str, Any]],
    *,
    clock: Callable[[], datetime] | None = None,
) -> str:
    """Run ``operation`` at most once per (owner, endpoint, key).

    The record is written in the same transaction as the operation's own
    writes. When a concurrent request stores the same key first, this
    transaction is rolled back and the stored response is returned instead.
    Any other error rolls back and is never cached.
    """
    key = require_idempotency_key(key)
    cache = IdempotencyCache(session, clock=clock)
    cached = cache.lookup(owner_id, endpoint, key)
    if cached is not None:
        logger.info("idempotent_replay", endpoint=endpoint)
        return cached

    try:
        body = dump_response(operation())
        cache.store(owner_id, endpoint, key, body)
        session.commit()
    except IntegrityError:
        session.rollback()
        winner = cache.lookup(owner_id, endpoint, key)
        if winner is None:
            raise
        logger.info("idempotency_race_lost", endpoint=endpoint)
        return winner
    except Exception:
        session.rollback()
        raise
    return body
