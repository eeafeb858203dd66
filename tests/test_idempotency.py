import json

import pytest

from db import build_engine, build_session_factory, create_schema
from models import IdempotencyRecord, User
from rules.errors import NotFoundError, ValidationError
from store.idempotency import IdempotencyCache, dump_response, run_idempotent
from store.repos import SessionStore


@pytest.fixture
def db(game):
    session = game.factory()
    yield session
    session.close()


def test_replay_returns_stored_text_without_rerunning(game, db) -> None:
    store = SessionStore(db, clock=game.clock)
    calls = []

    def operation():
        calls.append(1)
        user = store.users.create(f"user{len(calls)}@example.com", "hash")
        return {"user_id": user.id, "note": "café"}

    first = run_idempotent(db, "owner", "/things", "key-1", operation, clock=game.clock)
    second = run_idempotent(db, "owner", "/things", "key-1", operation, clock=game.clock)

    assert first == second
    assert calls == [1]
    assert db.query(User).count() == 1
    assert json.loads(first)["note"] == "café"


def test_key_scope_includes_owner_and_endpoint(db) -> None:
    counter = iter(range(10))

    def operation():
        return {"n": next(counter)}

    a = run_idempotent(db, "owner-a", "/x", "k", operation)
    b = run_idempotent(db, "owner-b", "/x", "k", operation)
    c = run_idempotent(db, "owner-a", "/y", "k", operation)
    assert [json.loads(v)["n"] for v in (a, b, c)] == [0, 1, 2]
    assert db.query(IdempotencyRecord).count() == 3


def test_missing_key_fails_before_operation(db) -> None:
    def operation():
        raise AssertionError("must not run")

    with pytest.raises(ValidationError) as excinfo:
        run_idempotent(db, "owner", "/x", None, operation)
    assert excinfo.value.reason == "idempotency_required"

    with pytest.raises(ValidationError):
        run_idempotent(db, "owner", "/x", "   ", operation)
    with pytest.raises(ValidationError) as excinfo:
        run_idempotent(db, "owner", "/x", "k" * 201, operation)
    assert excinfo.value.reason == "idempotency_key_too_long"


def test_errors_roll_back_and_are_not_cached(game, db) -> None:
    store = SessionStore(db, clock=game.clock)
    attempts = []

    def failing():
        attempts.append(1)
        store.users.create("ghost@example.com", "hash")
        raise NotFoundError()

    with pytest.raises(NotFoundError):
        run_idempotent(db, "owner", "/x", "k", failing)
    assert db.query(User).count() == 0
    assert IdempotencyCache(db).lookup("owner", "/x", "k") is None

    body = run_idempotent(db, "owner", "/x", "k", lambda: {"ok": True})
    assert body == dump_response({"ok": True})
    assert attempts == [1]


def test_dump_response_is_compact() -> None:
    assert dump_response({"a": 1, "b": [1, 2]}) == '{"a":1,"b":[1,2]}'


def test_concurrent_store_loser_returns_winner_and_rolls_back(tmp_path) -> None:
    engine = build_engine(f"sqlite+pysqlite:///{tmp_path / 'race.db'}")
    create_schema(engine)
    factory = build_session_factory(engine)
    loser = factory()
    store = SessionStore(loser)
    winner_body = dump_response({"winner": True})

    def operation():
        # A parallel request with the same key commits first.
        with factory() as other:
            IdempotencyCache(other).store("owner", "/things", "race-key", winner_body)
            other.commit()
        store.users.create("loser@example.com", "hash")
        return {"winner": False}

    try:
        body = run_idempotent(loser, "owner", "/things", "race-key", operation)
        assert body == winner_body
        assert loser.query(User).count() == 0
        assert loser.query(IdempotencyRecord).count() == 1
    finally:
        loser.close()
        engine.dispose()
