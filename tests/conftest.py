from __future__ import annotations

import json
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import app
from db import build_engine, build_session_factory, create_schema
from llm.client import ImageArtifact, LLMClientError
from llm.pipeline import PipelineModels, PromptPipeline
from rules.context import GameContext

TEST_MODELS = PipelineModels(init="init", chat="chat", guard="guard", score="score")

TRUTH_BLOCK = {
    "truth_table": {
        "culprit": "The gardener",
        "motive": "An old debt",
        "method": "Poisoned tea",
        "suspects": [
            {"id": "s1", "name": "The gardener"},
            {"id": "s2", "name": "The butler"},
            {"id": "s3", "name": "The niece"},
        ],
        "public_state_seed": {
            "visible_evidence": ["A cracked teacup", "Muddy boots by the door"],
            "initial_statements": {"s2": "I was polishing silver all evening."},
        },
    },
    "image_hints": {"tags_suggested": ["manor", "night"], "keyword_suggested": "teacup"},
}

DEFAULT_OUTPUTS = {
    "init": "Rain lashes the manor windows as you arrive.\n" + json.dumps(TRUTH_BLOCK),
    "chat": json.dumps({"reply_text": "The butler glances at the teacup and says nothing."}),
    "guard": json.dumps({"violations": []}),
    "score": json.dumps(
        {
            "score_total": 82,
            "breakdown": {"culprit": 50, "logic": 32},
            "grade": "A",
            "result_text": "A sharp deduction.",
        }
    ),
}


class StubTextClient:
    """Scripted backend keyed by model name; the last queued output repeats."""

    def __init__(self, outputs: dict | None = None) -> None:
        self.outputs = {role: [value] for role, value in DEFAULT_OUTPUTS.items()}
        for role, values in (outputs or {}).items():
            self.script(role, *values)
        self.calls: list[tuple[str, str]] = []

    def script(self, role: str, *values) -> None:
        self.outputs[role] = list(values)

    def complete(self, prompt: str, *, model: str, temperature: float = 0.8) -> str:
        self.calls.append((model, prompt))
        queue = self.outputs[model]
        value = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(value, Exception):
            raise value
        return value

    def count(self, role: str) -> int:
        return sum(1 for model, _ in self.calls if model == role)


class StubImageClient:
    def __init__(self) -> None:
        self.calls: list[tuple[list[str], str]] = []
        self.fail = False

    def generate(self, tags: list[str], keyword: str) -> ImageArtifact:
        self.calls.append((list(tags), keyword))
        if self.fail:
            raise LLMClientError("image backend down")
        return ImageArtifact(data=b"\x89PNG\r\n\x1a\nstub", content_type="image/png")


class MemoryArtifactStore:
    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}

    def put(self, key: str, data: bytes, content_type: str) -> str:
        self.blobs[key] = data
        return f"memory://{key}"


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    create_schema(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def game(session_factory):
    text = StubTextClient()
    images = StubImageClient()
    artifacts = MemoryArtifactStore()
    clock = FakeClock()
    settings = Settings(token_secret="test-secret")

    def make_context(db) -> GameContext:
        return GameContext(
            db=db,
            pipeline=PromptPipeline(text, models=TEST_MODELS),
            images=images,
            artifacts=artifacts,
            settings=settings,
            clock=clock,
        )

    return SimpleNamespace(
        factory=session_factory,
        text=text,
        images=images,
        artifacts=artifacts,
        clock=clock,
        settings=settings,
        make_context=make_context,
    )


@pytest.fixture
def client(monkeypatch, game):
    monkeypatch.setattr("app.main.SessionLocal", game.factory)
    monkeypatch.setattr("app.main.build_context", game.make_context)
    monkeypatch.setattr("app.main.get_settings", lambda: game.settings)
    return TestClient(app)


@pytest.fixture
def auth_headers(client):
    def signup(email: str = "detective@example.com", password: str = "hunter2hunter2"):
        response = client.post(
            "/auth/signup",
            json={"email": email, "password": password},
            headers={"Idempotency-Key": f"signup-{email}"},
        )
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['token']}"}

    return signup


@pytest.fixture
def new_session(client, game):
    def create(headers: dict, difficulty: str = "Normal", key: str = "create-1") -> dict:
        response = client.post(
            "/sessions",
            json={
                "worldview": "A rain-soaked country manor",
                "attribute": "Retired inspector",
                "difficulty": difficulty,
                "image_tags": ["manor"],
                "image_keyword": "tea cup!",
            },
            headers={**headers, "Idempotency-Key": key},
        )
        assert response.status_code == 200, response.text
        game.clock.advance(5)
        return response.json()

    return create
