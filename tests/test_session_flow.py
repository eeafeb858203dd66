import pytest

from llm.client import LLMClientError
from models import Result, Session as SessionModel, Submission
from rules.difficulty import Difficulty, difficulty_config, sanitize_keyword, world_explain_needed
from rules.errors import InvalidStateError, NotFoundError, UpstreamError
from rules.session import create_game_session, get_session_view, score_session, submit_answer


@pytest.fixture
def flow(game):
    db = game.factory()
    ctx = game.make_context(db)
    user = ctx.store.users.create("player@example.com", "not-a-real-hash")
    db.commit()
    yield db, ctx, user.id
    db.close()


def _create(ctx, user_id, difficulty=Difficulty.HARD, keyword="tea-cup!"):
    return create_game_session(
        ctx,
        user_id,
        worldview="A steampunk airship",
        attribute="Ship's doctor",
        difficulty=difficulty,
        image_tags=["airship"],
        image_keyword=keyword,
    )


def test_difficulty_table() -> None:
    assert difficulty_config(Difficulty.EASY).turn_limit == 10
    assert difficulty_config("Hard").turn_limit == 15
    assert difficulty_config("Hard").suspect_count == 3
    assert difficulty_config(Difficulty.EXPERT).turn_limit == 20
    assert difficulty_config("Impossible") == difficulty_config(Difficulty.NORMAL)


def test_keyword_and_worldview_helpers() -> None:
    assert sanitize_keyword("tea cup!!") == "teacup"
    assert sanitize_keyword("x" * 40) == "x" * 20
    assert sanitize_keyword(None) == ""
    assert world_explain_needed("A Steampunk city") is True
    assert world_explain_needed("A quiet village") is False


def test_create_session_persists_state_and_image(game, flow) -> None:
    db, ctx, user_id = flow
    response = _create(ctx, user_id)
    db.commit()

    assert response["turn_limit"] == 15
    assert response["turns_left"] == 15
    assert response["intro_text"] == "Rain lashes the manor windows as you arrive."
    assert response["public_state"]["discoverables"] == []
    assert "culprit" not in response["public_state"]

    session_id = response["session_id"]
    assert response["intro_image_url"] == f"memory://intro/{session_id}.png"
    assert f"intro/{session_id}.png" in game.artifacts.blobs
    assert game.images.calls == [(["manor", "night"], "teacup")]

    session = db.get(SessionModel, session_id)
    assert session.status == "active"
    assert session.turns_used == 0
    assert session.prompt_version_init == "init_v1"
    assert session.truth_table_json["culprit"] == "The gardener"
    assert session.intro_image_url == response["intro_image_url"]
    assert session.seed.split("-", 1)[0].isdigit()

    init_prompt = game.text.calls[0][1]
    assert "3 suspect(s)" in init_prompt
    assert "Explain the world briefly: true" in init_prompt


def test_image_failure_is_fatal(game, flow) -> None:
    db, ctx, user_id = flow
    game.images.fail = True
    with pytest.raises(UpstreamError) as excinfo:
        _create(ctx, user_id)
    assert excinfo.value.reason == "image_upstream"


def test_image_hints_fall_back_to_request(game, flow) -> None:
    db, ctx, user_id = flow
    game.text.script(
        "init",
        'Intro. {"truth_table": {"public_state_seed": {"visible_evidence": ["a map"]}}}',
    )
    _create(ctx, user_id, keyword="brass gears")
    assert game.images.calls == [(["airship"], "brassgears")]


def test_session_view_hides_truth(flow) -> None:
    db, ctx, user_id = flow
    created = _create(ctx, user_id)
    view = get_session_view(ctx, user_id, created["session_id"])
    assert view["status"] == "active"
    assert view["turns_left"] == 15
    assert "truth_table" not in view
    assert "truth_table_json" not in view
    with pytest.raises(NotFoundError):
        get_session_view(ctx, "another-user", created["session_id"])


def test_submit_then_score(game, flow) -> None:
    db, ctx, user_id = flow
    session_id = _create(ctx, user_id)["session_id"]

    assert submit_answer(
        ctx, user_id, session_id, culprit="The gardener", logic_text="Muddy boots."
    ) == {"ok": True}
    db.commit()
    assert db.get(Submission, session_id).culprit == "The gardener"

    with pytest.raises(InvalidStateError):
        submit_answer(ctx, user_id, session_id, culprit="The butler", logic_text="Hunch.")

    result = score_session(ctx, user_id, session_id)
    db.commit()
    assert result["score_total"] == 82
    assert result["grade"] == "A"
    assert result["share_image_url"] == f"memory://intro/{session_id}.png"

    session = db.get(SessionModel, session_id)
    db.refresh(session)
    assert session.status == "scored"
    assert db.get(Result, session_id).result_text == "A sharp deduction."

    score_prompt = [prompt for model, prompt in game.text.calls if model == "score"][0]
    assert "Muddy boots." in score_prompt

    with pytest.raises(InvalidStateError):
        score_session(ctx, user_id, session_id)


def test_score_without_submission_is_not_found(flow) -> None:
    db, ctx, user_id = flow
    session_id = _create(ctx, user_id)["session_id"]
    with pytest.raises(NotFoundError) as excinfo:
        score_session(ctx, user_id, session_id)
    assert excinfo.value.reason == "submission_not_found"


def test_score_backend_failure_keeps_session_submitted(game, flow) -> None:
    db, ctx, user_id = flow
    session_id = _create(ctx, user_id)["session_id"]
    submit_answer(ctx, user_id, session_id, culprit="The niece", logic_text="Motive.")
    db.commit()

    game.text.script("score", LLMClientError("timeout"))
    with pytest.raises(UpstreamError):
        score_session(ctx, user_id, session_id)
    db.rollback()

    session = db.get(SessionModel, session_id)
    db.refresh(session)
    assert session.status == "submitted"
    assert db.get(Result, session_id) is None
