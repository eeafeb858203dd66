from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError as SchemaValidationError

from app.config import Settings
from app.logging_config import get_logger
from llm.client import LLMClientError, TextGenerationClient
from llm.prompts import PROMPT_VERSIONS, render_prompt
from llm.schemas import (
    ChatReply,
    GuardVerdict,
    ImageHints,
    InitOutput,
    PublicState,
    ScoreOutput,
)
from rules.errors import UpstreamError

logger = get_logger(__name__)

FALLBACK_LINE = "A silence falls. This is not the moment to say more."
TIME_PRESSURE_TURNS = 3


class OutputParseError(ValueError):
    pass


@dataclass(frozen=True)
class PipelineModels:
    init: str = "gpt-4.1"
    chat: str = "gpt-4.1-mini"
    guard: str = "gpt-4.1-mini"
    score: str = "gpt-4.1"

    @classmethod
    def from_settings(cls, settings: Settings) -> "PipelineModels":
        return cls(
            init=settings.model_init,
            chat=settings.model_chat,
            guard=settings.model_guard,
            score=settings.model_score,
        )


@dataclass(frozen=True)
class InitVariables:
    worldview: str
    player_attribute: str
    difficulty: str
    suspect_count: int
    world_explain_needed: bool
    image_tags: list[str]
    image_keyword: str
    nickname: str = "Player"

    def to_prompt_vars(self) -> dict[str, str]:
        return {
            "nickname": self.nickname,
            "worldview": self.worldview,
            "player_attribute": self.player_attribute,
            "difficulty": self.difficulty,
            "suspect_count": str(self.suspect_count),
            "world_explain_needed": _dump_bool(self.world_explain_needed),
            "image_tags": _dump(self.image_tags),
            "image_keyword": self.image_keyword,
        }


@dataclass(frozen=True)
class WorldSetup:
    intro_text: str
    truth_table: dict[str, Any]
    public_state: PublicState
    image_hints: ImageHints | None = None


@dataclass(frozen=True)
class ChatVariables:
    worldview_short: str
    player_attribute_short: str
    difficulty: str
    turns_left: int
    abuse_flags: dict[str, bool]
    public_state: dict[str, Any]
    player_input: str
    nickname: str = "Player"
    target_npc: str = ""
    last_messages: list[str] = field(default_factory=list)

    @property
    def time_pressure(self) -> bool:
        return self.turns_left <= TIME_PRESSURE_TURNS

    def to_prompt_vars(self) -> dict[str, str]:
        return {
            "nickname": self.nickname,
            "worldview_short": self.worldview_short,
            "player_attribute_short": self.player_attribute_short,
            "difficulty": self.difficulty,
            "turns_left": str(self.turns_left),
            "time_pressure": _dump_bool(self.time_pressure),
            "abuse_flags": _dump(self.abuse_flags),
            "public_state": _dump(self.public_state),
            "target_npc": self.target_npc,
            "last_messages_short": _dump(self.last_messages),
            "player_input": self.player_input,
        }


@dataclass(frozen=True)
class ChatOutcome:
    reply_text: str
    fallback_used: bool = False
    guard_flagged: bool = False


class PromptPipeline:
    def __init__(
        self,
        client: TextGenerationClient,
        *,
        models: PipelineModels | None = None,
        fallback_line: str = FALLBACK_LINE,
    ) -> None:
        self.client = client
        self.models = models or PipelineModels()
        self.fallback_line = fallback_line

    def initialize(self, variables: InitVariables) -> WorldSetup:
        prompt = render_prompt(PROMPT_VERSIONS["init"], variables.to_prompt_vars())
        try:
            raw = self.client.complete(prompt, model=self.models.init)
        except LLMClientError as exc:
            logger.error("init_generation_failed", error=str(exc))
            raise UpstreamError("init_upstream") from exc
        try:
            return parse_init_output(raw)
        except OutputParseError as exc:
            logger.error("init_parse_failed", error=str(exc))
            raise UpstreamError("init_parse") from exc

    def chat(self, variables: ChatVariables) -> ChatOutcome:
        prompt = render_prompt(PROMPT_VERSIONS["chat"], variables.to_prompt_vars())
        try:
            raw = self.client.complete(prompt, model=self.models.chat)
            reply = parse_chat_output(raw)
        except (LLMClientError, OutputParseError) as exc:
            logger.warning("chat_fallback", error=str(exc))
            return ChatOutcome(reply_text=self.fallback_line, fallback_used=True)
        return ChatOutcome(reply_text=reply.reply_text)

    def guard(self, text: str) -> bool:
        prompt = render_prompt(PROMPT_VERSIONS["guard"], {"text": text})
        try:
            raw = self.client.complete(prompt, model=self.models.guard)
            verdict = parse_guard_output(raw)
        except (LLMClientError, OutputParseError) as exc:
            logger.warning("guard_unavailable", error=str(exc))
            return False
        return bool(verdict.violations)

    def reply(self, variables: ChatVariables) -> ChatOutcome:
        outcome = self.chat(variables)
        if outcome.fallback_used:
            return outcome
        if self.guard(outcome.reply_text):
            logger.info("guard_violation_replaced")
            return ChatOutcome(
                reply_text=self.fallback_line,
                fallback_used=True,
                guard_flagged=True,
            )
        return outcome

    def score(self, truth_table: dict[str, Any], submission: dict[str, Any]) -> ScoreOutput:
        prompt = render_prompt(
            PROMPT_VERSIONS["score"],
            {
                "truth_table_json": _dump(truth_table),
                "player_submit": _dump(submission),
            },
        )
        try:
            raw = self.client.complete(prompt, model=self.models.score)
        except LLMClientError as exc:
            logger.error("score_generation_failed", error=str(exc))
            raise UpstreamError("score_upstream") from exc
        try:
            return parse_score_output(raw)
        except OutputParseError as exc:
            logger.error("score_parse_failed", error=str(exc))
            raise UpstreamError("score_parse") from exc


def parse_init_output(content: str) -> WorldSetup:
    block, intro_text = extract_json_block(content)
    try:
        payload = json.loads(block)
    except json.JSONDecodeError as exc:
        raise OutputParseError(f"Init block is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise OutputParseError("Init block is not an object.")
    try:
        output = InitOutput.model_validate(payload)
    except SchemaValidationError as exc:
        raise OutputParseError(f"Init block has invalid structure: {exc}") from exc
    seed = output.truth_table.public_state_seed
    public_state = PublicState(
        visible_evidence=list(seed.visible_evidence),
        initial_statements=dict(seed.initial_statements),
        discoverables=[],
    )
    return WorldSetup(
        intro_text=intro_text,
        truth_table=output.truth_table.model_dump(),
        public_state=public_state,
        image_hints=output.image_hints,
    )


def parse_chat_output(content: str) -> ChatReply:
    return _validate(ChatReply, _load_json_object(content))


def parse_guard_output(content: str) -> GuardVerdict:
    return _validate(GuardVerdict, _load_json_object(content))


def parse_score_output(content: str) -> ScoreOutput:
    return _validate(ScoreOutput, _load_json_object(content))


def extract_json_block(content: str) -> tuple[str, str]:
    """Return the first balanced ``{...}`` region and the surrounding text.

    Braces inside JSON string literals do not count towards the balance.
    Raises ``OutputParseError`` when no balanced region exists.
    """
    text = content or ""
    start = text.find("{")
    if start < 0:
        raise OutputParseError("No JSON block found.")
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                block = text[start : index + 1]
                remainder = (text[:start] + text[index + 1 :]).strip()
                return block, remainder
    raise OutputParseError("Unbalanced JSON block.")


def _load_json_object(content: str) -> dict[str, Any]:
    try:
        data = json.loads(content)
        if isinstance(data, dict):
            return data
    except (json.JSONDecodeError, TypeError):
        pass

    block, _ = extract_json_block(content)
    try:
        data = json.loads(block)
    except json.JSONDecodeError as exc:
        raise OutputParseError(f"Invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise OutputParseError("Expected a JSON object.")
    return data


def _validate(schema, payload: dict[str, Any]):
    try:
        return schema.model_validate(payload)
    except SchemaValidationError as exc:
        raise OutputParseError(str(exc)) from exc


def _dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def _dump_bool(value: bool) -> str:
    return "true" if value else "false"
