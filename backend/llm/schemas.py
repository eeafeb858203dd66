from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, JsonValue


class PublicStateSeed(BaseModel):
    model_config = ConfigDict(extra="ignore")

    visible_evidence: list[str] = Field(default_factory=list)
    initial_statements: dict[str, str] = Field(default_factory=dict)


class TruthTable(BaseModel):
    model_config = ConfigDict(extra="allow")

    public_state_seed: PublicStateSeed


class ImageHints(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tags_suggested: list[str] = Field(default_factory=list)
    keyword_suggested: str | None = None


class InitOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    truth_table: TruthTable
    image_hints: ImageHints | None = None


class PublicState(BaseModel):
    model_config = ConfigDict(extra="forbid")

    visible_evidence: list[str] = Field(default_factory=list)
    initial_statements: dict[str, str] = Field(default_factory=dict)
    discoverables: list[str] = Field(default_factory=list)


class ChatReply(BaseModel):
    model_config = ConfigDict(extra="ignore")

    reply_text: str = Field(min_length=1)


class GuardVerdict(BaseModel):
    model_config = ConfigDict(extra="ignore")

    violations: list[JsonValue] = Field(default_factory=list)


class ScoreOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    score_total: int
    breakdown: dict[str, JsonValue] = Field(default_factory=dict)
    grade: str = Field(min_length=1, max_length=16)
    result_text: str
