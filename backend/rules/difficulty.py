from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class Difficulty(str, Enum):
    EASY = "Easy"
    NORMAL = "Normal"
    HARD = "Hard"
    EXPERT = "Expert"


@dataclass(frozen=True)
class DifficultyConfig:
    turn_limit: int
    suspect_count: int


DIFFICULTY_TABLE: dict[Difficulty, DifficultyConfig] = {
    Difficulty.EASY: DifficultyConfig(turn_limit=10, suspect_count=1),
    Difficulty.NORMAL: DifficultyConfig(turn_limit=10, suspect_count=2),
    Difficulty.HARD: DifficultyConfig(turn_limit=15, suspect_count=3),
    Difficulty.EXPERT: DifficultyConfig(turn_limit=20, suspect_count=4),
}

WORLDVIEW_KEYWORDS = (
    "近未来",
    "異世界",
    "中世",
    "魔法",
    "宇宙",
    "サイバー",
    "未来",
    "未来都市",
    "steam",
    "steampunk",
    "fantasy",
    "cyberpunk",
    "space",
)

_KEYWORD_STRIP_RE = re.compile(r"[\W_]+", re.UNICODE)


def difficulty_config(difficulty: Difficulty | str) -> DifficultyConfig:
    try:
        key = Difficulty(difficulty)
    except ValueError:
        return DIFFICULTY_TABLE[Difficulty.NORMAL]
    return DIFFICULTY_TABLE[key]


def world_explain_needed(worldview: str | None) -> bool:
    lowered = (worldview or "").lower()
    return any(keyword.lower() in lowered for keyword in WORLDVIEW_KEYWORDS)


def sanitize_keyword(keyword: str | None) -> str:
    if not keyword:
        return ""
    return _KEYWORD_STRIP_RE.sub("", keyword)[:20]
