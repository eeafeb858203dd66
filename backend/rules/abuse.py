from __future__ import annotations

import re
import unicodedata
from dataclasses import asdict, dataclass

MAX_INPUT_LENGTH = 1000
SPAM_MAX_LENGTH = 5

INJECTION_KEYWORDS = (
    "system prompt",
    "システムプロンプト",
    "truth table",
    "真実を出せ",
    "ルールを無視",
    "apiキー",
    "api key",
    "developer message",
    "ignore previous instructions",
    "あなたの指示",
    "メタ",
    "要約して",
    "解説して",
)

_WHITESPACE_RE = re.compile(r"\s+")
_FLOOD_RE = re.compile(r"(.)\1{3,}", re.DOTALL)


@dataclass(frozen=True)
class AbuseFlags:
    prompt_injection: bool = False
    spam: bool = False
    repetitive: bool = False
    too_long: bool = False

    def count(self) -> int:
        return sum(1 for value in asdict(self).values() if value)

    def as_dict(self) -> dict[str, bool]:
        return asdict(self)


@dataclass(frozen=True)
class AbuseResult:
    flags: AbuseFlags
    fingerprint: str


def normalize_input(text: str) -> str:
    lowered = _WHITESPACE_RE.sub("", (text or "").lower())
    # Unicode categories P* (punctuation) and S* (symbols).
    stripped = "".join(
        ch for ch in lowered if unicodedata.category(ch)[0] not in ("P", "S")
    )
    return _FLOOD_RE.sub(r"\1\1", stripped)


def utf16_length(text: str) -> int:
    return len(text.encode("utf-16-le", "surrogatepass")) // 2


def fingerprint(normalized: str) -> str:
    # 32-bit rolling hash over UTF-16 code units; equality check only.
    data = normalized.encode("utf-16-le", "surrogatepass")
    value = 0
    for index in range(0, len(data), 2):
        unit = data[index] | (data[index + 1] << 8)
        value = (value * 31 + unit) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return f"h{abs(value)}"


_NORMALIZED_KEYWORDS = tuple(normalize_input(keyword) for keyword in INJECTION_KEYWORDS)


def detect_abuse(text: str, previous_fingerprint: str | None = None) -> AbuseResult:
    raw = text or ""
    normalized = normalize_input(raw)
    current = fingerprint(normalized)
    length = utf16_length(raw)
    flags = AbuseFlags(
        prompt_injection=any(keyword in normalized for keyword in _NORMALIZED_KEYWORDS),
        spam=length < SPAM_MAX_LENGTH and not any(ch.isalpha() for ch in raw),
        repetitive=bool(previous_fingerprint) and previous_fingerprint == current,
        too_long=length > MAX_INPUT_LENGTH,
    )
    return AbuseResult(flags=flags, fingerprint=current)
