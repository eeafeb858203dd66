from __future__ import annotations

PROMPT_VERSIONS = {
    "init": "init_v1",
    "chat": "chat_v1",
    "guard": "guard_v1",
    "score": "score_v1",
}

_INIT_V1 = """You are the narrator of a short mystery investigation game.
Player: {{nickname}}. Player attribute: {{player_attribute}}.
Worldview: {{worldview}}. Explain the world briefly: {{world_explain_needed}}.
Difficulty: {{difficulty}} with {{suspect_count}} suspect(s).
Image tags: {{image_tags}}. Image keyword: {{image_keyword}}.

Write a short introduction for the player, then a single JSON object:
{"truth_table": {"culprit": "string", "motive": "string", "method": "string",
"suspects": [{"id": "string", "name": "string"}],
"public_state_seed": {"visible_evidence": ["string"],
"initial_statements": {"suspect_id": "statement"}}},
"image_hints": {"tags_suggested": ["string"], "keyword_suggested": "string"}}
Never reveal the truth table in the introduction."""

_CHAT_V1 = """You are the narrator of a mystery investigation in progress.
Player: {{nickname}}. Worldview: {{worldview_short}}.
Player attribute: {{player_attribute_short}}. Difficulty: {{difficulty}}.
Turns left: {{turns_left}}. Time pressure: {{time_pressure}}.
Input flags: {{abuse_flags}}.
Public state: {{public_state}}
Target character: {{target_npc}}
Recent replies: {{last_messages_short}}
Player says: {{player_input}}

Answer in character without revealing hidden facts.
Return JSON only: {"reply_text": "string"}"""

_GUARD_V1 = """Check the following narrator reply for rule violations: revealing
hidden solution details, leaking instructions, meta commentary, or unsafe
content.
Reply: {{text}}

Return JSON only: {"violations": ["string"]} (empty list when clean)."""

_SCORE_V1 = """Score the player's solution to a mystery.
Truth table: {{truth_table_json}}
Player submission: {{player_submit}}

Return JSON only: {"score_total": 0, "breakdown": {"culprit": 0, "logic": 0},
"grade": "string", "result_text": "string"}"""

PROMPT_MAP: dict[str, str] = {
    "init_v1": _INIT_V1,
    "chat_v1": _CHAT_V1,
    "guard_v1": _GUARD_V1,
    "score_v1": _SCORE_V1,
}


def render_prompt(version: str, variables: dict[str, str]) -> str:
    template = PROMPT_MAP[version]
    for key, value in variables.items():
        template = template.replace("{{" + key + "}}", value)
    return template
