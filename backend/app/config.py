from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    database_url: str = "sqlite+pysqlite:///./mystery.db"

    token_secret: str = "change-me"
    token_ttl_seconds: int = 7 * 24 * 3600

    openai_api_key: str = ""
    openai_url: str = "https://api.openai.com/v1/chat/completions"
    model_init: str = "gpt-4.1"
    model_chat: str = "gpt-4.1-mini"
    model_guard: str = "gpt-4.1-mini"
    model_score: str = "gpt-4.1"
    llm_timeout: int = 60

    gemini_api_key: str = ""
    gemini_url: str = (
        "https://generativelanguage.googleapis.com/v1beta/models/"
        "imagen-3.0-generate-001:generateImages"
    )

    artifact_dir: str = "./artifacts"
    artifact_base_url: str = "http://localhost:8000/artifacts"

    log_level: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
