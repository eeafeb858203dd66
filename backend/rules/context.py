from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from app.config import Settings
from llm.client import ImageGenerationClient
from llm.pipeline import PromptPipeline
from store.artifacts import ArtifactStore
from store.repos import SessionStore, utc_now


@dataclass
class GameContext:
    db: Session
    pipeline: PromptPipeline
    images: ImageGenerationClient
    artifacts: ArtifactStore
    settings: Settings
    clock: Callable[[], datetime] = utc_now
    store: SessionStore = field(init=False)

    def __post_init__(self) -> None:
        self.store = SessionStore(self.db, clock=self.clock)
