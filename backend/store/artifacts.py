from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Protocol


class ArtifactStore(Protocol):
    def put(self, key: str, data: bytes, content_type: str) -> str:
        ...


def artifact_key(prefix: str, name: str, content_type: str) -> str:
    extension = mimetypes.guess_extension(content_type or "") or ".bin"
    return f"{prefix}/{name}{extension}"


class LocalArtifactStore:
    def __init__(self, root: str | Path, base_url: str) -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def put(self, key: str, data: bytes, content_type: str) -> str:
        parts = Path(key).parts
        if not parts or ".." in parts or Path(key).is_absolute():
            raise ValueError(f"Invalid artifact key: {key}")
        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return f"{self.base_url}/{key}"
