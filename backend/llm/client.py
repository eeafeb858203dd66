from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Protocol

import requests

from app.config import Settings

IMAGE_STYLE_PREFIX = (
    "cinematic illustration, semi-realistic, no text, no gore, wide shot, "
    "people allowed but not close-up faces, emphasize environment and objects"
)


class LLMClientError(RuntimeError):
    pass


class TextGenerationClient(Protocol):
    def complete(self, prompt: str, *, model: str, temperature: float = 0.8) -> str:
        ...


@dataclass(frozen=True)
class ImageArtifact:
    data: bytes
    content_type: str


class ImageGenerationClient(Protocol):
    def generate(self, tags: list[str], keyword: str) -> ImageArtifact:
        ...


class OpenAIChatClient:
    def __init__(
        self,
        *,
        api_key: str,
        url: str,
        timeout: int = 60,
    ) -> None:
        self.api_key = api_key
        self.url = url
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAIChatClient":
        return cls(
            api_key=settings.openai_api_key,
            url=settings.openai_url,
            timeout=settings.llm_timeout,
        )

    def complete(self, prompt: str, *, model: str, temperature: float = 0.8) -> str:
        payload = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
        }
        headers = {"authorization": f"Bearer {self.api_key}"}
        try:
            response = requests.post(
                self.url, json=payload, headers=headers, timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise LLMClientError(f"Text generation request failed: {exc}") from exc
        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            raise LLMClientError("Text generation returned no choices.")
        content = (choices[0].get("message") or {}).get("content")
        if not isinstance(content, str):
            raise LLMClientError("Invalid response from text generation backend.")
        return content


class GeminiImageClient:
    def __init__(
        self,
        *,
        api_key: str,
        url: str,
        timeout: int = 60,
    ) -> None:
        self.api_key = api_key
        self.url = url
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "GeminiImageClient":
        return cls(
            api_key=settings.gemini_api_key,
            url=settings.gemini_url,
            timeout=settings.llm_timeout,
        )

    def generate(self, tags: list[str], keyword: str) -> ImageArtifact:
        prompt = f"{IMAGE_STYLE_PREFIX}, {', '.join(tags)}, keyword: {keyword}"
        payload = {"prompt": prompt, "sampleCount": 1, "aspectRatio": "16:9"}
        headers = {"x-goog-api-key": self.api_key}
        try:
            response = requests.post(
                self.url, json=payload, headers=headers, timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise LLMClientError(f"Image generation request failed: {exc}") from exc
        images = data.get("images") if isinstance(data, dict) else None
        encoded = (images[0] or {}).get("image") if images else None
        if not isinstance(encoded, str) or not encoded:
            raise LLMClientError("Image generation returned no image.")
        try:
            blob = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise LLMClientError("Image payload is not valid base64.") from exc
        return ImageArtifact(data=blob, content_type="image/png")
