from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from contentflow.core.errors import JobValidationError, ServiceUnavailableError
from contentflow.services.llm.openai_client import build_openai_client, compress_transcript, extract_json, generate_json
from contentflow.services.llm.prompts import ENHANCE_SYSTEM, ENHANCE_USER_TEMPLATE
from contentflow.services.ollama_client import OllamaClient

logger = logging.getLogger(__name__)


@dataclass
class EnhancedContent:
    optimized_title: str
    description: str
    script_sentences: list[str]
    image_prompts: list[str]
    keywords: list[str] = field(default_factory=list)
    provider: str = "unknown"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EnhancedContent":
        return cls(
            optimized_title=data["optimized_title"],
            description=data.get("description") or "",
            script_sentences=list(data.get("script_sentences") or []),
            image_prompts=list(data.get("image_prompts") or []),
            keywords=list(data.get("keywords") or []),
            provider=data.get("provider") or "unknown",
        )


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def parse_enhanced(payload: dict[str, Any], provider: str) -> EnhancedContent:
    """Validate the model's JSON; anything unusable is a provider fault."""
    title = str(payload.get("optimized_title") or "").strip()
    sentences = _str_list(payload.get("script_sentences"))
    prompts = _str_list(payload.get("image_prompts"))
    if not title or not sentences:
        raise ServiceUnavailableError(f"{provider} returned incomplete content (title/script missing)")
    return EnhancedContent(
        optimized_title=title[:100],
        description=str(payload.get("description") or "").strip(),
        script_sentences=sentences,
        image_prompts=prompts,
        keywords=[k.lower() for k in _str_list(payload.get("keywords"))],
        provider=provider,
    )


def build_user_prompt(metadata: dict[str, Any], max_chars: int = 9000) -> str:
    transcript = compress_transcript(metadata.get("transcript") or metadata.get("description") or "", max_chars=max_chars)
    if not transcript:
        raise JobValidationError("Source has neither transcript nor description to work from")
    return ENHANCE_USER_TEMPLATE.format(
        title=metadata.get("title") or "Untitled",
        channel=metadata.get("channel") or "unknown",
        tags=", ".join((metadata.get("tags") or [])[:15]) or "none",
        transcript=transcript,
    )


class OpenAIEnhancementEngine:
    def __init__(self, api_key: str | None, model: str = "gpt-4o-mini", timeout_sec: float = 180.0,
                 max_retries: int = 2, attempts: int = 2) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout_sec = timeout_sec
        self.max_retries = max_retries
        self.attempts = attempts
        self._client = None

    @property
    def client(self):
        if self._client is None:
            try:
                self._client = build_openai_client(self.api_key, self.timeout_sec, self.max_retries)
            except ValueError as e:
                raise ServiceUnavailableError(str(e)) from e
        return self._client

    def enhance(self, metadata: dict[str, Any]) -> EnhancedContent:
        user = build_user_prompt(metadata)
        payload = generate_json(self.client, model=self.model, system=ENHANCE_SYSTEM, user=user, attempts=self.attempts)
        return parse_enhanced(payload, provider="openai")

    def ping(self) -> bool:
        self.client.models.retrieve(self.model)
        return True


class OllamaEnhancementEngine:
    def __init__(self, client: OllamaClient, model: str) -> None:
        self.client = client
        self.model = model

    def enhance(self, metadata: dict[str, Any]) -> EnhancedContent:
        user = build_user_prompt(metadata, max_chars=6000)
        result = self.client.generate(self.model, user, system=ENHANCE_SYSTEM)
        try:
            payload = extract_json(result.text)
        except ValueError as e:
            raise ServiceUnavailableError(f"ollama returned unusable output: {e}") from e
        return parse_enhanced(payload, provider="ollama")

    def ping(self) -> bool:
        return self.client.ping()
