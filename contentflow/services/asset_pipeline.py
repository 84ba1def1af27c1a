from __future__ import annotations

import base64
import json
import logging
from datetime import datetime, timezone
from typing import Any, Protocol

from contentflow.core.errors import JobValidationError, ServiceUnavailableError
from contentflow.services.enhancement import EnhancedContent
from contentflow.services.llm.openai_client import build_openai_client
from contentflow.services.storage import S3AssetStorage

logger = logging.getLogger(__name__)

THUMBNAIL_STYLE = "YouTube thumbnail, bold composition, high contrast, cinematic lighting, no text"


class ImageGenerator(Protocol):
    def render(self, prompt: str) -> bytes:
        ...


class OpenAIImageGenerator:
    def __init__(self, api_key: str | None, model: str = "gpt-image-1", size: str = "1536x1024",
                 timeout_sec: float = 180.0) -> None:
        self.api_key = api_key
        self.model = model
        self.size = size
        self.timeout_sec = timeout_sec
        self._client = None

    @property
    def client(self):
        if self._client is None:
            try:
                self._client = build_openai_client(self.api_key, self.timeout_sec)
            except ValueError as e:
                raise ServiceUnavailableError(str(e)) from e
        return self._client

    def render(self, prompt: str) -> bytes:
        kwargs: dict[str, Any] = {"model": self.model, "prompt": prompt, "size": self.size, "n": 1}
        if self.model.startswith("dall-e"):
            # gpt-image models always return base64; dall-e needs asking
            kwargs["response_format"] = "b64_json"
        resp = self.client.images.generate(**kwargs)
        b64 = resp.data[0].b64_json if resp.data else None
        if not b64:
            raise ServiceUnavailableError("Image provider returned no image data")
        return base64.b64decode(b64)


class AssetPipeline:
    """
    Renders and stores a job's assets.

    Object keys are deterministic per job, so re-running a stage after an
    interrupted attempt overwrites instead of duplicating.
    """

    def __init__(self, storage: S3AssetStorage, images: ImageGenerator, image_limit: int = 4) -> None:
        self.storage = storage
        self.images = images
        self.image_limit = image_limit

    def selected_prompts(self, enhanced: EnhancedContent) -> list[str]:
        prompts = list(enhanced.image_prompts)
        if self.image_limit > 0:
            prompts = prompts[: self.image_limit]
        return prompts

    def plan_units(self, enhanced: EnhancedContent) -> int:
        # one thumbnail + one image per selected prompt
        return 1 + len(self.selected_prompts(enhanced))

    def create_folder(self, job_id: int) -> str:
        return self.storage.create_folder(job_id)

    def generate(self, job_id: int, enhanced: EnhancedContent) -> dict[str, Any]:
        prefix = self.storage.job_prefix(job_id)
        lead = enhanced.image_prompts[0] if enhanced.image_prompts else enhanced.optimized_title
        thumb_prompt = f"{enhanced.optimized_title}. {lead}. {THUMBNAIL_STYLE}"
        thumbnail = self.storage.put_bytes(f"{prefix}/thumbnail.png", self.images.render(thumb_prompt), "image/png")

        images: list[str] = []
        for i, prompt in enumerate(self.selected_prompts(enhanced), start=1):
            url = self.storage.put_bytes(f"{prefix}/images/{i:02d}.png", self.images.render(prompt), "image/png")
            images.append(url)
            logger.debug("Job %s: image %s stored", job_id, i)

        return {"thumbnail": thumbnail, "images": images}

    def assemble(self, job_id: int, payload: dict[str, Any], asset_refs: dict[str, Any]) -> str:
        enhanced = payload.get("enhanced") or {}
        if not enhanced.get("script_sentences"):
            raise JobValidationError(f"Job {job_id} has no script to assemble")
        if not asset_refs.get("thumbnail"):
            raise JobValidationError(f"Job {job_id} has no generated thumbnail")

        sentences = enhanced["script_sentences"]
        manifest = {
            "job_id": job_id,
            "source_url": (payload.get("metadata") or {}).get("source_url"),
            "title": enhanced.get("optimized_title"),
            "description": enhanced.get("description"),
            "keywords": enhanced.get("keywords") or [],
            "voice_script": "\n\n".join(sentences),
            "script_sentences": sentences,
            "thumbnail": asset_refs.get("thumbnail"),
            "images": asset_refs.get("images") or [],
            "assembled_at": datetime.now(timezone.utc).isoformat(),
        }
        key = f"{self.storage.job_prefix(job_id)}/final/manifest.json"
        body = json.dumps(manifest, ensure_ascii=False, indent=2).encode("utf-8")
        return self.storage.put_bytes(key, body, "application/json")
