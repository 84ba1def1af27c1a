from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Tuple

from openai import BadRequestError, OpenAI

logger = logging.getLogger(__name__)


# ----------------------------
# Transcript compression helpers
# ----------------------------

_STAGE_DIR_RE = re.compile(
    r"""\[
        (?:\s*music\s*|\s*laughter\s*|\s*applause\s*|\s*inaudible\s*|\s*silence\s*|[^\]]{1,40})
    \]""",
    re.IGNORECASE | re.VERBOSE,
)


def clean_text(text: str) -> str:
    s = (text or "").strip()
    if not s:
        return ""
    s = _STAGE_DIR_RE.sub(" ", s)
    s = re.sub(r"\s+", " ", s).strip()
    return s


def _pick_evenly(items: list[str], k: int) -> list[str]:
    if not items or k <= 0:
        return []
    if len(items) <= k:
        return items
    idxs = [round(i * (len(items) - 1) / (k - 1)) for i in range(k)]
    return [items[int(ix)] for ix in dict.fromkeys(idxs)]


def compress_transcript(transcript_text: str, max_chars: int = 9000) -> str:
    """
    Compress transcript by selecting evenly-spaced sentences so the prompt
    still covers the whole video.
    """
    t = clean_text(transcript_text)
    if len(t) <= max_chars:
        return t

    sents = [p.strip() for p in re.split(r"(?<=[.!?])\s+", t) if len(p.split()) >= 6]
    if len(sents) < 6:
        return t[:max_chars].rsplit(" ", 1)[0].strip()

    k = 60 if len(sents) > 200 else 45
    out = " ".join(_pick_evenly(sents, k=k)).strip()
    if len(out) > max_chars:
        out = out[:max_chars].rsplit(" ", 1)[0].strip()
    return out


# ----------------------------
# OpenAI call helpers (SDK compatible)
# ----------------------------

def build_openai_client(api_key: str | None, timeout_sec: float = 180.0, max_retries: int = 2) -> OpenAI:
    if not api_key:
        raise ValueError("OPENAI_API_KEY is missing")
    return OpenAI(api_key=api_key, timeout=timeout_sec, max_retries=max_retries)


def extract_json(text: str) -> dict[str, Any]:
    """
    Best-effort JSON extraction if model returns extra text.
    """
    text = (text or "").strip()
    if not text:
        raise ValueError("Empty response from model")

    # Fast path
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return data
    except ValueError:
        pass

    # Try to find outermost JSON object
    start = text.find("{")
    end = text.rfind("}")
    if start >= 0 and end > start:
        data = json.loads(text[start : end + 1])
        if isinstance(data, dict):
            return data

    raise ValueError(f"Model returned non-JSON. First 200 chars: {text[:200]!r}")


def _call_openai_json(client: OpenAI, model: str, system: str, user: str) -> Tuple[dict[str, Any], str]:
    """
    Tries Responses API first; falls back to ChatCompletions if needed.
    Returns (payload_dict, raw_text_used_for_parsing).
    """
    # Attempt 1: Responses API (newer pattern)
    try:
        resp = client.responses.create(
            model=model,
            input=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            text={"format": {"type": "json_object"}},
        )
        raw_text = getattr(resp, "output_text", None) or ""
        return extract_json(raw_text), raw_text
    except (TypeError, ValueError, BadRequestError) as e:
        # SDK/model combo without JSON mode on Responses, or unparseable output
        logger.debug("Responses API attempt unusable, falling back to chat: %s", e)

    # Attempt 2: ChatCompletions API (widely supported)
    chat = client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user + "\n\nReturn ONLY valid JSON."},
        ],
        response_format={"type": "json_object"},
    )
    raw_text = (chat.choices[0].message.content or "").strip()
    return extract_json(raw_text), raw_text


def generate_json(client: OpenAI, model: str, system: str, user: str, attempts: int = 2) -> dict[str, Any]:
    """
    Extra backoff loop on transient failures (the SDK already retries, but
    this helps with malformed JSON and network hiccups inside workers).
    """
    last_err: Exception | None = None
    for i in range(attempts):
        try:
            payload, _raw = _call_openai_json(client, model=model, system=system, user=user)
            return payload
        except Exception as e:
            last_err = e
            if i < attempts - 1:
                time.sleep(1.5 * (2 ** i))
    assert last_err is not None
    raise last_err
