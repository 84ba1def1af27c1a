from __future__ import annotations

import json
import logging
import re
import subprocess
from dataclasses import asdict, dataclass, field
from typing import Any
from urllib.parse import parse_qs, urlparse

from youtube_transcript_api import CouldNotRetrieveTranscript, YouTubeTranscriptApi

from contentflow.core.errors import (
    JobValidationError,
    NotFoundError,
    RateLimitedError,
    ServiceUnavailableError,
    TransientNetworkError,
)

logger = logging.getLogger(__name__)

_YT_ID_RE = re.compile(r"^[a-zA-Z0-9_-]{11}$")

_NOT_FOUND_MARKERS = ("video unavailable", "private video", "has been removed", "does not exist", "http error 404")
_RATE_LIMIT_MARKERS = ("http error 429", "too many requests", "rate-limit", "sign in to confirm")
_NETWORK_MARKERS = ("timed out", "connection reset", "temporary failure", "unable to download webpage", "network is unreachable")


def extract_youtube_video_id(url: str) -> str | None:
    """
    Supports:
    - https://www.youtube.com/watch?v=VIDEOID
    - https://youtu.be/VIDEOID
    - https://www.youtube.com/shorts/VIDEOID
    - https://www.youtube.com/embed/VIDEOID
    - https://www.youtube.com/live/VIDEOID
    """
    try:
        u = urlparse((url or "").strip())
    except ValueError:
        return None

    host = (u.netloc or "").lower()
    path = (u.path or "").strip("/")

    # youtu.be/VIDEOID
    if "youtu.be" in host:
        vid = path.split("/")[0] if path else ""
        return vid if _YT_ID_RE.match(vid) else None

    if "youtube.com" in host:
        # youtube.com/watch?v=VIDEOID
        if path == "watch":
            q = parse_qs(u.query or "")
            vid = (q.get("v", [""])[0]).strip()
            return vid if _YT_ID_RE.match(vid) else None

        # youtube.com/{shorts,embed,live}/VIDEOID
        parts = path.split("/")
        if len(parts) > 1 and parts[0] in ("shorts", "embed", "live"):
            vid = parts[1]
            return vid if _YT_ID_RE.match(vid) else None

    return None


def build_video_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


@dataclass
class VideoMetadata:
    video_id: str
    source_url: str
    title: str
    description: str = ""
    channel: str | None = None
    duration_sec: int | None = None
    view_count: int | None = None
    tags: list[str] = field(default_factory=list)
    thumbnail_url: str | None = None
    transcript: str = ""
    transcript_source: str = "none"  # captions | description | none

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _classify_ytdlp_failure(stderr: str) -> Exception:
    s = (stderr or "").lower()
    if any(m in s for m in _NOT_FOUND_MARKERS):
        return NotFoundError(f"Video not found: {stderr.strip()[:300]}")
    if any(m in s for m in _RATE_LIMIT_MARKERS):
        return RateLimitedError(f"YouTube rate limited the request: {stderr.strip()[:300]}")
    if any(m in s for m in _NETWORK_MARKERS):
        return TransientNetworkError(f"yt-dlp network failure: {stderr.strip()[:300]}")
    return ServiceUnavailableError(f"yt-dlp failed: {stderr.strip()[:300] or 'unknown error'}")


class YouTubeContentExtractor:
    """
    Content source for YouTube URLs.

    Metadata comes from yt-dlp (must be on PATH); the transcript from
    youtube-transcript-api, falling back to the video description.
    """

    def __init__(self, ytdlp_bin: str = "yt-dlp", timeout_sec: int = 60, language: str | None = None) -> None:
        self.ytdlp_bin = ytdlp_bin
        self.timeout_sec = timeout_sec
        self.language = language

    def _run_ytdlp(self, args: list[str]) -> str:
        cmd = [self.ytdlp_bin, *args]
        try:
            p = subprocess.run(cmd, check=True, capture_output=True, text=True, timeout=self.timeout_sec)
        except FileNotFoundError:
            raise ServiceUnavailableError("yt-dlp not found. Install it (pipx/brew/pip) and ensure it is on PATH.")
        except subprocess.TimeoutExpired:
            raise TransientNetworkError("yt-dlp timed out while fetching video metadata.")
        except subprocess.CalledProcessError as e:
            raise _classify_ytdlp_failure(e.stderr or "")
        return (p.stdout or "").strip()

    def fetch_metadata(self, source_url: str) -> VideoMetadata:
        video_id = extract_youtube_video_id(source_url)
        if not video_id:
            raise JobValidationError(f"Not a YouTube video URL: {source_url}")

        raw = self._run_ytdlp(["--dump-single-json", "--skip-download", "--no-warnings", build_video_url(video_id)])
        if not raw:
            raise ServiceUnavailableError("yt-dlp returned empty output for video metadata.")
        try:
            data = json.loads(raw)
        except ValueError:
            raise ServiceUnavailableError("Could not parse yt-dlp JSON output for video metadata.")

        meta = VideoMetadata(
            video_id=video_id,
            source_url=source_url,
            title=(data.get("title") or "").strip() or "Untitled",
            description=(data.get("description") or "").strip(),
            channel=data.get("channel") or data.get("uploader"),
            duration_sec=int(data["duration"]) if data.get("duration") else None,
            view_count=data.get("view_count"),
            tags=[t for t in (data.get("tags") or []) if isinstance(t, str)],
            thumbnail_url=data.get("thumbnail"),
        )
        self._attach_transcript(meta)
        return meta

    def _attach_transcript(self, meta: VideoMetadata) -> None:
        try:
            languages = [self.language] if self.language else ["en"]
            fetched = YouTubeTranscriptApi().fetch(meta.video_id, languages=languages)
            text = " ".join((s.text or "").strip() for s in fetched).strip()
        except CouldNotRetrieveTranscript as e:
            logger.info("No captions for %s (%s), using description", meta.video_id, type(e).__name__)
            text = ""
        except Exception as e:
            logger.warning("Transcript fetch failed for %s: %s", meta.video_id, e)
            text = ""

        if text:
            meta.transcript = text
            meta.transcript_source = "captions"
        elif meta.description:
            meta.transcript = meta.description
            meta.transcript_source = "description"

    def ping(self) -> bool:
        return bool(self._run_ytdlp(["--version"]))
