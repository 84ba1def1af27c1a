from __future__ import annotations

import html
import logging
from typing import Any, Dict, Protocol

import httpx

logger = logging.getLogger(__name__)

EVENT_TITLES = {
    "approval_requested": "Script ready for approval",
    "approved": "Script approved, generating assets",
    "assets_generated": "Assets generated",
    "completed": "Job completed",
    "job_failed": "Job failed",
    "approval_timeout_warning": "Approval pending too long",
    "approval_escalated": "Approval timed out, manual review required",
    "daily_summary": "Daily processing summary",
    "health_degraded": "Health check failed",
}


class Notifier(Protocol):
    def send(self, event: str, payload: Dict[str, Any]) -> bool:
        """Best-effort delivery. Returns False instead of raising."""
        ...

    def ping(self) -> bool:
        ...


def format_message(event: str, payload: Dict[str, Any]) -> str:
    title = EVENT_TITLES.get(event, event.replace("_", " ").capitalize())
    lines = [f"<b>{html.escape(title)}</b>", ""]
    for k, v in (payload or {}).items():
        if v is None or v == "":
            continue
        if isinstance(v, dict):
            v = ", ".join(f"{ik}={iv}" for ik, iv in v.items())
        lines.append(f"{html.escape(str(k))}: {html.escape(str(v))}")
    return "\n".join(lines).strip()


class NullNotifier:
    """Used when no notification channel is configured."""

    def send(self, event: str, payload: Dict[str, Any]) -> bool:
        logger.info("Notification (no channel configured) %s: %s", event, payload)
        return True

    def ping(self) -> bool:
        return True


class TelegramNotifier:
    """
    Minimal Telegram Bot API client.

    Uses /sendMessage with HTML parse mode; every failure is logged and
    reported as False so callers never have to guard the call.
    """

    def __init__(self, bot_token: str, chat_id: str, timeout_s: float = 30.0,
                 base_url: str = "https://api.telegram.org") -> None:
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.timeout_s = timeout_s
        self.base_url = base_url.rstrip("/")

    def _url(self, method: str) -> str:
        return f"{self.base_url}/bot{self.bot_token}/{method}"

    def send(self, event: str, payload: Dict[str, Any]) -> bool:
        body = {
            "chat_id": self.chat_id,
            "text": format_message(event, payload),
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        try:
            with httpx.Client(timeout=self.timeout_s) as client:
                r = client.post(self._url("sendMessage"), json=body)
                r.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.warning("Telegram notification %s failed: %s", event, e)
            return False

    def ping(self) -> bool:
        with httpx.Client(timeout=self.timeout_s) as client:
            r = client.get(self._url("getMe"))
            r.raise_for_status()
            data = r.json()
        return bool(data.get("ok"))
