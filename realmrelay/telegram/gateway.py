"""Telegram gateway - relay channel backed by the Telegram Bot API.

Implements NotificationSink for outbound notifications and a poll()
method for inbound channel messages (long polling on getUpdates).

Config format:
    telegram:
      bot_token: "${TELEGRAM_BOT_TOKEN}"
      poll_timeout: 30  # Long polling timeout in seconds (default: 30)
"""

import os
import sys
from typing import Optional

import httpx
from telegram.constants import ParseMode
from telegram.helpers import escape_markdown

from ..interfaces import GatewayMessage, NotificationSink, Severity

API_BASE = "https://api.telegram.org"

SEVERITY_MARKERS = {
    Severity.INFO: "🔵",
    Severity.SUCCESS: "🟢",
    Severity.WARNING: "🟡",
    Severity.DANGER: "🔴",
}


def format_notification(title: str, body: str, severity: Severity) -> str:
    """Render a titled notification as MarkdownV2."""
    marker = SEVERITY_MARKERS.get(severity, "")
    title_md = escape_markdown(title, version=2)
    body_md = escape_markdown(body, version=2)
    return f"{marker} *{title_md}*\n{body_md}".strip()


def author_tag(from_user: dict) -> str:
    username = from_user.get("username")
    if username:
        return f"@{username}"
    name = " ".join(
        p for p in (from_user.get("first_name"), from_user.get("last_name")) if p
    )
    return name or str(from_user.get("id", "unknown"))


class TelegramGateway(NotificationSink):
    """Telegram group used as the relay channel."""

    def __init__(self, config: Optional[dict] = None, client: Optional[httpx.AsyncClient] = None):
        config = config or {}
        self._bot_token: Optional[str] = config.get("bot_token") or os.environ.get(
            "TELEGRAM_BOT_TOKEN"
        )
        self._poll_timeout: int = int(config.get("poll_timeout", 30))
        self._channel_id: Optional[str] = None
        self._last_update_id: int = 0
        self._client = client

        if not self._bot_token:
            print("[telegram] Warning: No bot_token configured", file=sys.stderr)

    @property
    def configured(self) -> bool:
        return bool(self._bot_token)

    @property
    def channel_id(self) -> Optional[str]:
        return self._channel_id

    def bind(self, channel_id: Optional[str]) -> None:
        self._channel_id = str(channel_id) if channel_id is not None else None

    def _url(self, method: str) -> str:
        return f"{API_BASE}/bot{self._bot_token}/{method}"

    async def _post(self, method: str, payload: dict, timeout: float) -> dict:
        if self._client is not None:
            resp = await self._client.post(self._url(method), json=payload, timeout=timeout)
            return resp.json()
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(self._url(method), json=payload)
            return resp.json()

    # --- NotificationSink ---

    async def send(
        self,
        title: str,
        body: str,
        severity: Severity = Severity.INFO,
        channel_id: Optional[str] = None,
    ) -> bool:
        return await self._send_text(
            channel_id or self._channel_id,
            format_notification(title, body, severity),
            parse_mode=ParseMode.MARKDOWN_V2,
        )

    async def send_plain(self, body: str) -> bool:
        return await self._send_text(self._channel_id, body)

    async def _send_text(
        self, channel_id: Optional[str], text: str, parse_mode: Optional[str] = None
    ) -> bool:
        if not self._bot_token or not channel_id:
            return False

        payload = {"chat_id": int(channel_id), "text": text}
        if parse_mode:
            payload["parse_mode"] = parse_mode

        try:
            data = await self._post("sendMessage", payload, timeout=10.0)
        except (httpx.HTTPError, ValueError) as e:
            print(f"[telegram] Send error: {e}", file=sys.stderr)
            return False

        if not data.get("ok", False):
            print(
                f"[telegram] Send rejected: {data.get('description', 'unknown error')}",
                file=sys.stderr,
            )
            return False
        return True

    # --- Inbound ---

    async def poll(self) -> list[GatewayMessage]:
        """Poll Telegram for new messages.

        Uses long polling - Telegram holds the connection open and returns
        as soon as new messages arrive.
        """
        if not self._bot_token:
            return []

        payload = {
            "offset": self._last_update_id + 1,
            "timeout": self._poll_timeout,
            "limit": 100,
            "allowed_updates": ["message"],
        }

        try:
            # HTTP timeout must be longer than Telegram's long poll timeout
            data = await self._post("getUpdates", payload, timeout=self._poll_timeout + 5.0)
        except (httpx.HTTPError, ValueError) as e:
            print(f"[telegram] Poll error: {e}", file=sys.stderr)
            return []

        if not data.get("ok"):
            return []

        messages = []
        for update in data.get("result", []):
            self._last_update_id = max(self._last_update_id, update["update_id"])
            msg = update.get("message")
            if not msg or not msg.get("text"):
                continue

            from_user = msg.get("from", {})
            messages.append(
                GatewayMessage(
                    channel_id=str(msg["chat"]["id"]),
                    author_id=str(from_user.get("id", "")),
                    author_tag=author_tag(from_user),
                    text=msg["text"],
                    is_bot=bool(from_user.get("is_bot", False)),
                )
            )
        return messages
