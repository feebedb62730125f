"""Console mode - drive the relay from a terminal.

Each stdin line is either a realm event (a JSON object) or, otherwise, a
message typed into the relay channel. Game commands and notifications are
printed to stdout.

Event lines:
    {"type": "add", "records": [{"id": "u1", "name": "Steve", "platform": 7}]}
    {"type": "remove", "ids": ["u1"]}
    {"type": "chat", "source_name": "Steve", "text": "hi"}
    {"type": "translation", "text": "death.attack.player"}
    {"type": "ended", "reason": "closed"}
    {"type": "error", "detail": "boom"}
"""

import asyncio
import json
import sys
from typing import Optional

from .interfaces import (
    ChatEvent,
    ConnectError,
    Ended,
    ErrorEvent,
    GatewayMessage,
    NotificationSink,
    PresenceAdd,
    PresenceRecord,
    PresenceRemove,
    SessionConnection,
    SessionEvent,
    Severity,
    TranslationEvent,
)

CONSOLE_CHANNEL = "console"


def parse_event(data: dict) -> Optional[SessionEvent]:
    """Build a session event from its JSON form, or None if unknown."""
    kind = data.get("type")
    if kind == "chat":
        return ChatEvent(source_name=data.get("source_name", ""), text=data.get("text", ""))
    if kind == "translation":
        return TranslationEvent(text=data.get("text", ""))
    if kind == "add":
        return PresenceAdd(
            records=[
                PresenceRecord(
                    id=str(r["id"]),
                    name=r.get("name", ""),
                    platform_code=r.get("platform", 0),
                )
                for r in data.get("records", [])
                if "id" in r
            ]
        )
    if kind == "remove":
        return PresenceRemove(ids=[str(i) for i in data.get("ids", [])])
    if kind == "ended":
        return Ended(reason=data.get("reason", ""))
    if kind == "error":
        return ErrorEvent(detail=data.get("detail", ""))
    return None


class ConsoleSession(SessionConnection):
    """Session whose events are fed in by ConsoleFeed."""

    def __init__(self, out=None):
        self._out = out
        self._events: asyncio.Queue = asyncio.Queue()
        self.connected = False

    def _print(self, text: str) -> None:
        print(text, file=self._out or sys.stdout, flush=True)

    async def connect(self, config: dict) -> None:
        if config.get("fail"):
            raise ConnectError("Console realm configured to fail")
        self.connected = True
        print(f"[console] Connected to realm {config.get('code') or '(local)'}", file=sys.stderr)

    async def disconnect(self, reason: str) -> None:
        if not self.connected:
            return
        self.connected = False
        self._events.put_nowait(None)
        print(f"[console] Disconnected: {reason}", file=sys.stderr)

    async def send_command(self, text: str) -> None:
        self._print(f"> {text}")

    async def send_moderation_action(self, participant_id: str, reason: str) -> None:
        self._print(f"> /kick {participant_id} {reason}")

    @property
    def pending(self) -> bool:
        return self.connected and not self._events.empty()

    def feed(self, event: SessionEvent) -> None:
        self._events.put_nowait(event)

    async def events(self):
        while True:
            event = await self._events.get()
            if event is None:
                return
            yield event


class ConsoleSink(NotificationSink):
    """Prints notifications to stdout."""

    def __init__(self, out=None):
        self._out = out
        self._channel_id: Optional[str] = CONSOLE_CHANNEL

    @property
    def channel_id(self) -> Optional[str]:
        return self._channel_id

    def bind(self, channel_id: Optional[str]) -> None:
        self._channel_id = channel_id

    async def send(
        self,
        title: str,
        body: str,
        severity: Severity = Severity.INFO,
        channel_id: Optional[str] = None,
    ) -> bool:
        print(f"[{severity.value}] {title}: {body}", file=self._out or sys.stdout, flush=True)
        return True

    async def send_plain(self, body: str) -> bool:
        print(body, file=self._out or sys.stdout, flush=True)
        return True


class ConsoleFeed:
    """Reads stdin and routes lines to the current session or the relay."""

    def __init__(self, reader: Optional[asyncio.StreamReader] = None):
        self._reader = reader
        self.session: Optional[ConsoleSession] = None

    def create_session(self) -> ConsoleSession:
        """Session factory for the supervisor."""
        self.session = ConsoleSession()
        return self.session

    async def _open(self) -> asyncio.StreamReader:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        await loop.connect_read_pipe(lambda: protocol, sys.stdin)
        return reader

    async def poll(self) -> Optional[list[GatewayMessage]]:
        """Read one line. Returns None at end of input."""
        if self._reader is None:
            self._reader = await self._open()

        line = await self._reader.readline()
        if not line:
            # Let the session pump hand over what was already fed
            while self.session is not None and self.session.pending:
                await asyncio.sleep(0.01)
            return None

        text = line.decode().strip()
        if not text:
            return []

        if text.startswith("{"):
            self._feed_event(text)
            return []

        return [
            GatewayMessage(
                channel_id=CONSOLE_CHANNEL,
                author_id="console",
                author_tag="console",
                text=text,
            )
        ]

    def _feed_event(self, text: str) -> None:
        try:
            event = parse_event(json.loads(text))
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            print(f"[console] Bad event line: {e}", file=sys.stderr)
            return
        if event is None:
            print("[console] Unknown event type", file=sys.stderr)
            return
        if self.session is None or not self.session.connected:
            print("[console] Not connected, dropping event", file=sys.stderr)
            return
        self.session.feed(event)
