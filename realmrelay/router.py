"""Relay router - turns realm events into notifications and back.

The router is the only part that touches both the realm connection and
the notification sink. It runs on the relay worker, one event at a time.
"""

import asyncio
import re
import time
from typing import Awaitable, Callable, Optional

from .devices import DeviceTable
from .interfaces import (
    ChatEvent,
    GatewayMessage,
    NotificationSink,
    PresenceAdd,
    PresenceRemove,
    SessionConnection,
    Severity,
    TranslationEvent,
    UnattributableEvent,
)
from .logger import RelayLogger
from .moderation import ModerationPolicy
from .presence import JoinOutcome, PresenceRegistry
from .spam import SpamGuard
from .storage import RelayStore

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]+")


def single_line(text: str) -> str:
    """Collapse control characters so text stays one command line."""
    return _CONTROL_CHARS.sub(" ", text).strip()


class RelayRouter:
    """Routes chat, presence and death events between realm and channel."""

    def __init__(
        self,
        sink: NotificationSink,
        get_connection: Callable[[], Optional[SessionConnection]],
        policy: Optional[ModerationPolicy] = None,
        devices: Optional[DeviceTable] = None,
        store: Optional[RelayStore] = None,
        logger: Optional[RelayLogger] = None,
        rapid_threshold: float = 7.0,
        spam_prefixes: tuple = ("* External", "<External>"),
        death_indicator: str = "death",
        announce_presence: bool = True,
        leave_command: Optional[str] = None,
        on_leave_command: Optional[Callable[[], Awaitable[None]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sink = sink
        self._get_connection = get_connection
        self.policy = policy or ModerationPolicy()
        self.devices = devices or DeviceTable()
        self._store = store
        self._logger = logger or RelayLogger()
        self.rapid_threshold = rapid_threshold
        self.spam_prefixes = tuple(spam_prefixes)
        self.death_indicator = death_indicator
        self.announce_presence = announce_presence
        self.leave_command = leave_command
        self._on_leave_command = on_leave_command
        self._clock = clock
        self.presence: PresenceRegistry
        self.spam: SpamGuard
        self.pending_kicks: set[str] = set()
        self.reset()

    def reset(self) -> None:
        """Start a fresh presence/spam generation (full connection reset)."""
        self.presence = PresenceRegistry(self.rapid_threshold)
        self.spam = SpamGuard()
        self.pending_kicks = set()

    async def handle_event(self, event) -> None:
        if isinstance(event, ChatEvent):
            await self.on_chat(event)
        elif isinstance(event, TranslationEvent):
            await self.on_translation(event)
        elif isinstance(event, PresenceAdd):
            await self.on_presence_add(event)
        elif isinstance(event, PresenceRemove):
            await self.on_presence_remove(event)

    # --- Realm -> channel ---

    def is_synthetic(self, text: str) -> bool:
        return text.startswith(self.spam_prefixes)

    async def on_chat(self, event: ChatEvent) -> None:
        text = event.text or ""
        if not text:
            return

        if self.is_synthetic(text):
            try:
                await self._on_abuse_signal(event)
            except UnattributableEvent:
                self._logger.on_unattributable(text)
            return

        line = f"<{event.source_name}> {text}"
        self._logger.on_relay("realm", line)
        await self._notify_plain(line)

        if self.leave_command and text.strip() == self.leave_command:
            if self._on_leave_command:
                await self._on_leave_command()

    async def _on_abuse_signal(self, event: ChatEvent) -> None:
        """React once per participant to a synthetic-origin chat line.

        Attribution prefers the event's source name and falls back to the
        most recently joined participant. The fallback is a guess and can
        blame the wrong player when several join at once.
        """
        name = event.source_name
        key = None
        if name:
            match = self._find_by_name(name)
            key = match.id if match else name
        else:
            recent = self.presence.most_recent()
            if recent is not None:
                name, key = recent.display_name, recent.id

        if not name:
            raise UnattributableEvent(event.text)

        if not self.spam.flag_once(key):
            return

        self._logger.on_spam(name)
        await self._notify(
            "Anti Spam",
            f"Player {name} was flagged for External Spam!",
            Severity.DANGER,
        )

    async def on_translation(self, event: TranslationEvent) -> None:
        text = event.text or ""
        if self.death_indicator and self.death_indicator in text:
            await self._notify("Death Message", text, Severity.DANGER)

    async def on_presence_add(self, event: PresenceAdd) -> None:
        for record in event.records:
            device = self.devices.classify(record.platform_code)
            outcome = self.presence.on_join(
                record.id, record.name, device, self._clock()
            )

            if outcome == JoinOutcome.DUPLICATE_IGNORED:
                self._logger.on_duplicate(record.name)
                continue

            if outcome == JoinOutcome.RAPID_REJOIN:
                self._logger.on_rapid(record.name, record.id)
                await self._notify(
                    "Rapid Connection Alert",
                    f"Rapid Connect/Disconnect Detected! Username: {record.name}, "
                    f"ID: {record.id}",
                    Severity.WARNING,
                )

            self._logger.on_join(record.name, device, outcome.value)
            await self._notify(
                "Player Joined",
                f"Player {record.name} joined the Realm!\nDevice: {device}",
                Severity.SUCCESS,
            )
            if self.announce_presence:
                await self._command(f"/me §e{record.name}§r joined on §a{device}§r")

            if not self.policy.is_exempt(record.name):
                decision = self.policy.decide(device, record.name)
                if decision.kick:
                    await self._kick(record.id, record.name, device, decision.reason)

            await self._log_history("join", record.name, str(device))

    async def _kick(self, id: str, name: str, device, reason: str) -> None:
        if id in self.pending_kicks:
            return
        connection = self._get_connection()
        if connection is None:
            self._logger.warn("kick", f"Not connected, cannot kick {name}")
            return
        self.pending_kicks.add(id)
        self._logger.on_kick(name, device, reason)
        try:
            await connection.send_moderation_action(id, reason)
        except Exception as e:
            self.pending_kicks.discard(id)
            self._logger.on_error("kick", e)
            return
        await self._notify(
            "Player Kicked",
            f"Player {name} (Device: {device}) has been kicked from the realm.\n"
            f"Reason: {reason}",
            Severity.DANGER,
        )

    async def on_presence_remove(self, event: PresenceRemove) -> None:
        for id in event.ids:
            session = self.presence.on_leave(id)
            if session is None:
                continue

            self.spam.clear(session.id)
            self.spam.clear(session.display_name)
            self.pending_kicks.discard(session.id)
            self._logger.on_leave(session.display_name)
            await self._notify(
                "Player Left",
                f"Player {session.display_name} left the Realm!",
                Severity.WARNING,
            )
            if self.announce_presence:
                await self._command(f"/me §e{session.display_name}§r left the realm")

            await self._log_history("leave", session.display_name, str(session.device))

    # --- Channel -> realm ---

    async def on_gateway_message(self, message: GatewayMessage) -> None:
        """Relay a channel message into the realm."""
        if message.is_bot or message.channel_id != self.sink.channel_id:
            return
        text = single_line(message.text)
        if not text:
            return

        if self._get_connection() is None:
            await self._notify(
                "Error",
                "The bot is not connected to a realm.",
                Severity.DANGER,
            )
            return

        tag = single_line(message.author_tag)
        await self._command(f"/me §7<{tag}> §8§l>>§r {text}")
        self._logger.on_relay("channel", f"{tag}: {text}")

    async def say(self, text: str) -> bool:
        """Send a raw /me line into the realm."""
        return await self._command(f"/me {single_line(text)}")

    # --- Helpers ---

    def _find_by_name(self, name: str):
        for session in self.presence.list():
            if session.display_name == name:
                return session
        return None

    async def _log_history(self, event: str, name: str, device: str) -> None:
        if self._store is None:
            return
        write = self._store.log_join if event == "join" else self._store.log_leave
        try:
            # Blocking file I/O, kept off the event loop
            await asyncio.to_thread(write, name, device)
        except (OSError, TypeError, ValueError) as e:
            self._logger.on_error("history", e)

    async def _command(self, text: str) -> bool:
        connection = self._get_connection()
        if connection is None:
            return False
        try:
            await connection.send_command(single_line(text))
            return True
        except Exception as e:
            self._logger.on_error("send_command", e)
            return False

    async def _notify(self, title: str, body: str, severity: Severity) -> None:
        if not self.sink.channel_id:
            self._logger.debug("notify", f"No relay channel set, dropping: {title}")
            return
        try:
            await self.sink.send(title, body, severity)
        except Exception as e:
            self._logger.on_error("notify", e)

    async def _notify_plain(self, body: str) -> None:
        if not self.sink.channel_id:
            return
        try:
            await self.sink.send_plain(body)
        except Exception as e:
            self._logger.on_error("notify", e)
