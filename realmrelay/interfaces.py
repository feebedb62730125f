"""Collaborator interfaces and event types.

The relay core only talks to the outside world through these two
interfaces: a SessionConnection (the game realm) and a NotificationSink
(the chat channel). Adapters like the Telegram gateway and the console
session implement them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Optional, Union


# --- Errors ---


class RelayError(Exception):
    """Base error for the relay."""
    pass


class ConfigError(RelayError):
    """Invalid configuration."""
    pass


class ConnectError(RelayError):
    """Connecting to the realm failed (transient, retried)."""
    pass


class CommandRejected(RelayError):
    """Operator command is not valid in the current state."""
    pass


class UnattributableEvent(RelayError):
    """Event could not be attributed to any participant."""
    pass


# --- Game session events ---


@dataclass
class ChatEvent:
    """Chat line from the realm."""
    source_name: str
    text: str


@dataclass
class TranslationEvent:
    """Server-side translated message (deaths, system messages)."""
    text: str


@dataclass
class PresenceRecord:
    """One entry of a player list add batch."""
    id: str
    name: str
    platform_code: int = 0


@dataclass
class PresenceAdd:
    records: list[PresenceRecord] = field(default_factory=list)


@dataclass
class PresenceRemove:
    ids: list[str] = field(default_factory=list)


@dataclass
class Ended:
    """Connection closed by the peer."""
    reason: str = ""


@dataclass
class ErrorEvent:
    """Connection-level error reported by the client."""
    detail: str = ""


SessionEvent = Union[
    ChatEvent, TranslationEvent, PresenceAdd, PresenceRemove, Ended, ErrorEvent
]


# --- Chat gateway types ---


class Severity(Enum):
    """Notification severity; sinks map it to a colour or marker."""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    DANGER = "danger"


@dataclass
class GatewayMessage:
    """Message received from the chat gateway."""
    channel_id: str
    author_id: str
    author_tag: str
    text: str
    is_bot: bool = False


@dataclass
class CommandResult:
    """Structured outcome of an operator command."""
    ok: bool
    title: str
    message: str

    @property
    def severity(self) -> Severity:
        return Severity.SUCCESS if self.ok else Severity.DANGER


# --- Session connection interface ---


class SessionConnection(ABC):
    """Interface for game session clients.

    One instance represents one connection attempt. The supervisor creates a
    fresh instance for every (re)connect.
    """

    @abstractmethod
    async def connect(self, config: dict) -> None:
        """Establish the session.

        Args:
            config: Realm section of the config (invite code, etc.)

        Raises:
            ConnectError: if the realm cannot be reached
        """
        pass

    @abstractmethod
    async def disconnect(self, reason: str) -> None:
        """Tear down the session. Must be safe to call more than once."""
        pass

    @abstractmethod
    async def send_command(self, text: str) -> None:
        """Submit a single-line game command (e.g. "/me hello")."""
        pass

    @abstractmethod
    async def send_moderation_action(self, participant_id: str, reason: str) -> None:
        """Remove a participant from the realm."""
        pass

    @abstractmethod
    def events(self) -> AsyncIterator[SessionEvent]:
        """Lazy, non-restartable stream of session events."""
        pass


# --- Notification sink interface ---


class NotificationSink(ABC):
    """Interface for the chat channel notifications are relayed to."""

    @property
    @abstractmethod
    def channel_id(self) -> Optional[str]:
        """Currently bound channel, or None."""
        pass

    @abstractmethod
    def bind(self, channel_id: Optional[str]) -> None:
        """Point the sink at a channel."""
        pass

    @abstractmethod
    async def send(
        self,
        title: str,
        body: str,
        severity: Severity = Severity.INFO,
        channel_id: Optional[str] = None,
    ) -> bool:
        """Send a structured notification.

        Args:
            channel_id: Override the bound channel (command replies)

        Returns:
            True if delivered
        """
        pass

    @abstractmethod
    async def send_plain(self, body: str) -> bool:
        """Send an unstructured relay line."""
        pass
