"""Presence registry - who is currently in the realm.

Join timestamps outlive the session so a quick leave-then-join can be
reported as a rapid rejoin.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .devices import Device


class JoinOutcome(Enum):
    CREATED = "created"
    DUPLICATE_IGNORED = "duplicate_ignored"
    RAPID_REJOIN = "rapid_rejoin"


@dataclass
class ParticipantSession:
    """A player currently present in the realm."""

    id: str
    display_name: str
    device: Device
    joined_at: float


class PresenceRegistry:
    """Authoritative map of present participants.

    Only the relay worker mutates this, so no locking.
    """

    def __init__(self, rapid_threshold: float = 7.0):
        self.rapid_threshold = rapid_threshold
        self._sessions: dict[str, ParticipantSession] = {}
        self._last_join: dict[str, float] = {}

    def on_join(
        self, id: str, display_name: str, device: Device, now: float
    ) -> JoinOutcome:
        """Register a join.

        Returns DUPLICATE_IGNORED without touching state if the id is
        already present. A rejoin within rapid_threshold of the previous
        join is still registered, but reported as RAPID_REJOIN.
        """
        if id in self._sessions:
            return JoinOutcome.DUPLICATE_IGNORED

        previous = self._last_join.get(id)
        self._sessions[id] = ParticipantSession(
            id=id, display_name=display_name, device=device, joined_at=now
        )
        self._last_join[id] = now

        if previous is not None and now - previous < self.rapid_threshold:
            return JoinOutcome.RAPID_REJOIN
        return JoinOutcome.CREATED

    def on_leave(self, id: str) -> Optional[ParticipantSession]:
        return self._sessions.pop(id, None)

    def get(self, id: str) -> Optional[ParticipantSession]:
        return self._sessions.get(id)

    def list(self) -> list[ParticipantSession]:
        # dicts keep insertion order, which is join order
        return list(self._sessions.values())

    def most_recent(self) -> Optional[ParticipantSession]:
        """Most recently registered participant still present."""
        if not self._sessions:
            return None
        return next(reversed(self._sessions.values()))

    def reset_all(self) -> None:
        self._sessions.clear()
        self._last_join.clear()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, id: str) -> bool:
        return id in self._sessions
