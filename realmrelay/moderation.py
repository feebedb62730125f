"""Moderation policy - decides whether a joining player is kicked."""

from dataclasses import dataclass, field, replace
from typing import Optional

from .devices import Device

BANNED_DEVICE = "banned-device"
BLOCKED_NAME = "blocked-name"

# Operator-facing list names
LIST_NAMES = {
    "allow": "allow_list",
    "device": "banned_devices",
    "block": "block_list",
}


@dataclass(frozen=True)
class ModerationLists:
    """Immutable snapshot of the moderation lists."""

    allow_list: frozenset = field(default_factory=frozenset)
    banned_devices: frozenset = field(default_factory=frozenset)
    block_list: frozenset = field(default_factory=frozenset)

    @classmethod
    def from_dict(cls, data: dict) -> "ModerationLists":
        return cls(
            allow_list=frozenset(data.get("allow_list") or []),
            banned_devices=frozenset(data.get("banned_devices") or []),
            block_list=frozenset(data.get("block_list") or []),
        )

    def to_dict(self) -> dict:
        return {
            "allow_list": sorted(self.allow_list),
            "banned_devices": sorted(self.banned_devices),
            "block_list": sorted(self.block_list),
        }

    def with_entry(self, list_name: str, value: str, enabled: bool) -> "ModerationLists":
        """Return a new snapshot with value added to or removed from a list.

        Args:
            list_name: "allow", "device" or "block" (or the attribute name)
        """
        attr = LIST_NAMES.get(list_name, list_name)
        if attr not in LIST_NAMES.values():
            raise KeyError(list_name)
        current = getattr(self, attr)
        updated = current | {value} if enabled else current - {value}
        return replace(self, **{attr: frozenset(updated)})


@dataclass(frozen=True)
class Decision:
    """ALLOW when reason is None, otherwise KICK(reason)."""

    reason: Optional[str] = None

    @property
    def kick(self) -> bool:
        return self.reason is not None


ALLOW = Decision()


class ModerationPolicy:
    """Pure decision function over a ModerationLists snapshot."""

    def __init__(self, lists: Optional[ModerationLists] = None):
        self.lists = lists or ModerationLists()

    def is_exempt(self, display_name: str) -> bool:
        return display_name in self.lists.allow_list

    def decide(self, device: Device, display_name: str) -> Decision:
        device_name = device.value if isinstance(device, Device) else str(device)
        if device_name in self.lists.banned_devices:
            return Decision(BANNED_DEVICE)
        if display_name in self.lists.block_list:
            return Decision(BLOCKED_NAME)
        return ALLOW
