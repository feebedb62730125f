"""Relay storage - channel binding, moderation overrides and player history.

State (channel binding, moderation lists) is a small YAML file; the
join/leave history is an append-only JSON array.
"""

import json
import sys
from dataclasses import dataclass, field, fields, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import yaml


@dataclass
class HistoryEntry:
    """One join or leave record."""

    event: str
    username: str
    device: str = ""
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


class RelayStore:
    """File-backed key-value state plus history log."""

    def __init__(self, state_path: Path, history_path: Path):
        self._state_path = Path(state_path)
        self._history_path = Path(history_path)
        self._state: dict = {}
        self._load()

    def _load(self) -> None:
        """Load state from YAML file."""
        if not self._state_path.exists():
            return

        try:
            with open(self._state_path) as f:
                data = yaml.safe_load(f) or {}
            self._state = data if isinstance(data, dict) else {}
        except (OSError, yaml.YAMLError) as e:
            print(f"[storage] Could not read {self._state_path}: {e}", file=sys.stderr)
            self._state = {}

    def _save(self) -> None:
        """Save state to YAML file."""
        self._state_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._state_path, "w") as f:
            yaml.dump(self._state, f, default_flow_style=False, sort_keys=False)

    # --- Key-value state ---

    def get(self, key: str, default=None):
        return self._state.get(key, default)

    def set(self, key: str, value) -> None:
        self._state[key] = value
        self._save()

    def load_channel(self) -> Optional[str]:
        channel_id = self._state.get("channel_id")
        return str(channel_id) if channel_id is not None else None

    def save_channel(self, channel_id: str) -> None:
        self.set("channel_id", str(channel_id))

    def load_moderation(self) -> Optional[dict]:
        """Moderation lists saved by operator commands, if any."""
        return self._state.get("moderation")

    def save_moderation(self, lists: dict) -> None:
        self.set("moderation", lists)

    # --- History ---

    def _load_history(self) -> list:
        """Raw history records. Raises ValueError if the file is not a JSON array."""
        if not self._history_path.exists():
            return []
        data = json.loads(self._history_path.read_text() or "[]")
        if not isinstance(data, list):
            raise ValueError(f"{self._history_path} is not a JSON array")
        return data

    def read_history(self) -> list[HistoryEntry]:
        try:
            data = self._load_history()
        except (OSError, ValueError) as e:
            print(
                f"[storage] Could not read {self._history_path}: {e}", file=sys.stderr
            )
            return []
        known = {f.name for f in fields(HistoryEntry)}
        entries = []
        for item in data:
            if not isinstance(item, dict) or "event" not in item or "username" not in item:
                continue
            entries.append(HistoryEntry(**{k: v for k, v in item.items() if k in known}))
        return entries

    def append_history(self, entry: HistoryEntry) -> None:
        try:
            records = self._load_history()
        except ValueError as e:
            # Keep the unreadable log aside instead of overwriting it
            stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
            backup = self._history_path.with_name(f"{self._history_path.name}.{stamp}.bak")
            self._history_path.replace(backup)
            print(
                f"[storage] {self._history_path} unreadable ({e}), moved to {backup}",
                file=sys.stderr,
            )
            records = []
        records.append(asdict(entry))
        self._history_path.parent.mkdir(parents=True, exist_ok=True)
        self._history_path.write_text(json.dumps(records, indent=2))

    def log_join(self, username: str, device: str) -> None:
        self.append_history(HistoryEntry(event="join", username=username, device=device))

    def log_leave(self, username: str, device: str = "") -> None:
        self.append_history(
            HistoryEntry(event="leave", username=username, device=device)
        )
