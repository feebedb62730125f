"""Relay logger - one timestamped stderr line per relay event."""

import json
import sys
from datetime import datetime, timezone


class RelayLogger:
    """Leveled event logger."""

    def __init__(self, level: str = "info", stream=None):
        self._levels = {"debug": 0, "info": 1, "warn": 2, "error": 3}
        self._level = level if level in self._levels else "info"
        self._stream = stream

    @property
    def level(self) -> str:
        return self._level

    def _should_log(self, level: str) -> bool:
        return self._levels.get(level, 1) >= self._levels.get(self._level, 1)

    def _log(self, level: str, hook: str, msg: str, **extra):
        if not self._should_log(level):
            return
        ts = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        parts = [f"[{ts}]", f"[{level[0].upper()}]", f"[{hook}]", msg]
        if extra:
            parts.append(json.dumps(extra, default=str))
        print(" ".join(parts), file=self._stream or sys.stderr, flush=True)

    def debug(self, hook: str, msg: str, **extra):
        self._log("debug", hook, msg, **extra)

    def info(self, hook: str, msg: str, **extra):
        self._log("info", hook, msg, **extra)

    def warn(self, hook: str, msg: str, **extra):
        self._log("warn", hook, msg, **extra)

    # --- Event Methods ---

    def on_relay(self, direction: str, text: str) -> None:
        # Remove newlines for log readability
        self._log("info", "relay", f"{direction}: {text.replace(chr(10), ' ')[:120]}")

    def on_join(self, name: str, device, outcome: str) -> None:
        self._log("info", "join", f"{name} on {device}", outcome=outcome)

    def on_duplicate(self, name: str) -> None:
        self._log("warn", "join", f"Duplicate join detected for {name}. Ignoring.")

    def on_rapid(self, name: str, id: str) -> None:
        self._log("warn", "rapid", f"Rapid connect/disconnect: {name}", id=id)

    def on_leave(self, name: str) -> None:
        self._log("info", "leave", f"{name} left")

    def on_kick(self, name: str, device, reason: str) -> None:
        self._log("warn", "kick", f"{name} ({device})", reason=reason)

    def on_spam(self, name: str) -> None:
        self._log("warn", "spam", f"{name} flagged for external spam")

    def on_unattributable(self, text: str) -> None:
        self._log("warn", "spam", "Unable to attribute abuse signal", text=text[:60])

    def on_connect(self, generation: int) -> None:
        self._log("info", "connect", "Connected to realm", generation=generation)

    def on_disconnect(self, reason: str) -> None:
        self._log("info", "disconnect", reason)

    def on_reconnect(self, attempt: int, max_attempts: int, delay: float) -> None:
        self._log(
            "info", "reconnect", f"Attempt {attempt}/{max_attempts} in {delay:g}s"
        )

    def on_give_up(self, attempts: int) -> None:
        self._log("warn", "reconnect", f"Giving up after {attempts} attempts")

    def on_command(self, name: str, ok: bool, author: str = "") -> None:
        self._log("info", "command", f"{name} by {author or '?'}", ok=ok)

    def on_error(self, hook: str, error) -> None:
        self._log("error", "error", f"In {hook}: {error}")
