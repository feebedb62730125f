"""Relay configuration - loaded from YAML with ${VAR} expansion."""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Any

import yaml

from ..interfaces import ConfigError
from ..devices import TABLES

DEFAULT_SPAM_PREFIXES = ["* External", "<External>"]


def _expand_env_vars(value: Any) -> Any:
    """Recursively expand ${VAR} and ${VAR:-default} in strings."""
    if isinstance(value, str):
        pattern = r"\$\{([^}:]+)(?::-([^}]*))?\}"

        def replacer(match):
            var_name = match.group(1)
            default = match.group(2)
            env_value = os.environ.get(var_name)
            if env_value is not None:
                return env_value
            elif default is not None:
                return default
            else:
                return ""

        return re.sub(pattern, replacer, value)
    elif isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    else:
        return value


@dataclass
class RelayConfig:
    """Parsed configuration object."""

    # Realm
    realm_code: str = ""

    # Reconnect policy (fixed interval)
    reconnect_attempts: int = 3
    reconnect_interval_ms: int = 5000

    # Presence
    rapid_threshold_ms: int = 7000
    announce_presence: bool = True
    device_table: str = "protocol"

    # Moderation lists (initial snapshot)
    allow_list: list[str] = field(default_factory=list)
    banned_devices: list[str] = field(default_factory=list)
    block_list: list[str] = field(default_factory=list)

    # Relay behaviour
    spam_prefixes: list[str] = field(
        default_factory=lambda: list(DEFAULT_SPAM_PREFIXES)
    )
    death_indicator: str = "death"
    leave_command: Optional[str] = None
    queue_size: int = 256

    # Operator commands
    command_prefix: str = "!"
    operator_ids: list[str] = field(default_factory=list)

    # Paths
    state_path: Path = field(default_factory=lambda: Path("./relay_state.yml"))
    history_path: Path = field(default_factory=lambda: Path("./player-log.json"))

    log_level: str = "info"

    # Raw config for adapter access
    _raw: dict = field(default_factory=dict)

    @property
    def reconnect_interval(self) -> float:
        """Reconnect interval in seconds."""
        return self.reconnect_interval_ms / 1000.0

    @property
    def rapid_threshold(self) -> float:
        return self.rapid_threshold_ms / 1000.0

    def get_section(self, name: str) -> dict:
        """Get a raw config section (e.g. "telegram", "realm")."""
        return self._raw.get(name, {}) or {}

    def moderation_dict(self) -> dict:
        return {
            "allow_list": list(self.allow_list),
            "banned_devices": list(self.banned_devices),
            "block_list": list(self.block_list),
        }

    def validate(self) -> None:
        """Raise ConfigError on values the relay cannot run with."""
        if self.reconnect_attempts < 0:
            raise ConfigError("reconnect.attempts must be >= 0")
        if self.reconnect_interval_ms <= 0:
            raise ConfigError("reconnect.interval_ms must be > 0")
        if self.rapid_threshold_ms < 0:
            raise ConfigError("presence.rapid_threshold_ms must be >= 0")
        if self.device_table not in TABLES:
            raise ConfigError(f"devices.table must be one of: {', '.join(TABLES)}")
        if self.queue_size <= 0:
            raise ConfigError("relay.queue_size must be > 0")
        if not self.command_prefix or len(self.command_prefix) > 3:
            raise ConfigError("commands.prefix must be 1-3 characters")

    @classmethod
    def from_dict(cls, data: dict) -> "RelayConfig":
        """Create config from dictionary."""
        data = _expand_env_vars(data)

        realm = data.get("realm", {}) or {}
        reconnect = data.get("reconnect", {}) or {}
        presence = data.get("presence", {}) or {}
        devices = data.get("devices", {}) or {}
        moderation = data.get("moderation", {}) or {}
        spam = data.get("spam", {}) or {}
        relay = data.get("relay", {}) or {}
        commands = data.get("commands", {}) or {}
        paths = data.get("paths", {}) or {}
        logger = data.get("logger", {}) or {}

        try:
            config = cls(
                realm_code=str(realm.get("code", "") or ""),
                reconnect_attempts=int(reconnect.get("attempts", 3)),
                reconnect_interval_ms=int(reconnect.get("interval_ms", 5000)),
                rapid_threshold_ms=int(presence.get("rapid_threshold_ms", 7000)),
                announce_presence=bool(presence.get("announce", True)),
                device_table=devices.get("table", "protocol"),
                allow_list=list(moderation.get("allow_list") or []),
                banned_devices=list(moderation.get("banned_devices") or []),
                block_list=list(moderation.get("block_list") or []),
                spam_prefixes=list(spam.get("prefixes") or DEFAULT_SPAM_PREFIXES),
                death_indicator=relay.get("death_indicator", "death"),
                leave_command=relay.get("leave_command"),
                queue_size=int(relay.get("queue_size", 256)),
                command_prefix=str(commands.get("prefix", "!")),
                operator_ids=[str(i) for i in commands.get("operator_ids") or []],
                state_path=Path(paths.get("state", "./relay_state.yml")),
                history_path=Path(paths.get("history", "./player-log.json")),
                log_level=logger.get("level", "info"),
                _raw=data,
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid config value: {e}") from e

        config.validate()
        return config

    @classmethod
    def load(cls, path: Path) -> "RelayConfig":
        """Load config from YAML file."""
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a mapping")
        return cls.from_dict(data)


def find_config_path(explicit_path: Optional[str] = None) -> Path:
    """Find config file path: explicit, then ./relay.yml, then home."""
    if explicit_path:
        return Path(explicit_path)

    local_config = Path("relay.yml")
    if local_config.exists():
        return local_config

    return Path.home() / ".realmrelay" / "relay.yml"


def load_config(explicit_path: Optional[str] = None) -> RelayConfig:
    """Load config from the first config file found, or defaults."""
    path = find_config_path(explicit_path)
    if path.exists():
        return RelayConfig.load(path)
    return RelayConfig()
