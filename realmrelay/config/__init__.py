"""Config exports."""

from .settings import (
    RelayConfig,
    find_config_path,
    load_config,
    _expand_env_vars,
)

__all__ = [
    "RelayConfig",
    "find_config_path",
    "load_config",
]
