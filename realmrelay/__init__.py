"""realmrelay - relays chat between a chat channel and a game realm."""

__version__ = "0.1.0"
