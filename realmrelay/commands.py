"""Operator command surface - prefix commands typed in the chat channel.

Parsing and help text only; every command delegates to RealmRelay and
renders the CommandResult it returns.
"""

from typing import TYPE_CHECKING, Optional

from .interfaces import CommandResult, GatewayMessage

if TYPE_CHECKING:
    from .relay import RealmRelay


HELP_LINES = [
    ("set relay", "Set this channel as the relay channel"),
    ("prefix <new_prefix>", "Change the command prefix"),
    ("help", "List available commands"),
    ("join", "Connect the bot to the realm"),
    ("leave", "Disconnect the bot from the realm"),
    ("playerlist", "Show the players currently online"),
    ("say <message>", "Send a message to the realm as the bot"),
    ("config allow|device|block <value> true|false", "Edit moderation lists"),
]


class CommandSurface:
    """Parses `<prefix><command> args` lines into relay commands."""

    def __init__(self, relay: "RealmRelay", prefix: str = "!", operator_ids=None):
        self._relay = relay
        self.prefix = prefix
        self.operator_ids = {str(i) for i in operator_ids or []}

    def is_command(self, text: str) -> bool:
        return text.startswith(self.prefix)

    def help_text(self) -> str:
        return "\n".join(
            f"{self.prefix}{usage}: {description}" for usage, description in HELP_LINES
        )

    def _authorized(self, message: GatewayMessage) -> bool:
        return not self.operator_ids or str(message.author_id) in self.operator_ids

    async def dispatch(self, message: GatewayMessage) -> Optional[CommandResult]:
        """Run the command in message, or return None if it is not one."""
        text = message.text.strip()
        if not self.is_command(text):
            return None

        body = text[len(self.prefix):].strip()
        parts = body.split()
        if not parts:
            return None
        name, args = parts[0].lower(), parts[1:]

        if name == "help":
            return CommandResult(True, "Help", self.help_text())

        if not self._authorized(message):
            return CommandResult(
                False, "Error", "You don't have permission to use this command."
            )

        relay = self._relay
        if name == "set" and args[:1] == ["relay"]:
            return await relay.bind_channel(message.channel_id)
        if name == "prefix":
            return self._set_prefix(args)
        if name == "join":
            return await relay.connect()
        if name == "leave":
            return await relay.disconnect()
        if name == "playerlist":
            return relay.player_list()
        if name == "say":
            rest = body.split(None, 1)
            return await relay.say(rest[1] if len(rest) > 1 else "")
        if name == "config":
            return self._config(args)

        return CommandResult(
            False, "Error", f"Unknown command. Use {self.prefix}help for a list."
        )

    def _set_prefix(self, args: list[str]) -> CommandResult:
        if not args:
            return CommandResult(False, "Error", "Please specify a new prefix.")
        new_prefix = args[0]
        if len(new_prefix) > 3:
            return CommandResult(
                False, "Error", "Prefix cannot be longer than 3 characters."
            )
        self.prefix = new_prefix
        return CommandResult(
            True, "Prefix Changed", f"Bot prefix has been changed to: `{new_prefix}`"
        )

    def _config(self, args: list[str]) -> CommandResult:
        usage = f"Usage: {self.prefix}config allow|device|block <value> true|false"
        if len(args) < 3 or args[-1].lower() not in ("true", "false"):
            return CommandResult(False, "Error", usage)
        list_name = args[0].lower()
        value = " ".join(args[1:-1])
        enabled = args[-1].lower() == "true"
        return self._relay.adjust_list(list_name, value, enabled)
