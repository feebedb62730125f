"""RealmRelay - the session relay engine.

Owns the single event queue. Realm events, channel messages, operator
commands and reconnect timers are all posted to it and processed one at a
time by a single worker task, so relay state is never mutated concurrently.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from .commands import CommandSurface
from .config import RelayConfig
from .devices import DeviceTable
from .interfaces import (
    CommandRejected,
    CommandResult,
    Ended,
    ErrorEvent,
    GatewayMessage,
    NotificationSink,
    SessionConnection,
    Severity,
)
from .logger import RelayLogger
from .moderation import ModerationLists, ModerationPolicy
from .router import RelayRouter
from .storage import RelayStore
from .supervisor import (
    ConnectResult,
    ReconnectDue,
    ReconnectSupervisor,
    SessionEnvelope,
    Transition,
)


@dataclass
class _CommandRequest:
    """Operator command submitted from outside the worker."""

    name: str
    args: tuple = ()
    future: Optional[asyncio.Future] = field(default=None, repr=False)


class RealmRelay:
    """Main relay class."""

    def __init__(
        self,
        config: RelayConfig,
        sink: NotificationSink,
        session_factory: Callable[[], SessionConnection],
        store: Optional[RelayStore] = None,
        logger: Optional[RelayLogger] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.sink = sink
        self.store = store
        self._logger = logger or RelayLogger(config.log_level)
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=config.queue_size)
        self._worker: Optional[asyncio.Task] = None

        saved_lists = store.load_moderation() if store else None
        self.policy = ModerationPolicy(
            ModerationLists.from_dict(saved_lists or config.moderation_dict())
        )

        realm_config = dict(config.get_section("realm"))
        realm_config.setdefault("code", config.realm_code)
        self.supervisor = ReconnectSupervisor(
            factory=session_factory,
            post=self.post,
            realm_config=realm_config,
            max_attempts=config.reconnect_attempts,
            interval=config.reconnect_interval,
            on_reset=self._full_reset,
            logger=self._logger,
        )
        self.router = RelayRouter(
            sink=sink,
            get_connection=self.supervisor.live_connection,
            policy=self.policy,
            devices=DeviceTable(config.device_table),
            store=store,
            logger=self._logger,
            rapid_threshold=config.rapid_threshold,
            spam_prefixes=tuple(config.spam_prefixes),
            death_indicator=config.death_indicator,
            announce_presence=config.announce_presence,
            leave_command=config.leave_command,
            on_leave_command=self._leave_from_realm,
            clock=clock,
        )
        self.commands = CommandSurface(
            self, config.command_prefix, config.operator_ids
        )

        if store:
            channel_id = store.load_channel()
            if channel_id:
                sink.bind(channel_id)
                self._logger.info("config", f"Relay channel loaded: {channel_id}")
            else:
                self._logger.warn(
                    "config",
                    f"No relay channel set. Use {config.command_prefix}set relay to set one.",
                )

    # --- Queue ---

    async def post(self, item) -> None:
        """Queue an item for the worker. Blocks while the queue is full."""
        await self._queue.put(item)

    async def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run_worker())

    async def stop(self) -> None:
        await self.supervisor.shutdown()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    async def drain(self) -> None:
        """Wait until every queued item has been processed."""
        await self._queue.join()

    async def execute(self, name: str, *args) -> CommandResult:
        """Run an operator command on the worker and wait for its result."""
        future = asyncio.get_running_loop().create_future()
        await self.post(_CommandRequest(name, args, future))
        return await future

    async def _run_worker(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                await self._process(item)
            except Exception as e:
                self._logger.on_error("worker", e)
            finally:
                self._queue.task_done()

    async def _process(self, item) -> None:
        if isinstance(item, SessionEnvelope):
            await self._on_session_event(item)
        elif isinstance(item, (ConnectResult, ReconnectDue)):
            was_connected = self.supervisor.connected
            transition = await self.supervisor.handle(item)
            await self._after_transition(transition)
            if self.supervisor.connected and not was_connected:
                await self._announce("Connected", "Connected to the realm.", Severity.SUCCESS)
        elif isinstance(item, GatewayMessage):
            await self._on_gateway_message(item)
        elif isinstance(item, _CommandRequest):
            await self._on_command_request(item)

    async def _on_session_event(self, envelope: SessionEnvelope) -> None:
        if envelope.generation != self.supervisor.generation:
            return
        event = envelope.event
        if isinstance(event, ErrorEvent):
            self._logger.on_error("session", event.detail)
            transition = await self.supervisor.on_ended(envelope.generation, event.detail)
            await self._after_transition(transition)
        elif isinstance(event, Ended):
            self._logger.on_disconnect(event.reason or "Disconnected from realm.")
            transition = await self.supervisor.on_ended(envelope.generation, event.reason)
            await self._after_transition(transition)
        elif self.supervisor.is_live(envelope.generation):
            await self.router.handle_event(event)

    async def _after_transition(self, transition: Transition) -> None:
        if transition == Transition.GAVE_UP:
            await self._announce(
                "Connection Lost",
                "Maximum reconnect attempts reached. Use "
                f"{self.commands.prefix}join to reconnect.",
                Severity.DANGER,
            )

    async def _on_gateway_message(self, message: GatewayMessage) -> None:
        if message.is_bot:
            return
        if self.commands.is_command(message.text.strip()):
            result = await self.commands.dispatch(message)
            if result is None:
                return
            self._logger.on_command(message.text.split()[0], result.ok, message.author_tag)
            try:
                await self.sink.send(
                    result.title,
                    result.message,
                    result.severity,
                    channel_id=message.channel_id,
                )
            except Exception as e:
                self._logger.on_error("command_reply", e)
            return
        await self.router.on_gateway_message(message)

    async def _on_command_request(self, request: _CommandRequest) -> None:
        handlers = {
            "bind_channel": self.bind_channel,
            "connect": self.connect,
            "disconnect": self.disconnect,
            "player_list": self.player_list,
            "say": self.say,
            "adjust_list": self.adjust_list,
        }
        handler = handlers.get(request.name)
        try:
            if handler is None:
                result = CommandResult(False, "Error", f"Unknown command: {request.name}")
            else:
                result = handler(*request.args)
                if asyncio.iscoroutine(result):
                    result = await result
        except Exception as e:
            if request.future is not None and not request.future.done():
                request.future.set_exception(e)
            return
        self._logger.on_command(request.name, result.ok)
        if request.future is not None and not request.future.done():
            request.future.set_result(result)

    async def _announce(self, title: str, body: str, severity: Severity) -> None:
        if not self.sink.channel_id:
            return
        try:
            await self.sink.send(title, body, severity)
        except Exception as e:
            self._logger.on_error("notify", e)

    def _full_reset(self) -> None:
        self.router.reset()

    async def _leave_from_realm(self) -> None:
        try:
            await self.supervisor.leave("User issued leave command from realm chat.")
        except CommandRejected:
            pass

    # --- Operator commands (run on the worker) ---

    async def bind_channel(self, channel_id: str) -> CommandResult:
        self.sink.bind(str(channel_id))
        if self.store:
            try:
                self.store.save_channel(str(channel_id))
            except OSError as e:
                self._logger.on_error("bind_channel", e)
                return CommandResult(False, "Error", f"Could not save relay channel: {e}")
        return CommandResult(
            True, "Relay Channel Set", f"Relay channel has been set to {channel_id}."
        )

    async def connect(self) -> CommandResult:
        try:
            await self.supervisor.connect()
        except CommandRejected as e:
            return CommandResult(False, "Error", str(e))
        return CommandResult(True, "Connecting", "Connecting to the realm...")

    async def disconnect(self) -> CommandResult:
        try:
            await self.supervisor.leave()
        except CommandRejected as e:
            return CommandResult(False, "Error", str(e))
        return CommandResult(
            True, "Disconnected", "Disconnected from the realm and reset player data."
        )

    def player_list(self) -> CommandResult:
        sessions = self.router.presence.list()
        if not sessions:
            return CommandResult(True, "Player List", "No players are currently online.")
        names = ", ".join(s.display_name for s in sessions)
        return CommandResult(True, "Online Players", f"Current players online: {names}")

    async def say(self, text: str) -> CommandResult:
        if not self.supervisor.connected:
            return CommandResult(False, "Error", "The bot is not connected to a realm.")
        if not text or not text.strip():
            return CommandResult(False, "Error", "You must specify a message to send.")
        if not await self.router.say(text):
            return CommandResult(False, "Error", "Failed to send message to the realm.")
        return CommandResult(True, "Message Sent", f"Relayed message to the realm: {text}")

    def adjust_list(self, list_name: str, value: str, enabled: bool) -> CommandResult:
        if not value:
            return CommandResult(False, "Error", "Please specify a value.")
        try:
            lists = self.policy.lists.with_entry(list_name, value, enabled)
        except KeyError:
            return CommandResult(
                False, "Error", "Unknown list. Use one of: allow, device, block."
            )
        self.policy.lists = lists
        if self.store:
            try:
                self.store.save_moderation(lists.to_dict())
            except OSError as e:
                self._logger.on_error("adjust_list", e)
        action = "added to" if enabled else "removed from"
        return CommandResult(
            True, "Config Updated", f"{value} {action} the {list_name} list."
        )

    # --- Run ---

    async def run(self, gateway=None, connect: bool = True, poll_interval: float = 1.0):
        """Run until cancelled or the gateway closes.

        Args:
            gateway: Object with `async poll() -> list[GatewayMessage] | None`;
                None from poll() means the gateway is closed.
        """
        await self.start()
        try:
            if connect:
                await self.execute("connect")
            if gateway is None:
                await asyncio.Event().wait()
                return
            while True:
                messages = await gateway.poll()
                if messages is None:
                    break
                if not messages:
                    await asyncio.sleep(poll_interval)
                    continue
                for message in messages:
                    await self.post(message)
            await self.drain()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    def run_sync(self, gateway=None, connect: bool = True) -> None:
        """Synchronous wrapper for run."""
        try:
            asyncio.run(self.run(gateway, connect=connect))
        except KeyboardInterrupt:
            pass
