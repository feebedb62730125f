"""Reconnect supervisor - owns the realm connection lifecycle.

Connection attempts, event pumps and retry timers run as tasks, but every
state transition happens on the relay worker: tasks only post signals
(ConnectResult, ReconnectDue, session events) back to the relay queue.
Each connection instance gets a generation number; signals carrying an
old generation are stale and discarded.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from .interfaces import (
    CommandRejected,
    ConnectError,
    Ended,
    ErrorEvent,
    SessionConnection,
    SessionEvent,
)
from .logger import RelayLogger


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    GAVE_UP = "gave_up"
    MANUALLY_DISCONNECTED = "manually_disconnected"


class Transition(Enum):
    """What on_ended decided."""

    IGNORED = "ignored"
    SCHEDULED = "scheduled"
    GAVE_UP = "gave_up"


# --- Signals posted to the relay queue ---


@dataclass
class SessionEnvelope:
    generation: int
    event: SessionEvent


@dataclass
class ConnectResult:
    generation: int
    error: Optional[Exception] = None


@dataclass
class ReconnectDue:
    generation: int


class ReconnectSupervisor:
    """Connect, detect failure, retry at a fixed interval, give up."""

    def __init__(
        self,
        factory: Callable[[], SessionConnection],
        post: Callable[[object], Awaitable[None]],
        realm_config: Optional[dict] = None,
        max_attempts: int = 3,
        interval: float = 5.0,
        on_reset: Optional[Callable[[], None]] = None,
        logger: Optional[RelayLogger] = None,
    ):
        self._factory = factory
        self._post = post
        self._realm_config = realm_config or {}
        self.max_attempts = max_attempts
        self.interval = interval
        self._on_reset = on_reset
        self._logger = logger or RelayLogger()

        self.state = ConnectionState.DISCONNECTED
        self.attempts = 0
        self.generation = 0
        self.connection: Optional[SessionConnection] = None
        self._ended_generation: Optional[int] = None
        self._timer: Optional[asyncio.Task] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._pump: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def retry_pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def live_connection(self) -> Optional[SessionConnection]:
        """The connection commands may be sent on, if connected."""
        return self.connection if self.connected else None

    def is_live(self, generation: int) -> bool:
        """Whether events from `generation` belong to the current, open connection."""
        return (
            self.connected
            and generation == self.generation
            and generation != self._ended_generation
        )

    # --- Operator commands ---

    async def connect(self) -> None:
        """Start a fresh connection with the retry count reset.

        Raises:
            CommandRejected: if already connected or connecting
        """
        if self.state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            raise CommandRejected("The bot is already connected to the realm.")
        self.attempts = 0
        self._start_attempt()

    async def leave(self, reason: str = "User requested to leave the realm.") -> None:
        """Disconnect on purpose; no retry fires afterwards.

        Raises:
            CommandRejected: if not connected or connecting
        """
        if self.state not in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            raise CommandRejected("The bot is not currently connected to a realm.")

        connection = self._teardown()
        self.attempts = self.max_attempts
        self.state = ConnectionState.MANUALLY_DISCONNECTED
        self._reset()
        self._logger.on_disconnect(reason)
        await self._disconnect(connection, reason)

    async def shutdown(self) -> None:
        """Stop everything on process exit."""
        connection = self._teardown()
        self.state = ConnectionState.DISCONNECTED
        await self._disconnect(connection, "Relay shutting down.")

    # --- Signals (called on the relay worker) ---

    async def handle(self, signal) -> Transition:
        if isinstance(signal, ConnectResult):
            return await self.on_connect_result(signal.generation, signal.error)
        if isinstance(signal, ReconnectDue):
            self.on_reconnect_due(signal.generation)
        return Transition.IGNORED

    async def on_connect_result(
        self, generation: int, error: Optional[Exception] = None
    ) -> Transition:
        if generation != self.generation or self.state != ConnectionState.CONNECTING:
            return Transition.IGNORED

        self._connect_task = None
        if error is not None:
            self._logger.on_error("connect", error)
            return await self.on_ended(generation, str(error))

        self.state = ConnectionState.CONNECTED
        self.attempts = 0
        self._pump = asyncio.create_task(self._pump_events(self.connection, generation))
        self._logger.on_connect(generation)
        return Transition.IGNORED

    async def on_ended(self, generation: int, reason: str = "") -> Transition:
        """Connection for `generation` ended (closed, error, failed connect)."""
        if generation != self.generation or generation == self._ended_generation:
            return Transition.IGNORED
        if self.state not in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            return Transition.IGNORED

        self._ended_generation = generation
        connection = self._teardown(keep_generation=True)
        await self._disconnect(connection, reason or "Connection ended.")
        self.attempts += 1

        if self.attempts <= self.max_attempts:
            self.state = ConnectionState.CONNECTING
            self._logger.on_reconnect(self.attempts, self.max_attempts, self.interval)
            self._timer = asyncio.create_task(self._fire_after(generation))
            return Transition.SCHEDULED

        self.state = ConnectionState.GAVE_UP
        self._logger.on_give_up(self.max_attempts)
        self._reset()
        return Transition.GAVE_UP

    def on_reconnect_due(self, generation: int) -> None:
        if generation != self.generation or self.state != ConnectionState.CONNECTING:
            return
        if self._timer is None:
            return
        if not self._timer.done() and self._timer is not asyncio.current_task():
            self._timer.cancel()
        self._timer = None
        self._start_attempt()

    # --- Internals ---

    def _start_attempt(self) -> None:
        self.state = ConnectionState.CONNECTING
        self.generation += 1
        self.connection = self._factory()
        self._connect_task = asyncio.create_task(
            self._run_connect(self.connection, self.generation)
        )

    async def _run_connect(self, connection: SessionConnection, generation: int):
        try:
            await connection.connect(self._realm_config)
        except asyncio.CancelledError:
            raise
        except ConnectError as e:
            await self._post(ConnectResult(generation, e))
            return
        except Exception as e:
            await self._post(ConnectResult(generation, ConnectError(str(e))))
            return
        await self._post(ConnectResult(generation))

    async def _pump_events(self, connection: SessionConnection, generation: int):
        """Forward session events to the relay queue until the stream ends."""
        try:
            async for event in connection.events():
                await self._post(SessionEnvelope(generation, event))
                if isinstance(event, (Ended, ErrorEvent)):
                    return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._post(SessionEnvelope(generation, ErrorEvent(str(e))))
            return
        await self._post(SessionEnvelope(generation, Ended("Event stream closed.")))

    async def _fire_after(self, generation: int):
        await asyncio.sleep(self.interval)
        await self._post(ReconnectDue(generation))

    def _teardown(self, keep_generation: bool = False) -> Optional[SessionConnection]:
        """Cancel owned tasks and release the connection."""
        current = asyncio.current_task()
        for task in (self._timer, self._connect_task, self._pump):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._timer = None
        self._connect_task = None
        self._pump = None

        connection, self.connection = self.connection, None
        if not keep_generation:
            # Invalidate signals still in flight for the old connection
            self.generation += 1
        return connection

    async def _disconnect(self, connection: Optional[SessionConnection], reason: str):
        if connection is None:
            return
        try:
            await connection.disconnect(reason)
        except Exception as e:
            self._logger.on_error("disconnect", e)

    def _reset(self) -> None:
        if self._on_reset:
            self._on_reset()
