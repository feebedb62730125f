"""Tests for the reconnect supervisor."""

import asyncio
import io

import pytest

from fakes import FakeSession, SessionFactory, settle

from realmrelay.interfaces import ChatEvent, CommandRejected, ConnectError, ErrorEvent
from realmrelay.logger import RelayLogger
from realmrelay.supervisor import (
    ConnectionState,
    ConnectResult,
    ReconnectDue,
    ReconnectSupervisor,
    Transition,
)


class Harness:
    """Supervisor plus a list standing in for the relay queue."""

    def __init__(self, failures=0, max_attempts=3, interval=0.01):
        self.factory = SessionFactory(failures=failures)
        self.posted = []
        self.resets = 0
        self.sup = ReconnectSupervisor(
            factory=self.factory,
            post=self._post,
            realm_config={"code": "abc"},
            max_attempts=max_attempts,
            interval=interval,
            on_reset=self._reset,
            logger=RelayLogger(stream=io.StringIO()),
        )

    async def _post(self, item):
        self.posted.append(item)

    def _reset(self):
        self.resets += 1

    async def deliver(self, kind):
        """Hand the first posted signal of `kind` to the supervisor."""
        for i, item in enumerate(self.posted):
            if isinstance(item, kind):
                del self.posted[i]
                return await self.sup.handle(item)
        raise AssertionError(f"no {kind.__name__} posted")

    async def connected(self):
        await self.sup.connect()
        await settle()
        await self.deliver(ConnectResult)
        assert self.sup.connected


class TestConnect:
    """Test connect and leave commands."""

    def test_connect_success(self):
        async def scenario():
            h = Harness()
            await h.sup.connect()
            assert h.sup.state == ConnectionState.CONNECTING
            await settle()
            await h.deliver(ConnectResult)
            assert h.sup.state == ConnectionState.CONNECTED
            assert h.sup.attempts == 0
            assert h.sup.live_connection() is h.factory.last
            assert h.factory.last.connect_calls == 1
            await h.sup.shutdown()

        asyncio.run(scenario())

    def test_connect_when_connected_rejected(self):
        async def scenario():
            h = Harness()
            await h.connected()
            with pytest.raises(CommandRejected, match="already connected"):
                await h.sup.connect()
            await h.sup.shutdown()

        asyncio.run(scenario())

    def test_connect_while_connecting_rejected(self):
        async def scenario():
            h = Harness()
            await h.sup.connect()
            with pytest.raises(CommandRejected):
                await h.sup.connect()
            await h.sup.shutdown()

        asyncio.run(scenario())

    def test_live_connection_none_while_connecting(self):
        async def scenario():
            h = Harness()
            await h.sup.connect()
            assert h.sup.live_connection() is None
            await h.sup.shutdown()

        asyncio.run(scenario())

    def test_leave_when_disconnected_rejected(self):
        async def scenario():
            h = Harness()
            with pytest.raises(CommandRejected, match="not currently connected"):
                await h.sup.leave()

        asyncio.run(scenario())

    def test_leave(self):
        async def scenario():
            h = Harness()
            await h.connected()
            session = h.factory.last
            await h.sup.leave("bye")
            assert h.sup.state == ConnectionState.MANUALLY_DISCONNECTED
            assert h.sup.attempts == h.sup.max_attempts
            assert h.resets == 1
            assert session.disconnected == "bye"
            assert h.sup.live_connection() is None

        asyncio.run(scenario())

    def test_connect_after_leave(self):
        async def scenario():
            h = Harness()
            await h.connected()
            await h.sup.leave()
            await h.connected()
            assert h.sup.attempts == 0
            assert len(h.factory.sessions) == 2
            await h.sup.shutdown()

        asyncio.run(scenario())


class TestReconnect:
    """Test retry counting and give-up."""

    def test_end_schedules_retry(self):
        async def scenario():
            h = Harness()
            await h.connected()
            transition = await h.sup.on_ended(h.sup.generation, "closed")
            assert transition == Transition.SCHEDULED
            assert h.sup.attempts == 1
            assert h.sup.retry_pending
            assert h.factory.last.disconnected == "closed"
            await h.sup.shutdown()

        asyncio.run(scenario())

    def test_retry_fires_after_interval(self):
        async def scenario():
            h = Harness(interval=0.01)
            await h.connected()
            await h.sup.on_ended(h.sup.generation, "closed")
            await asyncio.sleep(0.05)
            await h.deliver(ReconnectDue)
            await settle()
            await h.deliver(ConnectResult)
            assert h.sup.connected
            assert h.sup.attempts == 0
            assert len(h.factory.sessions) == 2
            await h.sup.shutdown()

        asyncio.run(scenario())

    def test_gives_up_after_max_attempts(self):
        async def scenario():
            h = Harness(max_attempts=3)
            await h.connected()
            transitions = []
            for _ in range(4):
                transitions.append(await h.sup.on_ended(h.sup.generation, "closed"))
                if h.sup.state == ConnectionState.CONNECTING:
                    # Fire the retry now instead of waiting on the timer
                    h.sup.on_reconnect_due(h.sup.generation)
                    await settle()
                    h.posted.clear()
            assert transitions == [
                Transition.SCHEDULED,
                Transition.SCHEDULED,
                Transition.SCHEDULED,
                Transition.GAVE_UP,
            ]
            assert h.sup.state == ConnectionState.GAVE_UP
            assert h.resets == 1
            assert not h.sup.retry_pending

            assert await h.sup.on_ended(h.sup.generation, "again") == Transition.IGNORED
            assert not h.sup.retry_pending
            await h.sup.shutdown()

        asyncio.run(scenario())

    def test_failed_connects_count_as_attempts(self):
        async def scenario():
            h = Harness(failures=10, max_attempts=2, interval=0.001)
            await h.sup.connect()
            last = None
            for _ in range(3):
                await settle()
                last = await h.deliver(ConnectResult)
                if last == Transition.SCHEDULED:
                    await asyncio.sleep(0.01)
                    await h.deliver(ReconnectDue)
            assert last == Transition.GAVE_UP
            assert h.sup.state == ConnectionState.GAVE_UP
            assert len(h.factory.sessions) == 3

        asyncio.run(scenario())

    def test_success_resets_attempts(self):
        async def scenario():
            h = Harness(failures=1, interval=0.001)
            await h.sup.connect()
            await settle()
            assert await h.deliver(ConnectResult) == Transition.SCHEDULED
            assert h.sup.attempts == 1
            await asyncio.sleep(0.01)
            await h.deliver(ReconnectDue)
            await settle()
            await h.deliver(ConnectResult)
            assert h.sup.connected
            assert h.sup.attempts == 0
            await h.sup.shutdown()

        asyncio.run(scenario())

    def test_second_end_same_generation_ignored(self):
        async def scenario():
            h = Harness()
            await h.connected()
            gen = h.sup.generation
            assert await h.sup.on_ended(gen, "error") == Transition.SCHEDULED
            assert await h.sup.on_ended(gen, "closed") == Transition.IGNORED
            assert h.sup.attempts == 1
            await h.sup.shutdown()

        asyncio.run(scenario())

    def test_stale_generation_ignored(self):
        async def scenario():
            h = Harness()
            await h.connected()
            stale = h.sup.generation - 1
            assert await h.sup.on_ended(stale, "old") == Transition.IGNORED
            assert h.sup.connected
            await h.sup.shutdown()

        asyncio.run(scenario())

    def test_leave_cancels_pending_retry(self):
        async def scenario():
            h = Harness(interval=0.02)
            await h.connected()
            await h.sup.on_ended(h.sup.generation, "closed")
            assert h.sup.retry_pending
            await h.sup.leave()
            await asyncio.sleep(0.05)
            assert not any(isinstance(p, ReconnectDue) for p in h.posted)
            assert h.sup.state == ConnectionState.MANUALLY_DISCONNECTED
            assert len(h.factory.sessions) == 1

        asyncio.run(scenario())

    def test_reconnect_due_after_leave_ignored(self):
        async def scenario():
            h = Harness()
            await h.connected()
            gen = h.sup.generation
            await h.sup.on_ended(gen, "closed")
            await h.sup.leave()
            await h.sup.handle(ReconnectDue(gen))
            assert h.sup.state == ConnectionState.MANUALLY_DISCONNECTED
            assert len(h.factory.sessions) == 1

        asyncio.run(scenario())

    def test_event_stream_end_posts_ended(self):
        async def scenario():
            h = Harness()
            await h.connected()
            await h.factory.last.disconnect("server closed")
            await settle()
            envelopes = [p for p in h.posted if not isinstance(p, ConnectResult)]
            assert len(envelopes) == 1
            assert envelopes[0].event.reason == "Event stream closed."
            await h.sup.shutdown()

        asyncio.run(scenario())

    def test_unexpected_connect_exception_wrapped(self):
        class ExplodingSession(FakeSession):
            async def connect(self, config):
                raise RuntimeError("socket exploded")

        async def scenario():
            h = Harness()
            h.sup._factory = ExplodingSession
            await h.sup.connect()
            await settle()
            result = h.posted[-1]
            assert isinstance(result, ConnectResult)
            assert isinstance(result.error, ConnectError)
            assert "socket exploded" in str(result.error)
            await h.sup.shutdown()

        asyncio.run(scenario())

    def test_event_pump_stops_after_error(self):
        async def scenario():
            h = Harness()
            await h.connected()
            h.factory.last.push(ErrorEvent("socket reset"))
            h.factory.last.push(ChatEvent("Steve", "late"))
            await settle()
            assert [type(p.event) for p in h.posted] == [ErrorEvent]
            await h.sup.shutdown()

        asyncio.run(scenario())

    def test_is_live(self):
        async def scenario():
            h = Harness()
            await h.sup.connect()
            gen = h.sup.generation
            assert not h.sup.is_live(gen)
            await settle()
            await h.deliver(ConnectResult)
            assert h.sup.is_live(gen)
            assert not h.sup.is_live(gen - 1)
            await h.sup.on_ended(gen, "closed")
            assert not h.sup.is_live(gen)
            await h.sup.shutdown()

        asyncio.run(scenario())
