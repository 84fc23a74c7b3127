"""
Tests for event routing, send failures and stale-session handling, using an
in-memory transport.
"""

import asyncio

import pytest

from clock_exchange.config import ExchangeConfig, Role
from clock_exchange.exchange_protocol import (
    REPLY_SIZE,
    REQUEST_SIZE,
    ExchangeReply,
    ExchangeRequest,
    MessageType,
)
from clock_exchange.node import ExchangeNode
from clock_exchange.session import SessionState
from clock_exchange.transport import Connected, Disconnected, Received, SendFailure


class MemoryTransport:
    """Records outbound frames; events are fed by the test."""

    def __init__(self):
        self.sent = []
        self.fail = False
        self._events = asyncio.Queue()

    async def send(self, peer, payload):
        if self.fail:
            raise SendFailure(f"Peer {peer} is not connected")
        self.sent.append((peer, payload))

    async def events(self):
        while True:
            event = await self._events.get()
            if event is None:
                return
            yield event

    def feed(self, *events):
        for event in events:
            self._events.put_nowait(event)


class FakeMonotonic:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def transport():
    return MemoryTransport()


@pytest.fixture
def monotonic():
    return FakeMonotonic()


def _node(transport, monotonic, role):
    config = ExchangeConfig(role=role, exchange_interval=0, stale_timeout=5.0)
    return ExchangeNode(transport, config, monotonic=monotonic)


class TestEventRouting:

    @pytest.mark.asyncio
    async def test_client_opens_on_connect(self, transport, monotonic):
        node = _node(transport, monotonic, Role.CLIENT)
        await node.handle_event(Connected("server"))

        assert "server" in node.sessions
        assert len(transport.sent) == 1
        peer, payload = transport.sent[0]
        assert peer == "server"
        assert len(payload) == REQUEST_SIZE

    @pytest.mark.asyncio
    async def test_server_waits_then_replies(self, transport, monotonic):
        node = _node(transport, monotonic, Role.SERVER)
        await node.handle_event(Connected("peer-1"))
        assert transport.sent == []

        await node.handle_event(Received("peer-1", ExchangeRequest(send_time=1).encode()))

        assert len(transport.sent) == 1
        assert len(transport.sent[0][1]) == REPLY_SIZE
        assert transport.sent[0][1][0] == MessageType.REPLY
        assert node.sessions["peer-1"].state is SessionState.STEADY

    @pytest.mark.asyncio
    async def test_sessions_are_per_peer(self, transport, monotonic):
        node = _node(transport, monotonic, Role.SERVER)
        await node.handle_event(Connected("a"))
        await node.handle_event(Connected("b"))
        await node.handle_event(Received("a", ExchangeRequest(send_time=1).encode()))

        assert node.sessions["a"] is not node.sessions["b"]
        assert node.sessions["a"].state is SessionState.STEADY
        assert node.sessions["b"].state is SessionState.AWAITING_FIRST_SEND

    @pytest.mark.asyncio
    async def test_malformed_frame_gets_no_reply(self, transport, monotonic):
        node = _node(transport, monotonic, Role.SERVER)
        await node.handle_event(Connected("a"))
        await node.handle_event(Received("a", b"\x02\x00\x00"))

        assert transport.sent == []
        assert node.sessions["a"].stats.malformed_count == 1

    @pytest.mark.asyncio
    async def test_unknown_peer_dropped(self, transport, monotonic):
        node = _node(transport, monotonic, Role.SERVER)
        await node.handle_event(Received("ghost", ExchangeRequest(send_time=1).encode()))
        assert transport.sent == []
        assert node.sessions == {}

    @pytest.mark.asyncio
    async def test_disconnect_drops_session(self, transport, monotonic):
        node = _node(transport, monotonic, Role.SERVER)
        await node.handle_event(Connected("a"))
        await node.handle_event(Disconnected("a"))
        assert node.sessions == {}

    @pytest.mark.asyncio
    async def test_run_consumes_until_stream_ends(self, transport, monotonic):
        node = _node(transport, monotonic, Role.SERVER)
        transport.feed(
            Connected("a"),
            Received("a", ExchangeRequest(send_time=1).encode()),
            None,
        )
        await asyncio.wait_for(node.run(), timeout=2.0)
        assert len(transport.sent) == 1


class TestSendFailure:

    @pytest.mark.asyncio
    async def test_failure_is_counted_not_raised(self, transport, monotonic):
        node = _node(transport, monotonic, Role.SERVER)
        await node.handle_event(Connected("a"))
        transport.fail = True

        await node.handle_event(Received("a", ExchangeRequest(send_time=1).encode()))

        session = node.sessions["a"]
        assert session.stats.send_failures == 1
        # State was updated before the send was attempted
        assert session.last_local_send is not None


class TestStaleSessions:

    @pytest.mark.asyncio
    async def test_fresh_session_not_reset(self, transport, monotonic):
        node = _node(transport, monotonic, Role.SERVER)
        await node.handle_event(Connected("a"))
        monotonic.now += 4.0
        assert await node.check_stale() == []

    @pytest.mark.asyncio
    async def test_server_session_reset_after_timeout(self, transport, monotonic):
        node = _node(transport, monotonic, Role.SERVER)
        await node.handle_event(Connected("a"))
        await node.handle_event(Received("a", ExchangeRequest(send_time=1).encode()))

        monotonic.now += 6.0
        assert await node.check_stale() == ["a"]

        session = node.sessions["a"]
        assert session.state is SessionState.AWAITING_FIRST_SEND
        assert session.stats.resets == 1
        assert len(transport.sent) == 1

    @pytest.mark.asyncio
    async def test_client_reopens_after_timeout(self, transport, monotonic):
        node = _node(transport, monotonic, Role.CLIENT)
        await node.handle_event(Connected("server"))

        monotonic.now += 6.0
        assert await node.check_stale() == ["server"]

        assert len(transport.sent) == 2
        assert len(transport.sent[1][1]) == REQUEST_SIZE
        assert node.sessions["server"].state is SessionState.STEADY

    @pytest.mark.asyncio
    async def test_activity_postpones_reset(self, transport, monotonic):
        node = _node(transport, monotonic, Role.SERVER)
        await node.handle_event(Connected("a"))
        monotonic.now += 4.0
        await node.handle_event(Received("a", ExchangeRequest(send_time=1).encode()))
        monotonic.now += 4.0
        assert await node.check_stale() == []

    @pytest.mark.asyncio
    async def test_watchdog_leaves_receive_cycle_alone(self, transport, monotonic):
        config = ExchangeConfig(role=Role.CLIENT, exchange_interval=0.2, stale_timeout=0.3)
        node = ExchangeNode(transport, config, monotonic=monotonic)
        await node.handle_event(Connected("server"))
        reply = ExchangeReply(
            remote_receive=1, remote_send=2, expected_local_receive=0, clock_offset=0
        ).encode()

        receiving = asyncio.create_task(node.handle_event(Received("server", reply)))
        await asyncio.sleep(0)  # now paused in the exchange interval
        monotonic.now += 10.0
        assert await node.check_stale() == []
        await receiving

        session = node.sessions["server"]
        assert session.stats.resets == 0
        assert session.exchange_count == 1
        assert [len(payload) for _, payload in transport.sent] == [REQUEST_SIZE, REPLY_SIZE]
        # Finishing the cycle counts as activity
        assert await node.check_stale() == []
