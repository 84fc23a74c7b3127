"""
WebSocket Transport
===================

Reliable, ordered per-peer message delivery over aiohttp WebSockets.

Both sides expose the same surface to the exchange node:

    await transport.send(peer, payload)     # raises SendFailure
    async for event in transport.events():  # Connected / Received / Disconnected
        ...

Lifecycle is explicit: ``open()`` / ``close()``, or ``async with transport:``
which closes on every exit path.
"""

import asyncio
import itertools
from abc import ABC, abstractmethod
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Optional, Union

import aiohttp
from aiohttp import web

from .exchange_protocol import current_time_us

logger = logging.getLogger(__name__)

DEFAULT_PORT = 7777
DEFAULT_PATH = "/ws/exchange"
HEARTBEAT_S = 25.0


class SendFailure(ConnectionError):
    """The transport could not queue an outbound frame for a peer."""


# ---- Events ------------------------------------------------------------------

@dataclass
class Connected:
    peer: str


@dataclass
class Received:
    peer: str
    payload: bytes
    received_at: int = field(default_factory=current_time_us)  # μs, local clock


@dataclass
class Disconnected:
    peer: str


TransportEvent = Union[Connected, Received, Disconnected]


# ---- Base --------------------------------------------------------------------

class WebSocketTransport(ABC):
    """Shared peer table, event queue and send path. Subclasses own the socket setup."""

    def __init__(self):
        self._events: asyncio.Queue = asyncio.Queue()
        self._peers: Dict[str, web.WebSocketResponse] = {}
        self._closed = False

    @property
    def peers(self) -> list:
        return list(self._peers)

    @abstractmethod
    async def open(self):
        ...

    @abstractmethod
    async def close(self):
        ...

    async def __aenter__(self) -> "WebSocketTransport":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def send(self, peer: str, payload: bytes):
        """Send one binary frame to a connected peer.

        Raises:
            SendFailure: peer unknown, socket closed, or the write failed.
        """
        ws = self._peers.get(peer)
        if ws is None or ws.closed:
            raise SendFailure(f"Peer {peer} is not connected")
        try:
            await ws.send_bytes(payload)
        except (ConnectionError, RuntimeError, aiohttp.ClientError) as e:
            raise SendFailure(f"Send to {peer} failed: {e}") from e

    async def events(self) -> AsyncIterator[TransportEvent]:
        """Yield transport events until the transport is closed."""
        while True:
            event = await self._events.get()
            if event is None:
                return
            yield event

    async def _pump(self, peer: str, ws):
        """Feed frames from one socket into the event queue until it closes."""
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.BINARY:
                await self._events.put(Received(peer, msg.data))
            elif msg.type == aiohttp.WSMsgType.TEXT:
                logger.debug(f"Ignoring text frame from {peer}")
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error(f"Socket error from {peer}: {ws.exception()}")
                break

    async def _finish(self):
        if not self._closed:
            self._closed = True
            await self._events.put(None)


# ---- Server ------------------------------------------------------------------

class ServerTransport(WebSocketTransport):
    """Accepts any number of peers on one WebSocket endpoint.

    Args:
        host: Interface to bind.
        port: TCP port to bind.
        path: HTTP path of the WebSocket endpoint.
    """

    def __init__(self, host: str = "0.0.0.0", port: int = DEFAULT_PORT, path: str = DEFAULT_PATH):
        super().__init__()
        self.host = host
        self.port = port
        self.path = path
        self._runner: Optional[web.AppRunner] = None
        self._ids = itertools.count(1)

    async def open(self):
        app = web.Application()
        app.router.add_get(self.path, self._handle_ws)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"Listening on ws://{self.host}:{self.port}{self.path}")

    async def close(self):
        logger.info("Closing server transport...")
        for ws in list(self._peers.values()):
            await ws.close()
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        await self._finish()

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=HEARTBEAT_S)
        await ws.prepare(request)

        peer = f"{request.remote}#{next(self._ids)}"
        self._peers[peer] = ws
        logger.info(f"Peer connected: {peer}")
        await self._events.put(Connected(peer))

        try:
            await self._pump(peer, ws)
        finally:
            self._peers.pop(peer, None)
            logger.info(f"Peer disconnected: {peer}")
            await self._events.put(Disconnected(peer))
        return ws


# ---- Client ------------------------------------------------------------------

class ClientTransport(WebSocketTransport):
    """Connects to a single server.

    Args:
        url:             WebSocket URL of the server.
        connect_timeout: Seconds to wait for the connection.
    """

    def __init__(self, url: str, connect_timeout: float = 5.0):
        super().__init__()
        self.url = url
        self.connect_timeout = connect_timeout
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._recv_task: Optional[asyncio.Task] = None

    @property
    def peer(self) -> str:
        return self.url

    async def open(self):
        self._session = aiohttp.ClientSession()
        try:
            self._ws = await asyncio.wait_for(
                self._session.ws_connect(self.url, heartbeat=HEARTBEAT_S),
                timeout=self.connect_timeout,
            )
        except Exception:
            await self._session.close()
            self._session = None
            raise

        self._peers[self.peer] = self._ws
        logger.info(f"Connected: {self.url}")
        await self._events.put(Connected(self.peer))
        self._recv_task = asyncio.create_task(self._recv_loop())

    async def close(self):
        logger.info("Closing client transport...")
        if self._recv_task:
            self._recv_task.cancel()
            try:
                await self._recv_task
            except asyncio.CancelledError:
                pass
            self._recv_task = None

        if self._ws and not self._ws.closed:
            await self._ws.close()
        if self._session:
            await self._session.close()
            self._session = None
        self._peers.pop(self.peer, None)
        await self._finish()

    async def _recv_loop(self):
        try:
            await self._pump(self.peer, self._ws)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Recv error: {e}")
        self._peers.pop(self.peer, None)
        logger.info(f"Disconnected: {self.url}")
        await self._events.put(Disconnected(self.peer))
        await self._finish()
