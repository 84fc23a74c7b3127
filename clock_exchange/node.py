"""
Exchange Node
=============

Routes transport events to one ExchangeSession per peer, paces the
exchange, and resets sessions that have gone quiet.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set

from .config import ExchangeConfig
from .exchange_protocol import current_time_us, monotonic_s
from .session import ExchangeSession
from .transport import (
    Connected,
    Disconnected,
    Received,
    SendFailure,
    TransportEvent,
    WebSocketTransport,
)

logger = logging.getLogger(__name__)


class ExchangeNode:
    """Drives the timestamp exchange for every peer of one transport.

    The client role opens each exchange and waits ``exchange_interval``
    before every reply; the server role answers immediately. Each session is
    touched only from the task running ``run()``.

    Args:
        transport: Open (or about to be opened) transport.
        config:    Settings applied to every session.
        clock:     Local time source in μs, passed to sessions.
        monotonic: Monotonic seconds, for staleness tracking.
    """

    def __init__(
        self,
        transport: WebSocketTransport,
        config: ExchangeConfig,
        clock: Callable[[], int] = current_time_us,
        monotonic: Callable[[], float] = monotonic_s,
    ):
        self.transport = transport
        self.config = config
        self._clock = clock
        self._monotonic = monotonic

        self.sessions: Dict[str, ExchangeSession] = {}
        self._last_activity: Dict[str, float] = {}
        # Peers whose receive cycle has not finished yet
        self._in_flight: Set[str] = set()

    # ---- Main loop -----------------------------------------------------------

    async def run(self):
        """Consume transport events until the transport closes."""
        watchdog = asyncio.create_task(self._watchdog_loop())
        try:
            async for event in self.transport.events():
                await self.handle_event(event)
        finally:
            watchdog.cancel()
            try:
                await watchdog
            except asyncio.CancelledError:
                pass

    async def handle_event(self, event: TransportEvent):
        if isinstance(event, Connected):
            await self._on_connected(event.peer)
        elif isinstance(event, Received):
            await self._on_received(event)
        elif isinstance(event, Disconnected):
            self._on_disconnected(event.peer)

    # ---- Event handlers ------------------------------------------------------

    async def _on_connected(self, peer: str):
        session = ExchangeSession(self.config, clock=self._clock)
        self.sessions[peer] = session
        self._last_activity[peer] = self._monotonic()
        logger.info(f"Session opened for {peer} ({self.config.role.value})")

        if not self.config.is_server:
            await self._send(peer, session.start())

    async def _on_received(self, event: Received):
        session = self.sessions.get(event.peer)
        if session is None:
            logger.warning(f"Frame from unknown peer {event.peer}, dropping")
            return
        self._last_activity[event.peer] = self._monotonic()
        self._in_flight.add(event.peer)
        try:
            if not self.config.is_server and self.config.exchange_interval > 0:
                await asyncio.sleep(self.config.exchange_interval)

            reply = session.on_receive(event.payload, received_at=event.received_at)
            if reply is not None:
                await self._send(event.peer, reply)
        finally:
            self._in_flight.discard(event.peer)
            self._last_activity[event.peer] = self._monotonic()

    def _on_disconnected(self, peer: str):
        session = self.sessions.pop(peer, None)
        self._last_activity.pop(peer, None)
        self._in_flight.discard(peer)
        if session is not None:
            logger.info(
                f"Session closed for {peer}: offset={session.clock_offset}μs "
                f"after {session.exchange_count} exchanges"
            )

    async def _send(self, peer: str, payload: bytes) -> bool:
        try:
            await self.transport.send(peer, payload)
            return True
        except SendFailure as e:
            session = self.sessions.get(peer)
            if session is not None:
                session.stats.send_failures += 1
            logger.warning(f"Send failed: {e}")
            return False

    # ---- Staleness -----------------------------------------------------------

    async def check_stale(self, now: Optional[float] = None) -> List[str]:
        """Reset every session idle for longer than ``stale_timeout``.

        A client session is reopened straight away with a fresh Request.
        Sessions partway through a receive cycle are left alone.

        Returns:
            Peers whose sessions were reset.
        """
        now = self._monotonic() if now is None else now
        stale = [
            peer for peer, last in self._last_activity.items()
            if now - last > self.config.stale_timeout
        ]
        reset = []
        for peer in stale:
            session = self.sessions.get(peer)
            # Disconnected, or partway through a receive cycle
            if session is None or peer in self._in_flight:
                continue
            reset.append(peer)
            logger.info(f"Session for {peer} idle {now - self._last_activity[peer]:.1f}s, resetting")
            session.reset()
            self._last_activity[peer] = now
            if not self.config.is_server:
                await self._send(peer, session.start())
        return reset

    async def _watchdog_loop(self):
        try:
            while True:
                await asyncio.sleep(self.config.stale_timeout / 2)
                await self.check_stale()
        except asyncio.CancelledError:
            pass
