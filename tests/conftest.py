"""
Pytest configuration and fixtures for clock-exchange tests.
"""

import random
import sys
from pathlib import Path

import pytest

# Make the package importable without installing it
sys.path.insert(0, str(Path(__file__).parent.parent))

from clock_exchange.config import ExchangeConfig, Role, SmoothingPolicy  # noqa: E402
from clock_exchange.session import ExchangeSession  # noqa: E402


class TwoClockLink:
    """Two clocks joined by one simulated link.

    True time is the client clock; the server clock reads ``theta0`` ahead.
    Each leg takes its base travel time plus optional jitter, and each peer
    spends ``processing`` μs between receiving and replying.
    """

    def __init__(self, theta0, cts, stc, processing=50, jitter=None, start=1_700_000_000_000_000):
        self.theta0 = theta0
        self.cts = cts
        self.stc = stc
        self.processing = processing
        self.jitter = jitter
        self.now = start

    def client_clock(self):
        return self.now

    def server_clock(self):
        return self.now + self.theta0

    def _leg(self, base):
        self.now += base + (self.jitter() if self.jitter else 0)

    def deliver_to_server(self, server, packet):
        self._leg(self.cts)
        rx = self.server_clock()
        self.now += self.processing
        return server.on_receive(packet, received_at=rx)

    def deliver_to_client(self, client, packet):
        self._leg(self.stc)
        rx = self.client_clock()
        self.now += self.processing
        return client.on_receive(packet, received_at=rx)

    def sessions(self, capacity=10, smoothing=SmoothingPolicy.AVERAGE):
        client = ExchangeSession(
            ExchangeConfig(buffer_capacity=capacity, role=Role.CLIENT, smoothing=smoothing),
            clock=self.client_clock,
        )
        server = ExchangeSession(
            ExchangeConfig(buffer_capacity=capacity, role=Role.SERVER, smoothing=smoothing),
            clock=self.server_clock,
        )
        return client, server

    def run(self, client, server, exchanges):
        """Open the exchange and run full round trips.

        Returns:
            Client clock offset after each of its completed exchanges.
        """
        offsets = []
        packet = client.start()
        for _ in range(exchanges):
            packet = self.deliver_to_server(server, packet)
            packet = self.deliver_to_client(client, packet)
            offsets.append(client.clock_offset)
        return offsets


def exponential_jitter(seed, mean_us):
    """Non-negative queueing delay, in whole microseconds."""
    rng = random.Random(seed)
    return lambda: int(rng.expovariate(1.0 / mean_us))


@pytest.fixture
def theta0():
    """Server clock ahead of the client by 2.5 s."""
    return 2_500_000


@pytest.fixture
def symmetric_link(theta0):
    return TwoClockLink(theta0=theta0, cts=10_000, stc=10_000)


@pytest.fixture
def asymmetric_link(theta0):
    """Client-to-server leg 4 ms slower than the way back."""
    return TwoClockLink(theta0=theta0, cts=12_000, stc=8_000)


@pytest.fixture
def client_config():
    return ExchangeConfig(buffer_capacity=10, role=Role.CLIENT, exchange_interval=0)


@pytest.fixture
def server_config():
    return ExchangeConfig(buffer_capacity=10, role=Role.SERVER, exchange_interval=0)
