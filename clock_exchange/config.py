"""
Exchange Configuration
======================

Per-node settings shared by every session the node creates.
"""

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Which side of the exchange this peer plays. Sets the sign convention."""
    CLIENT = "client"
    SERVER = "server"


class SmoothingPolicy(str, Enum):
    """How the reported clock offset is chosen from the samples.

    AVERAGE: mean of the symmetric-travel offsets in the ring buffer.
    MIN_RTT: symmetric-travel offset of the lowest round-trip-time sample seen.

    Both converge under random queueing delay. Neither can see a fixed route
    asymmetry.
    """
    AVERAGE = "average"
    MIN_RTT = "min-rtt"


@dataclass
class ExchangeConfig:
    """Settings for an exchange node and its sessions.

    Args:
        buffer_capacity:   Samples kept per ring buffer.
        role:              CLIENT initiates the exchange, SERVER answers.
        smoothing:         Policy for the reported clock offset.
        exchange_interval: Seconds between receiving a packet and replying.
        stale_timeout:     Seconds without a packet before a session is reset.
    """
    buffer_capacity: int = 10
    role: Role = Role.CLIENT
    smoothing: SmoothingPolicy = SmoothingPolicy.AVERAGE
    exchange_interval: float = 0.05
    stale_timeout: float = 5.0

    def __post_init__(self):
        self.role = Role(self.role)
        self.smoothing = SmoothingPolicy(self.smoothing)
        if self.buffer_capacity <= 0:
            raise ValueError(f"buffer_capacity must be positive, got {self.buffer_capacity}")
        if self.exchange_interval < 0:
            raise ValueError(f"exchange_interval must not be negative, got {self.exchange_interval}")
        if self.stale_timeout <= 0:
            raise ValueError(f"stale_timeout must be positive, got {self.stale_timeout}")
        if self.stale_timeout <= self.exchange_interval:
            raise ValueError(
                f"stale_timeout ({self.stale_timeout}s) must exceed exchange_interval ({self.exchange_interval}s)"
            )

    @property
    def is_server(self) -> bool:
        return self.role is Role.SERVER
