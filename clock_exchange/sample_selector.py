"""
Minimum-RTT Sample Selection
============================

Queueing delay inflates the round-trip time and, when it hits one direction
only, skews the offset computed from that sample too. The sample with the
lowest round-trip time is the one least likely to have been hit, so its
offset is reported as the best estimate.
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


class MinRttSelector:
    """Running minimum over round-trip time.

    Only the minimum is ever read, so one comparison per sample replaces a
    sorted container. A sample whose RTT ties the current minimum replaces it.
    """

    def __init__(self):
        self._best_rtt: Optional[int] = None
        self._best_offset: Optional[int] = None
        self.count: int = 0

    def add(self, rtt: int, clock_offset: int) -> bool:
        """Offer a sample.

        Args:
            rtt:          Round-trip time of the exchange (μs).
            clock_offset: Clock offset computed from the same exchange (μs).

        Returns:
            True if the sample became the new best.
        """
        self.count += 1
        if self._best_rtt is None or rtt <= self._best_rtt:
            if self._best_rtt is not None and rtt < self._best_rtt:
                logger.debug(f"New minimum RTT {rtt}μs (was {self._best_rtt}μs), offset={clock_offset}μs")
            self._best_rtt = rtt
            self._best_offset = clock_offset
            return True
        return False

    @property
    def best(self) -> Optional[int]:
        """Clock offset of the minimum-RTT sample, or None if empty."""
        return self._best_offset

    @property
    def best_rtt(self) -> Optional[int]:
        return self._best_rtt

    def clear(self):
        self._best_rtt = None
        self._best_offset = None
        self.count = 0
