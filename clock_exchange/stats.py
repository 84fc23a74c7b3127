"""
Statistics Tracker
==================

Tracks exchange diagnostics over a sliding window: how far arrivals land
from their prediction, and the round-trip times seen.
"""

from collections import deque


class ExchangeStats:
    """Sliding-window exchange statistics for one session.

    Args:
        window: Number of recent samples to keep for averaging.
    """

    def __init__(self, window: int = 100):
        self._prediction_errors: deque[int] = deque(maxlen=window)
        self._rtts: deque[int] = deque(maxlen=window)
        self.rx_count: int = 0
        self.tx_count: int = 0
        self.malformed_count: int = 0
        self.send_failures: int = 0
        self.resets: int = 0

    def record(self, rtt_us: int, prediction_error_us=None):
        """Record one completed exchange.

        Args:
            rtt_us:              Round-trip time, μs.
            prediction_error_us: Arrival minus predicted arrival, μs, if known.
        """
        self._rtts.append(rtt_us)
        if prediction_error_us is not None:
            self._prediction_errors.append(prediction_error_us)

    @staticmethod
    def _avg(d: deque) -> float:
        """Average of a deque, or 0.0 if empty."""
        return sum(d) / len(d) if d else 0.0

    @property
    def avg_rtt_us(self) -> float:
        return self._avg(self._rtts)

    @property
    def min_rtt_us(self) -> int:
        return min(self._rtts) if self._rtts else 0

    @property
    def avg_prediction_error_us(self) -> float:
        return self._avg(self._prediction_errors)

    @property
    def avg_abs_prediction_error_us(self) -> float:
        d = self._prediction_errors
        return sum(map(abs, d)) / len(d) if d else 0.0

    def clear_window(self):
        self._prediction_errors.clear()
        self._rtts.clear()

    def __str__(self) -> str:
        return (
            f"rx={self.rx_count} tx={self.tx_count} "
            f"rtt={self.avg_rtt_us:.0f}μs (min {self.min_rtt_us}μs) "
            f"pred_err={self.avg_prediction_error_us:.0f}μs "
            f"|pred_err|={self.avg_abs_prediction_error_us:.0f}μs "
            f"bad={self.malformed_count} send_fail={self.send_failures} "
            f"resets={self.resets}"
        )
