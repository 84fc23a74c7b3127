"""
Sample Buffer
=============

Fixed-capacity ring of recent duration samples (μs) with an O(1) running
average.
"""

from typing import List


class SampleBuffer:
    """Ring buffer of durations that keeps a running sum.

    Partially filled, ``average()`` is over the values inserted so far; once
    ``capacity`` values have been added it stays full and each insert evicts
    the oldest.

    Args:
        capacity: Number of samples to keep (> 0).
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._buffer: List[int] = [0] * capacity
        self._index = 0
        self._full = False
        self._total = 0

    def add(self, value: int):
        """Insert a duration, evicting the oldest when at capacity."""
        if self._full:
            self._total -= self._buffer[self._index]
        self._buffer[self._index] = value
        self._total += value

        self._index = (self._index + 1) % self._capacity
        if self._index == 0:
            self._full = True

    def average(self) -> int:
        """Mean of the held values, truncated toward zero; 0 if empty."""
        count = len(self)
        if count == 0:
            return 0
        q = abs(self._total) // count
        return q if self._total >= 0 else -q

    def clear(self):
        self._buffer = [0] * self._capacity
        self._index = 0
        self._full = False
        self._total = 0

    def values(self) -> List[int]:
        """Held values, oldest first."""
        if self._full:
            return self._buffer[self._index:] + self._buffer[:self._index]
        return self._buffer[:self._index]

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def full(self) -> bool:
        return self._full

    def __len__(self) -> int:
        return self._capacity if self._full else self._index

    def __repr__(self) -> str:
        return f"SampleBuffer(capacity={self._capacity}, len={len(self)}, avg={self.average()})"
