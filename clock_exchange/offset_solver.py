"""
Offset Solver
=============

Clock offset and travel-time asymmetry from one two-way timestamp exchange.

Conventions:
    server_time = client_time + clock_offset
    client_to_server_travel = server_to_client_travel + travel_offset

Both roles estimate the same two quantities. The server measures its round
trip the other way round, so its measured term is negated (``sign = -1``).

For a record (t1, t2, t3, t4) let

    S = sign * ((t2 - t1) - (t4 - t3))

then S = 2 * clock_offset + travel_offset, which gives

    clock_offset  = (S - travel_offset) / 2
    travel_offset = S - 2 * clock_offset

No number of records can separate the two. A session takes the clock
offset from travel_offset = 0 (symmetric travel) and measures the travel
offset of each record against the clock offset the peer last reported.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ExchangeRecord:
    """The four timestamps of one round trip (μs).

    t1 and t4 are on the local clock, t2 and t3 on the remote clock.
    """
    t1: int  # local send
    t2: int  # remote receive
    t3: int  # remote send
    t4: int  # local receive

    @property
    def is_iteration_zero(self) -> bool:
        """True for the opening packet, where the remote had nothing to answer."""
        return self.t2 == self.t3

    @property
    def is_degenerate(self) -> bool:
        """Iteration zero, or a round trip with no measurable local interval."""
        return self.is_iteration_zero or self.t1 == self.t4


def role_sign(is_server: bool) -> int:
    return -1 if is_server else 1


def _measured_asymmetry(record: ExchangeRecord, is_server: bool) -> int:
    return role_sign(is_server) * ((record.t2 - record.t1) - (record.t4 - record.t3))


def compute_clock_offset(record: ExchangeRecord, travel_offset: int, is_server: bool) -> int:
    """Clock offset given a travel offset estimate.

    Args:
        record:        Exchange timestamps.
        travel_offset: Current travel-offset estimate (μs), 0 to bootstrap.
        is_server:     Role of the peer that measured ``record``.

    Returns:
        Estimated server-minus-client clock offset (μs).
    """
    return (_measured_asymmetry(record, is_server) - travel_offset) // 2


def compute_travel_offset(record: ExchangeRecord, clock_offset: int, is_server: bool) -> int:
    """Travel offset given a clock offset estimate.

    Degenerate records contribute nothing and return 0.

    Returns:
        Estimated client-to-server minus server-to-client travel time (μs).
    """
    if record.is_degenerate:
        return 0
    return _measured_asymmetry(record, is_server) - 2 * clock_offset


def round_trip_time(record: ExchangeRecord) -> int:
    """Network round-trip time, excluding the remote's processing delay."""
    return (record.t4 - record.t1) - (record.t3 - record.t2)


def one_way_travel_time(record: ExchangeRecord, clock_offset: int, is_server: bool) -> int:
    """Travel time from this peer's send (t1) to the remote's receive (t2).

    t1 is moved onto the remote clock with ``clock_offset``. The raw
    difference goes negative when the offset estimate is badly off, so the
    magnitude is returned.
    """
    send_on_remote_clock = record.t1 + role_sign(is_server) * clock_offset
    return abs(record.t2 - send_on_remote_clock)


def expected_receive_time(send_time: int, travel_time: int, clock_offset: int, is_server: bool) -> int:
    """Predicted arrival of a packet sent at ``send_time``, on the remote clock."""
    return send_time + role_sign(is_server) * clock_offset + travel_time
