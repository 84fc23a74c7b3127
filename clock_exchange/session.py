"""
Exchange Session
================

Per-peer state machine for the two-way timestamp exchange.

Every packet a peer sends answers the last one it received, so each receive
closes a round trip started by this peer's previous send:

        t2   t3
 remote ---*----*---------
          /      \\
 local --*--------*-------
        t1        t4

On receive the session updates its estimates from (t1, t2, t3, t4) and
returns the reply to send straight back.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .config import ExchangeConfig, SmoothingPolicy
from .exchange_protocol import (
    ExchangeRequest,
    ExchangeReply,
    MalformedPayload,
    current_time_us,
    decode_message,
)
from .offset_solver import (
    ExchangeRecord,
    compute_clock_offset,
    compute_travel_offset,
    expected_receive_time,
    one_way_travel_time,
    role_sign,
    round_trip_time,
)
from .sample_buffer import SampleBuffer
from .sample_selector import MinRttSelector
from .stats import ExchangeStats

logger = logging.getLogger(__name__)


class SessionState(Enum):
    AWAITING_FIRST_SEND = "awaiting_first_send"
    STEADY = "steady"


@dataclass
class ExchangeResult:
    """Everything computed from one completed round trip (all μs)."""
    record: ExchangeRecord
    raw_clock_offset: int
    corrected_clock_offset: int
    clock_offset: int
    raw_travel_offset: int
    travel_offset: int
    round_trip_time: int
    travel_time: int
    prediction_error: Optional[int] = None
    remote_clock_offset: Optional[int] = None


class ExchangeSession:
    """Clock offset estimator for one peer.

    Owns the last local send time, three sample buffers (clock offset,
    travel offset, one-way travel time) and a minimum-RTT selector. Not
    thread-safe: confine each session to one task.

    Args:
        config: Role, buffer capacity and smoothing policy.
        clock:  Local time source in μs. Defaults to the wall clock.
    """

    def __init__(self, config: ExchangeConfig, clock: Callable[[], int] = current_time_us):
        self.config = config
        self._clock = clock

        self.clock_offsets = SampleBuffer(config.buffer_capacity)
        self.travel_offsets = SampleBuffer(config.buffer_capacity)
        self.travel_times = SampleBuffer(config.buffer_capacity)
        self.selector = MinRttSelector()
        self.stats = ExchangeStats()

        self.state = SessionState.AWAITING_FIRST_SEND
        self.last_local_send: Optional[int] = None
        self.clock_offset: int = 0
        self.travel_offset: int = 0
        self.exchange_count: int = 0
        self.last_result: Optional[ExchangeResult] = None

    # ---- Properties ----------------------------------------------------------

    @property
    def is_server(self) -> bool:
        return self.config.is_server

    @property
    def has_estimate(self) -> bool:
        """True once at least one round trip has produced an offset."""
        return self.exchange_count > 0

    def to_remote_time(self, local_time_us: int) -> int:
        """Convert a local timestamp to the peer's clock."""
        return local_time_us + role_sign(self.is_server) * self.clock_offset

    # ---- Lifecycle -----------------------------------------------------------

    def start(self) -> bytes:
        """Open the exchange. Returns the Request to send to the peer."""
        now = self._clock()
        self.last_local_send = now
        self.state = SessionState.STEADY
        self.stats.tx_count += 1
        logger.debug(f"Opening exchange at {now}")
        return ExchangeRequest(send_time=now).encode()

    def reset(self):
        """Drop all samples and estimates, back to AWAITING_FIRST_SEND."""
        self.clock_offsets.clear()
        self.travel_offsets.clear()
        self.travel_times.clear()
        self.selector.clear()
        self.stats.clear_window()
        self.stats.resets += 1

        self.state = SessionState.AWAITING_FIRST_SEND
        self.last_local_send = None
        self.clock_offset = 0
        self.travel_offset = 0
        self.exchange_count = 0
        self.last_result = None

    # ---- Receive -------------------------------------------------------------

    def on_receive(self, payload: bytes, received_at: Optional[int] = None) -> Optional[bytes]:
        """Process one incoming frame.

        Args:
            payload:     Raw frame from the transport.
            received_at: Local receive time in μs, if taken at the transport.

        Returns:
            The reply frame to send back, or None if the frame was discarded.
        """
        t4 = received_at if received_at is not None else self._clock()

        try:
            message = decode_message(payload)
        except MalformedPayload as e:
            self.stats.malformed_count += 1
            logger.warning(f"Discarding frame: {e}")
            return None

        self.stats.rx_count += 1

        prediction_error = None
        remote_clock_offset = None
        if isinstance(message, ExchangeRequest):
            if self.state is SessionState.STEADY:
                logger.info("Peer reopened the exchange, resetting session")
                self.reset()
        else:
            prediction_error = t4 - message.expected_local_receive
            remote_clock_offset = message.clock_offset

        # Without a previous send of our own there is no round trip to close
        if self.last_local_send is not None:
            record = ExchangeRecord(
                t1=self.last_local_send,
                t2=message.remote_receive,
                t3=message.remote_send,
                t4=t4,
            )
            self.last_result = self._update(record, prediction_error, remote_clock_offset)

        local_send = self._clock()
        expected = expected_receive_time(
            local_send, self.travel_times.average(), self.clock_offset, self.is_server
        )
        reply = ExchangeReply(
            remote_receive=t4,
            remote_send=local_send,
            expected_local_receive=expected,
            clock_offset=self.clock_offset,
        )

        self.last_local_send = local_send
        self.state = SessionState.STEADY
        self.stats.tx_count += 1
        return reply.encode()

    def _update(
        self,
        record: ExchangeRecord,
        prediction_error: Optional[int],
        remote_clock_offset: Optional[int],
    ) -> ExchangeResult:
        """Run the travel pass then the clock pass over one record.

        The travel pass measures the record against the offset the peer last
        reported, or our own when the peer sent none. Round trips cannot tell
        offset from asymmetry, so the clock-offset buffer and the selector
        take the symmetric-travel sample of each record. The sample corrected
        by the smoothed travel offset is only kept on the result.
        """
        reference = remote_clock_offset if remote_clock_offset is not None else self.clock_offset
        if self.has_estimate and not record.is_degenerate:
            raw_travel = compute_travel_offset(record, reference, self.is_server)
            self.travel_offsets.add(raw_travel)
        else:
            # Bootstrap: assume symmetric travel until there is an offset to test against
            raw_travel = 0
        self.travel_offset = self.travel_offsets.average()

        raw_clock = compute_clock_offset(record, 0, self.is_server)
        corrected_clock = compute_clock_offset(record, self.travel_offset, self.is_server)
        self.clock_offsets.add(raw_clock)

        rtt = round_trip_time(record)
        self.selector.add(rtt, raw_clock)

        if self.config.smoothing is SmoothingPolicy.MIN_RTT:
            self.clock_offset = self.selector.best
        else:
            self.clock_offset = self.clock_offsets.average()

        travel_time = one_way_travel_time(record, self.clock_offset, self.is_server)
        self.travel_times.add(travel_time)

        self.exchange_count += 1
        self.stats.record(rtt, prediction_error)

        logger.debug(
            f"Exchange #{self.exchange_count}: "
            f"offset={self.clock_offset}μs (raw {raw_clock}, corrected {corrected_clock}) "
            f"travel_offset={self.travel_offset}μs (raw {raw_travel} vs {reference}) "
            f"rtt={rtt}μs travel={travel_time}μs pred_err={prediction_error}"
        )

        return ExchangeResult(
            record=record,
            raw_clock_offset=raw_clock,
            corrected_clock_offset=corrected_clock,
            clock_offset=self.clock_offset,
            raw_travel_offset=raw_travel,
            travel_offset=self.travel_offset,
            round_trip_time=rtt,
            travel_time=travel_time,
            prediction_error=prediction_error,
            remote_clock_offset=remote_clock_offset,
        )
