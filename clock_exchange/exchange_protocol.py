"""
Exchange Protocol Module - Fixed-Size Binary Protocol
=====================================================

Binary encoding/decoding for the two-way timestamp exchange.

All timestamps are signed 64-bit microsecond counts since the Unix epoch,
each measured on the clock of the peer that took it. Only differences within
one clock's frame are used directly.

REQUEST (9 bytes, first packet of a session):
    [0]     uint8   message_type (0x01)
    [1-8]   int64   send_time

REPLY (33 bytes, every packet after the first):
    [0]     uint8   message_type (0x02)
    [1-8]   int64   remote_receive           (sender's receive time)
    [9-16]  int64   remote_send              (sender's send time)
    [17-24] int64   expected_local_receive   (predicted, on receiver's clock)
    [25-32] int64   clock_offset             (sender's smoothed θ, μs)

A Request is the iteration-zero packet: decoded as a record it has
remote_receive == remote_send == send_time.
"""

import struct
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Union


# =================
# CONSTANTS
# =================

class MessageType(IntEnum):
    """Message type identifiers (first byte of every message)."""
    REQUEST = 0x01
    REPLY = 0x02


REQUEST_FORMAT = '<Bq'        # type + send_time = 9 bytes
REQUEST_SIZE = 9

REPLY_FORMAT = '<Bqqqq'       # type + 3×timestamp + offset = 33 bytes
REPLY_SIZE = 33


class MalformedPayload(ValueError):
    """Raised when a frame has the wrong length or an unknown type byte."""


# ===================
# UTILITY FUNCTIONS
# ===================

def current_time_us() -> int:
    """Current time in microseconds since Unix epoch."""
    return time.time_ns() // 1000


def monotonic_s() -> float:
    """Monotonic seconds (for staleness tracking, never sent on the wire)."""
    return time.monotonic()


# =================
# DATA CLASSES
# =================

@dataclass
class ExchangeRequest:
    """Opening packet of a session (9 bytes)."""
    send_time: int

    def encode(self) -> bytes:
        return struct.pack(REQUEST_FORMAT, MessageType.REQUEST, self.send_time)

    @classmethod
    def decode(cls, data: bytes) -> 'ExchangeRequest':
        if len(data) != REQUEST_SIZE:
            raise MalformedPayload(f"Expected {REQUEST_SIZE} bytes, got {len(data)}")
        if data[0] != MessageType.REQUEST:
            raise MalformedPayload(f"Expected REQUEST (0x01), got 0x{data[0]:02x}")
        _, send_time = struct.unpack(REQUEST_FORMAT, data)
        return cls(send_time=send_time)

    @property
    def remote_receive(self) -> int:
        return self.send_time

    @property
    def remote_send(self) -> int:
        return self.send_time


@dataclass
class ExchangeReply:
    """Steady-state packet (33 bytes).

    Carries the sender's receive and send instants for the packet it is
    answering, its prediction of when this packet lands on the receiver's
    clock, and its current smoothed clock offset.
    """
    remote_receive: int
    remote_send: int
    expected_local_receive: int
    clock_offset: int

    def encode(self) -> bytes:
        return struct.pack(
            REPLY_FORMAT,
            MessageType.REPLY,              # B: message type
            self.remote_receive,            # q: sender receive time
            self.remote_send,               # q: sender send time
            self.expected_local_receive,    # q: predicted arrival
            self.clock_offset,              # q: smoothed offset (μs)
        )

    @classmethod
    def decode(cls, data: bytes) -> 'ExchangeReply':
        if len(data) != REPLY_SIZE:
            raise MalformedPayload(f"Expected {REPLY_SIZE} bytes, got {len(data)}")
        if data[0] != MessageType.REPLY:
            raise MalformedPayload(f"Expected REPLY (0x02), got 0x{data[0]:02x}")
        values = struct.unpack(REPLY_FORMAT, data)
        return cls(
            remote_receive=values[1],
            remote_send=values[2],
            expected_local_receive=values[3],
            clock_offset=values[4],
        )


Message = Union[ExchangeRequest, ExchangeReply]


def decode_message(data: bytes) -> Message:
    """Decode any exchange frame by its leading type byte.

    Raises:
        MalformedPayload: empty frame, unknown type, or wrong length.
    """
    if len(data) < 1:
        raise MalformedPayload("Empty frame")

    msg_type = data[0]
    if msg_type == MessageType.REQUEST:
        return ExchangeRequest.decode(data)
    if msg_type == MessageType.REPLY:
        return ExchangeReply.decode(data)
    raise MalformedPayload(f"Unknown message type 0x{msg_type:02x} (size={len(data)})")
