"""
Clock Exchange Package
======================

Two-way timestamp exchange for estimating the clock offset and the one-way
travel-time asymmetry between two hosts.

Modules:
    exchange_protocol - Binary Request/Reply encoding/decoding
    sample_buffer     - Ring buffer with running average
    offset_solver     - Clock offset / travel offset equations
    sample_selector   - Minimum-RTT sample selection
    session           - Per-peer exchange state machine
    stats             - Exchange diagnostics
    transport         - aiohttp WebSocket transport
    node              - Event routing and session lifecycle
"""

from .config import ExchangeConfig, Role, SmoothingPolicy
from .exchange_protocol import (
    MessageType,
    ExchangeRequest,
    ExchangeReply,
    MalformedPayload,
    decode_message,
    current_time_us,
)
from .offset_solver import (
    ExchangeRecord,
    compute_clock_offset,
    compute_travel_offset,
    round_trip_time,
    one_way_travel_time,
    expected_receive_time,
)
from .sample_buffer import SampleBuffer
from .sample_selector import MinRttSelector
from .session import ExchangeSession, ExchangeResult, SessionState
from .stats import ExchangeStats
from .transport import (
    SendFailure,
    Connected,
    Received,
    Disconnected,
    ServerTransport,
    ClientTransport,
)
from .node import ExchangeNode

__all__ = [
    "ExchangeConfig",
    "Role",
    "SmoothingPolicy",
    "MessageType",
    "ExchangeRequest",
    "ExchangeReply",
    "MalformedPayload",
    "decode_message",
    "current_time_us",
    "ExchangeRecord",
    "compute_clock_offset",
    "compute_travel_offset",
    "round_trip_time",
    "one_way_travel_time",
    "expected_receive_time",
    "SampleBuffer",
    "MinRttSelector",
    "ExchangeSession",
    "ExchangeResult",
    "SessionState",
    "ExchangeStats",
    "SendFailure",
    "Connected",
    "Received",
    "Disconnected",
    "ServerTransport",
    "ClientTransport",
    "ExchangeNode",
]
