"""
TimeSync - NTP Clock Synchronization

Minimal NTP client and control loop: polls configured peers, picks the most
trustworthy sample and corrects the host clock when it drifts out of the
dead-band.
"""

__version__ = "1.0.0"
__author__ = "TimeSync Team"

from .clock import ClockAuthority, DryRunClock, SystemClock
from .config import SyncPolicy, TimeSyncSettings, load_settings
from .correction import CorrectionResult, Corrector
from .errors import (
    ClockAdjustError,
    ConfigurationError,
    InvalidSampleError,
    MalformedPacketError,
    QueryError,
    QueryNetworkError,
    QueryTimeoutError,
    TimeSyncError,
)
from .ntp_client import NtpClient, query_peer, query_peers
from .packet import NtpPacket, NtpTimestamp, decode, encode, encode_request
from .sample import PeerQueryResult, TimeSample
from .selection import select_best
from .service import SchedulerState, TimeSyncService

__all__ = [
    "ClockAuthority",
    "DryRunClock",
    "SystemClock",
    "SyncPolicy",
    "TimeSyncSettings",
    "load_settings",
    "CorrectionResult",
    "Corrector",
    "ClockAdjustError",
    "ConfigurationError",
    "InvalidSampleError",
    "MalformedPacketError",
    "QueryError",
    "QueryNetworkError",
    "QueryTimeoutError",
    "TimeSyncError",
    "NtpClient",
    "query_peer",
    "query_peers",
    "NtpPacket",
    "NtpTimestamp",
    "decode",
    "encode",
    "encode_request",
    "PeerQueryResult",
    "TimeSample",
    "select_best",
    "SchedulerState",
    "TimeSyncService",
    "__version__",
]
