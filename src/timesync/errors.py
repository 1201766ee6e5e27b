"""Exception hierarchy for TimeSync."""

from typing import Optional


class TimeSyncError(Exception):
    """Base class for all TimeSync errors."""


class MalformedPacketError(TimeSyncError):
    """Raised when a buffer cannot be decoded as an NTP packet."""


class QueryError(TimeSyncError):
    """A single peer query failed. The peer is excluded from the round."""

    def __init__(self, peer: str, message: Optional[str] = None):
        self.peer = peer
        super().__init__(message or f"NTP query to {peer} failed")


class QueryTimeoutError(QueryError):
    """No response arrived within the configured timeout."""

    def __init__(self, peer: str, timeout: float):
        self.timeout = timeout
        super().__init__(peer, f"No response from {peer} within {timeout * 1000:.0f}ms")


class QueryNetworkError(QueryError):
    """Address resolution or the UDP transport failed."""


class InvalidSampleError(TimeSyncError):
    """Delay or offset requested from a sample missing one of its timestamps."""


class ClockAdjustError(TimeSyncError):
    """The clock authority refused or failed to change the host clock."""


class ConfigurationError(TimeSyncError):
    """Configuration file is unreadable or invalid."""
