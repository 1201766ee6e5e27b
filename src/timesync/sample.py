"""
Timing samples derived from one NTP exchange.

    T1  origin       client send instant (local clock)
    T2  receive      server receive instant
    T3  transmit     server transmit instant
    T4  destination  client receive instant (local clock)

    RoundTripDelay = (T4 - T1) - (T3 - T2)
    Offset         = ((T2 - T1) + (T3 - T4)) / 2
"""

from dataclasses import dataclass
from typing import Optional

from .errors import InvalidSampleError, TimeSyncError
from .packet import NtpPacket, NtpTimestamp, Stratum, stratum_reliability


def round_trip_delay(t1: NtpTimestamp, t2: NtpTimestamp,
                     t3: NtpTimestamp, t4: NtpTimestamp) -> float:
    """Network round-trip delay in seconds."""
    return (t4 - t1) - (t3 - t2)


def clock_offset(t1: NtpTimestamp, t2: NtpTimestamp,
                 t3: NtpTimestamp, t4: NtpTimestamp) -> float:
    """Remote minus local clock, in seconds."""
    return ((t2 - t1) + (t3 - t4)) / 2.0


@dataclass(frozen=True)
class TimeSample:
    """The four protocol timestamps of one exchange. Any of them may be unset."""
    origin: Optional[NtpTimestamp] = None
    receive: Optional[NtpTimestamp] = None
    transmit: Optional[NtpTimestamp] = None
    destination: Optional[NtpTimestamp] = None

    @classmethod
    def from_packet(cls, packet: NtpPacket, origin: NtpTimestamp,
                    destination: NtpTimestamp) -> "TimeSample":
        """T1/T4 are recorded locally, T2/T3 come from the server's response."""
        return cls(
            origin=origin,
            receive=packet.receive_timestamp,
            transmit=packet.transmit_timestamp,
            destination=destination,
        )

    @property
    def is_valid(self) -> bool:
        return None not in (self.origin, self.receive, self.transmit, self.destination)

    def _require_valid(self):
        if not self.is_valid:
            missing = [name for name in ("origin", "receive", "transmit", "destination")
                       if getattr(self, name) is None]
            raise InvalidSampleError(f"Sample is missing timestamps: {', '.join(missing)}")

    @property
    def round_trip_delay(self) -> float:
        self._require_valid()
        return round_trip_delay(self.origin, self.receive, self.transmit, self.destination)

    @property
    def offset(self) -> float:
        self._require_valid()
        return clock_offset(self.origin, self.receive, self.transmit, self.destination)

    @property
    def round_trip_delay_ms(self) -> float:
        return self.round_trip_delay * 1000.0

    @property
    def offset_ms(self) -> float:
        return self.offset * 1000.0


@dataclass
class PeerQueryResult:
    """Outcome of querying one peer during one polling round."""
    peer: str
    address: Optional[str] = None
    stratum: int = 0
    sample: Optional[TimeSample] = None
    packet: Optional[NtpPacket] = None
    error: Optional[TimeSyncError] = None

    @property
    def is_valid(self) -> bool:
        """Only results carrying a complete sample take part in selection."""
        return self.error is None and self.sample is not None and self.sample.is_valid

    @property
    def stratum_class(self) -> Stratum:
        return Stratum.classify(self.stratum)

    @property
    def reliability(self) -> int:
        return stratum_reliability(self.stratum)

    def __str__(self) -> str:
        if self.error is not None:
            return f"{self.peer}: {self.error}"
        if not self.is_valid:
            return f"{self.peer}: incomplete sample"
        return (f"{self.peer}: stratum={self.stratum}, "
                f"offset={self.sample.offset_ms:.3f}ms, "
                f"delay={self.sample.round_trip_delay_ms:.3f}ms")
