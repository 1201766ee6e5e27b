#!/usr/bin/env python3
"""
TimeSync NTP Packet Codec

Encodes client requests and decodes server responses in the fixed 48-byte
NTPv4 wire format (RFC 5905). All multi-byte fields are big-endian.

Structure of the NTP header:

     0                   1                   2                   3
     0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |LI | VN  |Mode |    Stratum    |     Poll      |   Precision   |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |                   Root Delay (signed 16.16)                   |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |                Root Dispersion (signed 16.16)                 |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |                     Reference Identifier                      |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |                 Reference Timestamp (64, 32.32)               |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |              Origin Timestamp (64, 32.32)  - T1               |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |              Receive Timestamp (64, 32.32) - T2               |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |              Transmit Timestamp (64, 32.32) - T3              |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+

Timestamps count seconds since 1900-01-01T00:00:00Z. A field with all bits
zero means "unset" and is decoded to None.
"""

import ipaddress
import struct
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from typing import TYPE_CHECKING, Optional

from .errors import MalformedPacketError

if TYPE_CHECKING:
    from .sample import TimeSample

NTP_PACKET_SIZE = 48
NTP_VERSION = 4

# Seconds between 1900-01-01 and 1970-01-01
NTP_EPOCH_OFFSET = 2208988800
NTP_EPOCH = datetime(1900, 1, 1, tzinfo=timezone.utc)

# LI/VN/Mode, Stratum, Poll, Precision, Root Delay, Root Dispersion,
# Reference ID, then four 64-bit timestamps
PACKET_FORMAT = "!BBbbiiIQQQQ"

_NS_PER_SECOND = 1_000_000_000
_US_PER_SECOND = 1_000_000
_FRACTION_BITS = 32
_SHORT_FRACTION_BITS = 16
_UINT64_MASK = (1 << 64) - 1


class LeapIndicator(IntEnum):
    """Leap second warning for the last minute of the current day."""
    NO_WARNING = 0
    LAST_MINUTE_HAS_61_SECONDS = 1
    LAST_MINUTE_HAS_59_SECONDS = 2
    ALARM_CONDITION = 3  # clock not synchronized


class NtpMode(IntEnum):
    """Association mode. Wire values 0, 6 and 7 are reserved and decode to UNKNOWN."""
    UNKNOWN = 0
    SYMMETRIC_ACTIVE = 1
    SYMMETRIC_PASSIVE = 2
    CLIENT = 3
    SERVER = 4
    BROADCAST = 5

    @classmethod
    def from_wire(cls, value: int) -> "NtpMode":
        if 1 <= value <= 5:
            return cls(value)
        return cls.UNKNOWN


class Stratum(IntEnum):
    """Stratum classes. Values are the lowest raw stratum of each class."""
    UNSPECIFIED = 0          # 0 - unspecified or unavailable (kiss-o'-death)
    PRIMARY_REFERENCE = 1    # 1 - primary reference (e.g. radio clock)
    SECONDARY_REFERENCE = 2  # 2-15 - secondary reference (via NTP)
    RESERVED = 16            # 16-255 - reserved / unsynchronized

    @classmethod
    def classify(cls, value: int) -> "Stratum":
        if value == 0:
            return cls.UNSPECIFIED
        if value == 1:
            return cls.PRIMARY_REFERENCE
        if value <= 15:
            return cls.SECONDARY_REFERENCE
        return cls.RESERVED


# Lower rank is more trusted
STRATUM_RELIABILITY = {
    Stratum.PRIMARY_REFERENCE: 0,
    Stratum.SECONDARY_REFERENCE: 1,
    Stratum.RESERVED: 2,
    Stratum.UNSPECIFIED: 3,
}
DEFAULT_RELIABILITY = 4


def stratum_reliability(stratum: int) -> int:
    """Reliability rank of a raw stratum value, 0 being the most trusted."""
    return STRATUM_RELIABILITY.get(Stratum.classify(stratum), DEFAULT_RELIABILITY)


@dataclass(frozen=True, order=True)
class NtpTimestamp:
    """
    64-bit NTP timestamp: unsigned 32.32 fixed-point seconds since 1900.

    The raw wire value is kept so that encode/decode is exact. Differences
    between timestamps are returned as float seconds and may be negative.
    """
    raw: int

    def __post_init__(self):
        if not 0 <= self.raw <= _UINT64_MASK:
            raise ValueError(f"NTP timestamp out of range: {self.raw}")

    @classmethod
    def from_parts(cls, seconds: int, fraction: int) -> "NtpTimestamp":
        return cls((seconds << _FRACTION_BITS) | fraction)

    @classmethod
    def from_unix_ns(cls, unix_ns: int) -> "NtpTimestamp":
        """Convert nanoseconds since 1970, rounding up to the next 2^-32 step."""
        ntp_ns = unix_ns + NTP_EPOCH_OFFSET * _NS_PER_SECOND
        raw = -((-ntp_ns << _FRACTION_BITS) // _NS_PER_SECOND)
        return cls(raw & _UINT64_MASK)

    @classmethod
    def from_datetime(cls, value: datetime) -> "NtpTimestamp":
        """Convert a datetime (naive values are taken as UTC)."""
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        micros = (value - NTP_EPOCH) // timedelta(microseconds=1)
        raw = -((-micros << _FRACTION_BITS) // _US_PER_SECOND)
        return cls(raw & _UINT64_MASK)

    @classmethod
    def now(cls) -> "NtpTimestamp":
        """Current UTC instant from the host realtime clock."""
        return cls.from_unix_ns(time.time_ns())

    @property
    def seconds(self) -> int:
        return self.raw >> _FRACTION_BITS

    @property
    def fraction(self) -> int:
        return self.raw & 0xFFFFFFFF

    def to_unix_ns(self) -> int:
        return ((self.raw * _NS_PER_SECOND) >> _FRACTION_BITS) - NTP_EPOCH_OFFSET * _NS_PER_SECOND

    def to_datetime(self) -> datetime:
        """UTC datetime, truncated to microsecond resolution."""
        micros = (self.raw * _US_PER_SECOND) >> _FRACTION_BITS
        return NTP_EPOCH + timedelta(microseconds=micros)

    def __sub__(self, other: "NtpTimestamp") -> float:
        if not isinstance(other, NtpTimestamp):
            return NotImplemented
        return (self.raw - other.raw) / (1 << _FRACTION_BITS)

    def __str__(self) -> str:
        return self.to_datetime().isoformat()


@dataclass
class NtpPacket:
    """Decoded NTP header. Timestamps are None when unset on the wire."""
    leap_indicator: LeapIndicator = LeapIndicator.NO_WARNING
    version: int = NTP_VERSION
    mode: NtpMode = NtpMode.CLIENT
    stratum: int = 0
    poll: int = 0                # log2 seconds
    precision: int = 0           # log2 seconds
    root_delay: float = 0.0      # seconds
    root_dispersion: float = 0.0  # seconds
    reference_id: int = 0
    reference_timestamp: Optional[NtpTimestamp] = None
    origin_timestamp: Optional[NtpTimestamp] = None
    receive_timestamp: Optional[NtpTimestamp] = None
    transmit_timestamp: Optional[NtpTimestamp] = None

    @property
    def stratum_class(self) -> Stratum:
        return Stratum.classify(self.stratum)

    @property
    def poll_interval(self) -> float:
        """Maximum interval between successive messages, in seconds."""
        return 2.0 ** self.poll

    @property
    def precision_seconds(self) -> float:
        return 2.0 ** self.precision

    @property
    def reference_identifier(self) -> str:
        """ASCII tag for stratum 0/1 servers, dotted IPv4 address otherwise."""
        if self.stratum <= 1:
            tag = self.reference_id.to_bytes(4, "big").rstrip(b"\x00")
            return tag.decode("ascii", errors="replace")
        return str(ipaddress.IPv4Address(self.reference_id))


def _timestamp_to_wire(value: Optional[NtpTimestamp]) -> int:
    return 0 if value is None else value.raw


def _timestamp_from_wire(raw: int) -> Optional[NtpTimestamp]:
    return None if raw == 0 else NtpTimestamp(raw)


def _short_to_wire(seconds: float) -> int:
    return int(round(seconds * (1 << _SHORT_FRACTION_BITS)))


def _short_from_wire(raw: int) -> float:
    return raw / (1 << _SHORT_FRACTION_BITS)


def encode(packet: NtpPacket) -> bytes:
    """Encode a packet into its 48-byte wire form."""
    if not 0 <= packet.version <= 7:
        raise ValueError(f"NTP version must fit in 3 bits: {packet.version}")
    first_byte = (int(packet.leap_indicator) << 6) | (packet.version << 3) | int(packet.mode)
    try:
        return struct.pack(
            PACKET_FORMAT,
            first_byte,
            packet.stratum,
            packet.poll,
            packet.precision,
            _short_to_wire(packet.root_delay),
            _short_to_wire(packet.root_dispersion),
            packet.reference_id,
            _timestamp_to_wire(packet.reference_timestamp),
            _timestamp_to_wire(packet.origin_timestamp),
            _timestamp_to_wire(packet.receive_timestamp),
            _timestamp_to_wire(packet.transmit_timestamp),
        )
    except struct.error as e:
        raise ValueError(f"NTP packet field out of range: {e}") from e


def encode_request(now: NtpTimestamp) -> bytes:
    """Client request: mode=client, version=4, transmit timestamp = now, all else zero."""
    return encode(NtpPacket(mode=NtpMode.CLIENT, version=NTP_VERSION, transmit_timestamp=now))


def decode(buffer: bytes) -> NtpPacket:
    """
    Decode the first 48 bytes of an NTP message.

    Any trailing key identifier / message digest is ignored.

    Raises:
        MalformedPacketError: buffer is shorter than 48 bytes
    """
    if len(buffer) < NTP_PACKET_SIZE:
        raise MalformedPacketError(
            f"NTP packet must be at least {NTP_PACKET_SIZE} bytes long, got {len(buffer)}")

    (first_byte, stratum, poll, precision, root_delay, root_dispersion, reference_id,
     reference_ts, origin_ts, receive_ts, transmit_ts) = struct.unpack_from(PACKET_FORMAT, buffer)

    return NtpPacket(
        leap_indicator=LeapIndicator((first_byte >> 6) & 0x03),
        version=(first_byte >> 3) & 0x07,
        mode=NtpMode.from_wire(first_byte & 0x07),
        stratum=stratum,
        poll=poll,
        precision=precision,
        root_delay=_short_from_wire(root_delay),
        root_dispersion=_short_from_wire(root_dispersion),
        reference_id=reference_id,
        reference_timestamp=_timestamp_from_wire(reference_ts),
        origin_timestamp=_timestamp_from_wire(origin_ts),
        receive_timestamp=_timestamp_from_wire(receive_ts),
        transmit_timestamp=_timestamp_from_wire(transmit_ts),
    )


_LEAP_DESCRIPTIONS = {
    LeapIndicator.NO_WARNING: "No warning",
    LeapIndicator.LAST_MINUTE_HAS_61_SECONDS: "Last minute has 61 seconds",
    LeapIndicator.LAST_MINUTE_HAS_59_SECONDS: "Last minute has 59 seconds",
    LeapIndicator.ALARM_CONDITION: "Alarm condition (clock not synchronized)",
}


def _format_timestamp(value: Optional[NtpTimestamp]) -> str:
    return "unset" if value is None else str(value)


def format_packet(packet: NtpPacket, sample: Optional["TimeSample"] = None,
                  server: Optional[str] = None) -> str:
    """Human readable, multi-line dump of a packet and its derived sample."""
    lines = []
    if server:
        lines.append(f"Reference server: {server}")
    lines.append("[NTP Packet]")
    lines.append(f"Leap Indicator: {_LEAP_DESCRIPTIONS[packet.leap_indicator]}")
    lines.append(f"Version number: {packet.version}")
    lines.append(f"Mode: {packet.mode.name.replace('_', ' ').title()}")
    lines.append(f"Stratum: {packet.stratum} ({packet.stratum_class.name.replace('_', ' ').title()})")
    lines.append(f"Poll Interval: {packet.poll_interval:g} s")
    lines.append(f"Precision: {packet.precision_seconds:g} s")
    lines.append(f"Reference ID: {packet.reference_identifier}")
    lines.append(f"Root Delay: {packet.root_delay * 1000:.3f} ms")
    lines.append(f"Root Dispersion: {packet.root_dispersion * 1000:.3f} ms")
    lines.append(f"Reference Timestamp: {_format_timestamp(packet.reference_timestamp)}")
    lines.append(f"Originate Timestamp: {_format_timestamp(packet.origin_timestamp)}")
    lines.append(f"Receive Timestamp: {_format_timestamp(packet.receive_timestamp)}")
    lines.append(f"Transmit Timestamp: {_format_timestamp(packet.transmit_timestamp)}")

    if sample is not None:
        lines.append("[non-NTP Packet]")
        lines.append(f"Destination Timestamp: {_format_timestamp(sample.destination)}")
        if sample.is_valid:
            lines.append(f"Roundtrip Delay: {sample.round_trip_delay_ms:.3f} ms")
            lines.append(f"Local Clock Offset: {sample.offset_ms:.3f} ms")
        else:
            lines.append("Sample incomplete: delay and offset unavailable")

    return "\n".join(lines)
