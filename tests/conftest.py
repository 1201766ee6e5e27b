"""
Pytest configuration and shared fixtures for TimeSync tests.
"""

import socket
import threading
import time
from typing import Optional

import pytest
import yaml

from timesync.config import NtpClientSettings, SyncPolicy, TimeSyncSettings
from timesync.packet import (
    LeapIndicator,
    NtpMode,
    NtpPacket,
    NtpTimestamp,
    decode,
    encode,
)
from timesync.sample import PeerQueryResult, TimeSample

BASE_UNIX_NS = 1_700_000_000 * 1_000_000_000


def ts_ms(milliseconds: float) -> NtpTimestamp:
    """Timestamp a given number of milliseconds after a fixed base instant."""
    return NtpTimestamp.from_unix_ns(BASE_UNIX_NS + int(milliseconds * 1_000_000))


def make_result(peer: str, stratum: int, offset_ms: float, delay_ms: float = 10.0) -> PeerQueryResult:
    """PeerQueryResult whose sample yields exactly-ish the given offset and delay."""
    t1 = 0.0
    t4 = delay_ms
    t2 = offset_ms + delay_ms / 2
    t3 = t2
    sample = TimeSample(origin=ts_ms(t1), receive=ts_ms(t2), transmit=ts_ms(t3), destination=ts_ms(t4))
    return PeerQueryResult(peer=peer, address=f"{peer}:123", stratum=stratum, sample=sample)


class FakeNtpServer:
    """
    UDP responder on 127.0.0.1 running in a daemon thread.

    Args:
        stratum: Stratum advertised in responses
        skew: Seconds added to the server's clock
        respond: When False, requests are read and dropped
        payload: Raw bytes sent instead of a proper response
    """

    def __init__(self, stratum: int = 2, skew: float = 0.0, respond: bool = True,
                 payload: Optional[bytes] = None):
        self.stratum = stratum
        self.skew = skew
        self.respond = respond
        self.payload = payload
        self.requests = []

        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(0.05)
        self.port = self.sock.getsockname()[1]
        self.peer = f"127.0.0.1:{self.port}"

        self._running = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)

    def _now(self) -> NtpTimestamp:
        return NtpTimestamp.from_unix_ns(time.time_ns() + int(self.skew * 1_000_000_000))

    def _serve(self):
        while self._running.is_set():
            try:
                data, client_addr = self.sock.recvfrom(1024)
            except socket.timeout:
                continue
            except OSError:
                break

            received = self._now()
            self.requests.append(data)
            if not self.respond:
                continue

            if self.payload is not None:
                self.sock.sendto(self.payload, client_addr)
                continue

            request = decode(data)
            response = NtpPacket(
                leap_indicator=LeapIndicator.NO_WARNING,
                version=4,
                mode=NtpMode.SERVER,
                stratum=self.stratum,
                poll=6,
                precision=-20,
                root_delay=0.015625,
                root_dispersion=0.0078125,
                reference_id=0x7F000001,
                reference_timestamp=received,
                origin_timestamp=request.transmit_timestamp,
                receive_timestamp=received,
                transmit_timestamp=self._now(),
            )
            self.sock.sendto(encode(response), client_addr)

    def start(self) -> "FakeNtpServer":
        self._running.set()
        self._thread.start()
        return self

    def stop(self):
        self._running.clear()
        self._thread.join(timeout=1.0)
        self.sock.close()


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the developer's TIMESYNC_* variables out of the tests."""
    for name in ("TIMESYNC_CONFIG", "TIMESYNC_PEERS", "TIMESYNC_DEBUG"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def ntp_server():
    """Responding local NTP server advertising stratum 2."""
    server = FakeNtpServer().start()
    yield server
    server.stop()


@pytest.fixture
def silent_server():
    """Local UDP socket that never answers."""
    server = FakeNtpServer(respond=False).start()
    yield server
    server.stop()


@pytest.fixture
def policy():
    """Default thresholds: 40ms dead-band, 5000ms warning limits, no bias."""
    return SyncPolicy(
        update_interval=1,
        max_allowed_phase_offset=40,
        max_pos_phase_correction=5000,
        max_neg_phase_correction=5000,
        local_bias=0,
    )


@pytest.fixture
def settings(policy):
    return TimeSyncSettings(
        ntp_client=NtpClientSettings(peers=("a.example", "b.example"), timeout=200),
        policy=policy,
    )


@pytest.fixture
def config_file(tmp_path):
    """Write a YAML configuration file and return its path."""
    def _write(config: dict):
        path = tmp_path / "timesync.yaml"
        with open(path, "w") as f:
            yaml.dump(config, f)
        return path
    return _write
