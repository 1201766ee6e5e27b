#!/usr/bin/env python3
"""
TimeSync NTP Client

Performs single UDP round trips to NTP peers on the asyncio event loop and
fans out one query per peer for a polling round.
"""

import asyncio
import logging
import socket
from typing import Callable, List, Optional, Sequence, Tuple

from .errors import MalformedPacketError, QueryError, QueryNetworkError, QueryTimeoutError
from .packet import NtpTimestamp, decode, encode_request
from .sample import PeerQueryResult, TimeSample

logger = logging.getLogger(__name__)

NTP_PORT = 123
DEFAULT_TIMEOUT = 0.5  # seconds
RECEIVE_BUFFER_SIZE = 1024


def parse_peer(peer: str, default_port: int = NTP_PORT) -> Tuple[str, int]:
    """
    Split a configured peer into host and port.

    Accepts "host", "host:port", "[v6addr]" and "[v6addr]:port". A bare IPv6
    address (more than one colon, no brackets) is taken as a host.
    """
    peer = peer.strip()
    if not peer:
        raise ValueError("Empty peer address")

    if peer.startswith("["):
        host, sep, rest = peer[1:].partition("]")
        if not sep:
            raise ValueError(f"Unterminated IPv6 literal in peer: {peer}")
        if rest.startswith(":"):
            return host, int(rest[1:])
        return host, default_port

    if peer.count(":") == 1:
        host, port = peer.split(":")
        return host, int(port)

    return peer, default_port


async def query_peer(peer: str, timeout: float = DEFAULT_TIMEOUT, port: int = NTP_PORT,
                     clock: Callable[[], NtpTimestamp] = NtpTimestamp.now) -> PeerQueryResult:
    """
    One request/response exchange with a single peer. No retries.

    Args:
        peer: "host" or "host:port"
        timeout: Seconds to wait for the response
        port: Port used when the peer does not name one
        clock: Source of local instants (T1 and T4)

    Returns:
        PeerQueryResult carrying the sample and the response's stratum

    Raises:
        QueryTimeoutError: no response within timeout
        QueryNetworkError: resolution or transport failure
        MalformedPacketError: response shorter than an NTP header
    """
    loop = asyncio.get_running_loop()

    try:
        host, peer_port = parse_peer(peer, port)
    except ValueError as e:
        raise QueryNetworkError(peer, f"Invalid peer address {peer!r}: {e}") from e

    try:
        addrinfo = await loop.getaddrinfo(host, peer_port, type=socket.SOCK_DGRAM)
    except (OSError, UnicodeError) as e:
        raise QueryNetworkError(peer, f"Failed to resolve {host}: {e}") from e
    if not addrinfo:
        raise QueryNetworkError(peer, f"No address found for {host}")

    family, socktype, proto, _, sockaddr = addrinfo[0]
    address = f"{sockaddr[0]}:{sockaddr[1]}"

    try:
        sock = socket.socket(family=family, type=socktype, proto=proto)
    except OSError as e:
        raise QueryNetworkError(peer, f"Failed to open UDP socket: {e}") from e

    with sock:
        sock.setblocking(False)
        try:
            await loop.sock_connect(sock, sockaddr)

            t1 = clock()
            await loop.sock_sendall(sock, encode_request(t1))

            response = await asyncio.wait_for(loop.sock_recv(sock, RECEIVE_BUFFER_SIZE), timeout)
            t4 = clock()
        # TimeoutError is an OSError subclass, so it must be caught first
        except asyncio.TimeoutError as e:
            raise QueryTimeoutError(peer, timeout) from e
        except OSError as e:
            raise QueryNetworkError(peer, f"UDP exchange with {address} failed: {e}") from e

    packet = decode(response)
    sample = TimeSample.from_packet(packet, origin=t1, destination=t4)

    return PeerQueryResult(
        peer=peer,
        address=address,
        stratum=packet.stratum,
        sample=sample,
        packet=packet,
    )


async def query_peers(peers: Sequence[str], timeout: float = DEFAULT_TIMEOUT,
                      port: int = NTP_PORT) -> List[PeerQueryResult]:
    """
    Query all peers concurrently.

    A failing peer never aborts the others: its result carries the error and
    no sample. Results are returned in the configured peer order.
    """
    results: List[Tuple[int, PeerQueryResult]] = []
    lock = asyncio.Lock()

    async def _query_one(index: int, peer: str):
        try:
            result = await query_peer(peer, timeout=timeout, port=port)
            logger.debug(f"[{peer}] {result}")
        except QueryTimeoutError as e:
            logger.warning(f"NTP timeout for peer {peer}: {e}")
            result = PeerQueryResult(peer=peer, error=e)
        except (QueryError, MalformedPacketError) as e:
            logger.error(f"NTP query failed for {peer}: {e}")
            result = PeerQueryResult(peer=peer, error=e)
        except Exception as e:
            logger.exception(f"Unexpected error querying {peer}")
            result = PeerQueryResult(peer=peer, error=QueryError(peer, f"{type(e).__name__}: {e}"))

        async with lock:
            results.append((index, result))

    await asyncio.gather(*(_query_one(i, peer) for i, peer in enumerate(peers)))

    results.sort(key=lambda item: item[0])
    return [result for _, result in results]


class NtpClient:
    """
    Client for a single NTP peer.

    Usage:
        client = NtpClient("time.google.com", timeout=1.0)
        offset = await client.get_offset()
    """

    def __init__(self, peer: str = "pool.ntp.org", port: int = NTP_PORT,
                 timeout: float = DEFAULT_TIMEOUT):
        self.peer = peer
        self.port = port
        self.timeout = timeout
        self.last_result: Optional[PeerQueryResult] = None

    async def query(self) -> PeerQueryResult:
        self.last_result = await query_peer(self.peer, timeout=self.timeout, port=self.port)
        return self.last_result

    async def get_offset(self) -> float:
        """Clock offset against this peer in seconds."""
        result = await self.query()
        return result.sample.offset
