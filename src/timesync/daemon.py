#!/usr/bin/env python3
"""
TimeSync Daemon

Process host for the synchronization service: loads configuration, wires
log sinks, picks the clock authority and handles termination signals.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from .clock import ClockAuthority, DryRunClock, SystemClock
from .config import TimeSyncSettings, load_settings
from .errors import ConfigurationError, MalformedPacketError, QueryError
from .logging import setup_logging
from .ntp_client import DEFAULT_TIMEOUT, NTP_PORT, query_peer
from .packet import format_packet
from .service import TimeSyncService

logger = logging.getLogger(__name__)


def _make_clock(dry_run: bool) -> ClockAuthority:
    return DryRunClock() if dry_run else SystemClock()


def _configure(args) -> TimeSyncSettings:
    settings = load_settings(args.config)
    debug = True if args.debug else settings.logging.debug
    setup_logging(settings.logging.level if not args.debug else 'DEBUG', debug=debug)
    return settings


async def run_service(settings: TimeSyncSettings, clock: ClockAuthority,
                      sync_on_start: bool = False) -> None:
    """Run until SIGINT/SIGTERM."""
    service = TimeSyncService(settings, clock, sync_on_start=sync_on_start)
    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_requested.set))

    await service.start()
    await stop_requested.wait()
    await service.stop()
    logger.info(f"TimeSync service stopped: {service.get_status()}")


async def run_once(settings: TimeSyncSettings, clock: ClockAuthority) -> int:
    service = TimeSyncService(settings, clock)
    report = await service.run_round()
    for result in report.results:
        print(result)
    if report.selected is None:
        print("No valid samples")
        return 1
    print(f"Selected: {report.selected.peer}")
    if report.correction is not None:
        correction = report.correction
        action = "adjusted" if correction.adjusted else "not adjusted"
        print(f"Corrected offset: {correction.corrected_offset_ms:.3f}ms ({action})")
    return 0


async def query_and_print(peers: List[str], timeout: float, port: int) -> int:
    answered = 0
    for peer in peers:
        try:
            result = await query_peer(peer, timeout=timeout, port=port)
        except (QueryError, MalformedPacketError) as e:
            print(f"✗ {peer}: {e}")
            continue
        answered += 1
        print(format_packet(result.packet, result.sample, server=f"{peer} ({result.address})"))
        print()
    return 0 if answered else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="timesync", description="TimeSync NTP clock synchronization")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the synchronization service")
    once_parser = subparsers.add_parser("once", help="Run a single polling round and exit")
    for sub in (run_parser, once_parser):
        sub.add_argument('--config', type=str, default=None,
                         help='Configuration file path (default: $TIMESYNC_CONFIG)')
        sub.add_argument('--dry-run', action='store_true',
                         help='Log clock adjustments instead of applying them')
        sub.add_argument('--debug', action='store_true', help='Enable debug logging')
    run_parser.add_argument('--sync-on-start', action='store_true',
                            help='Run the first round immediately instead of after one interval')

    query_parser = subparsers.add_parser("query", help="Query NTP peers and print their responses")
    query_parser.add_argument('peers', nargs='+', help='Peer hostnames (host or host:port)')
    query_parser.add_argument('--timeout', type=float, default=DEFAULT_TIMEOUT * 1000,
                              help='Per-peer timeout in milliseconds')
    query_parser.add_argument('--port', type=int, default=NTP_PORT, help='Default NTP port')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI interface for the daemon."""
    args = build_parser().parse_args(argv)

    if args.command == "query":
        setup_logging('WARNING')
        return asyncio.run(query_and_print(args.peers, args.timeout / 1000.0, args.port))

    try:
        settings = _configure(args)
    except ConfigurationError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 2

    clock = _make_clock(args.dry_run)
    if args.command == "once":
        return asyncio.run(run_once(settings, clock))

    asyncio.run(run_service(settings, clock, sync_on_start=args.sync_on_start))
    return 0


if __name__ == '__main__':
    sys.exit(main())
