#!/usr/bin/env python3
"""
TimeSync Service

Long-running control loop: on every tick it queries all configured peers,
selects the best sample and lets the corrector decide whether to adjust the
host clock.

    IDLE -> WAITING -> QUERYING -> SELECTING -> CORRECTING -> IDLE -> ...

A stop request is honoured while WAITING. In-flight queries are not
cancelled; they finish or time out on their own. Any failure inside a round
is logged and the loop carries on with the next tick.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from .clock import ClockAuthority
from .config import TimeSyncSettings
from .correction import CorrectionResult, Corrector
from .logging import DebugTimer
from .ntp_client import query_peers
from .packet import format_packet
from .sample import PeerQueryResult
from .selection import select_best

logger = logging.getLogger(__name__)

Querier = Callable[[Sequence[str], float, int], Awaitable[List[PeerQueryResult]]]


class SchedulerState(str, Enum):
    """Scheduler loop states."""
    IDLE = "idle"
    WAITING = "waiting"
    QUERYING = "querying"
    SELECTING = "selecting"
    CORRECTING = "correcting"
    STOPPED = "stopped"


@dataclass
class RoundReport:
    """Everything one polling round produced. Discarded after logging."""
    started_at: datetime
    results: List[PeerQueryResult] = field(default_factory=list)
    selected: Optional[PeerQueryResult] = None
    correction: Optional[CorrectionResult] = None
    elapsed: float = 0.0

    @property
    def valid_samples(self) -> int:
        return sum(1 for r in self.results if r.is_valid)


class TimeSyncService:
    """
    Periodic clock synchronization service.

    Usage:
        service = TimeSyncService(load_settings(path), SystemClock())
        await service.start()
        ...
        await service.stop()
    """

    def __init__(self, settings: TimeSyncSettings, clock: ClockAuthority,
                 querier: Querier = query_peers, sync_on_start: bool = False):
        self._settings = settings
        self.clock = clock
        self.corrector = Corrector(clock)
        self.querier = querier
        self.sync_on_start = sync_on_start

        self._state = SchedulerState.IDLE
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

        # Statistics
        self.stats = {
            'rounds': 0,
            'failed_rounds': 0,
            'empty_rounds': 0,
            'adjustments': 0,
            'failed_adjustments': 0,
            'last_round_at': None,
        }

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def settings(self) -> TimeSyncSettings:
        return self._settings

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def update_settings(self, settings: TimeSyncSettings) -> None:
        """Replace the settings. A round in progress keeps the value it started with."""
        self._settings = settings
        logger.info(f"Settings replaced: {settings.model_dump_json()}")

    async def start(self) -> None:
        """Spawn the control loop on the running event loop."""
        if self.running:
            logger.warning("TimeSync service already running")
            return

        logger.info(f"TimeSync service started at: {datetime.now(timezone.utc).isoformat()}")
        logger.info(f"TimeSync service settings: {self._settings.model_dump_json()}")

        self._stop_event.clear()
        self._task = asyncio.create_task(self.run(), name="timesync-loop")

    async def stop(self, timeout: Optional[float] = None) -> None:
        """
        Ask the loop to stop and wait for it.

        Args:
            timeout: Seconds to wait for the current round; the loop task is
                cancelled when it elapses. None waits indefinitely.
        """
        logger.info("TimeSync service is stopping.")
        self._stop_event.set()

        if self._task is None:
            self._state = SchedulerState.STOPPED
            return

        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Round still running after {timeout}s, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
            self._state = SchedulerState.STOPPED

    async def _wait_for_tick(self, deadline: float) -> bool:
        """Sleep until deadline (loop time). Returns False when a stop was requested."""
        self._state = SchedulerState.WAITING
        delay = max(0.0, deadline - asyncio.get_running_loop().time())
        try:
            await asyncio.wait_for(self._stop_event.wait(), delay)
        except asyncio.TimeoutError:
            return True
        return False

    async def run(self) -> None:
        """Control loop. Returns only after stop() was requested."""
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        if not self.sync_on_start:
            next_tick += self._settings.policy.update_interval

        while not self._stop_event.is_set():
            if not await self._wait_for_tick(next_tick):
                break

            logger.debug(f"Tick at {datetime.now(timezone.utc).isoformat()}")
            try:
                with DebugTimer("Polling round") as timer:
                    await self.run_round()
                logger.debug(f"Round elapsed: {timer.elapsed * 1000:.1f}ms")
            except Exception:
                self.stats['failed_rounds'] += 1
                logger.exception("Polling round failed")

            # Fixed period; ticks missed during a long round are skipped
            interval = self._settings.policy.update_interval
            next_tick += interval
            now = loop.time()
            if next_tick < now:
                next_tick = now + interval

            self._state = SchedulerState.IDLE

        self._state = SchedulerState.STOPPED

    async def run_round(self) -> RoundReport:
        """Query all peers, select the best sample and correct the clock if needed."""
        settings = self._settings
        loop = asyncio.get_running_loop()
        started = loop.time()
        report = RoundReport(started_at=datetime.now(timezone.utc))

        self._state = SchedulerState.QUERYING
        report.results = await self.querier(
            settings.ntp_client.peers,
            settings.ntp_client.timeout_seconds,
            settings.ntp_client.port,
        )

        self._state = SchedulerState.SELECTING
        report.selected = select_best(report.results)

        self.stats['rounds'] += 1
        self.stats['last_round_at'] = report.started_at

        if report.selected is None:
            self.stats['empty_rounds'] += 1
            logger.warning(f"No valid NTP samples from {len(report.results)} peers, "
                           f"skipping correction")
        else:
            selected = report.selected
            if selected.packet is not None:
                logger.debug(f"[{selected.peer}] Selected:\n"
                             f"{format_packet(selected.packet, selected.sample, selected.address)}")
            logger.info(f"Selected {selected}")

            self._state = SchedulerState.CORRECTING
            report.correction = self.corrector.apply(
                selected.sample.offset_ms, settings.policy, peer=selected.peer)
            if report.correction.adjusted:
                self.stats['adjustments'] += 1
            elif report.correction.error is not None:
                self.stats['failed_adjustments'] += 1

        report.elapsed = loop.time() - started
        self._state = SchedulerState.IDLE
        return report

    def get_status(self) -> Dict:
        """Snapshot of the service state and counters."""
        last = self.stats['last_round_at']
        return {
            'state': self._state.value,
            'running': self.running,
            'peers': list(self._settings.ntp_client.peers),
            'update_interval': self._settings.policy.update_interval,
            'rounds': self.stats['rounds'],
            'failed_rounds': self.stats['failed_rounds'],
            'empty_rounds': self.stats['empty_rounds'],
            'adjustments': self.stats['adjustments'],
            'failed_adjustments': self.stats['failed_adjustments'],
            'last_round_at': last.isoformat() if last else None,
        }
