"""Clock authority abstraction: the only component allowed to change the host clock."""

import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import List

from .errors import ClockAdjustError

logger = logging.getLogger(__name__)


def _timedelta_to_ns(offset: timedelta) -> int:
    return (offset // timedelta(microseconds=1)) * 1000


class ClockAuthority(ABC):
    """Abstract base class for clock authorities."""

    name = "abstract"

    @abstractmethod
    def adjust_clock(self, offset: timedelta) -> None:
        """Shift the wall clock by offset (forward when positive).

        Raises:
            ClockAdjustError: the clock could not be changed
        """

    @abstractmethod
    def set_clock(self, when: datetime) -> None:
        """Set the wall clock to an absolute instant.

        Raises:
            ClockAdjustError: the clock could not be changed
        """


class SystemClock(ClockAuthority):
    """POSIX realtime clock. Changing it requires CAP_SYS_TIME or root."""

    name = "system"

    @staticmethod
    def _require_support():
        if not hasattr(time, "clock_settime_ns"):
            raise ClockAdjustError("Setting the system clock is not supported on this platform")

    def _settime_ns(self, value_ns: int) -> None:
        try:
            time.clock_settime_ns(time.CLOCK_REALTIME, value_ns)
        except PermissionError as e:
            raise ClockAdjustError(f"Insufficient privilege to set the system clock: {e}") from e
        except OSError as e:
            raise ClockAdjustError(f"Failed to set the system clock: {e}") from e

    def adjust_clock(self, offset: timedelta) -> None:
        self._require_support()
        self._settime_ns(time.clock_gettime_ns(time.CLOCK_REALTIME) + _timedelta_to_ns(offset))

    def set_clock(self, when: datetime) -> None:
        self._require_support()
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        epoch = datetime(1970, 1, 1, tzinfo=timezone.utc)
        self._settime_ns(_timedelta_to_ns(when - epoch))


class DryRunClock(ClockAuthority):
    """Records requested changes without touching the host clock."""

    name = "dry-run"

    def __init__(self):
        self.adjustments: List[timedelta] = []
        self.settings: List[datetime] = []

    def adjust_clock(self, offset: timedelta) -> None:
        self.adjustments.append(offset)
        logger.info(f"[dry-run] Would adjust clock by {offset.total_seconds() * 1000:.3f}ms")

    def set_clock(self, when: datetime) -> None:
        self.settings.append(when)
        logger.info(f"[dry-run] Would set clock to {when.isoformat()}")
