"""Tests for clock authorities."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from timesync.clock import DryRunClock, SystemClock
from timesync.errors import ClockAdjustError


class TestDryRunClock:
    """Test the recording authority."""

    def test_records_adjustments(self):
        clock = DryRunClock()
        clock.adjust_clock(timedelta(milliseconds=50))
        clock.adjust_clock(timedelta(milliseconds=-7))

        assert clock.adjustments == [timedelta(milliseconds=50), timedelta(milliseconds=-7)]

    def test_records_settings(self):
        clock = DryRunClock()
        when = datetime(2026, 10, 18, tzinfo=timezone.utc)
        clock.set_clock(when)

        assert clock.settings == [when]
        assert clock.adjustments == []


@pytest.fixture
def mock_time():
    with patch("timesync.clock.time") as mocked:
        mocked.CLOCK_REALTIME = 0
        mocked.clock_gettime_ns.return_value = 1_000_000_000_000
        yield mocked


class TestSystemClock:
    """Test the POSIX realtime authority with the time module mocked."""

    def test_adjust_forward(self, mock_time):
        SystemClock().adjust_clock(timedelta(milliseconds=50))

        mock_time.clock_settime_ns.assert_called_once_with(0, 1_000_050_000_000)

    def test_adjust_backward(self, mock_time):
        SystemClock().adjust_clock(timedelta(microseconds=-1500))

        mock_time.clock_settime_ns.assert_called_once_with(0, 999_998_500_000)

    def test_set_clock_naive_is_utc(self, mock_time):
        SystemClock().set_clock(datetime(1970, 1, 1, 0, 0, 2))

        mock_time.clock_settime_ns.assert_called_once_with(0, 2_000_000_000)

    def test_set_clock_aware(self, mock_time):
        plus_one = timezone(timedelta(hours=1))
        SystemClock().set_clock(datetime(1970, 1, 1, 1, 0, 3, tzinfo=plus_one))

        mock_time.clock_settime_ns.assert_called_once_with(0, 3_000_000_000)

    def test_permission_error(self, mock_time):
        mock_time.clock_settime_ns.side_effect = PermissionError(1, "Operation not permitted")

        with pytest.raises(ClockAdjustError, match="Insufficient privilege"):
            SystemClock().adjust_clock(timedelta(seconds=1))

    def test_os_error(self, mock_time):
        mock_time.clock_settime_ns.side_effect = OSError(22, "Invalid argument")

        with pytest.raises(ClockAdjustError, match="Failed to set"):
            SystemClock().set_clock(datetime(2026, 1, 1, tzinfo=timezone.utc))

    def test_unsupported_platform(self):
        with patch("timesync.clock.time", MagicMock(spec=[])):
            with pytest.raises(ClockAdjustError, match="not supported"):
                SystemClock().adjust_clock(timedelta(seconds=1))
