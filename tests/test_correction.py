"""Tests for the correction policy."""

import logging
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from timesync.clock import ClockAuthority, DryRunClock
from timesync.correction import Corrector
from timesync.errors import ClockAdjustError


@pytest.fixture
def clock():
    return DryRunClock()


@pytest.fixture
def corrector(clock):
    return Corrector(clock)


class TestDeadBand:
    """Test the max allowed phase offset gate."""

    def test_inside_dead_band_no_adjustment(self, corrector, clock, policy):
        result = corrector.apply(30.0, policy)

        assert not result.adjusted
        assert clock.adjustments == []

    def test_outside_dead_band_adjusts_once(self, corrector, clock, policy):
        result = corrector.apply(50.0, policy)

        assert result.adjusted
        assert clock.adjustments == [timedelta(milliseconds=50)]

    def test_negative_outside_dead_band(self, corrector, clock, policy):
        corrector.apply(-50.0, policy)
        assert clock.adjustments == [timedelta(milliseconds=-50)]

    def test_boundary_is_inside(self, corrector, clock, policy):
        corrector.apply(40.0, policy)
        corrector.apply(-40.0, policy)
        assert clock.adjustments == []

    def test_local_bias_is_added(self, corrector, clock, policy):
        biased = policy.model_copy(update={"local_bias": 20.0})
        result = corrector.apply(30.0, biased)

        assert result.offset_ms == 30.0
        assert result.corrected_offset_ms == 50.0
        assert clock.adjustments == [timedelta(milliseconds=50)]

    def test_bias_can_pull_into_dead_band(self, corrector, clock, policy):
        biased = policy.model_copy(update={"local_bias": -30.0})
        corrector.apply(60.0, biased)
        assert clock.adjustments == []


class TestPhaseCorrectionWarnings:
    """Warnings are informational and never block the adjustment."""

    def test_positive_warning_does_not_block(self, corrector, clock, policy, caplog):
        with caplog.at_level(logging.WARNING, logger="timesync.correction"):
            result = corrector.apply(6000.0, policy, peer="time.example")

        assert clock.adjustments == [timedelta(milliseconds=6000)]
        assert len(result.warnings) == 1
        assert "max_pos_phase_correction" in result.warnings[0]
        assert "max_pos_phase_correction" in caplog.text

    def test_negative_warning_does_not_block(self, corrector, clock, policy):
        result = corrector.apply(-6000.0, policy)

        assert clock.adjustments == [timedelta(milliseconds=-6000)]
        assert len(result.warnings) == 1
        assert "max_neg_phase_correction" in result.warnings[0]

    def test_no_warning_below_thresholds(self, corrector, policy):
        assert corrector.apply(4999.0, policy).warnings == []
        assert corrector.apply(-4999.0, policy).warnings == []

    def test_asymmetric_thresholds(self, corrector, policy):
        asymmetric = policy.model_copy(update={"max_pos_phase_correction": 100.0,
                                               "max_neg_phase_correction": 1000.0})

        assert len(corrector.apply(500.0, asymmetric).warnings) == 1
        assert corrector.apply(-500.0, asymmetric).warnings == []


class TestClockFailures:
    """Clock authority failures are logged, never raised."""

    def test_clock_adjust_error_is_contained(self, policy, caplog):
        clock = MagicMock(spec=ClockAuthority)
        clock.adjust_clock.side_effect = ClockAdjustError("insufficient privilege")
        corrector = Corrector(clock)

        with caplog.at_level(logging.ERROR, logger="timesync.correction"):
            result = corrector.apply(100.0, policy)

        clock.adjust_clock.assert_called_once_with(timedelta(milliseconds=100))
        assert not result.adjusted
        assert result.attempted
        assert isinstance(result.error, ClockAdjustError)
        assert "insufficient privilege" in caplog.text

    def test_unexpected_error_is_wrapped(self, policy):
        clock = MagicMock(spec=ClockAuthority)
        clock.adjust_clock.side_effect = PermissionError("not root")
        result = Corrector(clock).apply(100.0, policy)

        assert isinstance(result.error, ClockAdjustError)
        assert isinstance(result.error.__cause__, PermissionError)
        assert "not root" in str(result.error)
