"""Tests for debug call tracing."""

import logging

import pytest

from timesync.logging import (
    DebugTimer,
    debug_log_call,
    disable_debug,
    enable_debug,
    is_debug_enabled,
)
from timesync.logging.debug_logger import format_value


@pytest.fixture
def debug_on():
    enable_debug()
    yield
    disable_debug()


@debug_log_call
def add(a, b=0):
    return a + b


@debug_log_call
def explode():
    raise ValueError("bad input")


class TestToggle:
    def test_enable_disable(self):
        enable_debug()
        assert is_debug_enabled()
        disable_debug()
        assert not is_debug_enabled()


class TestDebugLogCall:
    """Test the call tracing decorator."""

    def test_disabled_is_silent(self, caplog):
        disable_debug()
        with caplog.at_level(logging.DEBUG, logger="timesync.debug"):
            assert add(1, b=2) == 3
        assert "CALL" not in caplog.text

    def test_enabled_logs_inputs_and_result(self, debug_on, caplog):
        with caplog.at_level(logging.DEBUG, logger="timesync.debug"):
            assert add(1, b=2) == 3

        assert "CALL:" in caplog.text
        assert ".add" in caplog.text
        assert "b = 2" in caplog.text
        assert "Result: 3" in caplog.text

    def test_exception_logged_and_raised(self, debug_on, caplog):
        with caplog.at_level(logging.DEBUG, logger="timesync.debug"):
            with pytest.raises(ValueError):
                explode()

        assert "EXCEPTION" in caplog.text
        assert "bad input" in caplog.text

    def test_preserves_metadata(self):
        assert add.__name__ == "add"


class TestFormatValue:
    def test_long_list_summarized(self):
        assert format_value(list(range(20))) == "list(len=20, first=0, last=19)"

    def test_large_dict_summarized(self):
        text = format_value({str(i): i for i in range(6)})
        assert text.startswith("dict(keys=")
        assert "len=6" in text

    def test_long_string_truncated(self):
        text = format_value("x" * 150)
        assert text == "x" * 100 + "..."

    def test_short_value_unchanged(self):
        assert format_value((1, 2)) == "(1, 2)"


class TestDebugTimer:
    def test_measures_elapsed(self):
        with DebugTimer("block") as timer:
            pass
        assert timer.elapsed >= 0.0

    def test_does_not_swallow_exceptions(self):
        with pytest.raises(RuntimeError):
            with DebugTimer("block"):
                raise RuntimeError("boom")
