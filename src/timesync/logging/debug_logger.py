"""
Debug logging utility for TimeSync.

Provides function call logging with inputs/outputs for the selection and
correction steps. Can be toggled on/off via environment variable or config.
"""

import functools
import logging
import os
import time
from typing import Any, Callable, Optional

# Global debug flag (can be controlled via environment or config)
DEBUG_ENABLED = os.environ.get('TIMESYNC_DEBUG', 'false').lower() == 'true'

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger('timesync.debug')
logger.setLevel(logging.DEBUG if DEBUG_ENABLED else logging.INFO)


def setup_logging(level: str = 'INFO', debug: Optional[bool] = None) -> None:
    """
    Configure the root log sink. Called by the process host only.

    Args:
        level: Root log level name
        debug: Force call tracing on/off; None keeps the environment setting
    """
    logging.basicConfig(level=getattr(logging, level.upper()), format=LOG_FORMAT, force=True)
    if debug is True:
        enable_debug()
    elif debug is False:
        disable_debug()


def enable_debug():
    """Enable debug logging globally."""
    global DEBUG_ENABLED
    DEBUG_ENABLED = True
    logger.setLevel(logging.DEBUG)
    logger.info("Debug logging ENABLED")


def disable_debug():
    """Disable debug logging globally."""
    global DEBUG_ENABLED
    DEBUG_ENABLED = False
    logger.setLevel(logging.INFO)


def is_debug_enabled() -> bool:
    """Check if debug logging is enabled."""
    return DEBUG_ENABLED


def format_value(value: Any, max_len: int = 100) -> str:
    """
    Format a value for logging (truncate long sequences and strings).

    Args:
        value: Value to format
        max_len: Maximum string length

    Returns:
        Formatted string representation
    """
    if isinstance(value, (list, tuple)) and len(value) > 10:
        return f"{type(value).__name__}(len={len(value)}, first={value[0]}, last={value[-1]})"

    elif isinstance(value, dict) and len(value) > 5:
        return f"dict(keys={list(value.keys())}, len={len(value)})"

    value_str = str(value)
    if len(value_str) > max_len:
        return value_str[:max_len] + "..."
    return value_str


def debug_log_call(func: Callable) -> Callable:
    """
    Decorator to log function calls with inputs and outputs.

    Only logs if DEBUG_ENABLED is True.

    Usage:
        @debug_log_call
        def select_best(results):
            return result
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        if not DEBUG_ENABLED:
            # Fast path: no logging overhead
            return func(*args, **kwargs)

        func_name = f"{func.__module__}.{func.__qualname__}"
        logger.debug(f"→ CALL: {func_name}")

        for i, arg in enumerate(args):
            logger.debug(f"    [{i}] {format_value(arg)}")
        for key, value in kwargs.items():
            logger.debug(f"    {key} = {format_value(value)}")

        start_time = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            elapsed = time.perf_counter() - start_time
            logger.debug(f"✗ EXCEPTION: {func_name} (after {elapsed:.4f}s)")
            logger.debug(f"  Error: {type(e).__name__}: {e}")
            raise

        elapsed = time.perf_counter() - start_time
        logger.debug(f"← RETURN: {func_name} (took {elapsed:.4f}s)")
        logger.debug(f"  Result: {format_value(result)}")
        return result

    return wrapper


class DebugTimer:
    """
    Context manager for timing code blocks.

    Usage:
        with DebugTimer("Polling round"):
            await service.run_round()
    """

    def __init__(self, name: str):
        self.name = name
        self.start_time = None
        self.elapsed = 0.0

    def __enter__(self):
        if DEBUG_ENABLED:
            logger.debug(f"⏱ START: {self.name}")
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.perf_counter() - self.start_time
        if DEBUG_ENABLED:
            status = "FAILED" if exc_type else "DONE"
            logger.debug(f"⏱ {status}: {self.name} ({self.elapsed:.4f}s)")
        return False
