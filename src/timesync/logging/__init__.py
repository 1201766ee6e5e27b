"""
TimeSync Logging

Log sink setup and debug call tracing.
"""

from .debug_logger import (
    DebugTimer,
    debug_log_call,
    disable_debug,
    enable_debug,
    is_debug_enabled,
    setup_logging,
)

__all__ = [
    'DebugTimer',
    'debug_log_call',
    'disable_debug',
    'enable_debug',
    'is_debug_enabled',
    'setup_logging',
]
