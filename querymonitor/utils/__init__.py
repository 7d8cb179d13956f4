"""
Utilities package for the query monitor.

Exports shared helpers for logging, profiling and wall-clock handling.
Keep this package lightweight and free of domain-specific logic.
"""

from querymonitor.utils.logging import configure_logging, get_logger
from querymonitor.utils.profiler import ProfileStats, profile_block
from querymonitor.utils.timeutil import day_key, from_epoch_ms, to_epoch_ms, utc_now

__all__ = [
    "configure_logging",
    "get_logger",
    "ProfileStats",
    "profile_block",
    "day_key",
    "from_epoch_ms",
    "to_epoch_ms",
    "utc_now",
]
