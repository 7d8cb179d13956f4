"""
Profiling utilities for the query monitor.

Provides a context manager that measures one sampling cycle:
- Wall-clock time (perf_counter)
- Resident memory after the block (psutil)
- CPU usage of the agent process (psutil, best-effort)

Usage example:
    from querymonitor.utils.profiler import profile_block

    with profile_block("sampling-cycle") as stats:
        run_cycle()

    print(stats.duration_seconds, stats.rss_bytes)
"""

from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass, field
from typing import Any, Generator, Optional

import psutil


@dataclass
class ProfileStats:
    """
    Container for profiling measurements.
    """

    label: str
    start_ts: float = field(default=0.0)
    end_ts: float = field(default=0.0)
    duration_seconds: float = field(default=0.0)
    rss_bytes: Optional[int] = field(default=None)
    cpu_percent: Optional[float] = field(default=None)
    extra: dict[str, Any] = field(default_factory=dict)


@contextlib.contextmanager
def profile_block(label: str) -> Generator[ProfileStats, None, None]:
    """
    Context manager to profile a block of code.

    The stats object is filled in when the block exits, including when it
    exits with an exception.
    """
    stats = ProfileStats(label=label)
    process = psutil.Process()

    # CPU percent needs a priming call
    process.cpu_percent(interval=None)

    stats.start_ts = time.perf_counter()
    try:
        yield stats
    finally:
        stats.end_ts = time.perf_counter()
        stats.duration_seconds = stats.end_ts - stats.start_ts
        try:
            stats.rss_bytes = process.memory_info().rss
            stats.cpu_percent = process.cpu_percent(interval=None)
        except psutil.Error:
            # Process accounting can be unavailable in restricted containers
            stats.rss_bytes = None
            stats.cpu_percent = None


__all__ = ["ProfileStats", "profile_block"]
