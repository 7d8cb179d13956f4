"""
Query Monitor - a PostgreSQL slow-query monitoring agent.

The package periodically samples a monitored database and keeps:

- a 24-hour time series of system metrics (connections, cache hit ratio,
  database size, transaction rate);
- a bounded per-day leaderboard of the slowest statements reported by
  pg_stat_statements.

It ships a start/stop-controllable scheduler that survives process restarts,
an HTTP API and a CLI on top of the same service object.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from querymonitor.config import Settings, get_settings
from querymonitor.domain.models import (
    ConnectionProfile,
    DailyLeaderboardEntry,
    MonitoringStatus,
    QueryStatCandidate,
    SystemMetricSample,
)
from querymonitor.errors import (
    ConnectivityError,
    IntrospectionQueryError,
    MissingExtensionError,
    MonitorError,
    StorageError,
)
from querymonitor.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Domain
    "ConnectionProfile",
    "DailyLeaderboardEntry",
    "MonitoringStatus",
    "QueryStatCandidate",
    "SystemMetricSample",
    # Errors
    "ConnectivityError",
    "IntrospectionQueryError",
    "MissingExtensionError",
    "MonitorError",
    "StorageError",
    # Logging
    "configure_logging",
    "get_logger",
]
