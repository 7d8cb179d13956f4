"""
Domain package for the query monitor.

Exports the core domain models used across the collector, the store, the
scheduler and the HTTP API. Keep this package focused on data definitions
and validation concerns.
"""

from querymonitor.domain.models import (
    ConnectionProfile,
    CycleReport,
    DailyLeaderboardEntry,
    LeaderboardOutcome,
    MonitoringStatus,
    QueryStatCandidate,
    Snapshot,
    SweepResult,
    SystemMetricSample,
)

__all__ = [
    "ConnectionProfile",
    "CycleReport",
    "DailyLeaderboardEntry",
    "LeaderboardOutcome",
    "MonitoringStatus",
    "QueryStatCandidate",
    "Snapshot",
    "SweepResult",
    "SystemMetricSample",
]
