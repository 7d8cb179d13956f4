"""
Domain models for the query monitor.

Defines the connection profile supplied by callers, the records a sampling
cycle produces, the persisted leaderboard entry and the status view. These
models are used for validation, serialization and type hints across the
collector, the store, the scheduler and the HTTP API.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, NamedTuple, Optional, TypedDict

from pydantic import AliasChoices, BaseModel, Field, SecretStr

_FROZEN = {
    "frozen": True,
    "populate_by_name": True,
    "arbitrary_types_allowed": False,
}


class ConnectionProfile(BaseModel):
    """
    Address and credentials of the monitored PostgreSQL database.

    The password is kept as a SecretStr so it never shows up in reprs or
    logs; only `to_persisted()` and `connect_kwargs()` reveal it.
    """

    host: str = Field(..., min_length=1)
    port: int = Field(5432, ge=1, le=65535)
    username: str = Field(..., validation_alias=AliasChoices("username", "user"))
    password: SecretStr = Field(default=SecretStr(""))
    database: str = Field(..., min_length=1)

    model_config = _FROZEN

    @property
    def label(self) -> str:
        return f"{self.username}@{self.host}:{self.port}/{self.database}"

    def connect_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments accepted by `psycopg.connect`."""
        return {
            "host": self.host,
            "port": self.port,
            "user": self.username,
            "password": self.password.get_secret_value(),
            "dbname": self.database,
        }

    def redacted(self) -> Dict[str, Any]:
        """Profile fields safe to expose in status responses and logs."""
        return {
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "database": self.database,
        }

    def to_persisted(self) -> Dict[str, Any]:
        """Full profile, secret included, for the on-disk resume record."""
        payload = self.redacted()
        payload["password"] = self.password.get_secret_value()
        return payload


class SystemMetricSample(BaseModel):
    """One row of the system metrics time series."""

    timestamp: datetime
    active_connections: int = Field(..., ge=0)
    cache_hit_ratio: Optional[float] = Field(None, ge=0.0, le=1.0)
    db_size_bytes: int = Field(..., ge=0)
    transactions_total: Optional[int] = Field(None, ge=0)
    tps: Optional[float] = Field(None, ge=0.0)

    model_config = _FROZEN


class QueryStatCandidate(BaseModel):
    """A pg_stat_statements row considered for leaderboard admission."""

    query_id: str
    query_text: str
    calls: int = 0
    total_time_ms: float = 0.0
    mean_time_ms: float = 0.0
    rows: int = 0
    shared_blocks_read: int = 0
    shared_blocks_hit: int = 0

    model_config = _FROZEN


class DailyLeaderboardEntry(BaseModel):
    """A member of one day's top-K slowest queries."""

    day: date
    query_id: str
    query_text: str
    mean_time_ms: float
    max_time_ms: float
    total_time_ms: float
    calls: int
    rows: int
    shared_blocks_read: int
    shared_blocks_hit: int
    last_seen: datetime

    model_config = _FROZEN


class Snapshot(NamedTuple):
    """Result of one successful collection."""

    sample: SystemMetricSample
    candidates: List[QueryStatCandidate]


@dataclass
class LeaderboardOutcome:
    """Counters describing what one upsert call did to the leaderboard."""

    inserted: int = 0
    updated: int = 0
    evicted: int = 0
    dropped: int = 0
    unchanged: int = 0
    trimmed: int = 0

    @property
    def writes(self) -> int:
        return self.inserted + self.updated + self.evicted + self.trimmed


@dataclass(frozen=True)
class SweepResult:
    metrics_deleted: int = 0
    entries_deleted: int = 0


class CycleReport(TypedDict, total=False):
    """
    Outcome of one sampling cycle.

    Fields are optional because a cycle can fail at any step; consumers
    should tolerate missing values.
    """

    started_at: datetime
    day: date
    duration_seconds: float
    rss_bytes: Optional[int]
    cpu_percent: Optional[float]
    sample_written: bool
    candidates: int
    leaderboard: Dict[str, int]
    swept: Dict[str, int]
    error: Optional[str]


class MonitoringStatus(BaseModel):
    running: bool
    profile: Optional[Dict[str, Any]] = None
    next_run_at: Optional[datetime] = None
    last_cycle: Optional[Dict[str, Any]] = None


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
