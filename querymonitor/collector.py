"""
Metrics collection against the monitored PostgreSQL database.

One `MetricsCollector.collect()` call is one sampling cycle's read side: it
opens a short-lived connection, checks that pg_stat_statements is installed,
reads the system counters and the slowest statements, and returns them as a
`Snapshot`. Nothing partial is ever returned; any failure raises.

The module also hosts the two on-demand operations that bypass the store:
fetching the live statement catalogue and resetting the accumulated
statistics.

Usage:
    from querymonitor.collector import MetricsCollector

    snapshot = MetricsCollector(profile).collect()
    print(snapshot.sample.active_connections, len(snapshot.candidates))
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

import psycopg
from psycopg import Connection
from psycopg import errors as pg_errors

from querymonitor.domain.models import (
    ConnectionProfile,
    QueryStatCandidate,
    Snapshot,
    SystemMetricSample,
)
from querymonitor.errors import (
    ConnectivityError,
    IntrospectionQueryError,
    MissingExtensionError,
)
from querymonitor.infrastructure.db_factory import target_connection
from querymonitor.utils.logging import get_logger
from querymonitor.utils.timeutil import utc_now

log = get_logger(__name__)

EXTENSION = "pg_stat_statements"
INSUFFICIENT_PRIVILEGE = "<insufficient privilege>"
DEFAULT_CANDIDATE_WINDOW = 50
DEFAULT_LIVE_LIMIT = 100

EXTENSION_SQL = "SELECT 1 FROM pg_extension WHERE extname = %s"

SYSTEM_METRICS_SQL = """
    SELECT
        (SELECT count(*) FROM pg_stat_activity)::bigint AS active_connections,
        (SELECT sum(xact_commit + xact_rollback) FROM pg_stat_database)::bigint
            AS transactions_total,
        (SELECT sum(blks_hit)::float8 / NULLIF(sum(blks_hit) + sum(blks_read), 0)
            FROM pg_stat_database) AS cache_hit_ratio,
        pg_database_size(current_database())::bigint AS db_size_bytes
"""

CATALOGUE_SQL = """
    SELECT
        queryid,
        query,
        calls,
        total_exec_time,
        mean_exec_time,
        rows,
        shared_blks_read,
        shared_blks_hit
    FROM pg_stat_statements
    ORDER BY mean_exec_time DESC
    LIMIT %s
"""

RESET_SQL = "SELECT pg_stat_statements_reset()"


@runtime_checkable
class Collector(Protocol):
    """Anything able to run the read side of one sampling cycle."""

    def collect(self) -> Snapshot:
        ...


def _candidate_from_row(row: Dict[str, Any]) -> Optional[QueryStatCandidate]:
    """
    Normalize one pg_stat_statements row.

    Rows hidden from the monitoring role come back with a NULL queryid and are
    skipped; a NULL query text is replaced by a sentinel.
    """
    if row.get("queryid") is None:
        return None
    return QueryStatCandidate(
        query_id=str(row["queryid"]),
        query_text=row.get("query") or INSUFFICIENT_PRIVILEGE,
        calls=int(row.get("calls") or 0),
        total_time_ms=float(row.get("total_exec_time") or 0.0),
        mean_time_ms=float(row.get("mean_exec_time") or 0.0),
        rows=int(row.get("rows") or 0),
        shared_blocks_read=int(row.get("shared_blks_read") or 0),
        shared_blocks_hit=int(row.get("shared_blks_hit") or 0),
    )


def _require_extension(conn: Connection) -> None:
    with conn.cursor() as cur:
        cur.execute(EXTENSION_SQL, (EXTENSION,))
        if cur.fetchone() is None:
            raise MissingExtensionError(EXTENSION)


def _read_catalogue(conn: Connection, limit: int) -> List[QueryStatCandidate]:
    with conn.cursor() as cur:
        cur.execute(CATALOGUE_SQL, (limit,))
        rows = cur.fetchall()

    candidates = []
    skipped = 0
    for row in rows:
        candidate = _candidate_from_row(row)
        if candidate is None:
            skipped += 1
            continue
        candidates.append(candidate)
    if skipped:
        log.debug("Skipped privilege-restricted statements", extra={"skipped": skipped})
    return candidates


def _translate(exc: psycopg.Error, profile: ConnectionProfile) -> Exception:
    """Map a driver error raised mid-session onto the monitor's taxonomy."""
    if isinstance(exc, pg_errors.UndefinedTable):
        return MissingExtensionError(EXTENSION)
    if isinstance(exc, (psycopg.OperationalError, psycopg.InterfaceError)):
        return ConnectivityError(f"lost connection to {profile.label}: {exc}")
    return IntrospectionQueryError(f"introspection query failed on {profile.label}: {exc}")


class MetricsCollector:
    """
    Reads one snapshot of system counters and statement statistics.

    Parameters
    ----------
    profile : ConnectionProfile
        The monitored database.
    candidate_window : int
        Maximum number of statements pulled per cycle, slowest first.
    connect_timeout : int
        Seconds to wait for each connection attempt.
    clock : callable
        Returns the aware datetime stamped on the sample.
    """

    def __init__(
        self,
        profile: ConnectionProfile,
        candidate_window: int = DEFAULT_CANDIDATE_WINDOW,
        connect_timeout: int = 10,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.profile = profile
        self.candidate_window = candidate_window
        self.connect_timeout = connect_timeout
        self._clock = clock

    def collect(self) -> Snapshot:
        with target_connection(self.profile, self.connect_timeout) as conn:
            try:
                _require_extension(conn)
                timestamp = self._clock()
                sample = self._read_system_metrics(conn, timestamp)
                candidates = _read_catalogue(conn, self.candidate_window)
            except psycopg.Error as exc:
                raise _translate(exc, self.profile) from exc

        log.debug(
            "Snapshot collected",
            extra={"target": self.profile.label, "candidates": len(candidates)},
        )
        return Snapshot(sample=sample, candidates=candidates)

    @staticmethod
    def _read_system_metrics(conn: Connection, timestamp: datetime) -> SystemMetricSample:
        with conn.cursor() as cur:
            cur.execute(SYSTEM_METRICS_SQL)
            row = cur.fetchone()
        if row is None:
            raise IntrospectionQueryError("system metrics query returned no row")

        ratio = row.get("cache_hit_ratio")
        transactions = row.get("transactions_total")
        return SystemMetricSample(
            timestamp=timestamp,
            active_connections=int(row.get("active_connections") or 0),
            cache_hit_ratio=float(ratio) if ratio is not None else None,
            db_size_bytes=int(row.get("db_size_bytes") or 0),
            transactions_total=int(transactions) if transactions is not None else None,
        )


def derive_tps(
    sample: SystemMetricSample, previous: Optional[SystemMetricSample]
) -> SystemMetricSample:
    """
    Fill in transactions per second from the previous sample.

    Left as None for the first sample, when either counter is missing, or when
    the counter went backwards (statistics reset or server restart).
    """
    if previous is None or sample.transactions_total is None:
        return sample
    if previous.transactions_total is None:
        return sample
    elapsed = (sample.timestamp - previous.timestamp).total_seconds()
    delta = sample.transactions_total - previous.transactions_total
    if elapsed <= 0 or delta < 0:
        return sample
    return sample.model_copy(update={"tps": round(delta / elapsed, 3)})


def fetch_live_catalogue(
    profile: ConnectionProfile,
    limit: int = DEFAULT_LIVE_LIMIT,
    connect_timeout: int = 10,
) -> List[QueryStatCandidate]:
    """
    Read the current statement catalogue straight from the target, slowest
    first. Errors propagate to the caller.
    """
    with target_connection(profile, connect_timeout) as conn:
        try:
            _require_extension(conn)
            return _read_catalogue(conn, limit)
        except psycopg.Error as exc:
            raise _translate(exc, profile) from exc


def reset_statistics(profile: ConnectionProfile, connect_timeout: int = 10) -> None:
    """Discard the statistics pg_stat_statements has gathered on the target."""
    with target_connection(profile, connect_timeout) as conn:
        try:
            _require_extension(conn)
            with conn.cursor() as cur:
                cur.execute(RESET_SQL)
        except psycopg.Error as exc:
            raise _translate(exc, profile) from exc
    log.info("Statement statistics reset", extra={"target": profile.label})


__all__ = [
    "Collector",
    "INSUFFICIENT_PRIVILEGE",
    "MetricsCollector",
    "derive_tps",
    "fetch_live_catalogue",
    "reset_statistics",
]
