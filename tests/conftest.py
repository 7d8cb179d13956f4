"""
Pytest configuration for the query monitor.

Provides fixtures for:
- A throwaway SQLite-backed snapshot store and profile file
- A controllable clock and scripted collectors standing in for a target
- Settings and connection checks for integration tests
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Generator, List, Optional

import psycopg
import pytest

from querymonitor.config import Settings
from querymonitor.domain.models import (
    ConnectionProfile,
    QueryStatCandidate,
    Snapshot,
    SystemMetricSample,
)
from querymonitor.infrastructure.profile_store import ProfileStore
from querymonitor.infrastructure.store import SnapshotStore
from querymonitor.scheduler import MonitoringScheduler

START_TIME = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)
TEST_PASSWORD = "s3cret-pw"


class FakeClock:
    """Clock returning a fixed instant until advanced."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class ScriptedCollector:
    """
    Collector double. Also acts as its own factory, recording the profiles it
    was built for.
    """

    def __init__(self, clock: Callable[[], datetime]) -> None:
        self.clock = clock
        self.error: Optional[Exception] = None
        self.candidates: List[QueryStatCandidate] = []
        self.transactions_total: Optional[int] = 1_000
        self.profiles: List[ConnectionProfile] = []
        self.collect_calls = 0

    def __call__(self, profile: ConnectionProfile) -> "ScriptedCollector":
        self.profiles.append(profile)
        return self

    def collect(self) -> Snapshot:
        self.collect_calls += 1
        if self.error is not None:
            raise self.error
        sample = SystemMetricSample(
            timestamp=self.clock(),
            active_connections=3,
            cache_hit_ratio=0.99,
            db_size_bytes=8 * 1024 * 1024,
            transactions_total=self.transactions_total,
        )
        return Snapshot(sample=sample, candidates=list(self.candidates))


def make_candidate(query_id: str, mean_ms: float, calls: int = 1) -> QueryStatCandidate:
    return QueryStatCandidate(
        query_id=query_id,
        query_text=f"SELECT /* {query_id} */ 1",
        calls=calls,
        total_time_ms=mean_ms * calls,
        mean_time_ms=mean_ms,
        rows=calls,
        shared_blocks_read=1,
        shared_blocks_hit=9,
    )


@pytest.fixture
def candidate_factory() -> Callable[..., QueryStatCandidate]:
    return make_candidate


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START_TIME)


@pytest.fixture
def store(tmp_path: Path) -> Generator[SnapshotStore, None, None]:
    """
    Snapshot store backed by a SQLite file in the test's temp directory.
    """
    snapshot_store = SnapshotStore.from_url(f"sqlite:///{tmp_path / 'monitor.db'}")
    try:
        yield snapshot_store
    finally:
        snapshot_store.close()


@pytest.fixture
def profile_store(tmp_path: Path) -> ProfileStore:
    return ProfileStore(tmp_path / "monitoring_config.json")


@pytest.fixture
def profile() -> ConnectionProfile:
    return ConnectionProfile(
        host="db.internal",
        port=5432,
        username="monitor",
        password=TEST_PASSWORD,
        database="app",
    )


@pytest.fixture
def collector(clock: FakeClock) -> ScriptedCollector:
    return ScriptedCollector(clock)


@pytest.fixture
def scheduler_factory(
    store: SnapshotStore,
    profile_store: ProfileStore,
    collector: ScriptedCollector,
    clock: FakeClock,
) -> Generator[Callable[..., MonitoringScheduler], None, None]:
    """
    Build schedulers wired to the scripted collector; all are shut down at
    teardown.
    """
    created: List[MonitoringScheduler] = []

    def build(**overrides) -> MonitoringScheduler:
        options = {
            "collector_factory": collector,
            "interval_seconds": 3600,
            "resume_delay_seconds": 0.05,
            "leaderboard_size": 20,
            "day_tz": timezone.utc,
            "clock": clock,
        }
        options.update(overrides)
        scheduler = MonitoringScheduler(store, profile_store, **options)
        created.append(scheduler)
        return scheduler

    yield build

    for scheduler in created:
        scheduler.shutdown(wait=True)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "postgres"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def target_profile(test_settings: Settings) -> ConnectionProfile:
    return ConnectionProfile(
        host=test_settings.db_host,
        port=test_settings.db_port,
        username=test_settings.db_user,
        password=test_settings.db_password,
        database=test_settings.db_name,
    )


@pytest.fixture(scope="session")
def db_connection_available(target_profile: ConnectionProfile) -> bool:
    """
    Check if the target database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(**target_profile.connect_kwargs(), connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def statements_extension(
    target_profile: ConnectionProfile, db_connection_available: bool
) -> ConnectionProfile:
    """
    Profile of a target that has pg_stat_statements installed.

    Skips tests if the database or the extension is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    with psycopg.connect(**target_profile.connect_kwargs(), autocommit=True) as conn:
        with conn.cursor() as cur:
            try:
                cur.execute("CREATE EXTENSION IF NOT EXISTS pg_stat_statements;")
                cur.execute("SELECT 1 FROM pg_stat_statements LIMIT 1;")
            except psycopg.Error as exc:
                pytest.skip(f"pg_stat_statements unavailable: {exc}")
    return target_profile
