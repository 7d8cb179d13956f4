from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from querymonitor.domain.models import SystemMetricSample
from querymonitor.leaderboard import LeaderboardMaintainer
from querymonitor.retention import RetentionSweeper

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)
TODAY = date(2026, 10, 17)
RETENTION = timedelta(hours=24)


def _sample(at: datetime) -> SystemMetricSample:
    return SystemMetricSample(
        timestamp=at, active_connections=1, cache_hit_ratio=1.0, db_size_bytes=1024
    )


def test_sweep_drops_samples_older_than_retention(store):
    for age in (
        timedelta(hours=30),
        RETENTION + timedelta(milliseconds=1),
        RETENTION,
        timedelta(hours=1),
    ):
        store.append_sample(_sample(NOW - age))

    result = RetentionSweeper(store, metrics_retention=RETENTION).sweep(NOW, TODAY)

    assert result.metrics_deleted == 2
    remaining = [s.timestamp for s in store.samples_since(NOW - timedelta(days=7))]
    assert remaining == [NOW - RETENTION, NOW - timedelta(hours=1)]


def test_sweep_drops_entries_of_past_days(store, candidate_factory):
    maintainer = LeaderboardMaintainer(store)
    yesterday = TODAY - timedelta(days=1)
    maintainer.upsert(yesterday, [candidate_factory("a", 5.0), candidate_factory("b", 6.0)], NOW)
    maintainer.upsert(TODAY, [candidate_factory("a", 1.0)], NOW)

    result = RetentionSweeper(store).sweep(NOW, TODAY)

    assert result.entries_deleted == 2
    assert store.leaderboard_for(yesterday) == []
    assert [e.query_id for e in store.leaderboard_for(TODAY)] == ["a"]


def test_second_sweep_is_a_no_op(store, candidate_factory):
    store.append_sample(_sample(NOW - timedelta(hours=48)))
    store.append_sample(_sample(NOW))
    LeaderboardMaintainer(store).upsert(
        TODAY - timedelta(days=3), [candidate_factory("a", 5.0)], NOW
    )
    sweeper = RetentionSweeper(store)

    first = sweeper.sweep(NOW, TODAY)
    second = sweeper.sweep(NOW, TODAY)

    assert (first.metrics_deleted, first.entries_deleted) == (1, 1)
    assert (second.metrics_deleted, second.entries_deleted) == (0, 0)
    assert store.count_samples() == 1
