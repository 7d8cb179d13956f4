from __future__ import annotations

import random
from datetime import date, datetime, timedelta, timezone

import pytest

from querymonitor.leaderboard import LeaderboardMaintainer

DAY = date(2026, 10, 17)
NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)
CAPACITY = 20
RANDOM_ROUNDS = 40
RANDOM_QUERY_IDS = 60


@pytest.fixture
def maintainer(store) -> LeaderboardMaintainer:
    return LeaderboardMaintainer(store, capacity=CAPACITY)


def _fill_board(maintainer, candidate_factory, minimum_ms: float = 5.0) -> None:
    """20 entries: q-min at `minimum_ms`, the rest strictly slower."""
    candidates = [candidate_factory("q-min", minimum_ms)]
    candidates += [candidate_factory(f"q-{i:02d}", 10.0 + i) for i in range(CAPACITY - 1)]
    outcome = maintainer.upsert(DAY, candidates, NOW)
    assert outcome.inserted == CAPACITY


class TestAdmission:
    def test_inserts_while_board_has_room(self, maintainer, store, candidate_factory):
        outcome = maintainer.upsert(
            DAY, [candidate_factory("a", 1.0), candidate_factory("b", 2.0)], NOW
        )

        assert outcome.inserted == 2
        entries = store.leaderboard_for(DAY)
        assert [e.query_id for e in entries] == ["b", "a"]
        assert entries[0].max_time_ms == 2.0
        assert entries[0].last_seen == NOW

    def test_slower_candidate_replaces_fastest_entry(self, maintainer, store, candidate_factory):
        _fill_board(maintainer, candidate_factory)

        outcome = maintainer.upsert(DAY, [candidate_factory("q-new", 8.0)], NOW)

        assert outcome.evicted == 1
        ids = {e.query_id for e in store.leaderboard_for(DAY)}
        assert "q-new" in ids
        assert "q-min" not in ids
        assert len(ids) == CAPACITY

    def test_faster_candidate_is_dropped_on_full_board(self, maintainer, store, candidate_factory):
        _fill_board(maintainer, candidate_factory)
        maintainer.upsert(DAY, [candidate_factory("q-new", 8.0)], NOW)
        before = store.leaderboard_for(DAY)

        outcome = maintainer.upsert(DAY, [candidate_factory("q-fast", 3.0)], NOW)

        assert outcome.dropped == 1
        assert store.leaderboard_for(DAY) == before

    def test_candidate_equal_to_minimum_is_dropped(self, maintainer, store, candidate_factory):
        _fill_board(maintainer, candidate_factory)

        outcome = maintainer.upsert(DAY, [candidate_factory("q-tie", 5.0)], NOW)

        assert outcome.dropped == 1
        assert "q-tie" not in {e.query_id for e in store.leaderboard_for(DAY)}

    def test_tied_minimum_evicts_least_recently_seen(self, maintainer, store, candidate_factory):
        later = NOW + timedelta(minutes=1)
        maintainer.upsert(DAY, [candidate_factory("q-old", 5.0)], NOW)
        maintainer.upsert(DAY, [candidate_factory("q-recent", 5.0)], later)
        maintainer.upsert(
            DAY,
            [candidate_factory(f"q-{i:02d}", 10.0 + i) for i in range(CAPACITY - 2)],
            later,
        )

        maintainer.upsert(DAY, [candidate_factory("q-new", 6.0)], later)

        ids = {e.query_id for e in store.leaderboard_for(DAY)}
        assert "q-old" not in ids
        assert "q-recent" in ids

    def test_days_are_ranked_independently(self, maintainer, store, candidate_factory):
        _fill_board(maintainer, candidate_factory)
        tomorrow = DAY + timedelta(days=1)

        outcome = maintainer.upsert(tomorrow, [candidate_factory("q-fast", 0.5)], NOW)

        assert outcome.inserted == 1
        assert len(store.leaderboard_for(DAY)) == CAPACITY
        assert [e.query_id for e in store.leaderboard_for(tomorrow)] == ["q-fast"]


class TestUpdates:
    def test_slower_reading_updates_entry_in_place(self, maintainer, store, candidate_factory):
        maintainer.upsert(DAY, [candidate_factory("a", 10.0, calls=4)], NOW)
        later = NOW + timedelta(minutes=1)

        outcome = maintainer.upsert(DAY, [candidate_factory("a", 12.5, calls=9)], later)

        assert outcome.updated == 1
        (entry,) = store.leaderboard_for(DAY)
        assert entry.mean_time_ms == 12.5
        assert entry.max_time_ms == 12.5
        assert entry.calls == 9
        assert entry.last_seen == later

    @pytest.mark.parametrize("mean_ms", [10.0, 7.0])
    def test_non_increasing_reading_leaves_entry_untouched(
        self, maintainer, store, candidate_factory, mean_ms
    ):
        maintainer.upsert(DAY, [candidate_factory("a", 10.0, calls=4)], NOW)
        before = store.leaderboard_for(DAY)

        outcome = maintainer.upsert(
            DAY, [candidate_factory("a", mean_ms, calls=99)], NOW + timedelta(minutes=5)
        )

        assert outcome.unchanged == 1
        assert outcome.writes == 0
        assert store.leaderboard_for(DAY) == before

    def test_repeating_a_batch_changes_nothing(self, maintainer, store, candidate_factory):
        batch = [candidate_factory(f"q-{i}", float(i + 1)) for i in range(25)]
        maintainer.upsert(DAY, batch, NOW)
        before = store.leaderboard_for(DAY)

        outcome = maintainer.upsert(DAY, batch, NOW)

        assert outcome.writes == 0
        assert store.leaderboard_for(DAY) == before

    def test_duplicate_candidates_in_one_batch_keep_the_slowest(
        self, maintainer, store, candidate_factory
    ):
        outcome = maintainer.upsert(
            DAY,
            [candidate_factory("a", 3.0), candidate_factory("a", 9.0), candidate_factory("a", 4.0)],
            NOW,
        )

        assert (outcome.inserted, outcome.updated, outcome.unchanged) == (1, 1, 1)
        (entry,) = store.leaderboard_for(DAY)
        assert entry.mean_time_ms == 9.0


def test_board_never_exceeds_capacity_and_never_gets_faster(maintainer, store, candidate_factory):
    rng = random.Random(7)

    for round_no in range(RANDOM_ROUNDS):
        batch = [
            candidate_factory(f"q-{rng.randrange(RANDOM_QUERY_IDS)}", round(rng.uniform(0.1, 50), 3))
            for _ in range(rng.randint(1, 30))
        ]
        before = {e.query_id: e.mean_time_ms for e in store.leaderboard_for(DAY)}
        maintainer.upsert(DAY, batch, NOW + timedelta(seconds=round_no))
        after = store.leaderboard_for(DAY)

        assert len(after) <= CAPACITY
        for entry in after:
            # Surviving entries never get faster.
            if entry.query_id in before:
                assert entry.mean_time_ms >= before[entry.query_id]

    assert len(store.leaderboard_for(DAY)) == CAPACITY


class TestCapacityChange:
    def test_lowered_capacity_trims_the_day_before_admitting(self, store, candidate_factory):
        LeaderboardMaintainer(store, capacity=25).upsert(
            DAY, [candidate_factory(f"q-{i:02d}", float(i)) for i in range(1, 26)], NOW
        )

        outcome = LeaderboardMaintainer(store, capacity=CAPACITY).upsert(
            DAY, [candidate_factory("q-new", 100.0)], NOW
        )

        entries = store.leaderboard_for(DAY)
        assert len(entries) == CAPACITY
        assert (outcome.trimmed, outcome.evicted) == (5, 1)
        assert entries[0].query_id == "q-new"
        assert min(e.mean_time_ms for e in entries) == 7.0

    def test_trim_applies_even_without_candidates(self, store, candidate_factory):
        LeaderboardMaintainer(store, capacity=25).upsert(
            DAY, [candidate_factory(f"q-{i:02d}", float(i)) for i in range(1, 26)], NOW
        )

        outcome = LeaderboardMaintainer(store, capacity=CAPACITY).upsert(DAY, [], NOW)

        assert outcome.trimmed == 5
        assert len(store.leaderboard_for(DAY)) == CAPACITY


def test_capacity_must_be_positive(store):
    with pytest.raises(ValueError):
        LeaderboardMaintainer(store, capacity=0)
